"""Typing/selection state machine for one address input field.

A session arbitrates between user keystrokes, programmatic text updates,
suggestion-list visibility and focus/blur timing.  States:

* ``IDLE``: nothing in progress; programmatic text lands here.
* ``TYPING``: the user is composing a query; every change dispatches a search.
* ``SELECTING``: a suggestion was pressed; searches are suppressed and the list
  stays hidden until resolution finishes, successfully or not.

Every transition is appended to ``transitions`` with a timestamp from the
session clock.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Protocol, Set

from campusride.errors import ResolutionError, StaleSelection
from campusride.models import ResolvedLocation, Suggestion

logger = logging.getLogger(__name__)

BLUR_HIDE_SECONDS = 0.3
SELECTION_GRACE_SECONDS = 0.1


class InputState(str, Enum):
    IDLE = "idle"
    TYPING = "typing"
    SELECTING = "selecting"


@dataclass(frozen=True)
class Transition:
    state: InputState
    at: float
    reason: str


class SuggestionSearch(Protocol):
    async def search(
        self, query: str, is_pickup_context: bool = False
    ) -> Optional[List[Suggestion]]: ...

    def cancel(self) -> None: ...


class SuggestionResolver(Protocol):
    async def resolve(
        self,
        suggestion: Suggestion,
        on_display_text: Optional[Callable[[str], None]] = None,
    ) -> ResolvedLocation: ...


class AddressInputSession:
    """State for a single pickup or dropoff field.

    Callbacks mirror what the field emits upward: ``on_change_text`` receives
    every text the field displays because of the user or a selection,
    ``on_location_select`` receives each confirmed location and
    ``on_resolution_error`` receives each failed selection exactly once.
    """

    def __init__(
        self,
        aggregator: SuggestionSearch,
        resolver: SuggestionResolver,
        *,
        is_pickup: bool = False,
        on_change_text: Optional[Callable[[str], None]] = None,
        on_location_select: Optional[Callable[[ResolvedLocation], None]] = None,
        on_resolution_error: Optional[Callable[[ResolutionError], None]] = None,
        blur_delay: float = BLUR_HIDE_SECONDS,
        grace_delay: float = SELECTION_GRACE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.aggregator = aggregator
        self.resolver = resolver
        self.is_pickup = is_pickup
        self.on_change_text = on_change_text
        self.on_location_select = on_location_select
        self.on_resolution_error = on_resolution_error
        self.blur_delay = blur_delay
        self.grace_delay = grace_delay
        self.clock = clock

        self.text = ""
        self.suggestions: List[Suggestion] = []
        self.suggestions_visible = False
        self.focused = False
        self.resolved: Optional[ResolvedLocation] = None
        self.closed = False
        self.transitions: List[Transition] = [Transition(InputState.IDLE, clock(), "init")]

        self._state = InputState.IDLE
        self._grace_until = 0.0
        self._epoch = 0
        self._blur_handle: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def state(self) -> InputState:
        return self._state

    @property
    def blur_pending(self) -> bool:
        return self._blur_handle is not None

    def _transition(self, state: InputState, reason: str) -> None:
        if state is self._state:
            return
        logger.debug("Input %s -> %s (%s)", self._state.value, state.value, reason)
        self._state = state
        self.transitions.append(Transition(state, self.clock(), reason))

    def _in_grace(self) -> bool:
        return self.clock() < self._grace_until

    def _hide(self, clear: bool = False) -> None:
        self.suggestions_visible = False
        if clear:
            self.suggestions = []

    def _track(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # Text changes

    def user_input(self, text: str) -> Optional[asyncio.Task]:
        """Handle a user-originated change of the field value.

        While a selection is in flight, or just finished, the value is kept
        and emitted but no search runs; an echo of the current value is a
        no-op.  Returns the dispatched search task, or ``None`` when no
        search runs.
        """

        if self.closed:
            return None
        selecting = self._state is InputState.SELECTING
        if selecting or self._in_grace():
            if text == self.text:
                return None
            logger.debug("Keeping value change %r without searching during selection", text)
            if not selecting:
                self.resolved = None
            self.text = text
            if self.on_change_text is not None:
                self.on_change_text(text)
            return None

        if text != self.text:
            self.resolved = None
        self.text = text
        if self.on_change_text is not None:
            self.on_change_text(text)
        self._transition(InputState.TYPING, "keystroke")

        if not text.strip():
            self.aggregator.cancel()
            self._hide(clear=True)
            return None
        return self._track(self._run_search(text, self._epoch))

    def set_text(self, text: str) -> None:
        """Assign the field value programmatically; never searches."""

        if self.closed:
            return
        self._epoch += 1
        self.aggregator.cancel()
        self.text = text
        self._hide(clear=True)
        self._transition(InputState.IDLE, "programmatic")

    async def _run_search(self, text: str, epoch: int) -> None:
        results = await self.aggregator.search(text, self.is_pickup)
        if results is None:
            return
        if self.closed or epoch != self._epoch or text != self.text:
            logger.debug("Discarding stale suggestions for %r", text)
            return
        if self._state is InputState.SELECTING:
            logger.debug("Discarding suggestions for %r during selection", text)
            return
        self.suggestions = results
        self.suggestions_visible = bool(results)

    # Focus

    def focus(self) -> None:
        if self.closed:
            return
        self.focused = True
        self._cancel_blur()
        if self.suggestions and self._state is not InputState.SELECTING:
            self.suggestions_visible = True

    def blur(self) -> None:
        if self.closed:
            return
        self.focused = False
        self._cancel_blur()
        loop = asyncio.get_running_loop()
        self._blur_handle = loop.call_later(self.blur_delay, self._blur_expired)

    def _cancel_blur(self) -> None:
        if self._blur_handle is not None:
            self._blur_handle.cancel()
            self._blur_handle = None

    def _blur_expired(self) -> None:
        self._blur_handle = None
        if self.closed:
            return
        if self._state is InputState.SELECTING:
            logger.debug("Blur hide skipped while selecting")
            return
        self._hide()
        if self._state is InputState.TYPING:
            self._transition(InputState.IDLE, "blur")

    # Selection

    def press_in(self, suggestion: Suggestion) -> None:
        """Lock the field the moment a suggestion registers a press."""

        if self.closed:
            return
        self._epoch += 1
        self.aggregator.cancel()
        self._hide()
        self._transition(InputState.SELECTING, f"press {suggestion.kind}")

    def tap(self, suggestion: Suggestion) -> Optional[asyncio.Task]:
        """Press and resolve *suggestion* in a task owned by the session."""

        if self.closed:
            return None
        self.press_in(suggestion)
        return self._track(self.select(suggestion))

    def _write_display_text(self, epoch: int) -> Callable[[str], None]:
        def write(text: str) -> None:
            if self.closed or epoch != self._epoch:
                return
            self.text = text
            self._grace_until = self.clock() + self.grace_delay
            if self.on_change_text is not None:
                self.on_change_text(text)

        return write

    def _ensure_current(self, epoch: int) -> None:
        if self.closed:
            raise StaleSelection("input session closed")
        if epoch != self._epoch:
            raise StaleSelection("input field changed during resolution")

    async def select(self, suggestion: Suggestion) -> Optional[ResolvedLocation]:
        """Resolve *suggestion* and publish the outcome.

        Returns the resolved location, or ``None`` when resolution failed or
        its result became stale.
        """

        if self.closed:
            return None
        if self._state is not InputState.SELECTING:
            self.press_in(suggestion)
        epoch = self._epoch

        try:
            try:
                resolved = await self.resolver.resolve(
                    suggestion, on_display_text=self._write_display_text(epoch)
                )
            except ResolutionError as exc:
                self._ensure_current(epoch)
                logger.warning("Could not resolve %r: %s", suggestion.display_main, exc)
                if self.on_resolution_error is not None:
                    self.on_resolution_error(exc)
                self._finish_selection("resolution failed")
                return None
            self._ensure_current(epoch)
        except StaleSelection as exc:
            logger.debug("Discarding selection of %r: %s", suggestion.display_main, exc)
            return None

        self.resolved = resolved
        if self.on_location_select is not None:
            self.on_location_select(resolved)
        self._finish_selection("resolved")
        return resolved

    def _finish_selection(self, reason: str) -> None:
        self._hide(clear=True)
        self._transition(InputState.IDLE, reason)

    # Teardown

    def close(self) -> None:
        """Cancel timers and in-flight work; later results are discarded."""

        if self.closed:
            return
        self.closed = True
        self._epoch += 1
        self.aggregator.cancel()
        self._cancel_blur()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self._hide(clear=True)


__all__ = [
    "AddressInputSession",
    "BLUR_HIDE_SECONDS",
    "InputState",
    "SELECTION_GRACE_SECONDS",
    "Transition",
]
