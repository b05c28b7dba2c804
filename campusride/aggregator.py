"""Debounced multi-source suggestion search.

Short queries (two characters or fewer) answer immediately from the POI
registry and the cached current location.  Longer queries wait for a quiet
period and then merge, in this order: the current-location entry (only when
the query looks like "current location"), POIs whose name contains the query,
and remote autocomplete results.  The merged list is capped at eight entries.
"""
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Protocol

from campusride.current_location import LocationFix
from campusride.errors import SourceUnavailable
from campusride.geo import Address
from campusride.models import (
    CurrentLocationSuggestion,
    PoiLocation,
    RemotePlace,
    RemoteSuggestion,
    Suggestion,
    poi_suggestions,
)

logger = logging.getLogger(__name__)

SEARCH_DEBOUNCE_SECONDS = 0.3
SHORT_QUERY_MAX_LENGTH = 2
MAX_SUGGESTIONS = 8
CURRENT_LOCATION_PHRASES = ("vị trí hiện tại", "hiện tại", "current")


class PoiSource(Protocol):
    async def get_all_locations(self) -> List[PoiLocation]: ...


class PlaceSearch(Protocol):
    async def search_places(self, query: str) -> List[RemotePlace]: ...


class CurrentLocationLookup(Protocol):
    async def get_current_location_with_address(
        self, force_refresh: bool = False
    ) -> LocationFix: ...


class Debouncer:
    """Single-slot timer: each ``wait`` supersedes the previous one.

    ``wait`` resolves to ``True`` once *delay* seconds pass without another
    call, and to ``False`` when a later call or ``cancel`` supersedes it.
    """

    def __init__(self, delay: float) -> None:
        self.delay = delay
        self._handle: Optional[asyncio.TimerHandle] = None
        self._waiter: Optional[asyncio.Future] = None

    @property
    def pending(self) -> bool:
        return self._waiter is not None and not self._waiter.done()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self._waiter is not None and not self._waiter.done():
            self._waiter.set_result(False)
        self._waiter = None

    async def wait(self) -> bool:
        self.cancel()
        loop = asyncio.get_running_loop()
        waiter: asyncio.Future = loop.create_future()

        def _fire() -> None:
            if not waiter.done():
                waiter.set_result(True)

        self._waiter = waiter
        self._handle = loop.call_later(self.delay, _fire)
        try:
            return await waiter
        finally:
            if self._waiter is waiter:
                if self._handle is not None:
                    self._handle.cancel()
                self._waiter = None
                self._handle = None


def matches_current_location(query: str) -> bool:
    lowered = query.lower()
    return any(lowered in phrase for phrase in CURRENT_LOCATION_PHRASES)


class SuggestionAggregator:
    """Merge POI, current-location and remote suggestions for one input field."""

    def __init__(
        self,
        poi_source: Optional[PoiSource] = None,
        places: Optional[PlaceSearch] = None,
        current_location: Optional[CurrentLocationLookup] = None,
        *,
        debounce: float = SEARCH_DEBOUNCE_SECONDS,
        max_results: int = MAX_SUGGESTIONS,
    ) -> None:
        self.poi_source = poi_source
        self.places = places
        self.current_location = current_location
        self.max_results = max_results
        self.debouncer = Debouncer(debounce)
        self._pois: Optional[List[PoiLocation]] = None
        self._poi_lock = asyncio.Lock()

    async def load_pois(self) -> List[PoiLocation]:
        """Return the POI list, fetching it once per aggregator."""

        async with self._poi_lock:
            if self._pois is not None:
                return self._pois
            if self.poi_source is None:
                self._pois = []
                return self._pois
            try:
                self._pois = list(await self.poi_source.get_all_locations())
            except Exception as exc:
                logger.warning("%s", SourceUnavailable("poi_registry", exc))
                return []
            return self._pois

    def reset(self) -> None:
        """Drop the memoized POI list and any pending debounce."""

        self.debouncer.cancel()
        self._pois = None

    def cancel(self) -> None:
        self.debouncer.cancel()

    async def _current_location_suggestion(
        self, is_pickup_context: bool
    ) -> Optional[CurrentLocationSuggestion]:
        if not is_pickup_context or self.current_location is None:
            return None
        try:
            fix = await self.current_location.get_current_location_with_address()
        except Exception as exc:
            logger.warning("%s", SourceUnavailable("current_location", exc))
            return None
        if fix.point is None or fix.address is None:
            return None
        address = fix.address
        if not address.short:
            address = Address.from_formatted(address.formatted)
        return CurrentLocationSuggestion(point=fix.point, address=address)

    async def _remote_suggestions(self, query: str) -> List[RemoteSuggestion]:
        if self.places is None or not getattr(self.places, "configured", True):
            logger.debug("Remote place search not configured")
            return []
        try:
            places = await self.places.search_places(query)
        except Exception as exc:
            logger.warning("%s", SourceUnavailable("remote_search", exc))
            return []
        return [RemoteSuggestion.from_place(place) for place in places]

    async def search(
        self, query: str, is_pickup_context: bool = False
    ) -> Optional[List[Suggestion]]:
        """Return ordered suggestions for *query*.

        ``None`` means the call was superseded by a newer one before its
        debounce elapsed; callers should ignore it.
        """

        if len(query) <= SHORT_QUERY_MAX_LENGTH:
            self.debouncer.cancel()
            pois = await self.load_pois()
            current = await self._current_location_suggestion(is_pickup_context)
            short: List[Suggestion] = list(poi_suggestions(pois))
            if current is not None:
                short.insert(0, current)
            return short

        if not await self.debouncer.wait():
            logger.debug("Search for %r superseded", query)
            return None

        pois = await self.load_pois()
        current = await self._current_location_suggestion(is_pickup_context)
        lowered = query.lower()

        merged: List[Suggestion] = []
        if current is not None and matches_current_location(query):
            merged.append(current)
        merged.extend(poi_suggestions(p for p in pois if lowered in p.name.lower()))
        merged.extend(await self._remote_suggestions(query))
        return merged[: self.max_results]


__all__ = [
    "CURRENT_LOCATION_PHRASES",
    "Debouncer",
    "MAX_SUGGESTIONS",
    "SEARCH_DEBOUNCE_SECONDS",
    "SHORT_QUERY_MAX_LENGTH",
    "SuggestionAggregator",
    "matches_current_location",
]
