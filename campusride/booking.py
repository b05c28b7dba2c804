"""Booking screen context: two endpoints, their anchor flags, a route and a quote.

Either a template route or two resolved endpoints are bound into a quote
request.  Choosing a route or changing an endpoint drops the current quote;
anchor flags are recomputed whenever an endpoint changes.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from campusride.aggregator import SuggestionAggregator
from campusride.anchors import AnchorSet
from campusride.errors import ResolutionError, ResolutionFailure
from campusride.geo import GeoPoint
from campusride.input_state import AddressInputSession, InputState
from campusride.models import ResolvedLocation
from campusride.quotes import Quote, QuoteClient, TemplateRoute
from campusride.resolution import LocationResolver

logger = logging.getLogger(__name__)

PICKUP = "pickup"
DROPOFF = "dropoff"
SIDES = (PICKUP, DROPOFF)


def _other(side: str) -> str:
    return DROPOFF if side == PICKUP else PICKUP


class _Endpoint:
    __slots__ = ("location", "text", "is_anchor")

    def __init__(self) -> None:
        self.location: Optional[ResolvedLocation] = None
        self.text = ""
        self.is_anchor = False


class RouteQuoteSelector:
    def __init__(
        self,
        resolver: LocationResolver,
        quote_client: QuoteClient,
        anchors: Optional[AnchorSet] = None,
    ) -> None:
        self.resolver = resolver
        self.quote_client = quote_client
        self.anchors = anchors or AnchorSet()
        self.endpoints: Dict[str, _Endpoint] = {side: _Endpoint() for side in SIDES}
        self.sessions: Dict[str, AddressInputSession] = {}
        self.routes: List[TemplateRoute] = []
        self.selected_route: Optional[TemplateRoute] = None
        self.quote: Optional[Quote] = None
        self.route_path: List[GeoPoint] = []
        self.last_error: Optional[ResolutionError] = None

    # Endpoint state

    @property
    def pickup(self) -> Optional[ResolvedLocation]:
        return self.endpoints[PICKUP].location

    @property
    def dropoff(self) -> Optional[ResolvedLocation]:
        return self.endpoints[DROPOFF].location

    @property
    def pickup_is_anchor(self) -> bool:
        return self.endpoints[PICKUP].is_anchor

    @property
    def dropoff_is_anchor(self) -> bool:
        return self.endpoints[DROPOFF].is_anchor

    def touches_anchor(self) -> bool:
        return self.pickup_is_anchor or self.dropoff_is_anchor

    def text(self, side: str) -> str:
        return self.endpoints[side].text

    def clear_quote(self) -> None:
        self.quote = None

    def _refresh_anchor(self, side: str) -> None:
        endpoint = self.endpoints[side]
        endpoint.is_anchor = self.anchors.is_anchor(endpoint.location, endpoint.text or None)

    def set_location(
        self,
        side: str,
        location: Optional[ResolvedLocation],
        *,
        fill_campus: bool = False,
    ) -> None:
        """Confirm *location* for *side*.

        With *fill_campus*, a non-anchor endpoint whose opposite side is still
        empty gets the campus anchor on that opposite side.
        """

        endpoint = self.endpoints[side]
        endpoint.location = location
        if location is not None:
            endpoint.text = location.label
        self._refresh_anchor(side)
        self.clear_quote()

        other = self.endpoints[_other(side)]
        if fill_campus and location is not None and not endpoint.is_anchor and other.location is None:
            campus = self.anchors.campus()
            self.set_location(
                _other(side),
                ResolvedLocation(
                    point=campus.point,
                    address=campus.name,
                    source_id=campus.id,
                    is_poi=campus.id is not None,
                    display_text=campus.name,
                ),
            )
            session = self.sessions.get(_other(side))
            if session is not None:
                session.set_text(campus.name)

    def set_text(self, side: str, text: str) -> None:
        """Record text the user typed; it invalidates the confirmed location."""

        endpoint = self.endpoints[side]
        if text == endpoint.text:
            return
        endpoint.text = text
        endpoint.location = None
        self._refresh_anchor(side)
        self.clear_quote()

    # Input sessions

    def open_session(self, side: str, aggregator: SuggestionAggregator) -> AddressInputSession:
        """Create the input session for *side*, wired to this selector."""

        if side not in SIDES:
            raise ValueError(f"Unknown endpoint side: {side}")

        def on_change_text(text: str) -> None:
            endpoint = self.endpoints[side]
            session = self.sessions.get(side)
            if session is not None and session.state is InputState.SELECTING:
                endpoint.text = text
                return
            self.set_text(side, text)

        def on_error(exc: ResolutionError) -> None:
            self.last_error = exc
            logger.warning("%s resolution failed: %s", side, exc.user_message)

        session = AddressInputSession(
            aggregator,
            self.resolver,
            is_pickup=side == PICKUP,
            on_change_text=on_change_text,
            on_location_select=lambda location: self.set_location(side, location),
            on_resolution_error=on_error,
        )
        previous = self.sessions.get(side)
        if previous is not None:
            previous.close()
        self.sessions[side] = session
        return session

    def close(self) -> None:
        for session in self.sessions.values():
            session.close()
        self.sessions.clear()

    # Routes

    async def load_routes(self) -> List[TemplateRoute]:
        self.routes = await self.quote_client.get_template_routes()
        return self.routes

    def select_route(self, route: Optional[TemplateRoute]) -> None:
        if route is None:
            return
        self.selected_route = route
        for side, location in ((PICKUP, route.from_location), (DROPOFF, route.to_location)):
            if location is None:
                continue
            self.set_location(side, location)
            session = self.sessions.get(side)
            if session is not None:
                session.set_text(location.label)
        self.route_path = list(route.path)
        self.clear_quote()

    def clear_route(self) -> None:
        self.selected_route = None
        self.route_path = []
        self.clear_quote()

    # Quotes

    async def _ensure_location(self, side: str) -> ResolvedLocation:
        endpoint = self.endpoints[side]
        if endpoint.location is not None:
            return endpoint.location

        def write(text: str) -> None:
            endpoint.text = text
            session = self.sessions.get(side)
            if session is not None:
                session.set_text(text)

        resolved = await self.resolver.resolve_text(endpoint.text, on_display_text=write)
        endpoint.location = resolved
        self._refresh_anchor(side)
        return resolved

    async def request_quote(
        self,
        desired_pickup_time: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Quote:
        """Request a quote for the selected route or the two endpoints.

        Unconfirmed endpoints are resolved from their typed text first; a
        failure raises :class:`ResolutionError` and leaves the quote empty.
        """

        self.clear_quote()
        if self.selected_route is not None:
            quote = await self.quote_client.get_quote(
                route_id=self.selected_route.route_id,
                desired_pickup_time=desired_pickup_time,
                notes=notes,
            )
        else:
            for side in SIDES:
                endpoint = self.endpoints[side]
                if endpoint.location is None and not endpoint.text.strip():
                    raise ResolutionError(ResolutionFailure.EMPTY_QUERY, side)
            pickup = await self._ensure_location(PICKUP)
            dropoff = await self._ensure_location(DROPOFF)
            quote = await self.quote_client.get_quote(
                pickup,
                dropoff,
                desired_pickup_time=desired_pickup_time,
                notes=notes,
            )

        self.quote = quote
        if quote.path:
            self.route_path = list(quote.path)
        logger.debug("Quote %s total %.0f", quote.quote_id, quote.fare.total)
        return quote


__all__ = [
    "DROPOFF",
    "PICKUP",
    "RouteQuoteSelector",
]
