"""Turn a chosen suggestion or typed address into a confirmed coordinate.

Tiers, first success wins:

1. POI suggestions resolve to their stored coordinate.
2. Current-location suggestions resolve to the device coordinate.
3. Remote suggestions ask for place details (canonical point and full
   formatted address).
4. Anything left is geocoded from its description or the raw text.
5. Raw text that geocodes within ``SNAP_RADIUS_M`` of a POI is snapped to it.
"""
from __future__ import annotations

import logging
from typing import Callable, List, Optional, Protocol

from campusride.errors import ResolutionError, ResolutionFailure
from campusride.geo import GeoPoint
from campusride.models import (
    CurrentLocationSuggestion,
    PlaceDetails,
    PoiLocation,
    PoiSuggestion,
    RemoteSuggestion,
    ResolvedLocation,
    Suggestion,
)
from campusride.poi_registry import SNAP_RADIUS_M

logger = logging.getLogger(__name__)

DisplayTextCallback = Callable[[str], None]


class PlaceLookup(Protocol):
    async def get_place_details(self, place_ref: str) -> Optional[PlaceDetails]: ...

    async def geocode(self, text: str) -> List[GeoPoint]: ...


class PoiLookup(Protocol):
    async def find_nearby(
        self, latitude: float, longitude: float, radius_m: float = SNAP_RADIUS_M
    ) -> Optional[PoiLocation]: ...

    async def search(self, text: str, limit: int = 1) -> List[PoiLocation]: ...


def _from_poi(poi: PoiLocation) -> ResolvedLocation:
    return ResolvedLocation(
        point=poi.point,
        address=poi.name,
        source_id=poi.id,
        is_poi=True,
        display_text=poi.name,
    )


class LocationResolver:
    def __init__(
        self,
        places: Optional[PlaceLookup] = None,
        poi_registry: Optional[PoiLookup] = None,
        *,
        snap_radius_m: float = SNAP_RADIUS_M,
    ) -> None:
        self.places = places
        self.poi_registry = poi_registry
        self.snap_radius_m = snap_radius_m

    async def resolve(
        self,
        suggestion: Suggestion,
        on_display_text: Optional[DisplayTextCallback] = None,
    ) -> ResolvedLocation:
        """Resolve a tapped suggestion.

        The display text is known before any network call, so
        *on_display_text* fires once, up front.
        """

        display_text = suggestion.display_main
        if on_display_text is not None:
            on_display_text(display_text)

        if isinstance(suggestion, PoiSuggestion):
            return ResolvedLocation(
                point=suggestion.point,
                address=display_text,
                source_id=suggestion.id,
                is_poi=True,
                display_text=display_text,
            )

        if isinstance(suggestion, CurrentLocationSuggestion):
            return ResolvedLocation(
                point=suggestion.point,
                address=suggestion.address.formatted or display_text,
                is_current_location=True,
                display_text=display_text,
            )

        if not isinstance(suggestion, RemoteSuggestion):
            raise TypeError(f"Unsupported suggestion type: {type(suggestion).__name__}")

        details = await self._place_details(suggestion.place_ref)
        if details is not None:
            return ResolvedLocation(
                point=details.point,
                address=details.formatted_address or display_text,
                source_id=suggestion.place_ref or None,
                display_text=display_text,
            )

        text = suggestion.description or display_text
        point = await self._geocode(text)
        return ResolvedLocation(point=point, address=text, display_text=display_text)

    async def resolve_text(
        self,
        text: str,
        on_display_text: Optional[DisplayTextCallback] = None,
        *,
        snap_to_poi: bool = True,
    ) -> ResolvedLocation:
        """Resolve free text typed into a field without picking a suggestion.

        *on_display_text* fires once with the final label, after resolution
        succeeds.
        """

        query = " ".join(text.strip().split())
        if not query:
            raise ResolutionError(ResolutionFailure.EMPTY_QUERY, text)

        resolved: Optional[ResolvedLocation] = None
        if self.poi_registry is not None:
            resolved = await self._poi_by_name(query)

        if resolved is None:
            point = await self._geocode(query)
            snapped = await self._snap(point) if snap_to_poi else None
            resolved = snapped or ResolvedLocation(point=point, address=query, display_text=query)

        if on_display_text is not None:
            on_display_text(resolved.label)
        return resolved

    async def _place_details(self, place_ref: str) -> Optional[PlaceDetails]:
        if not place_ref or self.places is None:
            return None
        try:
            details = await self.places.get_place_details(place_ref)
        except Exception as exc:
            logger.warning("Place details failed for %s, falling back to geocode: %s", place_ref, exc)
            return None
        if details is None:
            logger.info("Place details for %s had no geometry, falling back to geocode", place_ref)
        return details

    async def _geocode(self, text: str) -> GeoPoint:
        if not text.strip():
            raise ResolutionError(ResolutionFailure.EMPTY_QUERY, text)
        if self.places is None:
            raise ResolutionError(ResolutionFailure.NO_COORDINATE_FOUND, text)
        try:
            points = await self.places.geocode(text)
        except Exception as exc:
            logger.warning("Geocoding failed for %r: %s", text, exc)
            raise ResolutionError(ResolutionFailure.NETWORK_FAILURE, text, exc) from exc
        if not points:
            raise ResolutionError(ResolutionFailure.NO_COORDINATE_FOUND, text)
        return points[0]

    async def _poi_by_name(self, query: str) -> Optional[ResolvedLocation]:
        try:
            matches = await self.poi_registry.search(query, 1)
        except Exception as exc:
            logger.warning("POI search failed for %r: %s", query, exc)
            return None
        if not matches:
            return None
        return _from_poi(matches[0])

    async def _snap(self, point: GeoPoint) -> Optional[ResolvedLocation]:
        if self.poi_registry is None:
            return None
        try:
            poi = await self.poi_registry.find_nearby(
                point.latitude, point.longitude, self.snap_radius_m
            )
        except Exception as exc:
            logger.warning("POI snap lookup failed near %s: %s", point.format(), exc)
            return None
        if poi is None:
            return None
        logger.debug("Snapped %s to POI %s", point.format(), poi.name)
        return _from_poi(poi)


__all__ = [
    "DisplayTextCallback",
    "LocationResolver",
]
