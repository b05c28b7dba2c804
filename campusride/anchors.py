"""Campus-anchor classification.

Every custom trip must start or end at one of two campus landmarks.  A
location counts as an anchor when, in order:

1. its name, address or the typed text mentions one of the landmark names;
2. it matches an entry of the loaded anchor set by id, by coordinate
   (flat degree distance under ``ANCHOR_TOLERANCE_DEG``) or by exact name;
3. the anchor set never loaded and the coordinate sits within
   ``ANCHOR_TOLERANCE_DEG`` of a hardcoded landmark on both axes.

The degree tolerance is a fixed business rule (roughly 100 m at the campus
latitude), not a geodesic radius.
"""
from __future__ import annotations

import logging
import unicodedata
from typing import Any, Iterable, Mapping, Optional, Sequence, Tuple

from campusride.errors import SourceUnavailable
from campusride.geo import GeoPoint, coerce_point
from campusride.models import CampusAnchor, ResolvedLocation, first_present

logger = logging.getLogger(__name__)

ANCHOR_TOLERANCE_DEG = 0.001

FPT_NAMES = ("fpt university", "fptu", "fpt university - hcmc campus")
CULTURE_HOUSE_NAMES = (
    "nhà văn hóa",
    "nhà văn hóa sinh viên",
    "student culture",
    "student culture house",
)
ANCHOR_NAME_FAMILIES = (FPT_NAMES, CULTURE_HOUSE_NAMES)

FPT_CAMPUS = CampusAnchor(name="FPT University - HCMC Campus", point=GeoPoint(10.841480, 106.809844))
CULTURE_HOUSE = CampusAnchor(name="Nhà Văn Hóa Sinh Viên", point=GeoPoint(10.8753395, 106.8000331))
FALLBACK_ANCHORS: Tuple[CampusAnchor, ...] = (FPT_CAMPUS, CULTURE_HOUSE)


def _fold(text: Optional[str]) -> str:
    return unicodedata.normalize("NFC", text or "").lower().strip()


def name_family(text: Optional[str]) -> Optional[int]:
    """Return the index of the landmark family *text* mentions, if any."""

    folded = _fold(text)
    if not folded:
        return None
    for index, family in enumerate(ANCHOR_NAME_FAMILIES):
        if any(name in folded for name in family):
            return index
    return None


def _location_fields(location: Any) -> Tuple[str, Optional[str], Optional[GeoPoint]]:
    """Return ``(name, id, point)`` for any supported location shape."""

    if location is None:
        return "", None, None
    if isinstance(location, ResolvedLocation):
        loc_id = location.source_id if location.is_poi else None
        return location.display_text or location.address, loc_id, location.point
    if isinstance(location, CampusAnchor):
        return location.name, location.id, location.point
    if isinstance(location, GeoPoint):
        return "", None, location
    if isinstance(location, Mapping):
        name = first_present(location, "name", "address") or ""
        loc_id = first_present(location, "locationId", "location_id", "id")
        point = coerce_point(
            first_present(location, "latitude", "lat"),
            first_present(location, "longitude", "lng", "lon"),
        )
        return str(name), str(loc_id) if loc_id is not None else None, point
    raise TypeError(f"Unsupported location type: {type(location).__name__}")


def _matches_anchor(
    name: str, loc_id: Optional[str], point: Optional[GeoPoint], anchor: CampusAnchor
) -> bool:
    if loc_id and anchor.id:
        return loc_id == anchor.id
    if point is not None:
        dlat = point.latitude - anchor.point.latitude
        dlon = point.longitude - anchor.point.longitude
        return dlat * dlat + dlon * dlon < ANCHOR_TOLERANCE_DEG ** 2
    folded = _fold(name)
    return bool(folded) and folded == _fold(anchor.name)


def _near_fallback(point: GeoPoint) -> bool:
    return any(
        abs(point.latitude - anchor.point.latitude) < ANCHOR_TOLERANCE_DEG
        and abs(point.longitude - anchor.point.longitude) < ANCHOR_TOLERANCE_DEG
        for anchor in FALLBACK_ANCHORS
    )


def is_anchor(
    location: Any,
    address_text: Optional[str] = None,
    anchors: Sequence[CampusAnchor] = FALLBACK_ANCHORS,
    anchors_loaded: bool = False,
) -> bool:
    if location is None and not address_text:
        return False

    name, loc_id, point = _location_fields(location)
    text = name or address_text or ""
    if name_family(text) is not None:
        return True

    if location is not None and any(
        _matches_anchor(text, loc_id, point, anchor) for anchor in anchors
    ):
        return True

    if not anchors_loaded and point is not None:
        return _near_fallback(point)
    return False


class AnchorSet:
    """Anchor list for one booking screen.

    The hardcoded landmarks are usable immediately; ``load`` replaces them
    with registry entries once those arrive.
    """

    def __init__(self, anchors: Iterable[CampusAnchor] = FALLBACK_ANCHORS) -> None:
        self.anchors: Tuple[CampusAnchor, ...] = tuple(anchors)
        self.loaded = False

    async def load(self, poi_registry) -> Tuple[CampusAnchor, ...]:
        try:
            pois = await poi_registry.get_all_locations()
        except Exception as exc:
            logger.warning("%s; keeping fallback anchors", SourceUnavailable("anchor_registry", exc))
            return self.anchors

        found = [
            CampusAnchor.from_poi(poi)
            for poi in pois
            if name_family(poi.name) is not None or _near_fallback(poi.point)
        ]
        if not found:
            logger.info("No campus anchors in registry; keeping fallback anchors")
            return self.anchors

        self.anchors = tuple(found)
        self.loaded = True
        logger.debug("Loaded %d campus anchors", len(found))
        return self.anchors

    def is_anchor(self, location: Any, address_text: Optional[str] = None) -> bool:
        return is_anchor(location, address_text, self.anchors, self.loaded)

    def campus(self) -> CampusAnchor:
        """Return the main campus anchor, preferring the registry entry."""

        for anchor in self.anchors:
            if name_family(anchor.name) == 0:
                return anchor
        return FPT_CAMPUS


__all__ = [
    "ANCHOR_NAME_FAMILIES",
    "ANCHOR_TOLERANCE_DEG",
    "AnchorSet",
    "CULTURE_HOUSE",
    "FALLBACK_ANCHORS",
    "FPT_CAMPUS",
    "is_anchor",
    "name_family",
]
