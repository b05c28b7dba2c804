"""Suggestion, POI and resolved-location value types.

External payloads reach the engine in several shapes (snake_case or
camelCase keys, bare lists or lists wrapped in ``data``/``content``/
``predictions``/``results``).  The ``normalize_*`` helpers here are the only
place those variants are handled; everything downstream works with the
dataclasses defined in this module.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from campusride.geo import CURRENT_LOCATION_LABEL, Address, GeoPoint, coerce_point

POI_SECONDARY_TEXT = "Địa điểm được đề xuất"
GPS_SECONDARY_TEXT = "Sử dụng GPS để xác định vị trí"

KIND_POI = "poi"
KIND_CURRENT = "current"
KIND_REMOTE = "remote"
KIND_INVALID = "invalid"

_LIST_WRAPPER_KEYS = ("data", "content", "predictions", "results", "locations", "items")


def first_present(payload: Mapping[str, Any], *keys: str) -> Any:
    """Return the first value under *keys* that is not ``None``."""

    for key in keys:
        value = payload.get(key)
        if value is not None:
            return value
    return None


def unwrap_list(payload: Any, *keys: str) -> List[Any]:
    """Return the list carried by *payload*, whether bare or wrapped."""

    if payload is None:
        return []
    if isinstance(payload, list):
        return payload
    if isinstance(payload, Mapping):
        for key in keys or _LIST_WRAPPER_KEYS:
            value = payload.get(key)
            if isinstance(value, list):
                return value
            if isinstance(value, Mapping):
                nested = unwrap_list(value, *(keys or _LIST_WRAPPER_KEYS))
                if nested:
                    return nested
    return []


@dataclass(frozen=True)
class PoiLocation:
    id: str
    name: str
    latitude: float
    longitude: float

    @property
    def point(self) -> GeoPoint:
        return GeoPoint(self.latitude, self.longitude)


def normalize_poi(raw: Mapping[str, Any]) -> Optional[PoiLocation]:
    if not isinstance(raw, Mapping):
        return None
    poi_id = first_present(raw, "locationId", "location_id", "id")
    name = first_present(raw, "name", "address")
    point = coerce_point(
        first_present(raw, "latitude", "lat"),
        first_present(raw, "longitude", "lng", "lon"),
    )
    if poi_id is None or not name or point is None:
        return None
    return PoiLocation(
        id=str(poi_id),
        name=str(name).strip(),
        latitude=point.latitude,
        longitude=point.longitude,
    )


def normalize_pois(payload: Any) -> List[PoiLocation]:
    pois: List[PoiLocation] = []
    for raw in unwrap_list(payload):
        poi = normalize_poi(raw)
        if poi is not None:
            pois.append(poi)
    return pois


@dataclass(frozen=True)
class RemotePlace:
    place_ref: str
    description: str
    main_text: str = ""
    secondary_text: str = ""


def normalize_remote_place(raw: Mapping[str, Any]) -> RemotePlace:
    structured = first_present(raw, "structured_formatting", "structuredFormatting") or {}
    return RemotePlace(
        place_ref=str(first_present(raw, "place_id", "placeId", "gid") or ""),
        description=str(raw.get("description") or ""),
        main_text=str(first_present(structured, "main_text", "mainText") or ""),
        secondary_text=str(
            first_present(structured, "secondary_text", "secondaryText") or ""
        ),
    )


def normalize_remote_places(payload: Any) -> List[RemotePlace]:
    return [
        normalize_remote_place(raw)
        for raw in unwrap_list(payload, "predictions", "data", "results")
        if isinstance(raw, Mapping)
    ]


def _location_point(location: Any) -> Optional[GeoPoint]:
    if not isinstance(location, Mapping):
        return None
    return coerce_point(
        first_present(location, "lat", "latitude"),
        first_present(location, "lng", "lon", "longitude"),
    )


@dataclass(frozen=True)
class PlaceDetails:
    formatted_address: str
    point: GeoPoint


def normalize_place_details(payload: Any) -> Optional[PlaceDetails]:
    if not isinstance(payload, Mapping):
        return None
    result = payload.get("result") if isinstance(payload.get("result"), Mapping) else payload
    geometry = result.get("geometry") or {}
    point = _location_point(geometry.get("location") if isinstance(geometry, Mapping) else None)
    if point is None:
        return None
    formatted = first_present(result, "formatted_address", "formattedAddress", "name")
    return PlaceDetails(formatted_address=str(formatted or ""), point=point)


def normalize_geocode_points(payload: Any) -> List[GeoPoint]:
    points: List[GeoPoint] = []
    for raw in unwrap_list(payload, "results", "data"):
        if not isinstance(raw, Mapping):
            continue
        geometry = raw.get("geometry") or {}
        point = _location_point(geometry.get("location") if isinstance(geometry, Mapping) else None)
        if point is None:
            point = _location_point(raw)
        if point is not None:
            points.append(point)
    return points


class Suggestion:
    """Base for the three suggestion variants."""

    kind: str = KIND_INVALID

    @property
    def display_main(self) -> str:
        raise NotImplementedError

    @property
    def display_secondary(self) -> str:
        return ""

    @property
    def key(self) -> str:
        return self.display_main


@dataclass(frozen=True)
class PoiSuggestion(Suggestion):
    id: str
    name: str
    point: GeoPoint

    kind = KIND_POI

    @classmethod
    def from_poi(cls, poi: PoiLocation) -> "PoiSuggestion":
        return cls(id=poi.id, name=poi.name, point=poi.point)

    @property
    def display_main(self) -> str:
        return self.name

    @property
    def display_secondary(self) -> str:
        return POI_SECONDARY_TEXT

    @property
    def key(self) -> str:
        return self.id


@dataclass(frozen=True)
class CurrentLocationSuggestion(Suggestion):
    point: GeoPoint
    address: Address

    kind = KIND_CURRENT

    @property
    def display_main(self) -> str:
        return CURRENT_LOCATION_LABEL

    @property
    def display_secondary(self) -> str:
        return self.address.short or GPS_SECONDARY_TEXT

    @property
    def key(self) -> str:
        return "current_location"


@dataclass(frozen=True)
class RemoteSuggestion(Suggestion):
    place_ref: str
    description: str
    main_text: str = ""
    secondary_text: str = ""
    valid_coordinates: bool = True

    @classmethod
    def from_place(cls, place: RemotePlace) -> "RemoteSuggestion":
        return cls(
            place_ref=place.place_ref,
            description=place.description,
            main_text=place.main_text,
            secondary_text=place.secondary_text,
            valid_coordinates=bool(place.place_ref and (place.description or place.main_text)),
        )

    @property
    def kind(self) -> str:  # type: ignore[override]
        return KIND_REMOTE if self.valid_coordinates else KIND_INVALID

    @property
    def display_main(self) -> str:
        return self.main_text or self.description

    @property
    def display_secondary(self) -> str:
        return self.secondary_text

    @property
    def key(self) -> str:
        return self.place_ref or self.description


@dataclass(frozen=True)
class ResolvedLocation:
    point: GeoPoint
    address: str
    source_id: Optional[str] = None
    is_poi: bool = False
    is_current_location: bool = False
    display_text: str = ""

    @property
    def label(self) -> str:
        return self.display_text or self.address

    @property
    def latitude(self) -> float:
        return self.point.latitude

    @property
    def longitude(self) -> float:
        return self.point.longitude


@dataclass(frozen=True)
class CampusAnchor:
    name: str
    point: GeoPoint
    id: Optional[str] = None

    @classmethod
    def from_poi(cls, poi: PoiLocation) -> "CampusAnchor":
        return cls(name=poi.name, point=poi.point, id=poi.id)


def poi_suggestions(pois: Iterable[PoiLocation]) -> List[PoiSuggestion]:
    return [PoiSuggestion.from_poi(poi) for poi in pois]


def describe(suggestions: Sequence[Suggestion]) -> List[str]:
    """Return ``"kind: main"`` lines, handy for logging and the CLI."""

    lines = []
    for item in suggestions:
        secondary = f" ({item.display_secondary})" if item.display_secondary else ""
        lines.append(f"{item.kind}: {item.display_main}{secondary}")
    return lines


__all__ = [
    "CampusAnchor",
    "CurrentLocationSuggestion",
    "KIND_CURRENT",
    "KIND_INVALID",
    "KIND_POI",
    "KIND_REMOTE",
    "POI_SECONDARY_TEXT",
    "PlaceDetails",
    "PoiLocation",
    "PoiSuggestion",
    "RemotePlace",
    "RemoteSuggestion",
    "ResolvedLocation",
    "Suggestion",
    "describe",
    "first_present",
    "normalize_geocode_points",
    "normalize_place_details",
    "normalize_poi",
    "normalize_pois",
    "normalize_remote_place",
    "normalize_remote_places",
    "poi_suggestions",
    "unwrap_list",
]
