"""Coordinate and address primitives shared by every location component."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

CURRENT_LOCATION_LABEL = "Vị trí hiện tại"
EARTH_RADIUS_KM = 6371.0088


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        lat = float(self.latitude)
        lon = float(self.longitude)
        if not (math.isfinite(lat) and math.isfinite(lon)):
            raise ValueError(f"Coordinates must be finite: {lat}, {lon}")
        if not -90.0 <= lat <= 90.0:
            raise ValueError(f"Latitude out of range: {lat}")
        if not -180.0 <= lon <= 180.0:
            raise ValueError(f"Longitude out of range: {lon}")
        object.__setattr__(self, "latitude", lat)
        object.__setattr__(self, "longitude", lon)

    def as_lonlat(self) -> Tuple[float, float]:
        return self.longitude, self.latitude

    def as_latlon(self) -> Tuple[float, float]:
        return self.latitude, self.longitude

    def format(self, decimals: int = 6) -> str:
        return f"{self.latitude:.{decimals}f}, {self.longitude:.{decimals}f}"


def coerce_point(
    latitude: object, longitude: object
) -> Optional[GeoPoint]:
    """Return a ``GeoPoint`` or ``None`` when the values are missing or invalid."""

    if latitude is None or longitude is None:
        return None
    try:
        return GeoPoint(float(latitude), float(longitude))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def extract_short_address(formatted: Optional[str]) -> str:
    """Return the first two or three comma-separated segments of *formatted*."""

    if not formatted:
        return CURRENT_LOCATION_LABEL
    parts = formatted.split(", ")
    if len(parts) >= 3:
        return ", ".join(parts[:3])
    if len(parts) >= 2:
        return ", ".join(parts[:2])
    return parts[0] or CURRENT_LOCATION_LABEL


@dataclass(frozen=True)
class Address:
    formatted: str
    short: str

    @classmethod
    def from_formatted(cls, formatted: str) -> "Address":
        return cls(formatted=formatted, short=extract_short_address(formatted))


def haversine_km(a: GeoPoint, b: GeoPoint) -> float:
    lat1_rad, lon1_rad = math.radians(a.latitude), math.radians(a.longitude)
    lat2_rad, lon2_rad = math.radians(b.latitude), math.radians(b.longitude)
    dlat = lat2_rad - lat1_rad
    dlon = lon2_rad - lon1_rad
    h = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_KM * c


def haversine_m(a: GeoPoint, b: GeoPoint) -> float:
    return haversine_km(a, b) * 1000.0


def bounding_center(points: Iterable[GeoPoint]) -> Optional[GeoPoint]:
    """Return the centre of the bounding box around *points*."""

    pts: List[GeoPoint] = list(points)
    if not pts:
        return None
    min_lat = min(p.latitude for p in pts)
    max_lat = max(p.latitude for p in pts)
    min_lon = min(p.longitude for p in pts)
    max_lon = max(p.longitude for p in pts)
    return GeoPoint((min_lat + max_lat) / 2, (min_lon + max_lon) / 2)


__all__ = [
    "Address",
    "CURRENT_LOCATION_LABEL",
    "GeoPoint",
    "bounding_center",
    "coerce_point",
    "extract_short_address",
    "haversine_km",
    "haversine_m",
]
