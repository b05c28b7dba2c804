"""Remote place search, geocoding and polyline decoding.

Two interchangeable backends are provided:

* :class:`GoongPlacesClient` talks to the Goong REST API (autocomplete,
  place details and forward/reverse geocoding) over ``httpx``.
* :class:`OrsPlacesClient` uses the OpenRouteService Pelias endpoints via the
  ``openrouteservice`` client.  Pelias has no place-details endpoint, so
  details are served from the features returned by the latest autocomplete
  call.

Both return the canonical shapes from :mod:`campusride.models`.
"""
from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Dict, List, Mapping, Optional

import httpx
import openrouteservice as ors
from openrouteservice import convert

from campusride.geo import GeoPoint, coerce_point
from campusride.models import (
    PlaceDetails,
    RemotePlace,
    normalize_geocode_points,
    normalize_place_details,
    normalize_remote_places,
)

logger = logging.getLogger(__name__)

GOONG_BASE_URL = os.environ.get("GOONG_BASE_URL", "https://rsapi.goong.io")
PLACES_PROVIDER = os.environ.get("PLACES_PROVIDER", "goong")
ORS_COUNTRY = os.environ.get("ORS_COUNTRY", "VNM")
HTTP_TIMEOUT = 10.0

_ORS_CLIENT: Optional[ors.Client] = None


def decode_polyline(encoded: str) -> List[GeoPoint]:
    """Decode a Google-style encoded polyline into ordered ``GeoPoint`` values."""

    if not encoded:
        return []
    geometry = convert.decode_polyline(encoded)
    points: List[GeoPoint] = []
    for lon, lat in geometry.get("coordinates", []):
        points.append(GeoPoint(lat, lon))
    return points


def get_ors_client(client: Optional[ors.Client] = None) -> ors.Client:
    """Return an OpenRouteService client."""

    if client is not None:
        return client

    global _ORS_CLIENT
    if _ORS_CLIENT is None:
        api_key = os.environ.get("ORS_API_KEY")
        if not api_key:
            raise RuntimeError(
                "Set ORS_API_KEY env var (export ORS_API_KEY=YOUR_KEY)"
            )
        _ORS_CLIENT = ors.Client(key=api_key)
    return _ORS_CLIENT


class GoongPlacesClient:
    """Goong REST API client."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = HTTP_TIMEOUT,
    ) -> None:
        self.api_key = api_key if api_key is not None else os.environ.get("GOONG_API_KEY", "")
        self.base_url = (base_url or GOONG_BASE_URL).rstrip("/")
        self._client = client
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def _get(self, path: str, params: Dict[str, str]) -> Any:
        if not self.configured:
            raise RuntimeError(
                "Set GOONG_API_KEY env var (export GOONG_API_KEY=YOUR_KEY)"
            )
        query = {**params, "api_key": self.api_key}
        url = f"{self.base_url}{path}"
        if self._client is not None:
            resp = await self._client.get(url, params=query)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(url, params=query)
        resp.raise_for_status()
        return resp.json()

    async def search_places(self, query: str) -> List[RemotePlace]:
        payload = await self._get("/Place/AutoComplete", {"input": query})
        return normalize_remote_places(payload)

    async def get_place_details(self, place_ref: str) -> Optional[PlaceDetails]:
        payload = await self._get("/Place/Detail", {"place_id": place_ref})
        return normalize_place_details(payload)

    async def geocode(self, text: str) -> List[GeoPoint]:
        payload = await self._get("/Geocode", {"address": text})
        return normalize_geocode_points(payload)

    async def reverse_geocode(self, latitude: float, longitude: float) -> Optional[str]:
        payload = await self._get("/Geocode", {"latlng": f"{latitude},{longitude}"})
        results = payload.get("results") if isinstance(payload, Mapping) else None
        if not results or not isinstance(results[0], Mapping):
            return None
        formatted = results[0].get("formatted_address")
        return str(formatted) if formatted else None

    def decode_polyline(self, encoded: str) -> List[GeoPoint]:
        return decode_polyline(encoded)


def _feature_point(feature: Mapping[str, Any]) -> Optional[GeoPoint]:
    coords = (feature.get("geometry") or {}).get("coordinates") or []
    if len(coords) < 2:
        return None
    return coerce_point(coords[1], coords[0])


def _feature_place(feature: Mapping[str, Any]) -> RemotePlace:
    props = feature.get("properties") or {}
    label = str(props.get("label") or props.get("name") or "")
    name = str(props.get("name") or label)
    secondary = ", ".join(
        str(props[key]) for key in ("locality", "region") if props.get(key)
    )
    return RemotePlace(
        place_ref=str(props.get("gid") or props.get("id") or ""),
        description=label,
        main_text=name,
        secondary_text=secondary,
    )


class OrsPlacesClient:
    """OpenRouteService Pelias backend.

    The ``openrouteservice`` client is synchronous, so every request runs in a
    worker thread to keep the event loop responsive.
    """

    configured = True

    def __init__(
        self,
        client: Optional[ors.Client] = None,
        *,
        country: str = ORS_COUNTRY,
        size: int = 5,
    ) -> None:
        self.client = get_ors_client(client)
        self.country = country
        self.size = size
        self._features: Dict[str, Mapping[str, Any]] = {}

    async def search_places(self, query: str) -> List[RemotePlace]:
        res = await asyncio.to_thread(
            self.client.pelias_autocomplete, text=query, country=self.country
        )
        places: List[RemotePlace] = []
        features: Dict[str, Mapping[str, Any]] = {}
        for feature in (res or {}).get("features") or []:
            place = _feature_place(feature)
            if place.place_ref:
                features[place.place_ref] = feature
            places.append(place)
        # Details are only ever asked for the latest suggestion list.
        self._features = features
        return places

    async def get_place_details(self, place_ref: str) -> Optional[PlaceDetails]:
        feature = self._features.get(place_ref)
        if feature is None:
            return None
        point = _feature_point(feature)
        if point is None:
            return None
        props = feature.get("properties") or {}
        return PlaceDetails(
            formatted_address=str(props.get("label") or props.get("name") or ""),
            point=point,
        )

    async def geocode(self, text: str) -> List[GeoPoint]:
        res = await asyncio.to_thread(
            self.client.pelias_search, text=text, country=self.country, size=self.size
        )
        points = []
        for feature in (res or {}).get("features") or []:
            point = _feature_point(feature)
            if point is not None:
                points.append(point)
        return points

    async def reverse_geocode(self, latitude: float, longitude: float) -> Optional[str]:
        res = await asyncio.to_thread(
            self.client.pelias_reverse, point=[longitude, latitude], size=1
        )
        features = (res or {}).get("features") or []
        if not features:
            return None
        props = features[0].get("properties") or {}
        label = props.get("label") or props.get("name")
        return str(label) if label else None

    def decode_polyline(self, encoded: str) -> List[GeoPoint]:
        return decode_polyline(encoded)


def build_places_client(provider: Optional[str] = None):
    """Return the remote search client selected by ``PLACES_PROVIDER``."""

    chosen = (provider or PLACES_PROVIDER).strip().lower()
    if chosen == "goong":
        return GoongPlacesClient()
    if chosen == "ors":
        return OrsPlacesClient()
    raise ValueError(f"Unknown places provider: {chosen}")


__all__ = [
    "GOONG_BASE_URL",
    "GoongPlacesClient",
    "ORS_COUNTRY",
    "OrsPlacesClient",
    "PLACES_PROVIDER",
    "build_places_client",
    "decode_polyline",
    "get_ors_client",
]
