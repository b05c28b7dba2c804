"""Template routes and fare quotes from the booking backend.

The backend answers in camelCase, snake_case or a mix of both, and wraps
lists in ``data``/``content`` inconsistently.  ``normalize_route`` and
``normalize_quote`` turn those payloads into :class:`TemplateRoute` and
:class:`Quote`; timestamps (``valid_until``, ``expires_at``) are carried
through untouched for the caller to check.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

import httpx

from campusride.errors import QuoteError
from campusride.geo import GeoPoint
from campusride.models import ResolvedLocation, first_present, unwrap_list
from campusride.places import decode_polyline
from campusride.poi_registry import API_BASE_URL, HTTP_TIMEOUT

logger = logging.getLogger(__name__)

ROUTE_TEMPLATES_ENDPOINT = "/routes/templates"
QUOTES_ENDPOINT = "/quotes"
DEFAULT_ROUTE_TYPE = "TEMPLATE"


def safe_amount(value: Any) -> Optional[float]:
    """Return a money amount given as a number, numeric string or ``{amount: n}``."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, Mapping):
        amount = value.get("amount")
        return safe_amount(amount) if isinstance(amount, (int, float)) else None
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def _first_amount(payload: Mapping[str, Any], *keys: str) -> Optional[float]:
    for key in keys:
        amount = safe_amount(payload.get(key))
        if amount is not None:
            return amount
    return None


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _decode_path(encoded: Optional[str], owner: str) -> List[GeoPoint]:
    if not encoded:
        return []
    try:
        return decode_polyline(encoded)
    except Exception as exc:
        logger.warning("Failed to decode polyline for %s: %s", owner, exc)
        return []


def split_route_name(name: str) -> Tuple[str, str]:
    """Split ``"A to B"`` into its endpoint names; otherwise use *name* twice."""

    parts = name.split(" to ")
    if len(parts) == 2:
        return parts[0].strip(), parts[1].strip()
    return name, name


@dataclass(frozen=True)
class TemplateRoute:
    route_id: Optional[str]
    name: str
    route_type: str = DEFAULT_ROUTE_TYPE
    default_price: Optional[float] = None
    polyline: Optional[str] = None
    path: List[GeoPoint] = field(default_factory=list)
    from_name: str = ""
    to_name: str = ""
    valid_from: Optional[str] = None
    valid_until: Optional[str] = None

    @property
    def from_location(self) -> Optional[ResolvedLocation]:
        if not self.path:
            return None
        return ResolvedLocation(point=self.path[0], address=self.from_name, display_text=self.from_name)

    @property
    def to_location(self) -> Optional[ResolvedLocation]:
        if not self.path:
            return None
        return ResolvedLocation(point=self.path[-1], address=self.to_name, display_text=self.to_name)


def normalize_route(raw: Mapping[str, Any]) -> TemplateRoute:
    name = str(raw.get("name") or "")
    from_name, to_name = split_route_name(name) if name else ("", "")
    route_id = first_present(raw, "route_id", "routeId")
    polyline = raw.get("polyline") or None
    return TemplateRoute(
        route_id=str(route_id) if route_id is not None else None,
        name=name,
        route_type=str(first_present(raw, "route_type", "routeType") or DEFAULT_ROUTE_TYPE),
        default_price=_first_amount(raw, "default_price", "defaultPrice"),
        polyline=polyline,
        path=_decode_path(polyline, name or str(route_id)),
        from_name=from_name,
        to_name=to_name,
        valid_from=first_present(raw, "valid_from", "validFrom"),
        valid_until=first_present(raw, "valid_until", "validUntil"),
    )


def normalize_routes(payload: Any) -> List[TemplateRoute]:
    return [
        normalize_route(raw)
        for raw in unwrap_list(payload, "data", "content")
        if isinstance(raw, Mapping)
    ]


@dataclass(frozen=True)
class Fare:
    total: float = 0.0
    subtotal: Optional[float] = None
    base_2km: Optional[float] = None
    after_2km_per_km: Optional[float] = None
    discount: Optional[float] = None
    commission_rate: Optional[float] = None
    pricing_version: Optional[str] = None


@dataclass(frozen=True)
class Quote:
    quote_id: Optional[str]
    expires_at: Optional[str]
    distance_m: Optional[float]
    duration_s: Optional[float]
    fare: Fare
    polyline: Optional[str] = None
    path: List[GeoPoint] = field(default_factory=list)
    raw: Mapping[str, Any] = field(default_factory=dict)

    @property
    def distance_km(self) -> Optional[float]:
        return self.distance_m / 1000 if self.distance_m is not None else None

    @property
    def duration_min(self) -> Optional[int]:
        return round(self.duration_s / 60) if self.duration_s is not None else None


def normalize_quote(payload: Any) -> Quote:
    if isinstance(payload, Mapping) and isinstance(payload.get("data"), Mapping):
        payload = payload["data"]
    if not isinstance(payload, Mapping):
        raise QuoteError(f"Unexpected quote payload: {payload!r}")

    fare_raw = payload.get("fare") if isinstance(payload.get("fare"), Mapping) else {}
    total = _first_amount(fare_raw, "total", "totalVnd")
    if total is None:
        total = safe_amount(payload.get("totalFare"))
    pricing_version = first_present(fare_raw, "pricingVersion", "pricing_version")
    fare = Fare(
        total=total if total is not None else 0.0,
        subtotal=_first_amount(fare_raw, "subtotal", "subtotalVnd"),
        base_2km=_first_amount(fare_raw, "base2KmVnd", "base2Km"),
        after_2km_per_km=_first_amount(fare_raw, "after2KmPerKmVnd", "after2KmPerKm"),
        discount=safe_amount(fare_raw.get("discount")),
        commission_rate=_number(fare_raw.get("commissionRate")),
        pricing_version=str(pricing_version) if pricing_version is not None else None,
    )

    quote_id = first_present(payload, "quoteId", "quote_id")
    polyline = payload.get("polyline") or None
    return Quote(
        quote_id=str(quote_id) if quote_id is not None else None,
        expires_at=first_present(payload, "expiresAt", "expires_at"),
        distance_m=_number(payload.get("distanceM")),
        duration_s=_number(payload.get("durationS")),
        fare=fare,
        polyline=polyline,
        path=_decode_path(polyline, f"quote {quote_id}"),
        raw=dict(payload),
    )


def _endpoint_fields(endpoint: Any) -> Tuple[Optional[str], Optional[GeoPoint]]:
    """Return ``(location_id, point)`` for a quote endpoint."""

    if endpoint is None:
        return None, None
    if isinstance(endpoint, ResolvedLocation):
        return (endpoint.source_id if endpoint.is_poi else None), endpoint.point
    if isinstance(endpoint, GeoPoint):
        return None, endpoint
    if isinstance(endpoint, Mapping):
        loc_id = first_present(endpoint, "locationId", "location_id", "id")
        lat = first_present(endpoint, "latitude", "lat")
        lon = first_present(endpoint, "longitude", "lng", "lon")
        point = GeoPoint(lat, lon) if lat is not None and lon is not None else None
        return loc_id, point
    raise TypeError(f"Unsupported endpoint type: {type(endpoint).__name__}")


def _endpoint_body(body: Dict[str, Any], side: str, endpoint: Any) -> None:
    loc_id, point = _endpoint_fields(endpoint)
    if loc_id:
        body[f"{side}LocationId"] = loc_id
    elif point is not None:
        body[side] = {"latitude": point.latitude, "longitude": point.longitude}
    else:
        raise ValueError(f"Invalid {side} location: must have either locationId or coordinates")


def build_quote_request(
    pickup: Any = None,
    dropoff: Any = None,
    *,
    route_id: Optional[str] = None,
    desired_pickup_time: Optional[str] = None,
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    """Return the JSON body for ``POST /quotes``.

    A template route id replaces both endpoints.  Otherwise each endpoint is
    sent as its POI id when it has one, or as coordinates.
    """

    body: Dict[str, Any] = {}
    if route_id is not None:
        body["routeId"] = route_id
    else:
        _endpoint_body(body, "pickup", pickup)
        _endpoint_body(body, "dropoff", dropoff)
    if desired_pickup_time:
        body["desiredPickupTime"] = desired_pickup_time
    if notes:
        body["notes"] = notes
    return body


class QuoteClient:
    """Backend client for template routes and quotes."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: float = HTTP_TIMEOUT,
    ) -> None:
        self.base_url = (base_url or API_BASE_URL).rstrip("/")
        self._client = client
        self.headers: Dict[str, str] = dict(headers or {})
        self.timeout = timeout

    async def _request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            if self._client is not None:
                resp = await self._client.request(method, url, json=body, headers=self.headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.request(method, url, json=body, headers=self.headers)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as exc:
            raise QuoteError(
                f"{method} {path} failed with status {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise QuoteError(f"{method} {path} failed: {exc}") from exc

    async def get_template_routes(self) -> List[TemplateRoute]:
        payload = await self._request("GET", ROUTE_TEMPLATES_ENDPOINT)
        routes = normalize_routes(payload)
        logger.debug("Loaded %d template routes", len(routes))
        return routes

    async def get_quote(
        self,
        pickup: Any = None,
        dropoff: Any = None,
        *,
        route_id: Optional[str] = None,
        desired_pickup_time: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Quote:
        body = build_quote_request(
            pickup,
            dropoff,
            route_id=route_id,
            desired_pickup_time=desired_pickup_time,
            notes=notes,
        )
        logger.debug("Quote request body: %s", body)
        payload = await self._request("POST", QUOTES_ENDPOINT, body)
        return normalize_quote(payload)


__all__ = [
    "Fare",
    "Quote",
    "QuoteClient",
    "TemplateRoute",
    "build_quote_request",
    "normalize_quote",
    "normalize_route",
    "normalize_routes",
    "safe_amount",
    "split_route_name",
]
