from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import List

import httpx
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from campusride.errors import QuoteError
from campusride.geo import GeoPoint
from campusride.models import ResolvedLocation
from campusride.quotes import (
    QuoteClient,
    build_quote_request,
    normalize_quote,
    normalize_routes,
    safe_amount,
    split_route_name,
)

SAMPLE_POLYLINE = "_p~iF~ps|U_ulLnnqC_mqNvxq`@"

QUOTE_PAYLOAD = {
    "quoteId": "q-1",
    "expiresAt": "2025-03-01T08:05:00Z",
    "distanceM": 5400,
    "durationS": 900,
    "fare": {
        "total": {"amount": 25000},
        "subtotalVnd": "27000",
        "base2KmVnd": 10000,
        "after2KmPerKm": {"amount": 3000},
        "discount": 2000,
        "commissionRate": 0.1,
        "pricing_version": 3,
    },
    "polyline": SAMPLE_POLYLINE,
}


def test_safe_amount_variants() -> None:
    assert safe_amount(12) == 12.0
    assert safe_amount("15000.5") == 15000.5
    assert safe_amount({"amount": 7}) == 7.0
    assert safe_amount({"amount": "7"}) is None
    assert safe_amount("free") is None
    assert safe_amount(True) is None
    assert safe_amount(None) is None


def test_split_route_name() -> None:
    assert split_route_name("Vinhomes Grand Park to FPT University") == (
        "Vinhomes Grand Park",
        "FPT University",
    )
    assert split_route_name("Campus shuttle") == ("Campus shuttle", "Campus shuttle")


def test_normalize_quote_reads_mixed_key_styles() -> None:
    quote = normalize_quote(QUOTE_PAYLOAD)

    assert quote.quote_id == "q-1"
    assert quote.expires_at == "2025-03-01T08:05:00Z"
    assert quote.distance_km == pytest.approx(5.4)
    assert quote.duration_min == 15
    assert quote.fare.total == 25000.0
    assert quote.fare.subtotal == 27000.0
    assert quote.fare.base_2km == 10000.0
    assert quote.fare.after_2km_per_km == 3000.0
    assert quote.fare.discount == 2000.0
    assert quote.fare.commission_rate == 0.1
    assert quote.fare.pricing_version == "3"
    assert len(quote.path) == 3
    assert quote.raw["quoteId"] == "q-1"


def test_normalize_quote_handles_wrapped_and_sparse_payloads() -> None:
    quote = normalize_quote({"data": {"quote_id": 9, "expires_at": "soon", "totalFare": "18000"}})

    assert quote.quote_id == "9"
    assert quote.expires_at == "soon"
    assert quote.fare.total == 18000.0
    assert quote.distance_km is None
    assert quote.duration_min is None
    assert quote.path == []

    with pytest.raises(QuoteError):
        normalize_quote(["not", "a", "quote"])


def test_normalize_routes_decodes_endpoints() -> None:
    routes = normalize_routes(
        {
            "content": [
                {
                    "routeId": 7,
                    "name": "Vinhomes Grand Park to FPT University",
                    "defaultPrice": "15000",
                    "polyline": SAMPLE_POLYLINE,
                    "validUntil": "2025-12-31",
                },
                {"route_id": "8", "name": "Loop", "route_type": "SHUTTLE", "polyline": "broken~"},
            ]
        }
    )

    first, second = routes
    assert first.route_id == "7"
    assert first.route_type == "TEMPLATE"
    assert first.default_price == 15000.0
    assert first.valid_until == "2025-12-31"
    assert first.from_location is not None
    assert first.from_location.point == first.path[0]
    assert first.from_location.label == "Vinhomes Grand Park"
    assert first.to_location.point == first.path[-1]
    assert first.to_location.label == "FPT University"

    assert second.route_type == "SHUTTLE"
    assert (second.from_name, second.to_name) == ("Loop", "Loop")
    assert normalize_routes([]) == []


def test_build_quote_request_prefers_route_id() -> None:
    body = build_quote_request(route_id="7", desired_pickup_time="2025-03-01T08:00:00", notes="Cổng chính")
    assert body == {"routeId": "7", "desiredPickupTime": "2025-03-01T08:00:00", "notes": "Cổng chính"}


def test_build_quote_request_uses_poi_ids_then_coordinates() -> None:
    poi = ResolvedLocation(point=GeoPoint(10.84148, 106.809844), address="FPT University", source_id="p1", is_poi=True)
    remote = ResolvedLocation(point=GeoPoint(10.843, 106.836), address="Vinhomes", source_id="goong-abc")

    body = build_quote_request(remote, poi)

    assert body == {
        "pickup": {"latitude": 10.843, "longitude": 106.836},
        "dropoffLocationId": "p1",
    }
    assert build_quote_request({"locationId": 3}, {"lat": 10.8, "lng": 106.7}) == {
        "pickupLocationId": 3,
        "dropoff": {"latitude": 10.8, "longitude": 106.7},
    }


def test_build_quote_request_rejects_endpoint_without_id_or_coordinates() -> None:
    with pytest.raises(ValueError, match="Invalid pickup location"):
        build_quote_request({"name": "Nowhere"}, GeoPoint(10.8, 106.7))
    with pytest.raises(ValueError, match="Invalid dropoff location"):
        build_quote_request(GeoPoint(10.8, 106.7), None)


@pytest.mark.asyncio
async def test_quote_client_posts_body_and_normalizes() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path.endswith("/routes/templates"):
            return httpx.Response(200, json=[{"routeId": 7, "name": "A to B"}])
        return httpx.Response(200, json={"data": QUOTE_PAYLOAD})

    client = QuoteClient(
        "https://backend.test/api/v1",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )

    routes = await client.get_template_routes()
    quote = await client.get_quote(route_id="7", notes="Cổng chính")

    assert [r.route_id for r in routes] == ["7"]
    assert quote.quote_id == "q-1"
    assert seen[1].method == "POST"
    assert seen[1].url.path == "/api/v1/quotes"
    assert json.loads(seen[1].content) == {"routeId": "7", "notes": "Cổng chính"}


@pytest.mark.asyncio
async def test_quote_client_wraps_http_errors() -> None:
    client = QuoteClient(
        "https://backend.test",
        client=httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(422, json={"error": "bad"}))
        ),
    )
    with pytest.raises(QuoteError, match="422"):
        await client.get_quote(GeoPoint(10.8, 106.7), GeoPoint(10.84, 106.8))
