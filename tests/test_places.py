from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Dict, List

import httpx
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import campusride.places as places
from campusride.geo import GeoPoint
from campusride.places import GoongPlacesClient, OrsPlacesClient, build_places_client, decode_polyline

# Three-point reference polyline: (38.5, -120.2), (40.7, -120.95), (43.252, -126.453).
SAMPLE_POLYLINE = "_p~iF~ps|U_ulLnnqC_mqNvxq`@"


def _goong_client(handler) -> GoongPlacesClient:
    transport = httpx.MockTransport(handler)
    return GoongPlacesClient(
        "test-key",
        base_url="https://goong.test",
        client=httpx.AsyncClient(transport=transport),
    )


class FakePeliasClient:
    def __init__(self, features: List[Dict[str, Any]]) -> None:
        self.features = features
        self.calls: List[tuple] = []

    def pelias_autocomplete(self, **kwargs: Any) -> Dict[str, Any]:
        self.calls.append(("autocomplete", kwargs))
        return {"features": self.features}

    def pelias_search(self, **kwargs: Any) -> Dict[str, Any]:
        self.calls.append(("search", kwargs))
        return {"features": self.features}

    def pelias_reverse(self, **kwargs: Any) -> Dict[str, Any]:
        self.calls.append(("reverse", kwargs))
        return {"features": self.features[:1]}


CAMPUS_FEATURE = {
    "geometry": {"coordinates": [106.809844, 10.84148]},
    "properties": {
        "gid": "openstreetmap:venue:1",
        "label": "FPT University, Thủ Đức, Hồ Chí Minh",
        "name": "FPT University",
        "locality": "Thủ Đức",
        "region": "Hồ Chí Minh",
    },
}


def test_decode_polyline_returns_ordered_points() -> None:
    points = decode_polyline(SAMPLE_POLYLINE)
    assert len(points) == 3
    assert points[0].latitude == pytest.approx(38.5)
    assert points[0].longitude == pytest.approx(-120.2)
    assert points[-1].latitude == pytest.approx(43.252)
    assert points[-1].longitude == pytest.approx(-126.453)
    assert decode_polyline("") == []


@pytest.mark.asyncio
async def test_goong_search_places_sends_key_and_normalizes() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "predictions": [
                    {
                        "place_id": "abc",
                        "description": "Vinhomes Grand Park, Thủ Đức",
                        "structured_formatting": {"main_text": "Vinhomes Grand Park"},
                    }
                ]
            },
        )

    client = _goong_client(handler)
    results = await client.search_places("vinhomes")

    assert [r.place_ref for r in results] == ["abc"]
    assert seen[0].url.path == "/Place/AutoComplete"
    assert seen[0].url.params["input"] == "vinhomes"
    assert seen[0].url.params["api_key"] == "test-key"


@pytest.mark.asyncio
async def test_goong_details_geocode_and_reverse() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/Place/Detail":
            return httpx.Response(
                200,
                json={
                    "result": {
                        "formatted_address": "Lô E2a-7, Đường D1, Thủ Đức",
                        "geometry": {"location": {"lat": 10.84148, "lng": 106.809844}},
                    }
                },
            )
        if "latlng" in request.url.params:
            assert request.url.params["latlng"] == "10.84148,106.809844"
            return httpx.Response(200, json={"results": [{"formatted_address": "Đường D1, Thủ Đức"}]})
        return httpx.Response(
            200, json={"results": [{"geometry": {"location": {"lat": 10.8, "lng": 106.7}}}]}
        )

    client = _goong_client(handler)

    details = await client.get_place_details("abc")
    assert details is not None
    assert details.point == GeoPoint(10.84148, 106.809844)
    assert await client.geocode("Thủ Đức") == [GeoPoint(10.8, 106.7)]
    assert await client.reverse_geocode(10.84148, 106.809844) == "Đường D1, Thủ Đức"


@pytest.mark.asyncio
async def test_goong_http_error_propagates() -> None:
    client = _goong_client(lambda request: httpx.Response(503))
    with pytest.raises(httpx.HTTPStatusError):
        await client.geocode("anything")


@pytest.mark.asyncio
async def test_goong_without_key_is_not_configured(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GOONG_API_KEY", raising=False)
    client = GoongPlacesClient()
    assert client.configured is False
    with pytest.raises(RuntimeError):
        await client.search_places("fpt")


@pytest.mark.asyncio
async def test_ors_client_uses_pelias_and_caches_details() -> None:
    fake = FakePeliasClient([CAMPUS_FEATURE])
    client = OrsPlacesClient(fake, country="VNM")

    results = await client.search_places("fpt")
    assert results[0].main_text == "FPT University"
    assert results[0].secondary_text == "Thủ Đức, Hồ Chí Minh"
    assert fake.calls[0] == ("autocomplete", {"text": "fpt", "country": "VNM"})

    details = await client.get_place_details(results[0].place_ref)
    assert details is not None
    assert details.point == GeoPoint(10.84148, 106.809844)
    assert await client.get_place_details("unknown") is None

    assert await client.geocode("FPT University") == [GeoPoint(10.84148, 106.809844)]
    assert await client.reverse_geocode(10.84148, 106.809844) == "FPT University, Thủ Đức, Hồ Chí Minh"
    assert fake.calls[-1] == ("reverse", {"point": [106.809844, 10.84148], "size": 1})


def test_get_ors_client_requires_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(places, "_ORS_CLIENT", None)
    monkeypatch.delenv("ORS_API_KEY", raising=False)
    with pytest.raises(RuntimeError):
        places.get_ors_client()


def test_build_places_client_by_provider(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GOONG_API_KEY", "abc")
    assert isinstance(build_places_client("goong"), GoongPlacesClient)
    with pytest.raises(ValueError):
        build_places_client("here")


@pytest.mark.asyncio
async def test_ors_details_cache_keeps_only_latest_suggestions() -> None:
    other = {
        "geometry": {"coordinates": [106.836, 10.843]},
        "properties": {"gid": "openstreetmap:venue:2", "name": "Vinhomes Grand Park"},
    }
    fake = FakePeliasClient([CAMPUS_FEATURE])
    client = OrsPlacesClient(fake, country="VNM")

    await client.search_places("fpt")
    fake.features = [other]
    await client.search_places("vinhomes")

    assert await client.get_place_details("openstreetmap:venue:1") is None
    details = await client.get_place_details("openstreetmap:venue:2")
    assert details is not None
    assert details.point == GeoPoint(10.843, 106.836)


@pytest.mark.asyncio
async def test_goong_reverse_ignores_malformed_results() -> None:
    client = _goong_client(lambda request: httpx.Response(200, json={"results": ["Đường D1"]}))
    assert await client.reverse_geocode(10.84148, 106.809844) is None
