from __future__ import annotations

import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from campusride.errors import ResolutionError, ResolutionFailure
from campusride.geo import Address, GeoPoint
from campusride.models import (
    CurrentLocationSuggestion,
    PlaceDetails,
    PoiLocation,
    PoiSuggestion,
    RemoteSuggestion,
)
from campusride.poi_registry import nearest_poi
from campusride.resolution import LocationResolver

FPT_POI = PoiLocation("p1", "FPT University", 10.84148, 106.809844)
VINHOMES = RemoteSuggestion(
    "abc", "Vinhomes Grand Park, Long Thạnh Mỹ, Thủ Đức", "Vinhomes Grand Park", "Thủ Đức"
)


class FakePlaces:
    def __init__(
        self,
        details: Optional[Dict[str, PlaceDetails]] = None,
        points: Optional[List[GeoPoint]] = None,
        details_error: Optional[Exception] = None,
        geocode_error: Optional[Exception] = None,
    ) -> None:
        self.details = details or {}
        self.points = points if points is not None else []
        self.details_error = details_error
        self.geocode_error = geocode_error
        self.details_calls: List[str] = []
        self.geocode_calls: List[str] = []

    async def get_place_details(self, place_ref: str) -> Optional[PlaceDetails]:
        self.details_calls.append(place_ref)
        if self.details_error is not None:
            raise self.details_error
        return self.details.get(place_ref)

    async def geocode(self, text: str) -> List[GeoPoint]:
        self.geocode_calls.append(text)
        if self.geocode_error is not None:
            raise self.geocode_error
        return list(self.points)


class FakePoiRegistry:
    def __init__(self, pois: List[PoiLocation]) -> None:
        self.pois = pois
        self.nearby_calls: List[tuple] = []

    async def find_nearby(self, latitude: float, longitude: float, radius_m: float = 200.0):
        self.nearby_calls.append((latitude, longitude, radius_m))
        return nearest_poi(self.pois, GeoPoint(latitude, longitude), radius_m)

    async def search(self, text: str, limit: int = 1) -> List[PoiLocation]:
        needle = text.lower()
        return [p for p in self.pois if needle in p.name.lower()][:limit]


@pytest.mark.asyncio
async def test_poi_suggestion_resolves_without_network() -> None:
    places = FakePlaces()
    written: List[str] = []
    resolver = LocationResolver(places)

    resolved = await resolver.resolve(PoiSuggestion.from_poi(FPT_POI), on_display_text=written.append)

    assert resolved.point == FPT_POI.point
    assert resolved.is_poi
    assert resolved.source_id == "p1"
    assert written == ["FPT University"]
    assert places.details_calls == [] and places.geocode_calls == []


@pytest.mark.asyncio
async def test_current_location_suggestion_is_flagged() -> None:
    suggestion = CurrentLocationSuggestion(
        point=GeoPoint(10.85, 106.77), address=Address.from_formatted("Đường D1, Thủ Đức, Hồ Chí Minh, Việt Nam")
    )
    resolved = await LocationResolver(FakePlaces()).resolve(suggestion)

    assert resolved.is_current_location
    assert not resolved.is_poi
    assert resolved.point == GeoPoint(10.85, 106.77)
    assert resolved.address == "Đường D1, Thủ Đức, Hồ Chí Minh, Việt Nam"
    assert resolved.display_text == "Vị trí hiện tại"


@pytest.mark.asyncio
async def test_remote_suggestion_uses_place_details_address() -> None:
    details = PlaceDetails("Vinhomes Grand Park, Nguyễn Xiển, Long Thạnh Mỹ, Thủ Đức", GeoPoint(10.843, 106.836))
    places = FakePlaces(details={"abc": details})
    written: List[str] = []

    resolved = await LocationResolver(places).resolve(VINHOMES, on_display_text=written.append)

    assert resolved.point == GeoPoint(10.843, 106.836)
    assert resolved.address == details.formatted_address
    assert resolved.display_text == "Vinhomes Grand Park"
    assert written == ["Vinhomes Grand Park"]
    assert places.geocode_calls == []


@pytest.mark.asyncio
async def test_missing_geometry_falls_back_to_geocoding_description() -> None:
    places = FakePlaces(points=[GeoPoint(10.8431, 106.8361), GeoPoint(10.0, 106.0)])

    resolved = await LocationResolver(places).resolve(VINHOMES)

    assert places.details_calls == ["abc"]
    assert places.geocode_calls == [VINHOMES.description]
    assert resolved.point == GeoPoint(10.8431, 106.8361)
    assert resolved.address == VINHOMES.description


@pytest.mark.asyncio
async def test_details_failure_then_empty_geocode_is_no_coordinate_found() -> None:
    places = FakePlaces(details_error=ConnectionError("details down"), points=[])
    written: List[str] = []

    with pytest.raises(ResolutionError) as excinfo:
        await LocationResolver(places).resolve(VINHOMES, on_display_text=written.append)

    assert excinfo.value.reason is ResolutionFailure.NO_COORDINATE_FOUND
    assert places.geocode_calls == [VINHOMES.description]
    assert written == ["Vinhomes Grand Park"]
    assert "địa chỉ" in excinfo.value.user_message


@pytest.mark.asyncio
async def test_geocode_transport_error_is_network_failure() -> None:
    places = FakePlaces(geocode_error=ConnectionError("offline"))

    with pytest.raises(ResolutionError) as excinfo:
        await LocationResolver(places).resolve_text("Bến xe Miền Đông")

    assert excinfo.value.reason is ResolutionFailure.NETWORK_FAILURE
    assert isinstance(excinfo.value.cause, ConnectionError)


@pytest.mark.asyncio
async def test_empty_text_is_rejected_before_any_lookup() -> None:
    places = FakePlaces(points=[GeoPoint(10.0, 106.0)])
    with pytest.raises(ResolutionError) as excinfo:
        await LocationResolver(places).resolve_text("   ")
    assert excinfo.value.reason is ResolutionFailure.EMPTY_QUERY
    assert places.geocode_calls == []


@pytest.mark.asyncio
async def test_raw_text_prefers_poi_name_match() -> None:
    places = FakePlaces(points=[GeoPoint(10.0, 106.0)])
    written: List[str] = []
    resolver = LocationResolver(places, FakePoiRegistry([FPT_POI]))

    resolved = await resolver.resolve_text("  fpt   university ", on_display_text=written.append)

    assert resolved.is_poi
    assert resolved.source_id == "p1"
    assert places.geocode_calls == []
    assert written == ["FPT University"]


@pytest.mark.asyncio
async def test_raw_text_snaps_to_nearby_poi() -> None:
    places = FakePlaces(points=[GeoPoint(10.8420, 106.8100)])
    registry = FakePoiRegistry([FPT_POI])

    resolved = await LocationResolver(places, registry).resolve_text("Lô E2a-7 Đường D1")

    assert resolved.is_poi
    assert resolved.point == FPT_POI.point
    assert resolved.display_text == "FPT University"
    assert registry.nearby_calls == [(10.8420, 106.8100, 200.0)]


@pytest.mark.asyncio
async def test_raw_text_keeps_geocode_when_no_poi_nearby() -> None:
    places = FakePlaces(points=[GeoPoint(10.78, 106.70)])
    written: List[str] = []
    resolver = LocationResolver(places, FakePoiRegistry([FPT_POI]))

    resolved = await resolver.resolve_text("Bến Thành", on_display_text=written.append)

    assert not resolved.is_poi
    assert resolved.point == GeoPoint(10.78, 106.70)
    assert resolved.address == "Bến Thành"
    assert written == ["Bến Thành"]


@pytest.mark.asyncio
async def test_suggestion_taps_never_snap_to_poi() -> None:
    places = FakePlaces(points=[GeoPoint(10.8420, 106.8100)])
    registry = FakePoiRegistry([FPT_POI])

    resolved = await LocationResolver(places, registry).resolve(
        RemoteSuggestion("", "Lô E2a-7, Đường D1", valid_coordinates=False)
    )

    assert not resolved.is_poi
    assert registry.nearby_calls == []
    assert places.details_calls == []
