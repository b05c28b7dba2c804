from __future__ import annotations

import asyncio
import sqlite3
import sys
from pathlib import Path
from typing import List, Optional

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from campusride.current_location import (
    FALLBACK_POSITION,
    CurrentLocationProvider,
    PositionReading,
    StaticPositionSource,
)
from campusride.geo import CURRENT_LOCATION_LABEL, GeoPoint
from campusride.location_store import LocationStore

HOME = GeoPoint(10.8500, 106.7700)
FORMATTED = "Lô E2a-7, Đường D1, Khu Công nghệ cao, Phường Long Thạnh Mỹ"


class FakeReverseGeocoder:
    def __init__(self, result: Optional[str] = FORMATTED, error: Optional[Exception] = None) -> None:
        self.result = result
        self.error = error
        self.calls: List[tuple] = []

    async def reverse_geocode(self, latitude: float, longitude: float) -> Optional[str]:
        self.calls.append((latitude, longitude))
        if self.error is not None:
            raise self.error
        return self.result


class SlowPositionSource:
    async def current_position(self) -> Optional[PositionReading]:
        await asyncio.sleep(1)
        return PositionReading(point=HOME)


class DeniedPositionSource:
    async def current_position(self) -> Optional[PositionReading]:
        raise PermissionError("location permission denied")


def _store() -> LocationStore:
    return LocationStore(sqlite3.connect(":memory:"))


@pytest.mark.asyncio
async def test_reads_source_and_caches_address() -> None:
    geocoder = FakeReverseGeocoder()
    provider = CurrentLocationProvider(_store(), StaticPositionSource(HOME, accuracy=5.0), geocoder)

    first = await provider.get_current_location_with_address()
    assert first.point == HOME
    assert first.accuracy == 5.0
    assert first.address is not None
    assert first.address.short == "Lô E2a-7, Đường D1, Khu Công nghệ cao"
    assert first.is_from_cache is False

    second = await provider.get_current_location_with_address()
    assert second.point == HOME
    assert second.is_from_cache is True
    assert len(geocoder.calls) == 1


@pytest.mark.asyncio
async def test_force_refresh_bypasses_cache() -> None:
    store = _store()
    store.save_position(GeoPoint(10.0, 106.0))
    provider = CurrentLocationProvider(store, StaticPositionSource(HOME), FakeReverseGeocoder())

    fix = await provider.get_current_location_with_address(force_refresh=True)

    assert fix.point == HOME
    assert store.load_position().point == HOME


@pytest.mark.asyncio
async def test_timeout_falls_back_to_last_reading_then_fallback() -> None:
    provider = CurrentLocationProvider(_store(), SlowPositionSource(), timeout=0.01)

    reading = await provider.acquire_position()
    assert reading.point == FALLBACK_POSITION

    provider.publish(PositionReading(point=HOME))
    reading = await provider.acquire_position()
    assert reading.point == HOME


@pytest.mark.asyncio
async def test_source_failure_falls_back_to_last_reading_then_fallback() -> None:
    provider = CurrentLocationProvider(_store(), DeniedPositionSource())

    fix = await provider.get_current_location_with_address()
    assert fix.point == FALLBACK_POSITION

    provider.publish(PositionReading(point=HOME))
    reading = await provider.acquire_position()
    assert reading.point == HOME


@pytest.mark.asyncio
async def test_reverse_geocode_failure_uses_coordinate_text() -> None:
    store = _store()
    provider = CurrentLocationProvider(
        store, StaticPositionSource(HOME), FakeReverseGeocoder(error=ConnectionError("offline"))
    )

    fix = await provider.get_current_location_with_address()

    assert fix.address is not None
    assert fix.address.formatted == HOME.format()
    assert fix.address.short == CURRENT_LOCATION_LABEL
    assert store.load_address() is None


@pytest.mark.asyncio
async def test_no_geocoder_leaves_address_empty() -> None:
    provider = CurrentLocationProvider(_store())
    fix = await provider.get_current_location_with_address()
    assert fix.point == FALLBACK_POSITION
    assert fix.address is None


def test_publish_notifies_subscribers_until_stopped() -> None:
    store = _store()
    provider = CurrentLocationProvider(store)
    received: List[PositionReading] = []

    def broken(_reading: PositionReading) -> None:
        raise RuntimeError("subscriber bug")

    provider.start(received.append)
    provider.start(broken)
    provider.publish(PositionReading(point=HOME, accuracy=8.0))
    assert [r.point for r in received] == [HOME]
    assert provider.running

    provider.stop(broken)
    assert provider.running
    provider.stop()
    assert not provider.running

    provider.publish(PositionReading(point=GeoPoint(10.9, 106.9)))
    assert len(received) == 1
    assert store.load_position().point == GeoPoint(10.9, 106.9)
