"""Current-location provider scoped to one booking screen session.

The provider owns the live position, its subscribers and the cached
reverse-geocoded address.  GPS acquisition itself is delegated to a
``PositionSource`` supplied by the platform layer.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol

from campusride.geo import CURRENT_LOCATION_LABEL, Address, GeoPoint
from campusride.location_store import LocationStore

logger = logging.getLogger(__name__)

LOCATION_TIMEOUT_SECONDS = 8.0
# FPT University HCMC campus; used when no position can be determined at all.
FALLBACK_POSITION = GeoPoint(10.84148, 106.809844)


@dataclass(frozen=True)
class PositionReading:
    point: GeoPoint
    accuracy: Optional[float] = None
    timestamp: Optional[float] = None


@dataclass(frozen=True)
class LocationFix:
    point: Optional[GeoPoint]
    address: Optional[Address]
    accuracy: Optional[float] = None
    timestamp: Optional[float] = None
    is_from_cache: bool = False


class PositionSource(Protocol):
    async def current_position(self) -> Optional[PositionReading]: ...


class ReverseGeocoder(Protocol):
    async def reverse_geocode(self, latitude: float, longitude: float) -> Optional[str]: ...


class StaticPositionSource:
    """Position source that always reports the same coordinate."""

    def __init__(self, point: GeoPoint, accuracy: Optional[float] = None) -> None:
        self.reading = PositionReading(point=point, accuracy=accuracy)

    async def current_position(self) -> Optional[PositionReading]:
        return PositionReading(
            point=self.reading.point, accuracy=self.reading.accuracy, timestamp=time.time()
        )


Subscriber = Callable[[PositionReading], None]


class CurrentLocationProvider:
    def __init__(
        self,
        store: LocationStore,
        source: Optional[PositionSource] = None,
        reverse_geocoder: Optional[ReverseGeocoder] = None,
        *,
        timeout: float = LOCATION_TIMEOUT_SECONDS,
        fallback: GeoPoint = FALLBACK_POSITION,
    ) -> None:
        self.store = store
        self.source = source
        self.reverse_geocoder = reverse_geocoder
        self.timeout = timeout
        self.fallback = fallback
        self.subscribers: List[Subscriber] = []
        self.running = False
        self.last_reading: Optional[PositionReading] = None

    def start(self, callback: Optional[Subscriber] = None) -> None:
        if callback is not None and callback not in self.subscribers:
            self.subscribers.append(callback)
        if not self.running:
            self.running = True
            logger.debug("Location tracking started")

    def stop(self, callback: Optional[Subscriber] = None) -> None:
        if callback is not None:
            if callback in self.subscribers:
                self.subscribers.remove(callback)
        else:
            self.subscribers.clear()
        if not self.subscribers and self.running:
            self.running = False
            logger.debug("Location tracking stopped")

    def publish(self, reading: PositionReading) -> None:
        """Record a live position update and notify subscribers."""

        self.last_reading = reading
        self.store.save_position(reading.point, reading.accuracy)
        if not self.running:
            return
        for callback in list(self.subscribers):
            try:
                callback(reading)
            except Exception:
                logger.exception("Error in location callback")

    async def acquire_position(self) -> PositionReading:
        """Return a live reading, the last known one, or the fallback coordinate."""

        reading: Optional[PositionReading] = None
        if self.source is not None:
            try:
                reading = await asyncio.wait_for(self.source.current_position(), self.timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Location request timed out after %.1fs, using last known position",
                    self.timeout,
                )
            except Exception as exc:
                logger.warning("Location request failed, using last known position: %s", exc)
        if reading is None and self.last_reading is not None:
            return self.last_reading
        if reading is None:
            logger.warning("Unable to determine current location, using fallback coordinates")
            reading = PositionReading(point=self.fallback, timestamp=time.time())
        self.last_reading = reading
        return reading

    async def _reverse_geocode(self, point: GeoPoint) -> Optional[Address]:
        if self.reverse_geocoder is None:
            return None
        try:
            formatted = await self.reverse_geocoder.reverse_geocode(
                point.latitude, point.longitude
            )
        except Exception as exc:
            logger.warning("Reverse geocoding failed for %s: %s", point.format(), exc)
            return Address(formatted=point.format(), short=CURRENT_LOCATION_LABEL)
        if not formatted:
            return None
        address = Address.from_formatted(formatted)
        self.store.save_address(address)
        return address

    async def get_current_location_with_address(self, force_refresh: bool = False) -> LocationFix:
        point: Optional[GeoPoint] = None
        accuracy: Optional[float] = None
        timestamp: Optional[float] = None
        address: Optional[Address] = None
        from_cache = False

        if not force_refresh:
            stored = self.store.load_position()
            if stored is not None:
                point, accuracy, timestamp = stored.point, stored.accuracy, stored.timestamp
            address = self.store.load_address()
            from_cache = stored is not None and address is not None

        if point is None:
            reading = await self.acquire_position()
            point, accuracy, timestamp = reading.point, reading.accuracy, reading.timestamp
            self.store.save_position(point, accuracy)

        if address is None:
            address = await self._reverse_geocode(point)

        return LocationFix(
            point=point,
            address=address,
            accuracy=accuracy,
            timestamp=timestamp,
            is_from_cache=from_cache,
        )


__all__ = [
    "CurrentLocationProvider",
    "FALLBACK_POSITION",
    "LOCATION_TIMEOUT_SECONDS",
    "LocationFix",
    "PositionReading",
    "PositionSource",
    "ReverseGeocoder",
    "StaticPositionSource",
]
