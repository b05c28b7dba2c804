"""SQLite cache for the device's last known position and address."""
from __future__ import annotations

import logging
import os
import sqlite3
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

from campusride.geo import Address, GeoPoint

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = os.environ.get("CAMPUSRIDE_DB", "campusride.db")
LOCATION_CACHE_SECONDS = 5 * 60

CURRENT_LOCATION_KEY = "current_location"
CURRENT_ADDRESS_KEY = "current_address"

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS location_cache (
    key TEXT PRIMARY KEY,
    lat REAL,
    lon REAL,
    accuracy REAL,
    formatted TEXT,
    short TEXT,
    place_ref TEXT,
    ts REAL NOT NULL
);
"""


def get_connection(db_path: Optional[str] = None) -> sqlite3.Connection:
    """Return a SQLite connection using WAL mode."""
    path = db_path or DEFAULT_DB_PATH
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    return conn


@contextmanager
def connection_scope(db_path: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Yield a SQLite connection and close it afterwards."""
    conn = get_connection(db_path)
    try:
        yield conn
    finally:
        conn.close()


@dataclass(frozen=True)
class StoredPosition:
    point: GeoPoint
    accuracy: Optional[float]
    timestamp: float


class LocationStore:
    """Freshness-bounded key/value store for the current position and address."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        max_age: float = LOCATION_CACHE_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.conn = conn
        self.max_age = max_age
        self.clock = clock
        conn.executescript(_SCHEMA_SQL)
        conn.commit()

    def _fresh(self, ts: Optional[float]) -> bool:
        return ts is not None and self.clock() - float(ts) <= self.max_age

    def save_position(self, point: GeoPoint, accuracy: Optional[float] = None) -> StoredPosition:
        now = self.clock()
        self.conn.execute(
            """
            INSERT OR REPLACE INTO location_cache(key, lat, lon, accuracy, ts)
            VALUES (?,?,?,?,?)
            """,
            (CURRENT_LOCATION_KEY, point.latitude, point.longitude, accuracy, now),
        )
        self.conn.commit()
        return StoredPosition(point=point, accuracy=accuracy, timestamp=now)

    def load_position(self) -> Optional[StoredPosition]:
        row = self.conn.execute(
            "SELECT lat, lon, accuracy, ts FROM location_cache WHERE key = ?",
            (CURRENT_LOCATION_KEY,),
        ).fetchone()
        if row is None or not self._fresh(row[3]):
            return None
        try:
            point = GeoPoint(row[0], row[1])
        except (TypeError, ValueError):
            logger.warning("Discarding corrupt cached position %r", tuple(row))
            return None
        return StoredPosition(point=point, accuracy=row[2], timestamp=float(row[3]))

    def save_address(self, address: Address, place_ref: Optional[str] = None) -> None:
        self.conn.execute(
            """
            INSERT OR REPLACE INTO location_cache(key, formatted, short, place_ref, ts)
            VALUES (?,?,?,?,?)
            """,
            (CURRENT_ADDRESS_KEY, address.formatted, address.short, place_ref, self.clock()),
        )
        self.conn.commit()

    def load_address(self) -> Optional[Address]:
        row = self.conn.execute(
            "SELECT formatted, short, ts FROM location_cache WHERE key = ?",
            (CURRENT_ADDRESS_KEY,),
        ).fetchone()
        if row is None or not self._fresh(row[2]):
            return None
        return Address(formatted=row[0] or "", short=row[1] or "")

    def has_valid_cache(self) -> bool:
        return self.load_position() is not None and self.load_address() is not None

    def clear(self) -> None:
        self.conn.execute(
            "DELETE FROM location_cache WHERE key IN (?, ?)",
            (CURRENT_LOCATION_KEY, CURRENT_ADDRESS_KEY),
        )
        self.conn.commit()


__all__ = [
    "CURRENT_ADDRESS_KEY",
    "CURRENT_LOCATION_KEY",
    "DEFAULT_DB_PATH",
    "LOCATION_CACHE_SECONDS",
    "LocationStore",
    "StoredPosition",
    "connection_scope",
    "get_connection",
]
