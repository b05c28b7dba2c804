"""POI registry clients: the backend HTTP registry and a local SQLite copy."""
from __future__ import annotations

import logging
import os
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

import httpx
import pandas as pd

from campusride.geo import GeoPoint, haversine_m
from campusride.models import PoiLocation, normalize_pois

logger = logging.getLogger(__name__)

API_BASE_URL = os.environ.get("CAMPUSRIDE_API_URL", "http://localhost:8080/api/v1")
POI_ENDPOINT = "/locations"
HTTP_TIMEOUT = 10.0
SNAP_RADIUS_M = 200.0

POI_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS poi_locations (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    latitude REAL NOT NULL,
    longitude REAL NOT NULL,
    updated_at TEXT NOT NULL
);
"""


def nearest_poi(
    pois: Iterable[PoiLocation], point: GeoPoint, radius_m: float
) -> Optional[PoiLocation]:
    """Return the POI closest to *point* within *radius_m* metres."""

    best: Optional[PoiLocation] = None
    best_distance = float("inf")
    for poi in pois:
        distance = haversine_m(point, poi.point)
        if distance <= radius_m and distance < best_distance:
            best, best_distance = poi, distance
    return best


class _RegistryLookups:
    """Lookups shared by every registry, built on ``get_all_locations``."""

    async def get_all_locations(self) -> List[PoiLocation]:  # pragma: no cover - abstract
        raise NotImplementedError

    async def find_nearby(
        self, latitude: float, longitude: float, radius_m: float = SNAP_RADIUS_M
    ) -> Optional[PoiLocation]:
        pois = await self.get_all_locations()
        return nearest_poi(pois, GeoPoint(latitude, longitude), radius_m)

    async def search(self, text: str, limit: int = 1) -> List[PoiLocation]:
        needle = text.strip().lower()
        if not needle:
            return []
        pois = await self.get_all_locations()
        return [poi for poi in pois if needle in poi.name.lower()][:limit]


class HttpPoiRegistry(_RegistryLookups):
    """Read the operator-maintained POI list from the booking backend."""

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

    async def _get(self, path: str) -> Any:
        url = f"{self.base_url}{path}"
        if self._client is not None:
            resp = await self._client.get(url, headers=self.headers)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(url, headers=self.headers)
        resp.raise_for_status()
        return resp.json()

    async def get_all_locations(self) -> List[PoiLocation]:
        payload = await self._get(POI_ENDPOINT)
        pois = normalize_pois(payload)
        logger.debug("Loaded %d POIs from %s", len(pois), self.base_url)
        return pois


def ensure_poi_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(POI_SCHEMA_SQL)
    conn.commit()


def upsert_locations(conn: sqlite3.Connection, pois: Iterable[PoiLocation]) -> int:
    """Insert or replace *pois* and return the number of rows written."""

    ensure_poi_schema(conn)
    now = datetime.now(timezone.utc).isoformat()
    rows = [(poi.id, poi.name, poi.latitude, poi.longitude, now) for poi in pois]
    conn.executemany(
        """
        INSERT OR REPLACE INTO poi_locations(id, name, latitude, longitude, updated_at)
        VALUES (?,?,?,?,?)
        """,
        rows,
    )
    conn.commit()
    return len(rows)


def read_poi_csv(path: str) -> List[PoiLocation]:
    """Parse a POI CSV with ``id``, ``name``, ``latitude`` and ``longitude`` columns.

    Rows with missing names or non-numeric coordinates are dropped.
    """

    df = pd.read_csv(path, dtype={"id": str})
    missing = {"id", "name", "latitude", "longitude"} - set(df.columns)
    if missing:
        raise ValueError(f"POI CSV missing columns: {', '.join(sorted(missing))}")

    coords = df[["latitude", "longitude"]].apply(pd.to_numeric, errors="coerce")
    frame = df[["id", "name"]].join(coords).dropna()
    frame = frame[frame["name"].astype(str).str.strip() != ""]

    pois: List[PoiLocation] = []
    for row in frame.itertuples(index=False):
        try:
            point = GeoPoint(float(row.latitude), float(row.longitude))
        except ValueError:
            logger.warning("Skipping POI %s with invalid coordinates", row.id)
            continue
        pois.append(
            PoiLocation(
                id=str(row.id),
                name=str(row.name).strip(),
                latitude=point.latitude,
                longitude=point.longitude,
            )
        )
    return pois


class SqlitePoiRegistry(_RegistryLookups):
    """POI registry backed by the local SQLite database."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn
        ensure_poi_schema(conn)

    async def get_all_locations(self) -> List[PoiLocation]:
        rows = self.conn.execute(
            "SELECT id, name, latitude, longitude FROM poi_locations ORDER BY name"
        ).fetchall()
        return [
            PoiLocation(id=str(r[0]), name=str(r[1]), latitude=float(r[2]), longitude=float(r[3]))
            for r in rows
        ]

    def import_csv(self, path: str) -> int:
        return upsert_locations(self.conn, read_poi_csv(path))


__all__ = [
    "API_BASE_URL",
    "HttpPoiRegistry",
    "SNAP_RADIUS_M",
    "SqlitePoiRegistry",
    "ensure_poi_schema",
    "nearest_poi",
    "read_poi_csv",
    "upsert_locations",
]
