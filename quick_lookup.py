#!/usr/bin/env python3
"""Command-line front end for the campus location engine.

Runs the same suggestion, resolution and anchor logic the booking screen
uses, against the configured POI registry and places provider, and prints
plain-text results.  Handy for checking registry data and API keys.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from typing import Optional, Sequence

from campusride.aggregator import SuggestionAggregator
from campusride.anchors import AnchorSet
from campusride.current_location import CurrentLocationProvider, StaticPositionSource
from campusride.errors import QuoteError, ResolutionError
from campusride.geo import GeoPoint
from campusride.location_store import DEFAULT_DB_PATH, LocationStore, get_connection
from campusride.models import describe
from campusride.places import build_places_client
from campusride.poi_registry import HttpPoiRegistry, SqlitePoiRegistry
from campusride.quotes import QuoteClient
from campusride.resolution import LocationResolver
from campusride.route_map import build_route_map

LOG_LEVEL = os.environ.get("CAMPUSRIDE_LOG_LEVEL", "WARNING")

logger = logging.getLogger(__name__)


def _point(args: argparse.Namespace) -> Optional[GeoPoint]:
    if args.lat is None or args.lon is None:
        return None
    return GeoPoint(args.lat, args.lon)


def _registry(args: argparse.Namespace, conn):
    if args.remote_registry:
        return HttpPoiRegistry()
    return SqlitePoiRegistry(conn)


async def cmd_suggest(args: argparse.Namespace, conn) -> int:
    places = build_places_client(args.provider)
    point = _point(args)
    provider = CurrentLocationProvider(
        LocationStore(conn),
        StaticPositionSource(point) if point is not None else None,
        places if getattr(places, "configured", False) else None,
    )
    aggregator = SuggestionAggregator(_registry(args, conn), places, provider, debounce=0.0)
    suggestions = await aggregator.search(args.query, args.pickup) or []
    if not suggestions:
        print("No suggestions.")
        return 1
    for line in describe(suggestions):
        print(line)
    return 0


async def cmd_resolve(args: argparse.Namespace, conn) -> int:
    resolver = LocationResolver(build_places_client(args.provider), _registry(args, conn))
    try:
        resolved = await resolver.resolve_text(args.text)
    except ResolutionError as exc:
        print(exc.user_message)
        return 1
    kind = "POI" if resolved.is_poi else "geocoded"
    print(f"{resolved.label} ({kind})")
    print(f"  {resolved.point.format()}")
    if resolved.address != resolved.label:
        print(f"  {resolved.address}")
    return 0


async def cmd_anchor(args: argparse.Namespace, conn) -> int:
    anchors = AnchorSet()
    await anchors.load(_registry(args, conn))
    result = anchors.is_anchor(_point(args), args.text)
    source = "registry" if anchors.loaded else "fallback"
    print(f"{'anchor' if result else 'not an anchor'} ({source} anchors)")
    return 0 if result else 1


async def cmd_routes(args: argparse.Namespace, conn) -> int:
    try:
        routes = await QuoteClient().get_template_routes()
    except QuoteError as exc:
        print(f"Could not load routes: {exc}")
        return 1
    if not routes:
        print("No template routes.")
        return 1
    for route in routes:
        price = f"{route.default_price:,.0f} VND" if route.default_price is not None else "-"
        print(f"{route.route_id}: {route.from_name} -> {route.to_name} [{price}]")

    if args.map:
        chosen = next((r for r in routes if r.route_id == args.route), routes[0])
        fmap = build_route_map(chosen.path, chosen.from_location, chosen.to_location)
        fmap.save(args.map)
        print(f"Map saved to {args.map}")
    return 0


async def cmd_import_poi(args: argparse.Namespace, conn) -> int:
    count = SqlitePoiRegistry(conn).import_csv(args.csv)
    print(f"Imported {count} POIs.")
    return 0


COMMANDS = {
    "suggest": cmd_suggest,
    "resolve": cmd_resolve,
    "anchor": cmd_anchor,
    "routes": cmd_routes,
    "import-poi": cmd_import_poi,
}


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Look up campus ride locations")
    p.add_argument("--db", default=DEFAULT_DB_PATH, help="Path to the SQLite database")
    p.add_argument("--provider", default=None, help="Places provider: goong or ors")
    p.add_argument(
        "--remote-registry",
        action="store_true",
        help="Read POIs from the booking backend instead of the local database",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    a_suggest = sub.add_parser("suggest", help="Show suggestions for a query")
    a_suggest.add_argument("query")
    a_suggest.add_argument("--pickup", action="store_true", help="Include the current location")
    a_suggest.add_argument("--lat", type=float)
    a_suggest.add_argument("--lon", type=float)

    a_resolve = sub.add_parser("resolve", help="Resolve typed text to a coordinate")
    a_resolve.add_argument("text")

    a_anchor = sub.add_parser("anchor", help="Check whether a place is a campus anchor")
    a_anchor.add_argument("text", nargs="?", default=None)
    a_anchor.add_argument("--lat", type=float)
    a_anchor.add_argument("--lon", type=float)

    a_routes = sub.add_parser("routes", help="List template routes")
    a_routes.add_argument("--map", default=None, help="Save a preview of one route to this HTML file")
    a_routes.add_argument("--route", default=None, help="Route id to preview (defaults to the first)")

    a_import = sub.add_parser("import-poi", help="Import POIs from a CSV file")
    a_import.add_argument("csv")

    return p.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    conn = get_connection(args.db)
    try:
        return asyncio.run(COMMANDS[args.cmd](args, conn))
    finally:
        conn.close()


if __name__ == "__main__":  # pragma: no cover - manual execution entry point
    raise SystemExit(main())
