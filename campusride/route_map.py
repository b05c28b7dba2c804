"""Folium preview of a decoded route with its endpoints and campus anchors."""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence

import folium

from campusride.anchors import FALLBACK_ANCHORS
from campusride.geo import GeoPoint, bounding_center
from campusride.models import CampusAnchor, ResolvedLocation

logger = logging.getLogger(__name__)

# FPT University HCMC campus.
DEFAULT_CENTER = GeoPoint(10.84148, 106.809844)


def compute_map_center(
    path: Sequence[GeoPoint],
    endpoints: Iterable[Optional[ResolvedLocation]] = (),
) -> List[float]:
    """Return ``[lat, lon]`` at the centre of everything that will be drawn."""

    points = list(path) + [loc.point for loc in endpoints if loc is not None]
    center = bounding_center(points) or DEFAULT_CENTER
    return [center.latitude, center.longitude]


def build_route_map(
    path: Sequence[GeoPoint],
    pickup: Optional[ResolvedLocation] = None,
    dropoff: Optional[ResolvedLocation] = None,
    anchors: Sequence[CampusAnchor] = FALLBACK_ANCHORS,
) -> folium.Map:
    """Return a Folium map of *path* between *pickup* and *dropoff*."""

    fmap = folium.Map(location=compute_map_center(path, (pickup, dropoff)), zoom_start=14)

    anchor_group = folium.FeatureGroup(name="Campus anchors", show=True)
    for anchor in anchors:
        anchor_group.add_child(
            folium.CircleMarker(
                list(anchor.point.as_latlon()),
                radius=6,
                color="#f37021",
                fill=True,
                tooltip=anchor.name,
            )
        )
    anchor_group.add_to(fmap)

    markers_group = folium.FeatureGroup(name="Trip", show=True)
    for location, label, color in ((pickup, "Pickup", "green"), (dropoff, "Dropoff", "red")):
        if location is None:
            continue
        markers_group.add_child(
            folium.Marker(
                list(location.point.as_latlon()),
                popup=f"{label}: {location.label}",
                icon=folium.Icon(color=color),
            )
        )

    if len(path) >= 2:
        markers_group.add_child(
            folium.PolyLine(
                [list(p.as_latlon()) for p in path],
                color="#1b5e20",
                weight=4,
                opacity=0.75,
            )
        )
        fmap.fit_bounds([list(p.as_latlon()) for p in path])
    elif pickup is not None and dropoff is not None:
        logger.debug("No route geometry; drawing a straight line between endpoints")
        markers_group.add_child(
            folium.PolyLine(
                [list(pickup.point.as_latlon()), list(dropoff.point.as_latlon())],
                color="#2ecc71",
                weight=2.5,
                opacity=0.7,
                dash_array="6",
            )
        )
    markers_group.add_to(fmap)

    folium.LayerControl(collapsed=False).add_to(fmap)
    return fmap


__all__ = ["DEFAULT_CENTER", "build_route_map", "compute_map_center"]
