"""
Great-circle distances between stops and from a stop to a route polyline.

Assumption
----------
Route geometry comes from an external routing service; here a ride's route
is approximated by straight segments between its waypoints.  Segment
projection uses a local equirectangular approximation, which is accurate
enough at the few-kilometre scale used for "is this stop on the route".

Complexity: O(1) per call, O(k) per polyline of k waypoints.
"""

import math
from typing import Sequence

from .entities import Location

EARTH_RADIUS_KM = 6_371.0


def haversine_km(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **km** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def km_between(a: Location, b: Location) -> float:
    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)


def distance_to_segment_km(
    point: Location, seg_start: Location, seg_end: Location
) -> float:
    """Distance from *point* to the closest point of the segment."""
    # Project onto a plane centred on the point (x scaled by cos(lat)).
    scale = math.cos(math.radians(point.latitude))
    px, py = point.longitude * scale, point.latitude
    x1, y1 = seg_start.longitude * scale, seg_start.latitude
    x2, y2 = seg_end.longitude * scale, seg_end.latitude

    dx, dy = x2 - x1, y2 - y1
    if dx == 0 and dy == 0:
        return km_between(point, seg_start)

    t = max(0.0, min(1.0, ((px - x1) * dx + (py - y1) * dy) / (dx * dx + dy * dy)))
    closest_lat = y1 + t * dy
    closest_lng = (x1 + t * dx) / scale if scale else seg_start.longitude
    return haversine_km(point.latitude, point.longitude, closest_lat, closest_lng)


def nearest_segment(
    point: Location, waypoints: Sequence[Location]
) -> tuple[int, float]:
    """
    Return ``(segment_index, distance_km)`` of the polyline segment closest
    to *point*.  A single-waypoint polyline degenerates to that point.
    """
    if len(waypoints) < 2:
        return 0, km_between(point, waypoints[0])

    best_idx, best = 0, math.inf
    for i in range(len(waypoints) - 1):
        d = distance_to_segment_km(point, waypoints[i], waypoints[i + 1])
        if d < best:
            best_idx, best = i, d
    return best_idx, best
