"""
Candidate-ride matching for displaced passengers
================================================

1. **Spatial Binning**  -- every ride carries the H3 cell (resolution 7,
   ~5.16 km²) of its start and destination.  The store pre-filters
   candidates to rides whose cells lie within ``k`` rings of the cancelled
   ride's cells.
2. **Temporal Window**  -- candidate departure within ``window`` of the
   cancelled ride's departure.
3. **Route Check**      -- the passenger's own pickup and dropoff must lie
   within ``proximity_km`` of the candidate's polyline (start, stops,
   destination), with the pickup reached before the dropoff.

Candidates passing all three are ranked by total off-route distance.

Complexity
----------
Let C = candidates after pre-filtering, k = waypoints per route.
Ranking is O(C x k) plus an O(C log C) sort.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

import h3

from .distance import km_between, nearest_segment
from .entities import Booking, Location, Ride
from .enums import RideStatus


def ride_h3_cell(lat: float, lng: float, resolution: int = 7) -> str:
    """Map a geo-point to an H3 hexagonal cell index.  O(1)."""
    return h3.latlng_to_cell(lat, lng, resolution)


def ring_cells(cell: str, k: int) -> set[str]:
    """All cells within *k* hops of *cell*, including itself."""
    return set(h3.grid_disk(cell, k))


def assign_cells(ride: Ride, resolution: int = 7) -> None:
    start, dest = ride.route.start, ride.route.destination
    ride.origin_cell = ride_h3_cell(start.latitude, start.longitude, resolution)
    ride.destination_cell = ride_h3_cell(dest.latitude, dest.longitude, resolution)


@dataclass(frozen=True)
class RouteMatch:
    ride: Ride
    pickup_offset_km: float
    dropoff_offset_km: float

    @property
    def score(self) -> float:
        return self.pickup_offset_km + self.dropoff_offset_km


def match_route(
    pickup: Location, dropoff: Location, ride: Ride, proximity_km: float = 5.0
) -> Optional[RouteMatch]:
    """
    Check that *pickup* and *dropoff* both sit on *ride*'s route and that
    the route reaches the pickup first.  Returns ``None`` when they don't.
    """
    waypoints = ride.route.waypoints()
    p_idx, p_off = nearest_segment(pickup, waypoints)
    if p_off > proximity_km:
        return None
    d_idx, d_off = nearest_segment(dropoff, waypoints)
    if d_off > proximity_km:
        return None

    if p_idx > d_idx:
        return None
    if p_idx == d_idx:
        seg_start = waypoints[p_idx]
        if km_between(seg_start, pickup) > km_between(seg_start, dropoff):
            return None

    return RouteMatch(ride=ride, pickup_offset_km=p_off, dropoff_offset_km=d_off)


def within_departure_window(
    departure_at: datetime, reference: datetime, window: timedelta
) -> bool:
    return abs(departure_at - reference) <= window


def rank_candidates(
    booking: Booking,
    cancelled_ride: Ride,
    candidates: Iterable[Ride],
    *,
    proximity_km: float = 5.0,
    window: timedelta = timedelta(hours=2),
) -> list[RouteMatch]:
    """Filter *candidates* for *booking* and order them best-first."""
    matches: list[RouteMatch] = []
    for ride in candidates:
        if ride.id == cancelled_ride.id or ride.status != RideStatus.ACTIVE:
            continue
        if ride.driver_id == booking.passenger_id:
            continue
        if ride.available_seats < booking.seats_booked:
            continue
        if not within_departure_window(
            ride.departure_at, cancelled_ride.departure_at, window
        ):
            continue
        match = match_route(
            booking.pickup_point, booking.dropoff_point, ride, proximity_km
        )
        if match is not None:
            matches.append(match)

    matches.sort(key=lambda m: (m.score, m.ride.departure_at))
    return matches
