"""
Ride endpoints
==============

POST /api/v1/rides                     -- publish a ride
GET  /api/v1/rides/{ride_id}           -- ride status and seat count
GET  /api/v1/rides/{ride_id}/bookings  -- bookings on the ride
POST /api/v1/rides/{ride_id}/start     -- ACTIVE -> IN_PROGRESS, issues pickup codes
POST /api/v1/rides/{ride_id}/complete  -- IN_PROGRESS -> COMPLETED
POST /api/v1/rides/{ride_id}/cancel    -- cancel and reassign displaced passengers
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from seatshare.api.dependencies import get_bookings, get_rides
from seatshare.api.middleware import limiter
from seatshare.api.schemas import (
    BookingResponse,
    ErrorResponse,
    ReasonRequest,
    RidePublishRequest,
    RideResponse,
)
from seatshare.config import settings
from seatshare.services.booking_lifecycle import BookingLifecycle
from seatshare.services.ride_lifecycle import RideLifecycle

router = APIRouter(prefix="/rides", tags=["rides"])

_errors = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


@router.post(
    "",
    status_code=201,
    response_model=RideResponse,
    summary="Publish a ride",
)
@limiter.limit(settings.rate_limit)
async def publish_ride(
    request: Request,
    body: RidePublishRequest,
    rides: RideLifecycle = Depends(get_rides),
):
    ride = await rides.publish(
        driver_id=body.driver_id,
        route=body.to_route(),
        departure_at=body.departure_at,
        price_per_seat=body.price_per_seat,
        total_seats=body.total_seats,
        instant_booking=body.instant_booking,
    )
    return RideResponse.from_entity(ride)


@router.get(
    "/{ride_id}",
    response_model=RideResponse,
    responses=_errors,
    summary="Get ride status and free seats",
)
@limiter.limit(settings.rate_limit)
async def get_ride(
    request: Request,
    ride_id: str,
    rides: RideLifecycle = Depends(get_rides),
):
    return RideResponse.from_entity(await rides.get(ride_id))


@router.get(
    "/{ride_id}/bookings",
    response_model=list[BookingResponse],
    responses=_errors,
    summary="List bookings on a ride",
)
@limiter.limit(settings.rate_limit)
async def list_ride_bookings(
    request: Request,
    ride_id: str,
    bookings: BookingLifecycle = Depends(get_bookings),
):
    return [BookingResponse.from_entity(b) for b in await bookings.list_for_ride(ride_id)]


@router.post(
    "/{ride_id}/start",
    response_model=RideResponse,
    responses=_errors,
    summary="Start a ride",
    description=(
        "Requires at least one CONFIRMED booking. Every confirmed passenger "
        "moves to PICKUP_PENDING and receives a pickup code."
    ),
)
@limiter.limit(settings.rate_limit)
async def start_ride(
    request: Request,
    ride_id: str,
    rides: RideLifecycle = Depends(get_rides),
):
    return RideResponse.from_entity(await rides.start(ride_id))


@router.post(
    "/{ride_id}/complete",
    response_model=RideResponse,
    responses=_errors,
    summary="Complete a ride",
    description="Refused while any passenger is between pickup and dropoff.",
)
@limiter.limit(settings.rate_limit)
async def complete_ride(
    request: Request,
    ride_id: str,
    rides: RideLifecycle = Depends(get_rides),
):
    return RideResponse.from_entity(await rides.complete(ride_id))


@router.post(
    "/{ride_id}/cancel",
    response_model=RideResponse,
    responses=_errors,
    summary="Cancel a ride",
    description=(
        "Releases every held seat, cancels the affected bookings and moves "
        "each passenger to an alternative ride, or refunds them."
    ),
)
@limiter.limit(settings.rate_limit)
async def cancel_ride(
    request: Request,
    ride_id: str,
    body: Optional[ReasonRequest] = None,
    rides: RideLifecycle = Depends(get_rides),
):
    reason = body.reason if body else None
    return RideResponse.from_entity(await rides.cancel(ride_id, reason))
