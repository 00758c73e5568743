"""
Booking endpoints
=================

POST /api/v1/bookings                          -- reserve seats (idempotent)
GET  /api/v1/bookings/{id}                     -- booking status
POST /api/v1/bookings/{id}/accept|reject       -- driver decision
POST /api/v1/bookings/{id}/cancel              -- passenger withdrawal
POST /api/v1/bookings/{id}/pickup              -- driver submits pickup code
POST /api/v1/bookings/{id}/transit             -- passenger on the way
POST /api/v1/bookings/{id}/dropoff-request     -- issue dropoff code
POST /api/v1/bookings/{id}/dropoff             -- driver submits dropoff code
GET  /api/v1/bookings/{id}/otp?passenger_id=   -- live code, holder only
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from seatshare.api.dependencies import get_bookings
from seatshare.api.middleware import limiter
from seatshare.api.schemas import (
    BookingCreateRequest,
    BookingResponse,
    ErrorResponse,
    OTPRevealResponse,
    OTPSubmitRequest,
    ReasonRequest,
)
from seatshare.config import settings
from seatshare.services.booking_lifecycle import BookingLifecycle

router = APIRouter(prefix="/bookings", tags=["bookings"])

_errors = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}
_otp_errors = {**_errors, 422: {"model": ErrorResponse}, 423: {"model": ErrorResponse}}


@router.post(
    "",
    status_code=201,
    response_model=BookingResponse,
    responses=_errors,
    summary="Book seats on a ride",
    description=(
        "Retrying with the same Idempotency-Key returns the original booking; "
        "the same key with a different ride, passenger or seat count is a 409."
    ),
)
@limiter.limit(settings.rate_limit)
async def create_booking(
    request: Request,
    body: BookingCreateRequest,
    idempotency_key: Optional[str] = Header(None, max_length=64),
    bookings: BookingLifecycle = Depends(get_bookings),
):
    booking = await bookings.create(
        ride_id=body.ride_id,
        passenger_id=body.passenger_id,
        seats=body.seats,
        idempotency_key=idempotency_key or body.idempotency_key,
        pickup_point=body.pickup_point.to_entity() if body.pickup_point else None,
        dropoff_point=body.dropoff_point.to_entity() if body.dropoff_point else None,
    )
    return BookingResponse.from_entity(booking)


@router.get(
    "/{booking_id}",
    response_model=BookingResponse,
    responses=_errors,
    summary="Get booking status",
)
@limiter.limit(settings.rate_limit)
async def get_booking(
    request: Request,
    booking_id: str,
    bookings: BookingLifecycle = Depends(get_bookings),
):
    return BookingResponse.from_entity(await bookings.get(booking_id))


@router.post("/{booking_id}/accept", response_model=BookingResponse, responses=_errors)
@limiter.limit(settings.rate_limit)
async def accept_booking(
    request: Request,
    booking_id: str,
    bookings: BookingLifecycle = Depends(get_bookings),
):
    return BookingResponse.from_entity(await bookings.accept(booking_id))


@router.post("/{booking_id}/reject", response_model=BookingResponse, responses=_errors)
@limiter.limit(settings.rate_limit)
async def reject_booking(
    request: Request,
    booking_id: str,
    body: Optional[ReasonRequest] = None,
    bookings: BookingLifecycle = Depends(get_bookings),
):
    reason = body.reason if body else None
    return BookingResponse.from_entity(await bookings.reject(booking_id, reason))


@router.post("/{booking_id}/cancel", response_model=BookingResponse, responses=_errors)
@limiter.limit(settings.rate_limit)
async def cancel_booking(
    request: Request,
    booking_id: str,
    body: Optional[ReasonRequest] = None,
    bookings: BookingLifecycle = Depends(get_bookings),
):
    reason = body.reason if body else None
    return BookingResponse.from_entity(await bookings.cancel(booking_id, reason))


@router.post("/{booking_id}/pickup", response_model=BookingResponse, responses=_otp_errors)
@limiter.limit(settings.rate_limit)
async def confirm_pickup(
    request: Request,
    booking_id: str,
    body: OTPSubmitRequest,
    bookings: BookingLifecycle = Depends(get_bookings),
):
    return BookingResponse.from_entity(await bookings.confirm_pickup(booking_id, body.otp))


@router.post("/{booking_id}/transit", response_model=BookingResponse, responses=_errors)
@limiter.limit(settings.rate_limit)
async def begin_transit(
    request: Request,
    booking_id: str,
    bookings: BookingLifecycle = Depends(get_bookings),
):
    return BookingResponse.from_entity(await bookings.begin_transit(booking_id))


@router.post(
    "/{booking_id}/dropoff-request", response_model=BookingResponse, responses=_errors
)
@limiter.limit(settings.rate_limit)
async def request_dropoff(
    request: Request,
    booking_id: str,
    bookings: BookingLifecycle = Depends(get_bookings),
):
    return BookingResponse.from_entity(await bookings.request_dropoff(booking_id))


@router.post("/{booking_id}/dropoff", response_model=BookingResponse, responses=_otp_errors)
@limiter.limit(settings.rate_limit)
async def confirm_dropoff(
    request: Request,
    booking_id: str,
    body: OTPSubmitRequest,
    bookings: BookingLifecycle = Depends(get_bookings),
):
    return BookingResponse.from_entity(await bookings.confirm_dropoff(booking_id, body.otp))


@router.get(
    "/{booking_id}/otp",
    response_model=OTPRevealResponse,
    responses={**_errors, 403: {"model": ErrorResponse}},
    summary="Fetch the live pickup or dropoff code",
)
@limiter.limit(settings.rate_limit)
async def reveal_otp(
    request: Request,
    booking_id: str,
    passenger_id: str,
    bookings: BookingLifecycle = Depends(get_bookings),
):
    phase, code = await bookings.reveal_otp(booking_id, passenger_id)
    return OTPRevealResponse(booking_id=booking_id, phase=phase.value, otp=code)
