"""
Admin / observability endpoints
===============================

GET  /api/v1/admin/health                 -- simple health check
POST /api/v1/admin/rides/import           -- load rides and bookings from legacy documents
GET  /api/v1/admin/rides/{ride_id}/audit  -- recompute the seat invariant
POST /api/v1/admin/reassignments/sweep    -- resolve stranded reassignments now
"""

import logging

from fastapi import APIRouter, Depends, Request

from seatshare.api.dependencies import get_rides, get_services
from seatshare.api.middleware import limiter
from seatshare.api.schemas import (
    AuditResponse,
    BookingResponse,
    HealthResponse,
    ImportRequest,
    ImportResponse,
    RideResponse,
    SweepResponse,
)
from seatshare.config import settings
from seatshare.domain.adapters import AdapterError, booking_from_document, ride_from_document
from seatshare.domain.errors import InvariantViolation, LifecycleError
from seatshare.services.container import Services
from seatshare.services.ride_lifecycle import RideLifecycle
from seatshare.workers.reassignment_sweeper import run_sweep_cycle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post(
    "/rides/import",
    response_model=ImportResponse,
    summary="Import rides and their bookings from legacy documents",
    description=(
        "Accepts both the nested (route/pricing/preferences) and the flat "
        "(source/pricePerSeat/totalSeats) ride shapes. Seat counts are taken "
        "as stored; use the audit endpoint to verify them."
    ),
)
@limiter.limit(settings.rate_limit)
async def import_rides(
    request: Request,
    body: ImportRequest,
    services: Services = Depends(get_services),
):
    response = ImportResponse(imported=[])
    for index, doc in enumerate(body.rides):
        try:
            ride = ride_from_document(doc)
            ride.booking_ids = []
            ride = await services.rides.register(ride)
        except (AdapterError, KeyError, TypeError, ValueError, LifecycleError) as exc:
            response.errors.append(f"rides[{index}]: {exc}")
            continue
        response.imported.append(RideResponse.from_entity(ride))

    for index, doc in enumerate(body.bookings):
        try:
            booking = await services.bookings.register(booking_from_document(doc))
        except (AdapterError, KeyError, TypeError, ValueError, LifecycleError) as exc:
            response.errors.append(f"bookings[{index}]: {exc}")
            continue
        response.imported_bookings.append(BookingResponse.from_entity(booking))

    if response.errors:
        logger.warning("Skipped %d legacy document(s)", len(response.errors))
    return response


@router.get(
    "/rides/{ride_id}/audit",
    response_model=AuditResponse,
    summary="Check a ride's free seats against its bookings",
)
@limiter.limit(settings.rate_limit)
async def audit_ride(
    request: Request,
    ride_id: str,
    rides: RideLifecycle = Depends(get_rides),
):
    try:
        ride = await rides.audit(ride_id)
    except InvariantViolation as exc:
        logger.error("Seat audit failed: %s", exc)
        ride = await rides.get(ride_id)
        return AuditResponse(
            ride_id=ride.id,
            total_seats=ride.total_seats,
            available_seats=ride.available_seats,
            consistent=False,
            detail=str(exc),
        )
    return AuditResponse(
        ride_id=ride.id, total_seats=ride.total_seats, available_seats=ride.available_seats
    )


@router.post(
    "/reassignments/sweep",
    response_model=SweepResponse,
    summary="Resolve bookings still awaiting reassignment",
)
@limiter.limit(settings.rate_limit)
async def sweep_reassignments(
    request: Request,
    services: Services = Depends(get_services),
):
    return SweepResponse(resolved=await run_sweep_cycle(services))


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
