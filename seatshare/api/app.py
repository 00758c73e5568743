"""
FastAPI application factory.

* Registers routes for rides, bookings and admin.
* Builds the service container and starts / stops the reassignment
  sweeper via lifespan events.
* Maps every ``LifecycleError`` to ``{"detail", "code"}`` JSON.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from seatshare.api.middleware import limiter
from seatshare.api.routes import admin, bookings, rides
from seatshare.domain.errors import LifecycleError
from seatshare.services.container import Services, build_services
from seatshare.workers import reassignment_sweeper as _sweeper

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build services if none were injected, then run the sweeper."""
    owned = app.state.services is None
    if owned:
        app.state.services = await build_services()
    await _sweeper.start_sweeper(app.state.services)
    yield
    await _sweeper.stop_sweeper()
    if owned:
        await app.state.services.close()


async def lifecycle_error_handler(request: Request, exc: LifecycleError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code, content={"detail": str(exc), "code": exc.code}
    )


def create_app(services: Optional[Services] = None) -> FastAPI:
    app = FastAPI(
        title="SeatShare Ride Lifecycle API",
        description=(
            "Seat booking for shared rides: capacity-safe reservations, "
            "driver decisions, OTP-gated pickup and dropoff, and automatic "
            "reassignment of passengers when a driver cancels."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = services

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(LifecycleError, lifecycle_error_handler)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(bookings.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
