"""FastAPI dependency injection helpers."""

from fastapi import Request

from seatshare.services.booking_lifecycle import BookingLifecycle
from seatshare.services.container import Services
from seatshare.services.ride_lifecycle import RideLifecycle


def get_services(request: Request) -> Services:
    """The container built in the app lifespan."""
    return request.app.state.services


def get_rides(request: Request) -> RideLifecycle:
    return get_services(request).rides


def get_bookings(request: Request) -> BookingLifecycle:
    return get_services(request).bookings
