"""Unit tests for mapping legacy ride / booking documents."""

from datetime import datetime, timezone

import pytest

from seatshare.domain.adapters import (
    AdapterError,
    booking_from_document,
    location_from_document,
    parse_timestamp,
    ride_from_document,
)
from seatshare.domain.enums import BookingStatus, PaymentStatus, RideStatus

NESTED_RIDE = {
    "_id": "65f0c1a2b3",
    "rider": {"_id": "driver-7", "name": "Asha"},
    "route": {
        "start": {"name": "MG Road", "coordinates": [77.6066, 12.9756]},
        "destination": {"name": "BLR Airport", "coordinates": [77.7066, 13.1986]},
        "intermediateStops": [{"name": "Hebbal", "coordinates": [77.5970, 13.0358]}],
        "distance": 38.5,
        "duration": 55,
    },
    "schedule": {"departureDateTime": "2026-11-01T09:30:00Z"},
    "pricing": {"pricePerSeat": 350, "totalSeats": 4, "availableSeats": 2},
    "preferences": {"autoAcceptBookings": True},
    "bookings": ["b-1", {"_id": "b-2"}],
}

FLAT_RIDE = {
    "driver": "driver-9",
    "source": {"lat": 12.9756, "lng": 77.6066},
    "destination": {"latitude": 13.1986, "longitude": 77.7066},
    "pricePerSeat": 200,
    "availableSeats": 3,
    "date": "2026-11-01",
    "time": "18:45",
}


class TestLocation:
    def test_geojson_is_lng_lat(self):
        loc = location_from_document({"coordinates": [77.6, 12.9]})
        assert (loc.latitude, loc.longitude) == (12.9, 77.6)

    def test_nested_geojson_point(self):
        loc = location_from_document({"coordinates": {"type": "Point", "coordinates": [77.6, 12.9]}})
        assert loc.latitude == 12.9

    def test_explicit_keys(self):
        loc = location_from_document({"lat": "12.9", "lon": "77.6", "address": "1 Main St"})
        assert (loc.latitude, loc.longitude, loc.address) == (12.9, 77.6, "1 Main St")

    def test_missing_coordinates(self):
        with pytest.raises(AdapterError):
            location_from_document({"name": "nowhere"})

    def test_unsupported_shape(self):
        with pytest.raises(AdapterError):
            location_from_document("12.9,77.6")


class TestTimestamp:
    def test_zulu_suffix(self):
        assert parse_timestamp("2026-11-01T09:30:00Z") == datetime(
            2026, 11, 1, 9, 30, tzinfo=timezone.utc
        )

    def test_naive_treated_as_utc(self):
        assert parse_timestamp(datetime(2026, 11, 1, 9)).tzinfo == timezone.utc

    def test_rejects_numbers(self):
        with pytest.raises(AdapterError):
            parse_timestamp(1700000000)


class TestRideDocument:
    def test_nested_shape(self):
        ride = ride_from_document(NESTED_RIDE)
        assert ride.id == "65f0c1a2b3"
        assert ride.driver_id == "driver-7"
        assert ride.route.start.name == "MG Road"
        assert ride.route.start.latitude == 12.9756
        assert [s.name for s in ride.route.stops] == ["Hebbal"]
        assert ride.route.distance_km == 38.5
        assert ride.departure_at == datetime(2026, 11, 1, 9, 30, tzinfo=timezone.utc)
        assert (ride.total_seats, ride.available_seats) == (4, 2)
        assert ride.price_per_seat == 350.0
        assert ride.instant_booking is True
        assert ride.status == RideStatus.ACTIVE
        assert ride.booking_ids == ["b-1", "b-2"]

    def test_flat_shape(self):
        ride = ride_from_document(FLAT_RIDE)
        assert ride.driver_id == "driver-9"
        assert ride.route.destination.longitude == 77.7066
        assert ride.route.stops == []
        assert ride.departure_at == datetime(2026, 11, 1, 18, 45, tzinfo=timezone.utc)
        # Only availableSeats known: it doubles as the capacity.
        assert (ride.total_seats, ride.available_seats) == (3, 3)
        assert ride.instant_booking is False

    def test_status_carried_over(self):
        ride = ride_from_document({**FLAT_RIDE, "status": "COMPLETED"})
        assert ride.status == RideStatus.COMPLETED

    def test_no_departure(self):
        doc = {k: v for k, v in FLAT_RIDE.items() if k not in ("date", "time")}
        with pytest.raises(AdapterError, match="departure"):
            ride_from_document(doc)

    def test_no_seats(self):
        doc = {k: v for k, v in FLAT_RIDE.items() if k != "availableSeats"}
        with pytest.raises(AdapterError, match="seat"):
            ride_from_document(doc)

    def test_no_route(self):
        with pytest.raises(AdapterError):
            ride_from_document({"pricePerSeat": 1, "totalSeats": 1, "date": "2026-11-01"})


class TestBookingDocument:
    def test_legacy_booking(self):
        booking = booking_from_document(
            {
                "_id": "b-1",
                "ride": {"_id": "65f0c1a2b3"},
                "passenger": "p-3",
                "seatsBooked": 2,
                "pickupPoint": {"coordinates": [77.5970, 13.0358]},
                "dropoffPoint": {"coordinates": [77.7066, 13.1986]},
                "status": "CONFIRMED",
                "payment": {"status": "PAID", "totalAmount": 750},
                "reassignment": {"isReassigned": True, "originalBooking": "b-0", "originalRide": "r-0"},
            }
        )
        assert booking.id == "b-1"
        assert booking.ride_id == "65f0c1a2b3"
        assert booking.passenger_id == "p-3"
        assert booking.seats_booked == 2
        assert booking.status == BookingStatus.CONFIRMED
        assert booking.payment_status == PaymentStatus.PAID
        assert booking.total_price == 750.0
        assert booking.is_reassignment
        assert (booking.original_booking_id, booking.original_ride_id) == ("b-0", "r-0")

    def test_defaults(self):
        booking = booking_from_document(
            {
                "ride": "r-1",
                "passenger": "p-1",
                "seats": 1,
                "pickupPoint": {"lat": 1, "lng": 2},
                "dropoffPoint": {"lat": 3, "lng": 4},
            }
        )
        assert booking.status == BookingStatus.PENDING
        assert booking.payment_status == PaymentStatus.PENDING
        assert booking.total_price == 0.0
        assert not booking.is_reassignment

    def test_missing_seats(self):
        with pytest.raises(AdapterError):
            booking_from_document({"ride": "r-1", "passenger": "p-1"})
