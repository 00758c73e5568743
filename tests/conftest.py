"""
Shared test fixtures.

Services run on the in-memory store and in-process locks, so tests need no
Docker / PostgreSQL / Redis.  ``events`` records everything the services
publish.  SQL-backed tests use an in-memory SQLite database via aiosqlite.
"""

from datetime import timedelta
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio

from seatshare.config import Settings
from seatshare.domain.entities import Location, Ride, Route, utcnow
from seatshare.domain.events import EventKind, LifecycleEvent
from seatshare.infrastructure.locks import LocalLockManager
from seatshare.infrastructure.memory_store import InMemoryStore
from seatshare.services.container import Services, build_services

# MG Road -> Kempegowda airport, with a stop at Hebbal
MG_ROAD = Location(12.9756, 77.6066, name="MG Road")
HEBBAL = Location(13.0358, 77.5970, name="Hebbal")
AIRPORT = Location(13.1986, 77.7066, name="BLR Airport")


def make_route(stops: Optional[list[Location]] = None) -> Route:
    return Route(start=MG_ROAD, destination=AIRPORT, stops=[HEBBAL] if stops is None else list(stops))


def make_settings(**overrides) -> Settings:
    values = {
        "store_backend": "memory",
        "lock_backend": "local",
        "event_backend": "memory",
        "lock_wait_seconds": 1.0,
        "platform_commission": 50.0,
    }
    values.update(overrides)
    return Settings(**values)


class EventRecorder:
    def __init__(self) -> None:
        self.events: list[LifecycleEvent] = []

    def __call__(self, event: LifecycleEvent) -> None:
        self.events.append(event)

    def of(self, kind: EventKind) -> list[LifecycleEvent]:
        return [e for e in self.events if e.kind == kind]

    def clear(self) -> None:
        self.events.clear()


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest_asyncio.fixture
async def services(store) -> AsyncGenerator[Services, None]:
    svc = await build_services(
        make_settings(), store=store, locks=LocalLockManager(wait_seconds=1.0)
    )
    yield svc
    await svc.close()


@pytest.fixture
def events(services) -> EventRecorder:
    recorder = EventRecorder()
    services.bus.subscribe(None, recorder)
    return recorder


async def publish_ride(
    services: Services,
    *,
    driver_id: str = "driver-1",
    total_seats: int = 4,
    price_per_seat: float = 200.0,
    departs_in: timedelta = timedelta(days=2),
    instant_booking: bool = False,
    route: Optional[Route] = None,
) -> Ride:
    return await services.rides.publish(
        driver_id=driver_id,
        route=route or make_route(),
        departure_at=utcnow() + departs_in,
        price_per_seat=price_per_seat,
        total_seats=total_seats,
        instant_booking=instant_booking,
    )
