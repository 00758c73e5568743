"""
Wires the lifecycle services together from ``Settings``.

Backends are chosen per concern (``store_backend``, ``lock_backend``,
``event_backend``); anything passed in explicitly wins, which is how tests
inject an ``InMemoryStore`` and a recording ``EventBus``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from seatshare.config import Settings, settings as default_settings
from seatshare.infrastructure.database import Base, create_engine, create_session_factory
from seatshare.infrastructure.event_bus import CompositePublisher, EventBus, EventPublisher, RedisEventPublisher
from seatshare.infrastructure.locks import LocalLockManager, LockManager, RedisLockManager
from seatshare.infrastructure.memory_store import InMemoryStore
from seatshare.infrastructure.redis_client import close_redis, get_redis
from seatshare.infrastructure.repositories import LifecycleStore, SqlAlchemyStore

from .booking_lifecycle import BookingLifecycle
from .otp import OTPChallengeService
from .reassignment import ReassignmentCoordinator
from .ride_lifecycle import RideLifecycle
from .seat_allocator import SeatAllocator

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    store: LifecycleStore
    locks: LockManager
    publisher: EventPublisher
    bus: EventBus
    allocator: SeatAllocator
    otp: OTPChallengeService
    bookings: BookingLifecycle
    rides: RideLifecycle
    reassignment: ReassignmentCoordinator
    engine: Optional[AsyncEngine] = None
    uses_redis: bool = field(default=False)

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
        if self.uses_redis:
            await close_redis()


async def build_services(
    cfg: Optional[Settings] = None,
    *,
    store: Optional[LifecycleStore] = None,
    locks: Optional[LockManager] = None,
    bus: Optional[EventBus] = None,
) -> Services:
    cfg = cfg or default_settings
    engine = None
    uses_redis = False

    if store is None:
        if cfg.store_backend == "sql":
            engine = create_engine(cfg.database_url)
            if cfg.database_url.startswith("sqlite"):
                # No migrations for throwaway SQLite databases.
                async with engine.begin() as conn:
                    await conn.run_sync(Base.metadata.create_all)
            store = SqlAlchemyStore(create_session_factory(engine))
        else:
            store = InMemoryStore()

    if locks is None:
        if cfg.lock_backend == "redis":
            locks = RedisLockManager(
                await get_redis(cfg.redis_url),
                ttl_seconds=cfg.lock_ttl_seconds,
                wait_seconds=cfg.lock_wait_seconds,
                retry_interval=cfg.lock_retry_interval,
            )
            uses_redis = True
        else:
            locks = LocalLockManager(wait_seconds=cfg.lock_wait_seconds)

    bus = bus or EventBus()
    publisher: EventPublisher = bus
    if cfg.event_backend == "redis":
        publisher = CompositePublisher(
            bus, RedisEventPublisher(await get_redis(cfg.redis_url), cfg.event_channel)
        )
        uses_redis = True

    allocator = SeatAllocator(locks)
    otp = OTPChallengeService(digits=cfg.otp_digits, lockout_after=cfg.otp_lockout_after)
    window = timedelta(minutes=cfg.departure_window_minutes)
    reassignment = ReassignmentCoordinator(
        store,
        allocator,
        publisher,
        max_attempts=cfg.reassignment_max_attempts,
        departure_window=window,
        proximity_km=cfg.route_proximity_km,
        ring_size=cfg.h3_ring_size,
    )
    bookings = BookingLifecycle(
        store, allocator, otp, publisher, platform_commission=cfg.platform_commission
    )
    rides = RideLifecycle(
        store, allocator, otp, publisher, reassignment, h3_resolution=cfg.h3_resolution
    )

    logger.info(
        "Services ready (store=%s, locks=%s, events=%s)",
        type(store).__name__, type(locks).__name__, type(publisher).__name__,
    )
    return Services(
        settings=cfg,
        store=store,
        locks=locks,
        publisher=publisher,
        bus=bus,
        allocator=allocator,
        otp=otp,
        bookings=bookings,
        rides=rides,
        reassignment=reassignment,
        engine=engine,
        uses_redis=uses_redis,
    )
