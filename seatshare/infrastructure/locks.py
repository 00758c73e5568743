"""
Mutual exclusion for per-ride (and per-key) mutations.

Two interchangeable lock managers expose ``hold(key)``:

* ``LocalLockManager``  -- one ``asyncio.Lock`` per key; correct within a
  single process.
* ``RedisLockManager``  -- ``DistributedLock`` (SET NX EX acquire, Lua
  check-and-delete release); correct across API processes and workers.

Acquisition waits at most ``wait_seconds`` and then raises
``LockUnavailable`` so that no operation blocks indefinitely.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Protocol

import redis.asyncio as aioredis

from seatshare.domain.errors import LockUnavailable

logger = logging.getLogger(__name__)


def ride_key(ride_id: str) -> str:
    return f"ride:{ride_id}"


def booking_key(booking_id: str) -> str:
    return f"booking:{booking_id}"


def idempotency_key(key: str) -> str:
    return f"idempotency:{key}"


class LockManager(Protocol):
    def hold(self, key: str) -> AsyncContextManager[None]: ...


class LocalLockManager:
    def __init__(self, wait_seconds: float = 5.0):
        self.wait_seconds = wait_seconds
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.wait_seconds)
            except asyncio.TimeoutError:
                raise LockUnavailable(f"Timed out waiting for lock: {key}") from None
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


class DistributedLock:
    def __init__(
        self, client: aioredis.Redis, key: str, ttl_seconds: int = 30
    ):
        self.redis = client
        self.key = f"lock:{key}"
        self.ttl = ttl_seconds
        self.token = str(uuid.uuid4())

    async def acquire(self) -> bool:
        """Try to acquire once. Returns True on success."""
        return bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )

    async def acquire_within(
        self, wait_seconds: float, retry_interval: float = 0.05
    ) -> bool:
        """Retry ``acquire`` until it succeeds or *wait_seconds* elapse."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait_seconds
        while True:
            if await self.acquire():
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(retry_interval)

    async def release(self) -> None:
        """Release only if we still own the lock (atomic via Lua)."""
        lua = """
        if redis.call("get", KEYS[1]) == ARGV[1] then
            return redis.call("del", KEYS[1])
        else
            return 0
        end
        """
        await self.redis.eval(lua, 1, self.key, self.token)

    # context-manager support
    async def __aenter__(self):
        acquired = await self.acquire()
        if not acquired:
            raise LockUnavailable(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *args):
        await self.release()


class RedisLockManager:
    def __init__(
        self,
        client: aioredis.Redis,
        ttl_seconds: int = 30,
        wait_seconds: float = 5.0,
        retry_interval: float = 0.05,
    ):
        self.redis = client
        self.ttl_seconds = ttl_seconds
        self.wait_seconds = wait_seconds
        self.retry_interval = retry_interval

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = DistributedLock(self.redis, key, ttl_seconds=self.ttl_seconds)
        if not await lock.acquire_within(self.wait_seconds, self.retry_interval):
            logger.warning("Lock %s still held after %.1fs", key, self.wait_seconds)
            raise LockUnavailable(f"Timed out waiting for lock: {key}")
        try:
            yield
        finally:
            await lock.release()
