"""
Background Reassignment Sweeper
===============================

Runs every ``SWEEP_INTERVAL_SECONDS`` (default 30 s).

A ride cancellation resolves its displaced bookings inline.  A booking
stays ``AWAITING_REASSIGNMENT`` only when that inline pass was interrupted
(lock timeout, process restart); this worker finishes the job.

Concurrency safety
------------------
* The ``reassignment_sweeper`` lock lets one instance sweep at a time
  across API processes.  A held lock means another sweep is running and
  the cycle is skipped.
* Each booking is resolved under its own ``booking:<id>`` lock, so a sweep
  racing an inline cancellation never resolves a booking twice.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from seatshare.domain.errors import LockUnavailable
from seatshare.services.container import Services

logger = logging.getLogger(__name__)

SWEEPER_LOCK = "reassignment_sweeper"

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_sweeper(services: Services, interval: Optional[float] = None) -> None:
    global _task, _stop_event
    interval = interval or services.settings.sweep_interval_seconds
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop(services, interval))
    logger.info("Reassignment sweeper started (interval=%ss)", interval)


async def stop_sweeper() -> None:
    global _task, _stop_event
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    _task = _stop_event = None
    logger.info("Reassignment sweeper stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop(services: Services, interval: float) -> None:
    """Periodic loop: run a sweep then sleep."""
    assert _stop_event is not None
    stop = _stop_event
    while not stop.is_set():
        try:
            await run_sweep_cycle(services)
        except Exception:
            logger.exception("Unhandled error in reassignment sweep")
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
            break
        except asyncio.TimeoutError:
            pass  # next cycle


async def run_sweep_cycle(services: Services, limit: int = 100) -> int:
    """Execute one sweep.  Returns the number of bookings resolved."""
    try:
        async with services.locks.hold(SWEEPER_LOCK):
            outcomes = await services.reassignment.resume(limit)
    except LockUnavailable:
        logger.debug("Sweeper lock held by another worker; skipping cycle")
        return 0

    if outcomes:
        logger.info("Reassignment sweep: %d booking(s) resolved", len(outcomes))
    return len(outcomes)
