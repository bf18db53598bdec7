"""
Background Offer-Expiry Worker
==============================

Runs every ``EXPIRY_SWEEP_INTERVAL_SECONDS`` (default 10 s).

A driver whose app never answers (killed, offline) would otherwise hold
an order in ASSIGNMENT_PENDING forever.  The sweep rejects every PENDING
assignment offered more than ``OFFER_TIMEOUT_SECONDS +
OFFER_EXPIRY_GRACE_SECONDS`` ago, exactly as if the driver had rejected
it, and releases their offers.  The grace period leaves the client-side
auto-reject room to land first.

Concurrency safety
------------------
* **Redis distributed lock** ensures only one instance sweeps at a time
  across multiple API processes.
* Each expiry is an ordinary order transaction, so a sweep racing a live
  claim either sees the claim (and does nothing) or loses the write
  conflict and re-reads.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta

from orderclaim.api.dependencies import get_store
from orderclaim.config import settings
from orderclaim.domain.enums import OrderStatus
from orderclaim.domain.errors import ClaimError
from orderclaim.infrastructure.locks import DistributedLock
from orderclaim.infrastructure.redis_client import get_redis
from orderclaim.services.coordinator import ClaimCoordinator

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_expiry_loop() -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info(
        "Offer-expiry worker started (interval=%ds)",
        settings.expiry_sweep_interval_seconds,
    )


async def stop_expiry_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Offer-expiry worker stopped")


def expiry_cutoff(now: datetime) -> datetime:
    """Offers made at or before this instant are stale."""
    return now - timedelta(
        seconds=settings.offer_timeout_seconds + settings.offer_expiry_grace_seconds
    )


async def expire_stale_offers(
    coordinator: ClaimCoordinator, now: datetime | None = None
) -> int:
    """Reject stale offers on every open order.  Returns the number expired."""
    cutoff = expiry_cutoff(now or coordinator.clock())
    expired = 0
    for order in await coordinator.store.list_orders(OrderStatus.ASSIGNMENT_PENDING):
        stale = [
            a for a in order.pending()
            if a.assigned_at is not None and a.assigned_at <= cutoff
        ]
        if not stale:
            continue
        try:
            committed, expired_now = await coordinator.expire_stale(order.id, cutoff)
        except ClaimError as exc:
            logger.warning("Could not expire offers on order %s: %s", order.id, exc.message)
            continue
        if not expired_now:
            continue  # answered before the sweep got there
        expired += len(expired_now)
        logger.info(
            "Order %s: expired %d stale offer(s), status now %s",
            order.id, len(expired_now), committed.status.value,
        )
    return expired


# ── Internals ─────────────────────────────────────────────────────────


async def _loop() -> None:
    """Periodic loop: run a sweep then sleep."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_expiry_cycle()
        except Exception:
            logger.exception("Unhandled error in offer-expiry cycle")
        # Wait for the interval or until stop is signalled
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.expiry_sweep_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass  # next cycle


async def run_expiry_cycle(coordinator: ClaimCoordinator | None = None) -> int:
    """Execute one sweep under the cluster-wide lock."""
    redis = await get_redis()
    lock = DistributedLock(
        redis, "offer_expiry", ttl_seconds=settings.expiry_sweep_interval_seconds * 3
    )

    if not await lock.acquire():
        logger.debug("Lock held by another worker – skipping sweep")
        return 0

    try:
        if coordinator is None:
            coordinator = ClaimCoordinator(await get_store())
        return await expire_stale_offers(coordinator)
    finally:
        await lock.release()
