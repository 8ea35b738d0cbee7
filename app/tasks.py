"""Celery background tasks.

The expiry sweep cancels bookings that never completed payment, which
releases the vehicles they were holding. It only calls the idempotent
lifecycle operations; the core never times anything out by itself.
"""

import asyncio
import logging
from datetime import timedelta

from celery import shared_task

from app.config import settings
from app.core.exceptions import AppException
from app.core.locks import build_lock_manager
from app.database import create_engine_for, create_session_factory
from app.services.booking_service import BookingLifecycleService

logger = logging.getLogger(__name__)

EXPIRY_REASON = "Payment not completed in time"


def run_async(coro):
    """Run async function in sync context."""
    return asyncio.run(coro)


# ==================== BOOKING TASKS ====================


@shared_task(bind=True, max_retries=3)
def expire_stale_bookings(self):
    """Cancel draft and pending_payment bookings past the payment window.

    Runs every BOOKING_SWEEP_INTERVAL_MINUTES.
    """
    try:
        summary = run_async(_run_expiry_sweep())
    except Exception as exc:
        raise self.retry(exc=exc, countdown=60)
    return {"status": "success", **summary}


async def _run_expiry_sweep() -> dict:
    # Fresh engine per run: each task invocation gets its own event loop
    engine = create_engine_for(settings.database_url)
    try:
        lifecycle = BookingLifecycleService(
            session_factory=create_session_factory(engine),
            locks=build_lock_manager(),
        )
        return await expire_bookings(
            lifecycle, timedelta(minutes=settings.pending_payment_timeout_minutes)
        )
    finally:
        await engine.dispose()


async def expire_bookings(lifecycle: BookingLifecycleService, older_than: timedelta) -> dict:
    """Cancel every stale booking as the system actor.

    A booking that fails (for example because it was confirmed after being
    selected) is logged and skipped.
    """
    expired = skipped = failed = 0
    for booking_id in await lifecycle.stale_booking_ids(older_than):
        try:
            result = await lifecycle.cancel_booking(booking_id, requester=None, reason=EXPIRY_REASON)
        except AppException as e:
            logger.error(f"Could not expire booking {booking_id}: {e.detail}")
            failed += 1
            continue

        if result.applied:
            expired += 1
            logger.info(f"Expired booking {result.booking.booking_code}")
        else:
            skipped += 1

    return {"expired": expired, "skipped": skipped, "failed": failed}
