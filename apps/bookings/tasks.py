"""Celery tasks for the booking domain."""

from __future__ import annotations

import logging

from celery import shared_task  # type: ignore

from .application.command_handlers import expire_overdue_bookings

logger = logging.getLogger(__name__)


# ============================================================================
# PERIODIC TASKS (run by Celery Beat)
# ============================================================================

@shared_task(name="bookings.expire_stale_bookings")
def expire_stale_bookings() -> dict[str, int]:
    """
    Expire bookings whose hold or payment window has passed.

    Pending bookings expire after ``BOOKING_HOLD_MINUTES``, bookings
    awaiting payment after ``PAYMENT_WINDOW_MINUTES``. Reads expire lazily
    as well, so this sweep only bounds how long a stale row can block
    availability.

    Returns:
        dict: {"expired": number of bookings expired}
    """
    expired_count = expire_overdue_bookings()
    if expired_count > 0:
        logger.info("Expired %s stale bookings", expired_count)
    return {"expired": expired_count}
