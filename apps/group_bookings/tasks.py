"""Celery tasks for group bookings."""

from __future__ import annotations

import logging

from celery import shared_task  # type: ignore

from .application.command_handlers import expire_overdue_group_bookings

logger = logging.getLogger(__name__)


@shared_task(name="group_bookings.expire_stale_group_bookings")
def expire_stale_group_bookings() -> dict[str, int]:
    """
    Expire collecting group bookings past ``expires_at``.

    Participants who already paid are flagged for refund by the expiry
    itself.

    Returns:
        dict: {"expired": number of group bookings expired}
    """
    expired_count = expire_overdue_group_bookings()
    if expired_count > 0:
        logger.info("Expired %s stale group bookings", expired_count)
    return {"expired": expired_count}
