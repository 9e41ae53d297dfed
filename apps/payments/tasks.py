"""Celery tasks for payments."""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task  # type: ignore
from django.conf import settings  # type: ignore
from django.utils import timezone  # type: ignore

from shared.domain.exceptions import DomainError

from .exceptions import GatewayUnavailable
from .models import Payment
from .verifier import get_payment_verifier

logger = logging.getLogger(__name__)

REVERIFY_MAX_AGE = timedelta(hours=24)


@shared_task(name="payments.reverify_initiated_payments")
def reverify_initiated_payments() -> dict[str, int]:
    """
    Re-poll the gateway for payments stuck in ``initiated``.

    Covers lost webhooks and users who never came back to the callback
    page. Payments older than a day are left alone; the gateway drops
    abandoned sessions long before that.

    Returns:
        dict: {"checked": ..., "settled": ...}
    """
    now = timezone.now()
    stale = Payment.objects.filter(
        status=Payment.Status.INITIATED,
        created_at__lte=now - timedelta(minutes=settings.PAYMENT_REVERIFY_AFTER_MINUTES),
        created_at__gte=now - REVERIFY_MAX_AGE,
    ).values_list("gateway_reference", flat=True)

    verifier = get_payment_verifier()
    checked = settled = 0
    for reference in stale:
        checked += 1
        try:
            verifier.verify(reference)
        except GatewayUnavailable:
            logger.error("Gateway unavailable, stopping re-verification sweep at %s", reference)
            break
        except DomainError as exc:
            logger.info("Payment %s not settled by sweep: %s", reference, exc.code)
            continue
        settled += 1

    if settled > 0:
        logger.info("Re-verification sweep settled %s of %s payments", settled, checked)
    return {"checked": checked, "settled": settled}
