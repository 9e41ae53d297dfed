"""Event handlers for payments."""

import logging

from apps.payments.events import PaymentFailed, PaymentVerified

logger = logging.getLogger(__name__)


def log_payment_verified(event: PaymentVerified) -> None:
    if event.requires_refund:
        logger.error("Payment %s verified but flagged for refund", event.reference)
    else:
        logger.info("Payment %s verified: %s %s", event.reference, event.amount, event.currency)


def log_payment_failed(event: PaymentFailed) -> None:
    logger.warning("Payment %s failed: %s", event.reference, event.failure_reason)


def register_handlers(bus) -> None:
    bus.register_event_handler(PaymentVerified, log_payment_verified)
    bus.register_event_handler(PaymentFailed, log_payment_failed)
