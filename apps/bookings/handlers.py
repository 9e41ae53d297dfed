"""Event handlers for the booking domain. Notification delivery is external; handlers log."""

import logging

from apps.bookings.domain.events import (
    BookingAwaitingPayment,
    BookingCancelled,
    BookingConfirmed,
    BookingCreated,
    BookingExpired,
    BookingPaymentFailed,
)

logger = logging.getLogger(__name__)


def log_booking_event(event) -> None:
    logger.info("Domain event %s", event.__class__.__name__, extra={"domain_event": event.to_dict()})


def log_booking_cancelled(event: BookingCancelled) -> None:
    if event.requires_refund:
        logger.error(
            "Booking %s cancelled after payment (%s); refund required",
            event.booking_id, event.reason,
        )
    else:
        logger.info("Booking %s cancelled by %s", event.booking_id, event.source)


def register_handlers(bus) -> None:
    for event_type in (BookingCreated, BookingAwaitingPayment, BookingConfirmed,
                       BookingPaymentFailed, BookingExpired):
        bus.register_event_handler(event_type, log_booking_event)
    bus.register_event_handler(BookingCancelled, log_booking_cancelled)
