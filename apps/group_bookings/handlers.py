"""Event handlers for group bookings."""

import logging

from apps.group_bookings.domain.events import (
    GroupBookingCancelled,
    GroupBookingConfirmed,
    GroupBookingCreated,
    GroupBookingExpired,
    GroupBookingReady,
    ParticipantJoined,
    ParticipantRemoved,
)

logger = logging.getLogger(__name__)


def log_group_event(event) -> None:
    logger.info("Domain event %s", event.__class__.__name__, extra={"domain_event": event.to_dict()})


def log_refunds_due(event) -> None:
    if event.refund_participant_ids:
        logger.error(
            "Group booking %s closed with paid participants %s; refund required",
            event.group_booking_id, list(event.refund_participant_ids),
        )
    else:
        log_group_event(event)


def register_handlers(bus) -> None:
    for event_type in (GroupBookingCreated, ParticipantJoined, ParticipantRemoved,
                       GroupBookingReady, GroupBookingConfirmed):
        bus.register_event_handler(event_type, log_group_event)
    bus.register_event_handler(GroupBookingCancelled, log_refunds_due)
    bus.register_event_handler(GroupBookingExpired, log_refunds_due)
