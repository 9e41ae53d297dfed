"""
Group Booking Domain Events

Published after the surrounding transaction commits.
"""

from dataclasses import dataclass
from decimal import Decimal

from shared.domain.base import DomainEvent


@dataclass
class GroupBookingCreated(DomainEvent):
    group_booking_id: int
    equipment_id: int
    initiator_id: int
    total_price: Decimal


@dataclass
class ParticipantJoined(DomainEvent):
    group_booking_id: int
    participant_id: int
    user_id: int
    share_amount: Decimal


@dataclass
class ParticipantRemoved(DomainEvent):
    """A participant left or was removed by the initiator/admin"""
    group_booking_id: int
    participant_id: int
    user_id: int
    removed_by: int | None


@dataclass
class GroupBookingReady(DomainEvent):
    """
    Event: Every share is verified (collecting -> ready)

    Triggers:
    - Ask the equipment owner to confirm
    """
    group_booking_id: int
    equipment_id: int


@dataclass
class GroupBookingConfirmed(DomainEvent):
    group_booking_id: int
    equipment_id: int


@dataclass
class GroupBookingCancelled(DomainEvent):
    group_booking_id: int
    reason: str
    old_status: str
    refund_participant_ids: tuple = ()
    post_payment_conflict: bool = False


@dataclass
class GroupBookingExpired(DomainEvent):
    group_booking_id: int
    refund_participant_ids: tuple = ()
