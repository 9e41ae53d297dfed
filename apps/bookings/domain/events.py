"""
Booking Domain Events

Events that represent things that have happened in the booking domain.
These are published after successful transaction commits.
"""

from dataclasses import dataclass
from decimal import Decimal

from shared.domain.base import DomainEvent
from shared.domain.value_objects import DateRange


@dataclass
class BookingCreated(DomainEvent):
    """
    Event: A renter created a pending booking

    Triggers:
    - Notify the equipment owner about the request
    """
    booking_id: int
    equipment_id: int
    renter_id: int
    dates: DateRange
    total_price: Decimal


@dataclass
class BookingAwaitingPayment(DomainEvent):
    """Event: A payment attempt was initiated (pending -> awaiting_payment)"""
    booking_id: int
    payment_reference: str


@dataclass
class BookingConfirmed(DomainEvent):
    """
    Event: Payment verified and the range was still free (awaiting_payment -> confirmed)

    Triggers:
    - Send confirmation to renter and owner
    """
    booking_id: int
    equipment_id: int
    renter_id: int
    payment_reference: str
    dates: DateRange


@dataclass
class BookingPaymentFailed(DomainEvent):
    """Event: The gateway reported the current attempt as failed; booking stays open for a retry"""
    booking_id: int
    payment_reference: str


@dataclass
class BookingCancelled(DomainEvent):
    """
    Event: Booking was cancelled

    requires_refund is set when money was captured (post-payment conflict).
    """
    booking_id: int
    equipment_id: int
    reason: str
    source: str
    old_status: str
    requires_refund: bool = False


@dataclass
class BookingExpired(DomainEvent):
    """Event: Hold or payment window lapsed without verification"""
    booking_id: int
    equipment_id: int
    old_status: str
