"""
Settlement commands

After a payment reaches a terminal status the verifier hands it to the
subject that owns it. Bookings and group bookings register one handler
each on the message bus; the handler runs inside the verifier's
transaction, so a settlement either lands together with the payment
status or not at all.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class SettleBookingPayment:
    booking_id: int
    payment_id: int
    reference: str
    verified: bool
    paid_at: Optional[datetime] = None


@dataclass(frozen=True)
class SettleParticipantPayment:
    group_booking_id: int
    participant_id: Optional[int]
    payment_id: int
    reference: str
    verified: bool
    paid_at: Optional[datetime] = None


@dataclass(frozen=True)
class SettlementReport:
    """What the subject did with the payment"""

    subject_status: str
    requires_refund: bool = False
    post_payment_conflict: bool = False
    group_ready: Optional[bool] = None
