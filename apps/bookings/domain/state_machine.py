"""
Booking State Machine

Lifecycle of a single (non-group) booking:

    pending ──initiate payment──▶ awaiting_payment ──verified, no conflict──▶ confirmed
       │                               │  │
       │                               │  └──verified, conflict──▶ cancelled (post-payment conflict)
       ├──cancel──▶ cancelled ◀──cancel┘
       └──hold lapsed──▶ expired ◀──payment window lapsed──┘

confirmed, cancelled and expired are terminal. The machine is pure: it
never touches the database. Facts that need I/O (does the range conflict?
what time is it?) are passed in by the application layer.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet

from shared.domain.exceptions import ConflictError, InvalidTransition


class BookingStatus(str, Enum):
    PENDING = 'pending'
    AWAITING_PAYMENT = 'awaiting_payment'
    CONFIRMED = 'confirmed'
    CANCELLED = 'cancelled'
    EXPIRED = 'expired'


# Statuses whose date range blocks the equipment
BLOCKING_STATUSES: FrozenSet[BookingStatus] = frozenset({
    BookingStatus.PENDING,
    BookingStatus.AWAITING_PAYMENT,
    BookingStatus.CONFIRMED,
})

TERMINAL_STATUSES: FrozenSet[BookingStatus] = frozenset({
    BookingStatus.CONFIRMED,
    BookingStatus.CANCELLED,
    BookingStatus.EXPIRED,
})


class SettlementResult(str, Enum):
    """What a verified payment did to the booking"""
    CONFIRMED = 'confirmed'
    POST_PAYMENT_CONFLICT = 'post_payment_conflict'
    NOT_APPLICABLE = 'not_applicable'   # booking was already terminal


@dataclass(frozen=True)
class Settlement:
    result: SettlementResult
    status: BookingStatus

    @property
    def requires_refund(self) -> bool:
        return self.result != SettlementResult.CONFIRMED


class BookingStateMachine:
    """
    Guards every booking status change

    Usage:
        machine = BookingStateMachine(booking.status)
        new_status = machine.initiate_payment(has_conflict=False)
    """

    _ALLOWED_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
        BookingStatus.PENDING: frozenset({
            BookingStatus.AWAITING_PAYMENT,
            BookingStatus.CANCELLED,
            BookingStatus.EXPIRED,
        }),
        # awaiting_payment -> awaiting_payment is a fresh payment attempt
        BookingStatus.AWAITING_PAYMENT: frozenset({
            BookingStatus.AWAITING_PAYMENT,
            BookingStatus.CONFIRMED,
            BookingStatus.CANCELLED,
            BookingStatus.EXPIRED,
        }),
        BookingStatus.CONFIRMED: frozenset(),
        BookingStatus.CANCELLED: frozenset(),
        BookingStatus.EXPIRED: frozenset(),
    }

    def __init__(self, status):
        self.status = BookingStatus(status)

    @classmethod
    def can_transition(cls, from_status, to_status) -> bool:
        return BookingStatus(to_status) in cls._ALLOWED_TRANSITIONS[BookingStatus(from_status)]

    @classmethod
    def is_terminal(cls, status) -> bool:
        return BookingStatus(status) in TERMINAL_STATUSES

    def _move(self, to_status: BookingStatus) -> BookingStatus:
        if not self.can_transition(self.status, to_status):
            raise InvalidTransition(
                f"Cannot move booking from {self.status.value} to {to_status.value}",
                from_status=self.status.value,
                to_status=to_status.value,
            )
        self.status = to_status
        return self.status

    def initiate_payment(self, *, has_conflict: bool) -> BookingStatus:
        """pending|awaiting_payment -> awaiting_payment, only on a free range"""
        if self.status not in (BookingStatus.PENDING, BookingStatus.AWAITING_PAYMENT):
            raise InvalidTransition(
                f"Cannot initiate payment for a {self.status.value} booking",
                from_status=self.status.value,
                to_status=BookingStatus.AWAITING_PAYMENT.value,
            )
        if has_conflict:
            raise ConflictError()
        return self._move(BookingStatus.AWAITING_PAYMENT)

    def settle_verified_payment(self, *, has_conflict: bool) -> Settlement:
        """
        Apply a verified payment

        A verified payment is never rejected here: it either confirms the
        booking, or cancels it because the range was taken meanwhile, or
        (booking already terminal) changes nothing. The last two need a refund.
        """
        if self.is_terminal(self.status):
            return Settlement(SettlementResult.NOT_APPLICABLE, self.status)

        if has_conflict:
            self._move(BookingStatus.CANCELLED)
            return Settlement(SettlementResult.POST_PAYMENT_CONFLICT, self.status)

        if self.status != BookingStatus.AWAITING_PAYMENT:
            # A payment can only be verified after it was initiated
            raise InvalidTransition(
                f"Cannot confirm a {self.status.value} booking",
                from_status=self.status.value,
                to_status=BookingStatus.CONFIRMED.value,
            )
        self._move(BookingStatus.CONFIRMED)
        return Settlement(SettlementResult.CONFIRMED, self.status)

    def cancel(self) -> BookingStatus:
        if self.status not in (BookingStatus.PENDING, BookingStatus.AWAITING_PAYMENT):
            raise InvalidTransition(
                f"Cannot cancel a {self.status.value} booking",
                from_status=self.status.value,
                to_status=BookingStatus.CANCELLED.value,
            )
        return self._move(BookingStatus.CANCELLED)

    def expire(self, *, now: datetime, deadline: datetime | None) -> bool:
        """
        Expire when the deadline has passed

        Idempotent: a terminal booking, a booking without deadline or one
        whose deadline is still ahead is left untouched. Returns True only
        when the status actually changed.
        """
        if self.is_terminal(self.status) or deadline is None:
            return False
        if now < deadline:
            return False
        self._move(BookingStatus.EXPIRED)
        return True
