"""
Group Booking Aggregator

Pure decisions for a group booking funded by N participants:

    collecting ──every share verified──▶ ready ──owner confirms, no conflict──▶ confirmed
        │                                  │
        │                                  └──conflict / cancel──▶ cancelled
        ├──cancel──▶ cancelled
        └──expires_at passed──▶ expired

Readiness is a fold over participant snapshots. It is deterministic and
only ever moves a collecting group forward: re-running it on a ready
group changes nothing, and a participant whose payment failed keeps the
group collecting until they retry or are removed.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_DOWN, Decimal
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional

from shared.domain.exceptions import InvalidTransition, ValidationFailed

from .exceptions import (
    DuplicateParticipant,
    GroupClosed,
    GroupFull,
    OverCommitted,
    ParticipantAlreadyPaid,
)

CENTS = Decimal('0.01')


class GroupBookingStatus(str, Enum):
    COLLECTING = 'collecting'
    READY = 'ready'
    CONFIRMED = 'confirmed'
    CANCELLED = 'cancelled'
    EXPIRED = 'expired'


class ParticipantPaymentStatus(str, Enum):
    NOT_STARTED = 'not_started'
    INITIATED = 'initiated'
    VERIFIED = 'verified'
    FAILED = 'failed'


@dataclass(frozen=True)
class ParticipantState:
    user_id: int
    share: Decimal
    payment_status: ParticipantPaymentStatus

    @property
    def verified(self) -> bool:
        return self.payment_status == ParticipantPaymentStatus.VERIFIED


class GroupBookingStateMachine:

    _ALLOWED_TRANSITIONS: Dict[GroupBookingStatus, FrozenSet[GroupBookingStatus]] = {
        GroupBookingStatus.COLLECTING: frozenset({
            GroupBookingStatus.READY,
            GroupBookingStatus.CANCELLED,
            GroupBookingStatus.EXPIRED,
        }),
        GroupBookingStatus.READY: frozenset({
            GroupBookingStatus.CONFIRMED,
            GroupBookingStatus.CANCELLED,
        }),
        GroupBookingStatus.CONFIRMED: frozenset(),
        GroupBookingStatus.CANCELLED: frozenset(),
        GroupBookingStatus.EXPIRED: frozenset(),
    }

    def __init__(self, status):
        self.status = GroupBookingStatus(status)

    @classmethod
    def can_transition(cls, from_status, to_status) -> bool:
        return GroupBookingStatus(to_status) in cls._ALLOWED_TRANSITIONS[GroupBookingStatus(from_status)]

    @classmethod
    def is_terminal(cls, status) -> bool:
        return not cls._ALLOWED_TRANSITIONS[GroupBookingStatus(status)]

    def move(self, to_status: GroupBookingStatus) -> GroupBookingStatus:
        if not self.can_transition(self.status, to_status):
            raise InvalidTransition(
                f"Cannot move group booking from {self.status.value} to {to_status.value}",
                from_status=self.status.value,
                to_status=to_status.value,
            )
        self.status = to_status
        return self.status


def committed_total(participants: Iterable[ParticipantState]) -> Decimal:
    return sum((p.share for p in participants), Decimal('0.00'))


def is_ready(participants: Iterable[ParticipantState], total_price: Decimal, min_participants: int) -> bool:
    """
    Readiness fold

    True iff there is at least ``min_participants`` participants, their
    shares cover the total exactly and every share is verified.
    """
    participants = list(participants)
    if not participants or len(participants) < min_participants:
        return False
    if committed_total(participants) != total_price:
        return False
    return all(p.verified for p in participants)


def default_share(total_price: Decimal, committed: Decimal, slots_left: int) -> Decimal:
    """
    Equal split of what is left over the remaining slots

    Rounded down to cents; the last slot takes the remainder so the shares
    add up to the total exactly.
    """
    remaining = total_price - committed
    if slots_left <= 1:
        return remaining
    return (remaining / slots_left).quantize(CENTS, rounding=ROUND_DOWN)


class GroupBookingAggregator:
    """
    Guards for one group booking, built from its current snapshot

    Usage:
        aggregator = GroupBookingAggregator(group.status, group.total_price,
                                            group.total_slots, group.min_participants,
                                            group.participant_states())
        share = aggregator.admit(user_id, requested_share, now=now, expires_at=group.expires_at)
    """

    def __init__(self, status, total_price: Decimal, total_slots: int, min_participants: int,
                 participants: Iterable[ParticipantState]):
        self.machine = GroupBookingStateMachine(status)
        self.total_price = total_price
        self.total_slots = total_slots
        self.min_participants = min_participants
        self.participants = list(participants)

    @property
    def status(self) -> GroupBookingStatus:
        return self.machine.status

    def ensure_collecting(self, *, now: Optional[datetime] = None, expires_at: Optional[datetime] = None):
        if self.status != GroupBookingStatus.COLLECTING:
            raise GroupClosed(status=self.status.value)
        if now is not None and expires_at is not None and now >= expires_at:
            raise GroupClosed("This group booking has expired", expires_at=expires_at)

    def admit(self, user_id: int, share: Optional[Decimal] = None, *,
              now: Optional[datetime] = None, expires_at: Optional[datetime] = None) -> Decimal:
        """Validate a join and return the share the participant commits to"""
        self.ensure_collecting(now=now, expires_at=expires_at)

        if any(p.user_id == user_id for p in self.participants):
            raise DuplicateParticipant(user_id=user_id)
        if len(self.participants) >= self.total_slots:
            raise GroupFull(total_slots=self.total_slots)

        committed = committed_total(self.participants)
        if share is None:
            share = default_share(self.total_price, committed, self.total_slots - len(self.participants))
        share = Decimal(share).quantize(CENTS)

        remaining = self.total_price - committed
        if share <= 0 or share > remaining:
            raise OverCommitted(share=share, remaining=remaining)

        # The group must still be able to reach readiness after this join
        joined = len(self.participants) + 1
        if joined == self.total_slots and share != remaining:
            raise ValidationFailed(
                "The last slot must cover the remaining amount",
                share=share,
                remaining=remaining,
            )
        if share == remaining and joined < self.min_participants:
            raise ValidationFailed(
                "Share leaves nothing for the participants still needed",
                share=share,
                min_participants=self.min_participants,
            )
        return share

    def ensure_can_pay(self, participant: ParticipantState, *, now=None, expires_at=None):
        self.ensure_collecting(now=now, expires_at=expires_at)
        if participant.verified:
            raise ParticipantAlreadyPaid()

    def ensure_removable(self, participant: ParticipantState):
        if self.status != GroupBookingStatus.COLLECTING:
            raise GroupClosed(status=self.status.value)
        if participant.verified:
            raise ParticipantAlreadyPaid("A participant who has paid cannot leave the group")

    def ready_now(self) -> bool:
        """
        Apply the readiness fold; returns True when the group just became ready

        Only a collecting group can move; any other status is left as is.
        """
        if self.status != GroupBookingStatus.COLLECTING:
            return False
        if not is_ready(self.participants, self.total_price, self.min_participants):
            return False
        self.machine.move(GroupBookingStatus.READY)
        return True

    def confirm(self, *, has_conflict: bool) -> GroupBookingStatus:
        """ready -> confirmed, or ready -> cancelled on a conflict"""
        if self.status != GroupBookingStatus.READY:
            raise InvalidTransition(
                f"Cannot confirm a {self.status.value} group booking",
                from_status=self.status.value,
                to_status=GroupBookingStatus.CONFIRMED.value,
            )
        if has_conflict:
            return self.machine.move(GroupBookingStatus.CANCELLED)
        return self.machine.move(GroupBookingStatus.CONFIRMED)

    def cancel(self) -> GroupBookingStatus:
        if self.status not in (GroupBookingStatus.COLLECTING, GroupBookingStatus.READY):
            raise InvalidTransition(
                f"Cannot cancel a {self.status.value} group booking",
                from_status=self.status.value,
                to_status=GroupBookingStatus.CANCELLED.value,
            )
        return self.machine.move(GroupBookingStatus.CANCELLED)

    def expire(self, *, now: datetime, expires_at: Optional[datetime]) -> bool:
        """Idempotent: only a collecting group past its expiry moves"""
        if self.status != GroupBookingStatus.COLLECTING or expires_at is None or now < expires_at:
            return False
        self.machine.move(GroupBookingStatus.EXPIRED)
        return True
