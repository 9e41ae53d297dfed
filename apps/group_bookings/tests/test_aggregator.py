from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from apps.group_bookings.domain.aggregator import (
    GroupBookingAggregator,
    GroupBookingStatus,
    ParticipantPaymentStatus,
    ParticipantState,
    default_share,
    is_ready,
)
from apps.group_bookings.domain.exceptions import (
    DuplicateParticipant,
    GroupClosed,
    GroupFull,
    OverCommitted,
    ParticipantAlreadyPaid,
)
from shared.domain.exceptions import InvalidTransition, ValidationFailed

NOW = datetime(2030, 1, 1, 12, 0)
TOTAL = Decimal("300.00")


def participant(user_id, share, status=ParticipantPaymentStatus.VERIFIED):
    return ParticipantState(user_id=user_id, share=Decimal(share), payment_status=status)


def aggregator(participants=(), status="collecting", total_slots=3, min_participants=2):
    return GroupBookingAggregator(status, TOTAL, total_slots, min_participants, participants)


# ===== readiness fold =====

def test_ready_when_all_shares_verified_and_total_covered():
    assert is_ready([participant(1, "150"), participant(2, "150")], TOTAL, 2)


def test_not_ready_without_participants():
    assert not is_ready([], TOTAL, 2)


def test_not_ready_below_min_participants():
    assert not is_ready([participant(1, "300")], TOTAL, 2)


def test_not_ready_while_total_is_not_covered():
    assert not is_ready([participant(1, "100"), participant(2, "100")], TOTAL, 2)


def test_not_ready_with_one_failed_payment():
    participants = [participant(1, "150"), participant(2, "150", ParticipantPaymentStatus.FAILED)]
    assert not is_ready(participants, TOTAL, 2)


def test_readiness_moves_a_collecting_group_exactly_once():
    agg = aggregator([participant(1, "150"), participant(2, "150")])
    assert agg.ready_now() is True
    assert agg.status == GroupBookingStatus.READY
    assert agg.ready_now() is False


# ===== shares =====

def test_default_share_splits_the_remainder_over_open_slots():
    assert default_share(Decimal("100.00"), Decimal("0"), 3) == Decimal("33.33")
    assert default_share(Decimal("100.00"), Decimal("66.66"), 1) == Decimal("33.34")


def test_admit_uses_equal_split_by_default():
    assert aggregator().admit(1, now=NOW) == Decimal("100.00")


def test_admit_rejects_duplicate_participant():
    with pytest.raises(DuplicateParticipant):
        aggregator([participant(1, "100")]).admit(1, now=NOW)


def test_admit_rejects_when_group_is_full():
    agg = aggregator([participant(1, "150"), participant(2, "150")], total_slots=2)
    with pytest.raises(GroupFull):
        agg.admit(3, now=NOW)


def test_admit_rejects_share_above_the_remaining_amount():
    with pytest.raises(OverCommitted):
        aggregator([participant(1, "250")]).admit(2, Decimal("60"), now=NOW)


def test_last_slot_must_cover_the_remaining_amount():
    agg = aggregator([participant(1, "100")], total_slots=2)
    with pytest.raises(ValidationFailed):
        agg.admit(2, Decimal("100"), now=NOW)
    assert agg.admit(2, Decimal("200"), now=NOW) == Decimal("200.00")


def test_share_cannot_cover_the_total_before_minimum_is_reached():
    agg = aggregator([participant(1, "100")], total_slots=4, min_participants=3)
    with pytest.raises(ValidationFailed):
        agg.admit(2, Decimal("200"), now=NOW)
    assert agg.admit(2, Decimal("150"), now=NOW) == Decimal("150.00")


def test_explicit_shares_that_fill_every_slot_reach_readiness():
    agg = aggregator([participant(1, "120")], total_slots=2)
    share = agg.admit(2, Decimal("180"), now=NOW)
    assert is_ready([participant(1, "120"), participant(2, share)], TOTAL, 2)


def test_admit_rejects_when_not_collecting_or_expired():
    with pytest.raises(GroupClosed):
        aggregator(status="ready").admit(1, now=NOW)
    with pytest.raises(GroupClosed):
        aggregator().admit(1, now=NOW, expires_at=NOW - timedelta(minutes=1))


def test_paid_participant_cannot_pay_again_or_leave():
    paid = participant(1, "150")
    with pytest.raises(ParticipantAlreadyPaid):
        aggregator([paid]).ensure_can_pay(paid, now=NOW)
    with pytest.raises(ParticipantAlreadyPaid):
        aggregator([paid]).ensure_removable(paid)


# ===== transitions =====

def test_confirm_requires_ready_group():
    with pytest.raises(InvalidTransition):
        aggregator().confirm(has_conflict=False)
    assert aggregator(status="ready").confirm(has_conflict=False) == GroupBookingStatus.CONFIRMED


def test_confirm_with_conflict_cancels():
    assert aggregator(status="ready").confirm(has_conflict=True) == GroupBookingStatus.CANCELLED


def test_expire_only_collecting_groups_past_expiry():
    assert aggregator().expire(now=NOW, expires_at=NOW - timedelta(seconds=1)) is True
    assert aggregator(status="ready").expire(now=NOW, expires_at=NOW - timedelta(seconds=1)) is False
    assert aggregator().expire(now=NOW, expires_at=None) is False


def test_cancel_terminal_group_is_rejected():
    with pytest.raises(InvalidTransition):
        aggregator(status="confirmed").cancel()
