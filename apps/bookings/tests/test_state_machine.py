from datetime import datetime, timedelta

import pytest

from apps.bookings.domain.state_machine import (
    BookingStateMachine,
    BookingStatus,
    SettlementResult,
)
from shared.domain.exceptions import ConflictError, InvalidTransition

NOW = datetime(2030, 1, 1, 12, 0)


def test_pending_moves_to_awaiting_payment():
    machine = BookingStateMachine("pending")
    assert machine.initiate_payment(has_conflict=False) == BookingStatus.AWAITING_PAYMENT


def test_retry_from_awaiting_payment_is_allowed():
    machine = BookingStateMachine("awaiting_payment")
    assert machine.initiate_payment(has_conflict=False) == BookingStatus.AWAITING_PAYMENT


def test_initiate_payment_on_conflicting_range_raises_conflict():
    with pytest.raises(ConflictError):
        BookingStateMachine("pending").initiate_payment(has_conflict=True)


@pytest.mark.parametrize("status", ["confirmed", "cancelled", "expired"])
def test_initiate_payment_from_terminal_status_is_rejected(status):
    with pytest.raises(InvalidTransition):
        BookingStateMachine(status).initiate_payment(has_conflict=False)


def test_verified_payment_confirms_awaiting_booking():
    settlement = BookingStateMachine("awaiting_payment").settle_verified_payment(has_conflict=False)
    assert settlement.result == SettlementResult.CONFIRMED
    assert settlement.status == BookingStatus.CONFIRMED
    assert not settlement.requires_refund


def test_verified_payment_with_conflict_cancels_and_requires_refund():
    settlement = BookingStateMachine("awaiting_payment").settle_verified_payment(has_conflict=True)
    assert settlement.result == SettlementResult.POST_PAYMENT_CONFLICT
    assert settlement.status == BookingStatus.CANCELLED
    assert settlement.requires_refund


@pytest.mark.parametrize("status", ["confirmed", "cancelled", "expired"])
def test_verified_payment_on_terminal_booking_changes_nothing(status):
    settlement = BookingStateMachine(status).settle_verified_payment(has_conflict=False)
    assert settlement.result == SettlementResult.NOT_APPLICABLE
    assert settlement.status == BookingStatus(status)
    assert settlement.requires_refund


def test_verified_payment_on_pending_booking_is_rejected():
    with pytest.raises(InvalidTransition):
        BookingStateMachine("pending").settle_verified_payment(has_conflict=False)


def test_cancel_only_before_a_terminal_status():
    assert BookingStateMachine("pending").cancel() == BookingStatus.CANCELLED
    assert BookingStateMachine("awaiting_payment").cancel() == BookingStatus.CANCELLED
    with pytest.raises(InvalidTransition):
        BookingStateMachine("confirmed").cancel()


def test_expire_is_idempotent():
    machine = BookingStateMachine("awaiting_payment")
    deadline = NOW - timedelta(minutes=1)
    assert machine.expire(now=NOW, deadline=deadline) is True
    assert machine.status == BookingStatus.EXPIRED
    assert machine.expire(now=NOW, deadline=deadline) is False


def test_expire_waits_for_the_deadline():
    machine = BookingStateMachine("pending")
    assert machine.expire(now=NOW, deadline=NOW + timedelta(seconds=1)) is False
    assert machine.expire(now=NOW, deadline=None) is False
    assert machine.status == BookingStatus.PENDING


def test_terminal_statuses_have_no_transitions():
    for status in ("confirmed", "cancelled", "expired"):
        assert BookingStateMachine.is_terminal(status)
        assert not BookingStateMachine.can_transition(status, "pending")
    assert BookingStateMachine.can_transition("pending", "awaiting_payment")
    assert not BookingStateMachine.can_transition("pending", "confirmed")
