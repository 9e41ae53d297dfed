"""
Payment Verifier

Two-phase protocol against the hosted-checkout gateway:

1. initiate(): open a checkout session (gateway call, outside any
   transaction), then in one transaction let the subject transition and
   record the Payment row as ``initiated``.
2. verify(reference): repeatable and side-effect idempotent. A terminal
   Payment returns its stored outcome without calling the gateway. An
   ``initiated`` Payment is checked with the gateway; a terminal answer is
   written with a conditional update and settled by the owning subject in
   the same transaction, so it is applied at most once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional, Tuple

from shared.application.message_bus import MessageBus, message_bus
from shared.application.uow import DjangoUnitOfWork
from shared.domain.value_objects import Money

from .commands import SettleBookingPayment, SettleParticipantPayment, SettlementReport
from .exceptions import AmountMismatch, InvalidAmount, PaymentNotFound, VerificationPending
from .gateway import GatewayStatus, GatewayVerification, generate_reference, get_gateway
from .models import Payment

logger = logging.getLogger(__name__)


@dataclass
class PaymentBinding:
    """Owner of a new Payment row, produced inside the initiation transaction"""

    booking: Any = None
    group_booking: Any = None
    participant: Any = None
    aggregates: Tuple[Any, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Checkout:
    payment: Payment
    reference: str
    authorization_url: str
    access_code: str = ""


@dataclass(frozen=True)
class PaymentOutcome:
    reference: str
    status: str
    amount: Decimal
    currency: str
    channel: str = ""
    paid_at: Optional[datetime] = None
    booking_id: Optional[int] = None
    group_booking_id: Optional[int] = None
    participant_id: Optional[int] = None
    subject_status: str = ""
    requires_refund: bool = False
    post_payment_conflict: bool = False
    group_ready: Optional[bool] = None

    @property
    def verified(self) -> bool:
        return self.status == Payment.Status.VERIFIED


class PaymentVerifier:

    def __init__(self, gateway=None, bus: MessageBus = message_bus):
        self._gateway = gateway
        self.bus = bus

    @property
    def gateway(self):
        return self._gateway or get_gateway()

    # ===== initiate =====

    def initiate(
        self,
        *,
        amount: Money,
        payer,
        email: str = "",
        callback_url: str,
        bind: Callable[[str], PaymentBinding],
        reference_prefix: str = "BKG",
        metadata: Optional[dict] = None,
    ) -> Checkout:
        """
        Open a checkout and record the attempt.

        ``bind(reference)`` runs inside the transaction: it locks and
        transitions the subject, and may raise to abort. Nothing is written
        when the gateway call fails.
        """
        if not amount.is_positive():
            raise InvalidAmount(amount=str(amount))

        session = self.gateway.initialize(
            reference=generate_reference(reference_prefix),
            amount=amount,
            email=email or payer.email,
            callback_url=callback_url,
            metadata=metadata,
        )

        with DjangoUnitOfWork() as uow:
            binding = bind(session.reference)
            payment = Payment.objects.create(
                booking=binding.booking,
                group_booking=binding.group_booking,
                participant=binding.participant,
                payer=payer,
                gateway_reference=session.reference,
                amount=amount.amount,
                currency=amount.currency,
                authorization_url=session.authorization_url,
                access_code=session.access_code,
            )
            uow.collect_events(*binding.aggregates)

        logger.info("Payment %s initiated for %s", payment.gateway_reference, amount)
        return Checkout(
            payment=payment,
            reference=session.reference,
            authorization_url=session.authorization_url,
            access_code=session.access_code,
        )

    # ===== verify =====

    def verify(self, reference: str) -> PaymentOutcome:
        payment = self._get(reference)
        if payment.is_terminal:
            logger.info("Payment %s already %s, returning stored outcome", reference, payment.status)
            return self.stored_outcome(payment)

        verification = self.gateway.verify(reference)
        if verification.status == GatewayStatus.PENDING:
            raise VerificationPending(reference=reference, gateway_status=verification.raw.get("status", ""))

        with DjangoUnitOfWork() as uow:
            if self._apply(payment, verification):
                self._settle(payment)
                uow.collect_events(payment)
            else:
                logger.info("Payment %s was finalized by a concurrent call", reference)

        return self.stored_outcome(self._get(reference))

    def _get(self, reference: str) -> Payment:
        try:
            return Payment.objects.get(gateway_reference=reference)
        except Payment.DoesNotExist:
            raise PaymentNotFound(reference=reference)

    def _apply(self, payment: Payment, verification: GatewayVerification) -> bool:
        if verification.status == GatewayStatus.FAILED:
            return payment.mark_failed(verification.gateway_response or verification.raw.get("status", "failed"),
                                       verification)

        if verification.amount != payment.expected:
            logger.error(
                "Amount mismatch for payment %s: expected %s, gateway reported %s",
                payment.gateway_reference, payment.expected, verification.amount,
            )
            return payment.mark_failed(Payment.AMOUNT_MISMATCH, verification)

        return payment.mark_verified(verification)

    def _settle(self, payment: Payment) -> SettlementReport:
        verified = payment.status == Payment.Status.VERIFIED
        if payment.booking_id:
            command = SettleBookingPayment(
                booking_id=payment.booking_id,
                payment_id=payment.pk,
                reference=payment.gateway_reference,
                verified=verified,
                paid_at=payment.paid_at,
            )
        else:
            command = SettleParticipantPayment(
                group_booking_id=payment.group_booking_id,
                participant_id=payment.participant_id,
                payment_id=payment.pk,
                reference=payment.gateway_reference,
                verified=verified,
                paid_at=payment.paid_at,
            )

        report: SettlementReport = self.bus.handle_command(command)

        if verified and report.requires_refund:
            payment.flag_for_refund()
            logger.error(
                "Payment %s verified for a %s subject; flagged for refund",
                payment.gateway_reference, report.subject_status,
            )
        return report

    def stored_outcome(self, payment: Payment) -> PaymentOutcome:
        """Outcome derived from stored state only; never calls the gateway."""
        if payment.is_amount_mismatch:
            raise AmountMismatch(
                reference=payment.gateway_reference,
                expected=payment.expected,
                reported=f"{payment.paid_amount} {payment.paid_currency}".strip(),
            )

        subject_status, post_payment_conflict, group_ready = "", False, None
        if payment.booking_id:
            booking = payment.booking
            subject_status = booking.status
            post_payment_conflict = booking.post_payment_conflict
        elif payment.group_booking_id:
            group = payment.group_booking
            subject_status = group.status
            post_payment_conflict = group.post_payment_conflict
            group_ready = group.is_ready_or_confirmed

        return PaymentOutcome(
            reference=payment.gateway_reference,
            status=payment.status,
            amount=payment.amount,
            currency=payment.currency,
            channel=payment.channel,
            paid_at=payment.paid_at,
            booking_id=payment.booking_id,
            group_booking_id=payment.group_booking_id,
            participant_id=payment.participant_id,
            subject_status=subject_status,
            requires_refund=payment.requires_refund,
            post_payment_conflict=post_payment_conflict,
            group_ready=group_ready,
        )


def get_payment_verifier() -> PaymentVerifier:
    return PaymentVerifier()
