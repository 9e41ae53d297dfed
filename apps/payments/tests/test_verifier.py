"""PaymentVerifier against bookings, with the gateway faked."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock

from django.test import TestCase
from django.utils import timezone

from apps.bookings.application.command_handlers import (
    CancelBookingCommand,
    CreateBookingCommand,
    InitiateBookingPaymentCommand,
)
from apps.bookings.domain.events import BookingConfirmed
from apps.bookings.models import Booking
from apps.equipment.models import Equipment
from apps.payments.events import PaymentVerified
from apps.payments.exceptions import (
    AmountMismatch,
    GatewayUnavailable,
    InvalidAmount,
    PaymentNotFound,
    VerificationPending,
)
from apps.payments.models import Payment
from apps.payments.tasks import reverify_initiated_payments
from apps.payments.tests.fakes import use_fake_gateway
from apps.payments.verifier import PaymentBinding, get_payment_verifier
from apps.users.models import User
from shared.application.context import RequestContext
from shared.application.message_bus import message_bus
from shared.domain.value_objects import Money


class BookingPaymentVerificationTests(TestCase):

    def setUp(self) -> None:
        self.gateway = use_fake_gateway(self)
        self.renter = User.objects.create_user(email="renter@example.com", password="x")
        self.owner = User.objects.create_user(email="owner@example.com", password="x", role=User.RoleChoices.OWNER)
        self.equipment = Equipment.objects.create(
            owner=self.owner,
            name="Scaffold tower",
            price_per_day=Decimal("2500.00"),
        )
        self.ctx = RequestContext(user_id=self.renter.pk, role="renter", email=self.renter.email)
        self.start = timezone.localdate() + timedelta(days=5)
        self.verifier = get_payment_verifier()

    def _create_booking(self, start=None, days=2) -> Booking:
        start = start or self.start
        return message_bus.handle_command(CreateBookingCommand(
            ctx=self.ctx,
            equipment_id=self.equipment.pk,
            start_date=start,
            end_date=start + timedelta(days=days - 1),
        ))

    def _initiate(self, booking: Booking) -> str:
        checkout = message_bus.handle_command(InitiateBookingPaymentCommand(ctx=self.ctx, booking_id=booking.pk))
        return checkout.reference

    def _spy(self, event_type):
        spy = MagicMock()
        message_bus.register_event_handler(event_type, spy)
        self.addCleanup(message_bus.unregister_event_handler, event_type, spy)
        return spy

    # ===== initiate =====

    def test_initiate_moves_booking_to_awaiting_payment(self) -> None:
        booking = self._create_booking()

        reference = self._initiate(booking)

        booking.refresh_from_db()
        payment = Payment.objects.get(gateway_reference=reference)
        self.assertEqual(booking.status, Booking.Status.AWAITING_PAYMENT)
        self.assertEqual(booking.payment_reference, reference)
        self.assertIsNotNone(booking.payment_deadline)
        self.assertEqual(payment.status, Payment.Status.INITIATED)
        self.assertEqual(payment.amount, Decimal("5000.00"))
        self.assertTrue(reference.startswith("BOOKING-"))
        self.assertEqual(self.gateway.initialize_calls[0]["amount"], Money(Decimal("5000.00"), "NGN"))
        self.assertEqual(self.gateway.initialize_calls[0]["email"], "renter@example.com")

    def test_gateway_failure_on_initiate_writes_nothing(self) -> None:
        booking = self._create_booking()
        self.gateway.initialize_error = GatewayUnavailable()

        with self.assertRaises(GatewayUnavailable):
            self._initiate(booking)

        booking.refresh_from_db()
        self.assertEqual(booking.status, Booking.Status.PENDING)
        self.assertFalse(Payment.objects.exists())

    def test_non_positive_amount_is_rejected_before_the_gateway(self) -> None:
        with self.assertRaises(InvalidAmount):
            self.verifier.initiate(
                amount=Money.zero("NGN"),
                payer=self.renter,
                callback_url="https://app.test/verify",
                bind=lambda reference: PaymentBinding(),
            )
        self.assertEqual(self.gateway.initialize_calls, [])

    # ===== verify =====

    def test_verified_payment_confirms_booking(self) -> None:
        booking = self._create_booking()
        reference = self._initiate(booking)
        self.gateway.settle(reference)

        outcome = self.verifier.verify(reference)

        booking.refresh_from_db()
        self.assertTrue(outcome.verified)
        self.assertEqual(outcome.subject_status, Booking.Status.CONFIRMED)
        self.assertFalse(outcome.requires_refund)
        self.assertEqual(booking.status, Booking.Status.CONFIRMED)
        self.assertIsNotNone(booking.confirmed_at)
        self.assertEqual(Payment.objects.get(gateway_reference=reference).channel, "card")

    def test_repeated_verify_is_idempotent(self) -> None:
        booking = self._create_booking()
        reference = self._initiate(booking)
        self.gateway.settle(reference)
        confirmed_spy = self._spy(BookingConfirmed)
        verified_spy = self._spy(PaymentVerified)

        with self.captureOnCommitCallbacks(execute=True):
            first = self.verifier.verify(reference)
        with self.captureOnCommitCallbacks(execute=True):
            second = self.verifier.verify(reference)
            third = self.verifier.verify(reference)

        self.assertEqual(first, second)
        self.assertEqual(second, third)
        self.assertEqual(self.gateway.verify_calls, [reference])
        self.assertEqual(confirmed_spy.call_count, 1)
        self.assertEqual(verified_spy.call_count, 1)

    def test_ambiguous_gateway_status_leaves_payment_initiated(self) -> None:
        booking = self._create_booking()
        reference = self._initiate(booking)

        with self.assertRaises(VerificationPending):
            self.verifier.verify(reference)

        booking.refresh_from_db()
        self.assertEqual(booking.status, Booking.Status.AWAITING_PAYMENT)
        self.assertEqual(Payment.objects.get(gateway_reference=reference).status, Payment.Status.INITIATED)

    def test_gateway_outage_on_verify_changes_nothing(self) -> None:
        booking = self._create_booking()
        reference = self._initiate(booking)
        self.gateway.verify_error = GatewayUnavailable()

        with self.assertRaises(GatewayUnavailable):
            self.verifier.verify(reference)

        self.assertEqual(Payment.objects.get(gateway_reference=reference).status, Payment.Status.INITIATED)

    def test_failed_payment_allows_a_retry(self) -> None:
        booking = self._create_booking()
        first_reference = self._initiate(booking)
        self.gateway.settle(first_reference, "failed")

        outcome = self.verifier.verify(first_reference)
        booking.refresh_from_db()
        self.assertEqual(outcome.status, Payment.Status.FAILED)
        self.assertEqual(booking.status, Booking.Status.AWAITING_PAYMENT)

        second_reference = self._initiate(booking)
        self.gateway.settle(second_reference)
        self.verifier.verify(second_reference)

        booking.refresh_from_db()
        self.assertNotEqual(first_reference, second_reference)
        self.assertEqual(booking.status, Booking.Status.CONFIRMED)
        self.assertEqual(booking.payments.count(), 2)

    def test_amount_mismatch_never_confirms(self) -> None:
        booking = self._create_booking()
        reference = self._initiate(booking)
        self.gateway.settle(reference, amount=Decimal("100.00"))

        with self.assertRaises(AmountMismatch):
            self.verifier.verify(reference)
        with self.assertRaises(AmountMismatch):
            self.verifier.verify(reference)

        booking.refresh_from_db()
        payment = Payment.objects.get(gateway_reference=reference)
        self.assertEqual(booking.status, Booking.Status.AWAITING_PAYMENT)
        self.assertEqual(payment.status, Payment.Status.FAILED)
        self.assertEqual(payment.failure_reason, Payment.AMOUNT_MISMATCH)
        self.assertEqual(payment.paid_amount, Decimal("100.00"))
        self.assertEqual(self.gateway.verify_calls, [reference])

    def test_currency_mismatch_is_an_amount_mismatch(self) -> None:
        booking = self._create_booking()
        reference = self._initiate(booking)
        self.gateway.settle(reference, currency="USD")

        with self.assertRaises(AmountMismatch):
            self.verifier.verify(reference)

        booking.refresh_from_db()
        self.assertEqual(booking.status, Booking.Status.AWAITING_PAYMENT)

    def test_post_payment_conflict_cancels_and_flags_refund(self) -> None:
        booking = self._create_booking()
        reference = self._initiate(booking)
        # Someone else got the same dates confirmed while this payment was in flight
        Booking.objects.create(
            equipment=self.equipment,
            renter=self.owner,
            start_date=self.start,
            end_date=self.start,
            price_per_day=self.equipment.price_per_day,
            total_price=self.equipment.price_per_day,
            status=Booking.Status.CONFIRMED,
        )
        self.gateway.settle(reference)

        outcome = self.verifier.verify(reference)

        booking.refresh_from_db()
        payment = Payment.objects.get(gateway_reference=reference)
        self.assertTrue(outcome.verified)
        self.assertTrue(outcome.post_payment_conflict)
        self.assertTrue(outcome.requires_refund)
        self.assertEqual(booking.status, Booking.Status.CANCELLED)
        self.assertEqual(booking.cancellation_source, Booking.CancellationSource.SYSTEM)
        self.assertTrue(booking.post_payment_conflict)
        self.assertTrue(booking.requires_refund)
        self.assertTrue(payment.requires_refund)

    def test_payment_captured_after_deadline_expires_booking(self) -> None:
        booking = self._create_booking()
        reference = self._initiate(booking)
        booking.refresh_from_db()
        self.gateway.settle(reference, paid_at=booking.payment_deadline + timedelta(minutes=1))

        outcome = self.verifier.verify(reference)

        booking.refresh_from_db()
        self.assertTrue(outcome.verified)
        self.assertTrue(outcome.requires_refund)
        self.assertEqual(booking.status, Booking.Status.EXPIRED)
        self.assertTrue(booking.requires_refund)

    def test_payment_for_cancelled_booking_is_kept_and_flagged(self) -> None:
        booking = self._create_booking()
        reference = self._initiate(booking)
        message_bus.handle_command(CancelBookingCommand(ctx=self.ctx, booking_id=booking.pk))
        self.gateway.settle(reference)

        outcome = self.verifier.verify(reference)

        booking.refresh_from_db()
        self.assertEqual(outcome.status, Payment.Status.VERIFIED)
        self.assertTrue(outcome.requires_refund)
        self.assertEqual(booking.status, Booking.Status.CANCELLED)
        self.assertTrue(Payment.objects.get(gateway_reference=reference).requires_refund)

    def test_unknown_reference(self) -> None:
        with self.assertRaises(PaymentNotFound):
            self.verifier.verify("BOOKING-0-NOPE")

    # ===== sweep =====

    def test_reverify_sweep_settles_stale_initiated_payments(self) -> None:
        booking = self._create_booking()
        reference = self._initiate(booking)
        Payment.objects.filter(gateway_reference=reference).update(
            created_at=timezone.now() - timedelta(minutes=10),
        )
        fresh = self._create_booking(start=self.start + timedelta(days=10))
        fresh_reference = self._initiate(fresh)
        self.gateway.settle(reference)
        self.gateway.settle(fresh_reference)

        result = reverify_initiated_payments()

        booking.refresh_from_db()
        fresh.refresh_from_db()
        self.assertEqual(result, {"checked": 1, "settled": 1})
        self.assertEqual(booking.status, Booking.Status.CONFIRMED)
        self.assertEqual(fresh.status, Booking.Status.AWAITING_PAYMENT)
