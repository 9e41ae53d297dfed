"""
Booking Command Handlers

These are the use cases for the booking domain.
They orchestrate domain operations within transactions.

Commands:
- CreateBookingCommand: Create a pending booking on a free date range
- InitiateBookingPaymentCommand: Open a checkout (pending/awaiting_payment -> awaiting_payment)
- CancelBookingCommand: Cancel a pending or awaiting_payment booking
- ExpireBookingCommand: Expire a booking whose deadline has passed
- SettleBookingPayment: Apply a terminal payment (dispatched by PaymentVerifier)
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional
import logging

from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from apps.bookings.availability import AvailabilityIndex, availability_index, lock_equipment
from apps.bookings.domain.events import BookingCreated
from apps.bookings.domain.state_machine import BookingStateMachine, BookingStatus, SettlementResult
from apps.bookings.models import Booking
from apps.payments.commands import SettleBookingPayment, SettlementReport
from apps.payments.verifier import Checkout, PaymentBinding, PaymentVerifier, get_payment_verifier
from shared.application.context import RequestContext
from shared.application.uow import DjangoUnitOfWork
from shared.domain.exceptions import NotFound, PermissionDenied, ValidationFailed
from shared.domain.value_objects import DateRange

logger = logging.getLogger(__name__)


# ===== Commands =====

@dataclass
class CreateBookingCommand:
    """
    Command to create a new booking

    This is the primary entry point for creating bookings.
    """
    ctx: RequestContext
    equipment_id: int
    start_date: date
    end_date: date
    notes: str = ''


@dataclass
class InitiateBookingPaymentCommand:
    """Command to open a checkout session for a booking (also used for retries)"""
    ctx: RequestContext
    booking_id: int
    email: str = ''


@dataclass
class CancelBookingCommand:
    """Command to cancel a booking"""
    ctx: RequestContext
    booking_id: int
    reason: str = ''


@dataclass
class ExpireBookingCommand:
    booking_id: int
    now: Optional[datetime] = None


def _get_booking(booking_id) -> Booking:
    try:
        return Booking.objects.select_related('equipment', 'renter').get(pk=booking_id)
    except Booking.DoesNotExist:
        raise NotFound("Booking not found", booking_id=booking_id)


# ===== Command Handlers =====

class CreateBookingHandler:
    """
    Handler for CreateBooking command

    The conflict check and the insert share one transaction that holds the
    equipment row lock, so two overlapping requests cannot both succeed.
    """

    def __init__(self, availability: AvailabilityIndex = availability_index):
        self.availability = availability

    def handle(self, command: CreateBookingCommand) -> Booking:
        ctx = command.ctx
        if ctx.user_id is None:
            raise PermissionDenied("Only signed-in users can book equipment")

        if command.start_date < timezone.localdate():
            raise ValidationFailed("Start date cannot be in the past")
        try:
            dates = DateRange(command.start_date, command.end_date)
        except ValueError as exc:
            raise ValidationFailed(str(exc))

        with DjangoUnitOfWork() as uow:
            equipment = lock_equipment(command.equipment_id)
            if not equipment.is_available:
                raise ValidationFailed("Equipment is not available for booking", equipment_id=equipment.pk)

            self.availability.ensure_available(equipment.pk, dates)

            price_per_day = equipment.daily_rate
            total = price_per_day * dates.days
            booking = Booking.objects.create(
                equipment=equipment,
                renter_id=ctx.user_id,
                start_date=dates.start_date,
                end_date=dates.end_date,
                total_days=dates.days,
                price_per_day=price_per_day.amount,
                total_price=total.amount,
                currency=total.currency,
                notes=command.notes,
                status=BookingStatus.PENDING.value,
                hold_expires_at=timezone.now() + timedelta(minutes=settings.BOOKING_HOLD_MINUTES),
            )
            booking.add_event(BookingCreated(
                aggregate_id=booking.pk,
                booking_id=booking.pk,
                equipment_id=equipment.pk,
                renter_id=ctx.user_id,
                dates=dates,
                total_price=total.amount,
            ))
            uow.collect_events(booking)

        logger.info(
            "Booking %s created for equipment %s (%s), total %s",
            booking.pk, equipment.pk, dates, total,
        )
        return booking


class InitiateBookingPaymentHandler:
    """
    Handler for InitiateBookingPayment command

    Guards are checked once before the gateway call (fail fast, no
    orphaned checkout) and again under the equipment lock before the
    transition is written.
    """

    def __init__(self, availability: AvailabilityIndex = availability_index,
                 verifier: Optional[PaymentVerifier] = None):
        self.availability = availability
        self.verifier = verifier or get_payment_verifier()

    def handle(self, command: InitiateBookingPaymentCommand) -> Checkout:
        ctx = command.ctx
        booking = _get_booking(command.booking_id)
        if not (ctx.is_admin or booking.renter_id == ctx.user_id):
            raise PermissionDenied("Only the renter can pay for this booking")

        if expire_booking_handler.handle(ExpireBookingCommand(booking.pk)):
            booking.refresh_from_db()

        BookingStateMachine(booking.status).initiate_payment(
            has_conflict=self._has_conflict(booking),
        )

        def bind(reference: str) -> PaymentBinding:
            lock_equipment(booking.equipment_id)
            locked = Booking.objects.select_for_update().get(pk=booking.pk)
            deadline = timezone.now() + timedelta(minutes=settings.PAYMENT_WINDOW_MINUTES)
            locked.mark_awaiting_payment(reference, deadline, has_conflict=self._has_conflict(locked))
            locked.save()
            logger.info("Booking %s awaiting payment %s", locked.pk, reference)
            return PaymentBinding(booking=locked, aggregates=(locked,))

        return self.verifier.initiate(
            amount=booking.amount_due,
            payer=booking.renter,
            email=command.email,
            callback_url=settings.PAYMENT_CALLBACK_URL,
            bind=bind,
            reference_prefix='BOOKING',
            metadata={'booking_id': booking.pk, 'equipment_id': booking.equipment_id},
        )

    def _has_conflict(self, booking: Booking) -> bool:
        conflict = self.availability.has_conflict(
            booking.equipment_id, booking.dates, exclude_booking_id=booking.pk,
        )
        if conflict:
            logger.warning("Booking %s conflicts with another reservation", booking.pk)
        return conflict


class CancelBookingHandler:
    """Handler for CancelBooking command: renter, equipment owner or admin"""

    def handle(self, command: CancelBookingCommand) -> Booking:
        ctx = command.ctx
        booking = _get_booking(command.booking_id)

        if ctx.is_admin:
            source = Booking.CancellationSource.ADMIN
        elif booking.renter_id == ctx.user_id:
            source = Booking.CancellationSource.RENTER
        elif booking.equipment.owner_id == ctx.user_id:
            source = Booking.CancellationSource.OWNER
        else:
            raise PermissionDenied("You cannot cancel this booking")

        expire_booking_handler.handle(ExpireBookingCommand(booking.pk))

        with DjangoUnitOfWork() as uow:
            locked = Booking.objects.select_for_update().get(pk=booking.pk)
            locked.mark_cancelled(source, command.reason)
            locked.save()
            uow.collect_events(locked)

        logger.info("Booking %s cancelled by %s", locked.pk, source)
        return locked


class ExpireBookingHandler:
    """
    Handler for ExpireBooking command

    Idempotent: returns True only for the call that actually expired it.
    """

    def handle(self, command: ExpireBookingCommand) -> bool:
        with DjangoUnitOfWork() as uow:
            booking = Booking.objects.select_for_update().filter(pk=command.booking_id).first()
            if booking is None or not booking.expire_if_due(command.now):
                return False
            booking.save(update_fields=['status', 'expired_at', 'updated_at'])
            uow.collect_events(booking)

        logger.info("Booking %s expired", booking.pk)
        return True


class SettleBookingPaymentHandler:
    """
    Handler for SettleBookingPayment command

    Runs inside PaymentVerifier's transaction. Availability is re-checked
    under the equipment lock right before confirming.
    """

    def __init__(self, availability: AvailabilityIndex = availability_index):
        self.availability = availability

    def handle(self, command: SettleBookingPayment) -> SettlementReport:
        booking = _get_booking(command.booking_id)

        with DjangoUnitOfWork() as uow:
            lock_equipment(booking.equipment_id)
            booking = Booking.objects.select_for_update().get(pk=booking.pk)

            if not command.verified:
                if booking.status == BookingStatus.AWAITING_PAYMENT.value:
                    booking.record_payment_failed(command.reference)
                    uow.collect_events(booking)
                return SettlementReport(subject_status=booking.status)

            has_conflict = False
            if not booking.is_terminal:
                has_conflict = self.availability.has_conflict(
                    booking.equipment_id, booking.dates, exclude_booking_id=booking.pk,
                )
            settlement = booking.settle_verified_payment(
                command.reference,
                has_conflict=has_conflict,
                paid_at=command.paid_at,
            )
            booking.save()
            uow.collect_events(booking)

        if settlement.result == SettlementResult.CONFIRMED:
            logger.info("Booking %s confirmed by payment %s", booking.pk, command.reference)
        elif settlement.result == SettlementResult.POST_PAYMENT_CONFLICT:
            logger.error(
                "Post-payment conflict: booking %s cancelled after payment %s verified",
                booking.pk, command.reference,
            )

        return SettlementReport(
            subject_status=booking.status,
            requires_refund=settlement.requires_refund,
            post_payment_conflict=settlement.result == SettlementResult.POST_PAYMENT_CONFLICT,
        )


def overdue_bookings(now: Optional[datetime] = None):
    now = now or timezone.now()
    return Booking.objects.filter(
        Q(status=BookingStatus.PENDING.value, hold_expires_at__lte=now)
        | Q(status=BookingStatus.AWAITING_PAYMENT.value, payment_deadline__lte=now)
    )


def expire_overdue_bookings(queryset=None, now: Optional[datetime] = None) -> int:
    """Expire every overdue booking (optionally within ``queryset``)."""
    now = now or timezone.now()
    overdue = overdue_bookings(now)
    if queryset is not None:
        overdue = overdue.filter(pk__in=queryset.values('pk'))

    expired = 0
    for booking_id in overdue.values_list('pk', flat=True):
        if expire_booking_handler.handle(ExpireBookingCommand(booking_id, now=now)):
            expired += 1
    return expired


expire_booking_handler = ExpireBookingHandler()
create_booking_handler = CreateBookingHandler()
initiate_booking_payment_handler = InitiateBookingPaymentHandler()
cancel_booking_handler = CancelBookingHandler()
settle_booking_payment_handler = SettleBookingPaymentHandler()


def register_handlers(bus) -> None:
    bus.register_command_handler(CreateBookingCommand, create_booking_handler.handle)
    bus.register_command_handler(InitiateBookingPaymentCommand, initiate_booking_payment_handler.handle)
    bus.register_command_handler(CancelBookingCommand, cancel_booking_handler.handle)
    bus.register_command_handler(ExpireBookingCommand, expire_booking_handler.handle)
    bus.register_command_handler(SettleBookingPayment, settle_booking_payment_handler.handle)
