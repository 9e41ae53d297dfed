"""Booking domain models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from django.conf import settings  # type: ignore
from django.db import models  # type: ignore
from django.utils import timezone  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from apps.bookings.domain.events import (
    BookingAwaitingPayment,
    BookingCancelled,
    BookingConfirmed,
    BookingExpired,
    BookingPaymentFailed,
)
from apps.bookings.domain.state_machine import (
    BookingStateMachine,
    BookingStatus,
    Settlement,
    SettlementResult,
)
from shared.domain.base import EventRecorder
from shared.domain.value_objects import DateRange, Money


class Booking(EventRecorder, models.Model):
    """A renter's reservation of one equipment item for a closed date range."""

    class Status(models.TextChoices):
        PENDING = BookingStatus.PENDING.value, _("Pending")
        AWAITING_PAYMENT = BookingStatus.AWAITING_PAYMENT.value, _("Awaiting payment")
        CONFIRMED = BookingStatus.CONFIRMED.value, _("Confirmed")
        CANCELLED = BookingStatus.CANCELLED.value, _("Cancelled")
        EXPIRED = BookingStatus.EXPIRED.value, _("Expired")

    class CancellationSource(models.TextChoices):
        RENTER = "renter", _("Renter")
        OWNER = "owner", _("Owner")
        ADMIN = "admin", _("Admin")
        SYSTEM = "system", _("System")

    equipment = models.ForeignKey(
        "equipment.Equipment",
        on_delete=models.PROTECT,
        related_name="bookings",
    )
    renter = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="bookings",
    )
    start_date = models.DateField()
    end_date = models.DateField()
    total_days = models.PositiveIntegerField(default=1)
    price_per_day = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text=_("Equipment price per day at the moment of booking."),
    )
    total_price = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    currency = models.CharField(max_length=3, default="NGN")
    status = models.CharField(
        max_length=32,
        choices=Status.choices,
        default=Status.PENDING,
    )
    payment_reference = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        help_text=_("Gateway reference of the current payment attempt."),
    )
    notes = models.TextField(blank=True)
    hold_expires_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text=_("Deadline of an unpaid pending booking."),
    )
    payment_deadline = models.DateTimeField(
        null=True,
        blank=True,
        help_text=_("Deadline of the current checkout session."),
    )
    confirmed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    expired_at = models.DateTimeField(null=True, blank=True)
    cancellation_source = models.CharField(
        max_length=20,
        choices=CancellationSource.choices,
        blank=True,
    )
    cancellation_reason = models.CharField(max_length=255, blank=True)
    post_payment_conflict = models.BooleanField(default=False)
    requires_refund = models.BooleanField(
        default=False,
        help_text=_("Money was captured but the booking did not hold; refund out of band."),
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Booking")
        verbose_name_plural = _("Bookings")
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(end_date__gte=models.F("start_date")),
                name="booking_valid_dates",
            ),
        ]
        indexes = [
            models.Index(fields=["equipment", "start_date", "end_date"], name="booking_equipment_dates_idx"),
            models.Index(fields=["status"], name="booking_status_idx"),
            models.Index(fields=["payment_reference"], name="booking_payment_ref_idx"),
        ]

    def __str__(self) -> str:
        return f"Booking #{self.pk} for equipment {self.equipment_id}"

    @property
    def dates(self) -> DateRange:
        return DateRange(self.start_date, self.end_date)

    @property
    def amount_due(self) -> Money:
        return Money(self.total_price, self.currency)

    @property
    def deadline(self) -> datetime | None:
        """Deadline of the current non-terminal status"""
        if self.status == BookingStatus.PENDING.value:
            return self.hold_expires_at
        if self.status == BookingStatus.AWAITING_PAYMENT.value:
            return self.payment_deadline
        return None

    @property
    def is_terminal(self) -> bool:
        return BookingStateMachine.is_terminal(self.status)

    def is_stakeholder(self, ctx) -> bool:
        if ctx.is_admin:
            return True
        return ctx.user_id in (self.renter_id, self.equipment.owner_id)

    # ===== Transitions (guards live in BookingStateMachine) =====

    def mark_awaiting_payment(self, payment_reference: str, deadline: datetime, *, has_conflict: bool) -> None:
        machine = BookingStateMachine(self.status)
        self.status = machine.initiate_payment(has_conflict=has_conflict).value
        self.payment_reference = payment_reference
        self.payment_deadline = deadline
        self.add_event(BookingAwaitingPayment(
            aggregate_id=self.pk,
            booking_id=self.pk,
            payment_reference=payment_reference,
        ))

    def settle_verified_payment(
        self,
        payment_reference: str,
        *,
        has_conflict: bool,
        paid_at: datetime | None = None,
    ) -> Settlement:
        """
        Apply a verified payment to the booking.

        A payment captured after the checkout deadline expires the booking
        first, so it settles as not applicable and needs a refund.
        """
        machine = BookingStateMachine(self.status)
        old_status = self.status

        if paid_at is not None and self.expire_if_due(paid_at):
            self.requires_refund = True
            return Settlement(SettlementResult.NOT_APPLICABLE, BookingStatus.EXPIRED)

        settlement = machine.settle_verified_payment(has_conflict=has_conflict)
        self.status = settlement.status.value

        if settlement.result == SettlementResult.CONFIRMED:
            self.payment_reference = payment_reference
            self.confirmed_at = timezone.now()
            self.add_event(BookingConfirmed(
                aggregate_id=self.pk,
                booking_id=self.pk,
                equipment_id=self.equipment_id,
                renter_id=self.renter_id,
                payment_reference=payment_reference,
                dates=self.dates,
            ))
        elif settlement.result == SettlementResult.POST_PAYMENT_CONFLICT:
            self.post_payment_conflict = True
            self.requires_refund = True
            self._record_cancellation(
                self.CancellationSource.SYSTEM,
                "Equipment was reserved by someone else while payment was in flight",
                old_status,
            )
        else:
            self.requires_refund = True
        return settlement

    def record_payment_failed(self, payment_reference: str) -> None:
        """The attempt failed; the booking stays open for another attempt until its deadline"""
        self.add_event(BookingPaymentFailed(
            aggregate_id=self.pk,
            booking_id=self.pk,
            payment_reference=payment_reference,
        ))

    def mark_cancelled(self, source: str, reason: str = "") -> None:
        old_status = self.status
        self.status = BookingStateMachine(self.status).cancel().value
        self._record_cancellation(source, reason, old_status)

    def _record_cancellation(self, source: str, reason: str, old_status: str) -> None:
        self.cancellation_source = source
        self.cancellation_reason = reason[:255]
        self.cancelled_at = timezone.now()
        self.add_event(BookingCancelled(
            aggregate_id=self.pk,
            booking_id=self.pk,
            equipment_id=self.equipment_id,
            reason=self.cancellation_reason,
            source=source,
            old_status=old_status,
            requires_refund=self.requires_refund,
        ))

    def expire_if_due(self, now: datetime | None = None) -> bool:
        """Expire when the current deadline has passed. Safe to call repeatedly."""
        now = now or timezone.now()
        old_status = self.status
        machine = BookingStateMachine(self.status)
        if not machine.expire(now=now, deadline=self.deadline):
            return False
        self.status = machine.status.value
        self.expired_at = timezone.now()
        self.add_event(BookingExpired(
            aggregate_id=self.pk,
            booking_id=self.pk,
            equipment_id=self.equipment_id,
            old_status=old_status,
        ))
        return True
