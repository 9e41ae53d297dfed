"""Group booking models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List

from django.conf import settings  # type: ignore
from django.db import models  # type: ignore
from django.utils import timezone  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from shared.domain.base import EventRecorder
from shared.domain.value_objects import DateRange, Money

from .domain.aggregator import (
    GroupBookingAggregator,
    GroupBookingStatus,
    ParticipantPaymentStatus,
    ParticipantState,
)
from .domain.events import (
    GroupBookingCancelled,
    GroupBookingConfirmed,
    GroupBookingExpired,
    GroupBookingReady,
)


class GroupBooking(EventRecorder, models.Model):
    """One reservation of an equipment item shared by several payers."""

    class Status(models.TextChoices):
        COLLECTING = GroupBookingStatus.COLLECTING.value, _("Collecting payments")
        READY = GroupBookingStatus.READY.value, _("Ready for confirmation")
        CONFIRMED = GroupBookingStatus.CONFIRMED.value, _("Confirmed")
        CANCELLED = GroupBookingStatus.CANCELLED.value, _("Cancelled")
        EXPIRED = GroupBookingStatus.EXPIRED.value, _("Expired")

    equipment = models.ForeignKey(
        "equipment.Equipment",
        on_delete=models.PROTECT,
        related_name="group_bookings",
    )
    initiator = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="initiated_group_bookings",
    )
    start_date = models.DateField()
    end_date = models.DateField()
    total_days = models.PositiveIntegerField(default=1)
    price_per_day = models.DecimalField(max_digits=12, decimal_places=2)
    total_price = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    currency = models.CharField(max_length=3, default="NGN")
    total_slots = models.PositiveSmallIntegerField(help_text=_("Maximum number of participants"))
    min_participants = models.PositiveSmallIntegerField(default=2)
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.COLLECTING,
    )
    is_public = models.BooleanField(default=True)
    notes = models.TextField(blank=True)
    expires_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text=_("A collecting group past this moment expires."),
    )
    ready_at = models.DateTimeField(null=True, blank=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    expired_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.CharField(max_length=255, blank=True)
    post_payment_conflict = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Group booking")
        verbose_name_plural = _("Group bookings")
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(end_date__gte=models.F("start_date")),
                name="group_booking_valid_dates",
            ),
            models.CheckConstraint(
                condition=models.Q(min_participants__gte=2)
                & models.Q(total_slots__gte=models.F("min_participants")),
                name="group_booking_valid_slots",
            ),
        ]
        indexes = [
            models.Index(fields=["equipment", "start_date", "end_date"], name="group_equipment_dates_idx"),
            models.Index(fields=["status", "expires_at"], name="group_status_expires_idx"),
        ]

    def __str__(self) -> str:
        return f"Group booking #{self.pk} for equipment {self.equipment_id}"

    @property
    def dates(self) -> DateRange:
        return DateRange(self.start_date, self.end_date)

    @property
    def total(self) -> Money:
        return Money(self.total_price, self.currency)

    @property
    def is_ready_or_confirmed(self) -> bool:
        return self.status in (self.Status.READY, self.Status.CONFIRMED)

    def participant_states(self) -> List[ParticipantState]:
        return [p.state for p in self.participants.all()]

    def aggregator(self) -> GroupBookingAggregator:
        return GroupBookingAggregator(
            self.status,
            self.total_price,
            self.total_slots,
            self.min_participants,
            self.participant_states(),
        )

    def is_stakeholder(self, ctx) -> bool:
        if ctx.is_admin or ctx.user_id in (self.initiator_id, self.equipment.owner_id):
            return True
        return self.participants.filter(user_id=ctx.user_id).exists()

    # ===== Transitions (guards live in GroupBookingAggregator) =====

    def refresh_readiness(self) -> bool:
        """Run the readiness fold; True when the group just became ready"""
        aggregator = self.aggregator()
        if not aggregator.ready_now():
            return False
        self.status = aggregator.status.value
        self.ready_at = timezone.now()
        self.add_event(GroupBookingReady(
            aggregate_id=self.pk,
            group_booking_id=self.pk,
            equipment_id=self.equipment_id,
        ))
        return True

    def mark_confirmed(self, *, has_conflict: bool) -> bool:
        """Owner confirmation; a conflict cancels the group and flags refunds"""
        aggregator = self.aggregator()
        old_status = self.status
        self.status = aggregator.confirm(has_conflict=has_conflict).value
        if has_conflict:
            self._record_cancellation(
                "Equipment was reserved by someone else before confirmation",
                old_status,
                post_payment_conflict=True,
            )
            return False
        self.confirmed_at = timezone.now()
        self.add_event(GroupBookingConfirmed(
            aggregate_id=self.pk,
            group_booking_id=self.pk,
            equipment_id=self.equipment_id,
        ))
        return True

    def mark_cancelled(self, reason: str = "", *, post_payment_conflict: bool = False) -> None:
        old_status = self.status
        self.status = self.aggregator().cancel().value
        self._record_cancellation(reason, old_status, post_payment_conflict=post_payment_conflict)

    def _record_cancellation(self, reason: str, old_status: str, *, post_payment_conflict: bool) -> None:
        self.cancellation_reason = reason[:255]
        self.cancelled_at = timezone.now()
        self.post_payment_conflict = post_payment_conflict
        self.add_event(GroupBookingCancelled(
            aggregate_id=self.pk,
            group_booking_id=self.pk,
            reason=self.cancellation_reason,
            old_status=old_status,
            refund_participant_ids=tuple(self.flag_refunds()),
            post_payment_conflict=post_payment_conflict,
        ))

    def expire_if_due(self, now: datetime | None = None) -> bool:
        aggregator = self.aggregator()
        if not aggregator.expire(now=now or timezone.now(), expires_at=self.expires_at):
            return False
        self.status = aggregator.status.value
        self.expired_at = timezone.now()
        self.add_event(GroupBookingExpired(
            aggregate_id=self.pk,
            group_booking_id=self.pk,
            refund_participant_ids=tuple(self.flag_refunds()),
        ))
        return True

    def flag_refunds(self) -> List[int]:
        """Flag every participant who has paid; their money must go back"""
        paid = self.participants.filter(payment_status=Participant.PaymentStatus.VERIFIED)
        ids = list(paid.values_list("pk", flat=True))
        paid.update(requires_refund=True)
        if ids:
            from apps.payments.models import Payment

            Payment.objects.filter(
                participant_id__in=ids,
                status=Payment.Status.VERIFIED,
            ).update(requires_refund=True)
        return ids


class Participant(models.Model):
    """One payer within a group booking."""

    class PaymentStatus(models.TextChoices):
        NOT_STARTED = ParticipantPaymentStatus.NOT_STARTED.value, _("Not started")
        INITIATED = ParticipantPaymentStatus.INITIATED.value, _("Initiated")
        VERIFIED = ParticipantPaymentStatus.VERIFIED.value, _("Verified")
        FAILED = ParticipantPaymentStatus.FAILED.value, _("Failed")

    group_booking = models.ForeignKey(
        GroupBooking,
        on_delete=models.CASCADE,
        related_name="participants",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="group_participations",
    )
    share_amount = models.DecimalField(max_digits=14, decimal_places=2)
    payment_reference = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        help_text=_("Gateway reference of the current payment attempt."),
    )
    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.NOT_STARTED,
    )
    requires_refund = models.BooleanField(default=False)
    joined_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Participant")
        verbose_name_plural = _("Participants")
        ordering = ["joined_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["group_booking", "user"],
                name="unique_participant_per_group",
            ),
        ]

    def __str__(self) -> str:
        return f"Participant {self.user_id} in group {self.group_booking_id}"

    @property
    def state(self) -> ParticipantState:
        return ParticipantState(
            user_id=self.user_id,
            share=self.share_amount,
            payment_status=ParticipantPaymentStatus(self.payment_status),
        )

    @property
    def share(self) -> Money:
        return Money(self.share_amount, self.group_booking.currency)
