"""Payment models."""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings  # type: ignore
from django.db import models  # type: ignore
from django.utils import timezone  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from shared.domain.base import EventRecorder
from shared.domain.value_objects import Money

from .events import PaymentFailed, PaymentVerified


class Payment(EventRecorder, models.Model):
    """One payment attempt against the gateway, keyed by its reference."""

    class Status(models.TextChoices):
        INITIATED = "initiated", _("Initiated")
        VERIFIED = "verified", _("Verified")
        FAILED = "failed", _("Failed")

    AMOUNT_MISMATCH = "amount_mismatch"

    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="payments",
    )
    group_booking = models.ForeignKey(
        "group_bookings.GroupBooking",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="payments",
    )
    # Kept when a participant leaves so a late verification is still traceable
    participant = models.ForeignKey(
        "group_bookings.Participant",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payments",
    )
    payer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payments",
    )
    gateway_reference = models.CharField(max_length=100, unique=True)
    amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    currency = models.CharField(max_length=3, default="NGN")
    channel = models.CharField(max_length=50, blank=True, help_text=_("Reported by the gateway (card, bank, ...)"))
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.INITIATED)
    authorization_url = models.URLField(max_length=500, blank=True)
    access_code = models.CharField(max_length=100, blank=True)
    failure_reason = models.CharField(max_length=255, blank=True)
    paid_amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        null=True,
        blank=True,
        help_text=_("Amount the gateway reported"),
    )
    paid_currency = models.CharField(max_length=3, blank=True)
    gateway_response = models.JSONField(default=dict, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    verified_at = models.DateTimeField(null=True, blank=True)
    requires_refund = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Payment")
        verbose_name_plural = _("Payments")
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=(
                    models.Q(booking__isnull=False, group_booking__isnull=True)
                    | models.Q(booking__isnull=True, group_booking__isnull=False)
                ),
                name="payment_single_owner",
            ),
        ]
        indexes = [
            models.Index(fields=["status", "created_at"], name="payment_status_created_idx"),
        ]

    def __str__(self) -> str:
        return f"Payment {self.gateway_reference} ({self.status})"

    @property
    def expected(self) -> Money:
        return Money(self.amount, self.currency)

    @property
    def is_terminal(self) -> bool:
        return self.status != self.Status.INITIATED

    @property
    def is_amount_mismatch(self) -> bool:
        return self.status == self.Status.FAILED and self.failure_reason == self.AMOUNT_MISMATCH

    def _finalize(self, **changes) -> bool:
        """
        Write a terminal status exactly once.

        Conditional update keyed on "still initiated": of several concurrent
        verifiers only one gets a row back, the others must re-read.
        """
        changes["updated_at"] = timezone.now()
        updated = type(self).objects.filter(
            pk=self.pk,
            status=self.Status.INITIATED,
        ).update(**changes)
        if not updated:
            return False
        for name, value in changes.items():
            setattr(self, name, value)
        return True

    def mark_verified(self, verification) -> bool:
        if not self._finalize(
            status=self.Status.VERIFIED,
            channel=verification.channel[:50],
            paid_amount=verification.amount.amount,
            paid_currency=verification.amount.currency,
            paid_at=verification.paid_at or timezone.now(),
            verified_at=timezone.now(),
            gateway_response=verification.raw,
        ):
            return False
        self.add_event(PaymentVerified(
            aggregate_id=self.pk,
            payment_id=self.pk,
            reference=self.gateway_reference,
            amount=self.amount,
            currency=self.currency,
        ))
        return True

    def mark_failed(self, reason: str, verification=None) -> bool:
        changes = {"status": self.Status.FAILED, "failure_reason": (reason or "failed")[:255]}
        if verification is not None:
            changes["gateway_response"] = verification.raw
            changes["channel"] = verification.channel[:50]
            if verification.amount is not None:
                changes["paid_amount"] = verification.amount.amount
                changes["paid_currency"] = verification.amount.currency
        if not self._finalize(**changes):
            return False
        self.add_event(PaymentFailed(
            aggregate_id=self.pk,
            payment_id=self.pk,
            reference=self.gateway_reference,
            failure_reason=self.failure_reason,
        ))
        return True

    def flag_for_refund(self) -> None:
        """Money was captured for a subject that could not take it"""
        self.requires_refund = True
        type(self).objects.filter(pk=self.pk).update(requires_refund=True, updated_at=timezone.now())
        for event in self.events:
            if isinstance(event, PaymentVerified):
                event.requires_refund = True
