"""Equipment domain models."""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings  # type: ignore
from django.core.validators import MinValueValidator  # type: ignore
from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from shared.domain.value_objects import Money


class Equipment(models.Model):
    """A rentable piece of equipment listed by its owner."""

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="equipment",
    )
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    location = models.CharField(max_length=200, blank=True)
    price_per_day = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.01"))],
    )
    currency = models.CharField(max_length=3, default="NGN")
    is_available = models.BooleanField(
        default=True,
        help_text=_("Owner switch; unavailable equipment accepts no new reservations."),
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Equipment")
        verbose_name_plural = _("Equipment")
        ordering = ["name"]
        indexes = [
            models.Index(fields=["owner", "is_available"], name="equipment_owner_avail_idx"),
        ]

    def __str__(self) -> str:
        return self.name

    @property
    def daily_rate(self) -> Money:
        return Money(self.price_per_day, self.currency)
