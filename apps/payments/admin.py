"""Admin registration for payments."""

from __future__ import annotations

from django.contrib import admin

from .models import Payment


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = (
        "gateway_reference",
        "booking",
        "group_booking",
        "payer",
        "amount",
        "currency",
        "status",
        "requires_refund",
        "created_at",
    )
    list_filter = ("status", "requires_refund", "currency", "channel")
    search_fields = ("gateway_reference", "payer__email")
    readonly_fields = (
        "gateway_reference",
        "amount",
        "currency",
        "status",
        "paid_amount",
        "paid_currency",
        "gateway_response",
        "paid_at",
        "verified_at",
        "created_at",
        "updated_at",
    )
