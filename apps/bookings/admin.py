"""Admin registration for bookings."""

from __future__ import annotations

from django.contrib import admin

from .models import Booking


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "equipment",
        "renter",
        "status",
        "start_date",
        "end_date",
        "total_price",
        "requires_refund",
        "created_at",
    )
    list_filter = ("status", "cancellation_source", "post_payment_conflict", "requires_refund")
    search_fields = ("payment_reference", "equipment__name", "renter__email")
    readonly_fields = (
        "status",
        "payment_reference",
        "total_days",
        "total_price",
        "hold_expires_at",
        "payment_deadline",
        "confirmed_at",
        "cancelled_at",
        "expired_at",
        "created_at",
        "updated_at",
    )
