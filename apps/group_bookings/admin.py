"""Admin registration for group bookings."""

from __future__ import annotations

from django.contrib import admin

from .models import GroupBooking, Participant


class ParticipantInline(admin.TabularInline):
    model = Participant
    extra = 0
    readonly_fields = ("user", "share_amount", "payment_reference", "payment_status", "requires_refund", "joined_at")
    can_delete = False


@admin.register(GroupBooking)
class GroupBookingAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "equipment",
        "initiator",
        "status",
        "start_date",
        "end_date",
        "total_price",
        "total_slots",
        "expires_at",
        "created_at",
    )
    list_filter = ("status", "is_public", "post_payment_conflict")
    search_fields = ("equipment__name", "initiator__email")
    readonly_fields = (
        "status",
        "total_days",
        "total_price",
        "ready_at",
        "confirmed_at",
        "cancelled_at",
        "expired_at",
        "created_at",
        "updated_at",
    )
    inlines = [ParticipantInline]
