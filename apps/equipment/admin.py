"""Admin registrations for equipment."""

from __future__ import annotations

from django.contrib import admin

from .models import Equipment


@admin.register(Equipment)
class EquipmentAdmin(admin.ModelAdmin):
    list_display = ("name", "owner", "price_per_day", "currency", "is_available", "created_at")
    list_filter = ("is_available", "currency")
    search_fields = ("name", "owner__email", "location")
    readonly_fields = ("created_at", "updated_at")
