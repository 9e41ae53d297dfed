"""Serializers for the booking domain."""

from __future__ import annotations

from django.utils import timezone  # type: ignore

from rest_framework import serializers  # type: ignore

from apps.equipment.models import Equipment

from .models import Booking


class BookingCreateSerializer(serializers.Serializer):
    """Booking request from a renter."""

    equipment = serializers.PrimaryKeyRelatedField(queryset=Equipment.objects.all())
    start_date = serializers.DateField()
    end_date = serializers.DateField()
    notes = serializers.CharField(required=False, allow_blank=True, default="")

    def validate(self, attrs):  # type: ignore
        if attrs["start_date"] < timezone.localdate():
            raise serializers.ValidationError({"start_date": "Start date cannot be in the past."})
        if attrs["end_date"] < attrs["start_date"]:
            raise serializers.ValidationError({"end_date": "End date cannot be before the start date."})
        return attrs


class BookingCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255, default="")


class AvailabilityQuerySerializer(serializers.Serializer):
    start_date = serializers.DateField()
    end_date = serializers.DateField()

    def validate(self, attrs):  # type: ignore
        if attrs["end_date"] < attrs["start_date"]:
            raise serializers.ValidationError({"end_date": "End date cannot be before the start date."})
        return attrs


class ReservationSerializer(serializers.Serializer):
    kind = serializers.CharField()
    id = serializers.IntegerField()
    start_date = serializers.DateField()
    end_date = serializers.DateField()
    status = serializers.CharField()


class BookingSerializer(serializers.ModelSerializer):
    """Booking details."""

    renter_id = serializers.ReadOnlyField(source="renter.id")
    equipment_id = serializers.ReadOnlyField(source="equipment.id")
    equipment_name = serializers.ReadOnlyField(source="equipment.name")
    owner_id = serializers.ReadOnlyField(source="equipment.owner_id")

    class Meta:
        model = Booking
        fields = [
            "id",
            "renter_id",
            "equipment_id",
            "equipment_name",
            "owner_id",
            "start_date",
            "end_date",
            "total_days",
            "price_per_day",
            "total_price",
            "currency",
            "status",
            "payment_reference",
            "notes",
            "hold_expires_at",
            "payment_deadline",
            "confirmed_at",
            "cancelled_at",
            "expired_at",
            "cancellation_source",
            "cancellation_reason",
            "post_payment_conflict",
            "requires_refund",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields
