"""Serializers for group bookings."""

from __future__ import annotations

from decimal import Decimal

from django.utils import timezone  # type: ignore
from rest_framework import serializers  # type: ignore

from apps.equipment.models import Equipment
from apps.payments.serializers import PaymentOutcomeSerializer

from .domain.aggregator import committed_total
from .models import GroupBooking, Participant


class GroupBookingCreateSerializer(serializers.Serializer):
    equipment = serializers.PrimaryKeyRelatedField(queryset=Equipment.objects.all())
    start_date = serializers.DateField()
    end_date = serializers.DateField()
    total_slots = serializers.IntegerField(min_value=2)
    min_participants = serializers.IntegerField(min_value=2, default=2)
    expires_at = serializers.DateTimeField(required=False, allow_null=True, default=None)
    is_public = serializers.BooleanField(default=True)
    notes = serializers.CharField(required=False, allow_blank=True, default="")

    def validate(self, attrs):  # type: ignore
        if attrs["start_date"] < timezone.localdate():
            raise serializers.ValidationError({"start_date": "Start date cannot be in the past."})
        if attrs["end_date"] < attrs["start_date"]:
            raise serializers.ValidationError({"end_date": "End date cannot be before the start date."})
        if attrs["total_slots"] < attrs["min_participants"]:
            raise serializers.ValidationError(
                {"total_slots": "Total slots cannot be lower than the minimum number of participants."}
            )
        return attrs


class JoinGroupBookingSerializer(serializers.Serializer):
    share = serializers.DecimalField(
        max_digits=14,
        decimal_places=2,
        min_value=Decimal("0.01"),
        required=False,
        allow_null=True,
        default=None,
    )
    email = serializers.EmailField(required=False, allow_blank=True, default="")


class ParticipantPaymentSerializer(serializers.Serializer):
    email = serializers.EmailField(required=False, allow_blank=True, default="")


class GroupBookingCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255, default="")


class ParticipantSerializer(serializers.ModelSerializer):
    user_id = serializers.ReadOnlyField(source="user.id")
    email = serializers.ReadOnlyField(source="user.email")

    class Meta:
        model = Participant
        fields = [
            "id",
            "user_id",
            "email",
            "share_amount",
            "payment_reference",
            "payment_status",
            "requires_refund",
            "joined_at",
        ]
        read_only_fields = fields


class GroupBookingSerializer(serializers.ModelSerializer):
    """Group booking with its participants and how much is still uncommitted."""

    initiator_id = serializers.ReadOnlyField(source="initiator.id")
    equipment_id = serializers.ReadOnlyField(source="equipment.id")
    equipment_name = serializers.ReadOnlyField(source="equipment.name")
    owner_id = serializers.ReadOnlyField(source="equipment.owner_id")
    participants = ParticipantSerializer(many=True, read_only=True)
    committed_amount = serializers.SerializerMethodField()
    remaining_amount = serializers.SerializerMethodField()
    slots_left = serializers.SerializerMethodField()

    class Meta:
        model = GroupBooking
        fields = [
            "id",
            "initiator_id",
            "equipment_id",
            "equipment_name",
            "owner_id",
            "start_date",
            "end_date",
            "total_days",
            "price_per_day",
            "total_price",
            "currency",
            "total_slots",
            "min_participants",
            "status",
            "is_public",
            "notes",
            "expires_at",
            "ready_at",
            "confirmed_at",
            "cancelled_at",
            "expired_at",
            "cancellation_reason",
            "post_payment_conflict",
            "participants",
            "committed_amount",
            "remaining_amount",
            "slots_left",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_committed_amount(self, obj: GroupBooking) -> Decimal:
        return committed_total(obj.participant_states())

    def get_remaining_amount(self, obj: GroupBooking) -> Decimal:
        return obj.total_price - self.get_committed_amount(obj)

    def get_slots_left(self, obj: GroupBooking) -> int:
        return max(obj.total_slots - obj.participants.count(), 0)


class GroupPaymentOutcomeSerializer(PaymentOutcomeSerializer):
    group_ready = serializers.BooleanField(allow_null=True)
