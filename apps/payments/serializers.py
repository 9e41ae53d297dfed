"""Serializers for the payments API."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from .models import Payment


class InitializePaymentSerializer(serializers.Serializer):
    booking_id = serializers.IntegerField(min_value=1)
    email = serializers.EmailField(required=False, allow_blank=True, default="")


class CheckoutSerializer(serializers.Serializer):
    reference = serializers.CharField()
    authorization_url = serializers.URLField()
    access_code = serializers.CharField(allow_blank=True)


class PaymentOutcomeSerializer(serializers.Serializer):
    """Verification outcome, built from stored state only."""

    reference = serializers.CharField()
    status = serializers.CharField()
    verified = serializers.BooleanField()
    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    currency = serializers.CharField()
    channel = serializers.CharField(allow_blank=True)
    paid_at = serializers.DateTimeField(allow_null=True)
    booking_id = serializers.IntegerField(allow_null=True)
    group_booking_id = serializers.IntegerField(allow_null=True)
    participant_id = serializers.IntegerField(allow_null=True)
    subject_status = serializers.CharField(allow_blank=True)
    requires_refund = serializers.BooleanField()
    post_payment_conflict = serializers.BooleanField()


class PaymentSerializer(serializers.ModelSerializer):
    reference = serializers.ReadOnlyField(source="gateway_reference")

    class Meta:
        model = Payment
        fields = [
            "id",
            "reference",
            "booking",
            "group_booking",
            "participant",
            "amount",
            "currency",
            "channel",
            "status",
            "failure_reason",
            "paid_at",
            "verified_at",
            "requires_refund",
            "created_at",
        ]
        read_only_fields = fields
