"""API views for payment initialisation, verification and the gateway webhook."""

from __future__ import annotations

import json
import logging

from django.conf import settings  # type: ignore
from rest_framework import permissions, status  # type: ignore
from rest_framework.response import Response  # type: ignore
from rest_framework.views import APIView  # type: ignore

from apps.bookings.application.command_handlers import InitiateBookingPaymentCommand
from apps.bookings.models import Booking
from apps.bookings.serializers import BookingSerializer
from shared.application.context import RequestContext
from shared.application.message_bus import message_bus
from shared.domain.exceptions import PermissionDenied, PostPaymentConflict

from .exceptions import AmountMismatch, PaymentNotFound, VerificationPending
from .gateway import verify_webhook_signature
from .models import Payment
from .serializers import (
    CheckoutSerializer,
    InitializePaymentSerializer,
    PaymentOutcomeSerializer,
    PaymentSerializer,
)
from .verifier import get_payment_verifier

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "HTTP_X_PAYSTACK_SIGNATURE"


def get_visible_payment(reference: str, ctx: RequestContext) -> Payment:
    """Payment by reference, if the caller is its payer or a stakeholder of its subject."""
    payment = (
        Payment.objects.select_related("booking__equipment", "group_booking__equipment")
        .filter(gateway_reference=reference)
        .first()
    )
    if payment is None:
        raise PaymentNotFound(reference=reference)
    if ctx.is_admin or payment.payer_id == ctx.user_id:
        return payment
    subject = payment.booking or payment.group_booking
    if subject is not None and subject.is_stakeholder(ctx):
        return payment
    raise PermissionDenied("You cannot view this payment")


class InitializePaymentView(APIView):
    """POST /payments/initialize - open a checkout for a booking."""

    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = InitializePaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        checkout = message_bus.handle_command(InitiateBookingPaymentCommand(
            ctx=RequestContext.from_request(request),
            booking_id=serializer.validated_data["booking_id"],
            email=serializer.validated_data["email"],
        ))
        booking = Booking.objects.get(pk=serializer.validated_data["booking_id"])
        data = CheckoutSerializer(checkout).data
        data["booking"] = BookingSerializer(booking).data
        return Response(data, status=status.HTTP_201_CREATED)


class VerifyPaymentView(APIView):
    """GET /payments/verify/<reference> - verification outcome and the updated booking."""

    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, reference: str):
        get_visible_payment(reference, RequestContext.from_request(request))
        outcome = get_payment_verifier().verify(reference)
        if outcome.post_payment_conflict:
            raise PostPaymentConflict(reference=reference, booking_id=outcome.booking_id)

        data = PaymentOutcomeSerializer(outcome).data
        if outcome.booking_id:
            data["booking"] = BookingSerializer(Booking.objects.get(pk=outcome.booking_id)).data
        return Response(data)


class PaymentStatusView(APIView):
    """GET /payments/status/<reference> - stored state, the gateway is not called."""

    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, reference: str):
        payment = get_visible_payment(reference, RequestContext.from_request(request))
        return Response(PaymentSerializer(payment).data)


class PaymentWebhookView(APIView):
    """
    POST /payments/webhook - gateway push notification.

    The body is only trusted for the reference; settlement always goes
    through the idempotent verify, which asks the gateway itself.
    Transport errors propagate as 503 so the gateway redelivers.
    """

    authentication_classes: list = []
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        payload = request.body
        signature = request.META.get(SIGNATURE_HEADER, "")
        if not verify_webhook_signature(payload, signature, settings.PAYMENT_GATEWAY_SECRET_KEY):
            logger.warning("Rejected payment webhook with an invalid signature")
            return Response({"detail": "Invalid signature"}, status=status.HTTP_401_UNAUTHORIZED)

        try:
            body = json.loads(payload or b"{}")
        except ValueError:
            return Response({"detail": "Invalid JSON"}, status=status.HTTP_400_BAD_REQUEST)

        reference = (body.get("data") or {}).get("reference")
        if not reference:
            logger.info("Payment webhook %s without a reference ignored", body.get("event"))
            return Response({"status": "ignored"})

        try:
            outcome = get_payment_verifier().verify(reference)
        except (PaymentNotFound, VerificationPending, AmountMismatch) as exc:
            logger.info("Payment webhook for %s not settled: %s", reference, exc.code)
            return Response({"status": exc.code})

        return Response({"status": outcome.status})
