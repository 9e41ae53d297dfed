"""API views for group bookings."""

from __future__ import annotations

from django.db.models import Q  # type: ignore
from django.utils import timezone  # type: ignore
from rest_framework import mixins, permissions, status, viewsets  # type: ignore
from rest_framework.decorators import action  # type: ignore
from rest_framework.response import Response  # type: ignore

from apps.bookings.views import BookingPagination
from apps.payments.serializers import CheckoutSerializer
from apps.payments.views import get_visible_payment
from apps.payments.verifier import get_payment_verifier
from shared.application.context import RequestContext
from shared.application.message_bus import message_bus
from shared.domain.exceptions import PostPaymentConflict

from .application.command_handlers import (
    CancelGroupBookingCommand,
    ConfirmGroupBookingCommand,
    CreateGroupBookingCommand,
    ExpireGroupBookingCommand,
    InitiateParticipantPaymentCommand,
    JoinGroupBookingCommand,
    RemoveParticipantCommand,
    expire_overdue_group_bookings,
)
from .models import GroupBooking
from .serializers import (
    GroupBookingCancelSerializer,
    GroupBookingCreateSerializer,
    GroupBookingSerializer,
    GroupPaymentOutcomeSerializer,
    JoinGroupBookingSerializer,
    ParticipantPaymentSerializer,
    ParticipantSerializer,
)


class CanViewGroupBooking(permissions.BasePermission):
    """Public groups are visible to anyone signed in; private ones to stakeholders."""

    def has_object_permission(self, request, view, obj: GroupBooking):  # type: ignore
        return obj.is_public or obj.is_stakeholder(RequestContext.from_request(request))


class GroupBookingViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """
    Group bookings: one reservation paid for by several participants.

    State changes go through the message bus; the handlers enforce who may
    do what, so the write actions only parse input and render the result.
    """

    queryset = (
        GroupBooking.objects.select_related("equipment", "initiator")
        .prefetch_related("participants__user")
        .all()
    )
    serializer_class = GroupBookingSerializer
    permission_classes = [permissions.IsAuthenticated, CanViewGroupBooking]
    pagination_class = BookingPagination
    filterset_fields = ["status", "equipment"]
    lookup_value_regex = r"\d+"

    def get_serializer_class(self):  # type: ignore
        return {
            "create": GroupBookingCreateSerializer,
            "participants": JoinGroupBookingSerializer,
            "my_payment": ParticipantPaymentSerializer,
            "cancel": GroupBookingCancelSerializer,
        }.get(self.action, GroupBookingSerializer)

    def get_queryset(self):  # type: ignore
        qs = super().get_queryset()
        if self.action != "list":
            return qs
        ctx = RequestContext.from_request(self.request)
        if ctx.is_admin:
            return qs
        return qs.filter(
            Q(initiator_id=ctx.user_id)
            | Q(participants__user_id=ctx.user_id)
            | Q(equipment__owner_id=ctx.user_id)
        ).distinct()

    def list(self, request, *args, **kwargs):  # type: ignore
        expire_overdue_group_bookings(self.get_queryset())
        return super().list(request, *args, **kwargs)

    def get_object(self):  # type: ignore
        group = super().get_object()
        if message_bus.handle_command(ExpireGroupBookingCommand(group.pk)):
            group.refresh_from_db()
        return group

    def _render(self, group_booking_id, status_code=status.HTTP_200_OK):
        group = self.get_queryset().get(pk=group_booking_id)
        return Response(GroupBookingSerializer(group, context=self.get_serializer_context()).data, status=status_code)

    def create(self, request, *args, **kwargs):  # type: ignore
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        group = message_bus.handle_command(CreateGroupBookingCommand(
            ctx=RequestContext.from_request(request),
            equipment_id=data["equipment"].pk,
            start_date=data["start_date"],
            end_date=data["end_date"],
            total_slots=data["total_slots"],
            min_participants=data["min_participants"],
            expires_at=data["expires_at"],
            is_public=data["is_public"],
            notes=data["notes"],
        ))
        return self._render(group.pk, status.HTTP_201_CREATED)

    @action(
        detail=False,
        methods=["get"],
        url_path=r"available/(?P<equipment_id>\d+)",
        permission_classes=[permissions.AllowAny],
    )
    def available(self, request, equipment_id=None):  # type: ignore
        """Public groups still collecting for this equipment."""
        qs = self.get_queryset().filter(
            equipment_id=equipment_id,
            is_public=True,
            status=GroupBooking.Status.COLLECTING,
        ).filter(Q(expires_at__isnull=True) | Q(expires_at__gt=timezone.now()))
        page = self.paginate_queryset(qs)
        if page is not None:
            return self.get_paginated_response(GroupBookingSerializer(page, many=True).data)
        return Response(GroupBookingSerializer(qs, many=True).data)

    @action(detail=True, methods=["post"])
    def participants(self, request, pk=None):  # type: ignore
        """Join the group and open a checkout for the caller's share."""
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        ctx = RequestContext.from_request(request)
        participant = message_bus.handle_command(JoinGroupBookingCommand(
            ctx=ctx,
            group_booking_id=int(pk),
            share=serializer.validated_data["share"],
        ))
        checkout = message_bus.handle_command(InitiateParticipantPaymentCommand(
            ctx=ctx,
            group_booking_id=int(pk),
            email=serializer.validated_data["email"],
        ))
        participant.refresh_from_db()
        data = CheckoutSerializer(checkout).data
        data["participant"] = ParticipantSerializer(participant).data
        return Response(data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="participants/me/payment")
    def my_payment(self, request, pk=None):  # type: ignore
        """Open a new checkout for the caller, e.g. after a failed payment."""
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        checkout = message_bus.handle_command(InitiateParticipantPaymentCommand(
            ctx=RequestContext.from_request(request),
            group_booking_id=int(pk),
            email=serializer.validated_data["email"],
        ))
        return Response(CheckoutSerializer(checkout).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["delete"], url_path=r"participants/(?P<participant_id>\d+)")
    def remove_participant(self, request, pk=None, participant_id=None):  # type: ignore
        message_bus.handle_command(RemoveParticipantCommand(
            ctx=RequestContext.from_request(request),
            group_booking_id=int(pk),
            participant_id=int(participant_id),
        ))
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["post"])
    def confirm(self, request, pk=None):  # type: ignore
        group = message_bus.handle_command(ConfirmGroupBookingCommand(
            ctx=RequestContext.from_request(request),
            group_booking_id=int(pk),
        ))
        return self._render(group.pk)

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):  # type: ignore
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        group = message_bus.handle_command(CancelGroupBookingCommand(
            ctx=RequestContext.from_request(request),
            group_booking_id=int(pk),
            reason=serializer.validated_data["reason"],
        ))
        return self._render(group.pk)

    @action(detail=False, methods=["get"], url_path=r"payment/verify/(?P<reference>[^/]+)")
    def verify_payment(self, request, reference=None):  # type: ignore
        """Verification outcome of a participant payment plus the group readiness flag."""
        get_visible_payment(reference, RequestContext.from_request(request))
        outcome = get_payment_verifier().verify(reference)
        if outcome.post_payment_conflict:
            raise PostPaymentConflict(reference=reference, group_booking_id=outcome.group_booking_id)

        data = GroupPaymentOutcomeSerializer(outcome).data
        if outcome.group_booking_id:
            group = GroupBooking.objects.get(pk=outcome.group_booking_id)
            data["group_booking"] = GroupBookingSerializer(group, context=self.get_serializer_context()).data
        return Response(data)
