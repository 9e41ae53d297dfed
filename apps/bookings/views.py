"""API views for the booking domain."""

from __future__ import annotations

from django.conf import settings  # type: ignore
from django.db.models import Q  # type: ignore
from rest_framework import mixins, permissions, status, viewsets  # type: ignore
from rest_framework.decorators import action  # type: ignore
from rest_framework.pagination import PageNumberPagination  # type: ignore
from rest_framework.response import Response  # type: ignore

from apps.equipment.models import Equipment
from shared.application.context import RequestContext
from shared.application.message_bus import message_bus
from shared.domain.exceptions import NotFound
from shared.domain.value_objects import DateRange

from .application.command_handlers import (
    CancelBookingCommand,
    CreateBookingCommand,
    ExpireBookingCommand,
    expire_overdue_bookings,
)
from .availability import availability_index
from .models import Booking
from .serializers import (
    AvailabilityQuerySerializer,
    BookingCancelSerializer,
    BookingCreateSerializer,
    BookingSerializer,
    ReservationSerializer,
)


class BookingPagination(PageNumberPagination):
    page_size_query_param = "page_size"
    max_page_size = 100

    def __init__(self):
        self.page_size = settings.BOOKINGS_PAGE_SIZE


class IsBookingStakeholder(permissions.BasePermission):
    """Renters, equipment owners and admins have access to a booking."""

    def has_object_permission(self, request, view, obj: Booking):  # type: ignore
        return obj.is_stakeholder(RequestContext.from_request(request))


class BookingViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """Create, list, inspect and cancel bookings."""

    queryset = Booking.objects.select_related("equipment", "renter", "equipment__owner").all()
    serializer_class = BookingSerializer
    permission_classes = [permissions.IsAuthenticated, IsBookingStakeholder]
    pagination_class = BookingPagination
    filterset_fields = ["status", "equipment"]
    lookup_value_regex = r"\d+"

    def get_serializer_class(self):  # type: ignore
        if self.action == "create":
            return BookingCreateSerializer
        if self.action == "cancel":
            return BookingCancelSerializer
        return BookingSerializer

    def get_queryset(self):  # type: ignore
        ctx = RequestContext.from_request(self.request)
        qs = super().get_queryset()
        if ctx.is_admin:
            return qs
        if ctx.role == "owner":
            return qs.filter(Q(equipment__owner_id=ctx.user_id) | Q(renter_id=ctx.user_id))
        return qs.filter(renter_id=ctx.user_id)

    def list(self, request, *args, **kwargs):  # type: ignore
        expire_overdue_bookings(self.get_queryset())
        return super().list(request, *args, **kwargs)

    def get_object(self):  # type: ignore
        booking = super().get_object()
        if message_bus.handle_command(ExpireBookingCommand(booking.pk)):
            booking.refresh_from_db()
        return booking

    def create(self, request, *args, **kwargs):  # type: ignore
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        booking = message_bus.handle_command(CreateBookingCommand(
            ctx=RequestContext.from_request(request),
            equipment_id=serializer.validated_data["equipment"].pk,
            start_date=serializer.validated_data["start_date"],
            end_date=serializer.validated_data["end_date"],
            notes=serializer.validated_data["notes"],
        ))
        read_serializer = BookingSerializer(booking, context=self.get_serializer_context())
        return Response(read_serializer.data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):  # type: ignore
        booking: Booking = self.get_object()  # type: ignore
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        booking = message_bus.handle_command(CancelBookingCommand(
            ctx=RequestContext.from_request(request),
            booking_id=booking.pk,
            reason=serializer.validated_data["reason"],
        ))
        return Response(BookingSerializer(booking, context=self.get_serializer_context()).data)

    @action(
        detail=False,
        methods=["get"],
        url_path=r"availability/(?P<equipment_id>\d+)",
        permission_classes=[permissions.AllowAny],
        filter_backends=[],
        pagination_class=None,
    )
    def availability(self, request, equipment_id=None):  # type: ignore
        equipment = Equipment.objects.filter(pk=equipment_id).first()
        if equipment is None:
            raise NotFound("Equipment not found", equipment_id=equipment_id)
        query = AvailabilityQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        dates = DateRange(query.validated_data["start_date"], query.validated_data["end_date"])

        reservations = availability_index.blocking_reservations(equipment_id, dates)
        return Response({
            "equipment_id": int(equipment_id),
            "start_date": dates.start_date,
            "end_date": dates.end_date,
            "is_available": equipment.is_available and not reservations,
            "reservations": ReservationSerializer(reservations, many=True).data,
        })
