"""Equipment availability: which date ranges are already taken."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import List

from django.db import transaction  # type: ignore
from django.db.models import Q  # type: ignore
from django.db.utils import NotSupportedError  # type: ignore

from apps.bookings.domain.state_machine import BLOCKING_STATUSES
from shared.domain.exceptions import ConflictError, NotFound
from shared.domain.value_objects import DateRange

logger = logging.getLogger(__name__)

# Group statuses holding the equipment; a collecting group does not block yet
BLOCKING_GROUP_STATUSES = ("ready", "confirmed")


@dataclass(frozen=True)
class Reservation:
    """A blocking reservation as seen by the availability endpoint"""

    kind: str  # "booking" | "group_booking"
    id: int
    start_date: date
    end_date: date
    status: str


def _lock_queryset_if_possible(queryset):
    """Apply select_for_update when inside transaction.atomic()."""

    if not transaction.get_connection().in_atomic_block:
        return queryset

    try:
        return queryset.select_for_update()
    except NotSupportedError:
        return queryset


def lock_equipment(equipment_id):
    """
    Load the equipment row, locked for the rest of the transaction.

    Every check-then-write on a date range runs after this call, so two
    requests for the same equipment serialize here instead of both seeing
    "no conflict" before either commits.
    """

    from apps.equipment.models import Equipment

    try:
        return _lock_queryset_if_possible(Equipment.objects.all()).get(pk=equipment_id)
    except Equipment.DoesNotExist:
        raise NotFound("Equipment not found", equipment_id=equipment_id)


def _overlapping(dates: DateRange) -> Q:
    # Closed intervals: [s1, e1] and [s2, e2] intersect iff s1 <= e2 and s2 <= e1
    return Q(start_date__lte=dates.end_date) & Q(end_date__gte=dates.start_date)


class AvailabilityIndex:
    """Answers "is this equipment free for these dates?" against stored reservations."""

    def _booking_queryset(self, equipment_id, dates: DateRange, exclude_booking_id=None):
        from apps.bookings.models import Booking

        qs = Booking.objects.filter(
            equipment_id=equipment_id,
            status__in=[status.value for status in BLOCKING_STATUSES],
        ).filter(_overlapping(dates))
        if exclude_booking_id is not None:
            qs = qs.exclude(pk=exclude_booking_id)
        return qs

    def _group_queryset(self, equipment_id, dates: DateRange, exclude_group_id=None):
        from apps.group_bookings.models import GroupBooking

        qs = GroupBooking.objects.filter(
            equipment_id=equipment_id,
            status__in=BLOCKING_GROUP_STATUSES,
        ).filter(_overlapping(dates))
        if exclude_group_id is not None:
            qs = qs.exclude(pk=exclude_group_id)
        return qs

    def has_conflict(
        self,
        equipment_id,
        dates: DateRange,
        *,
        exclude_booking_id=None,
        exclude_group_id=None,
    ) -> bool:
        """True if any other blocking booking or group intersects ``dates``."""

        if self._booking_queryset(equipment_id, dates, exclude_booking_id).exists():
            return True
        return self._group_queryset(equipment_id, dates, exclude_group_id).exists()

    def ensure_available(self, equipment_id, dates: DateRange, **exclude) -> None:
        if self.has_conflict(equipment_id, dates, **exclude):
            logger.warning(
                "Conflict for equipment %s on %s..%s",
                equipment_id, dates.start_date, dates.end_date,
            )
            raise ConflictError(
                equipment_id=equipment_id,
                start_date=dates.start_date,
                end_date=dates.end_date,
            )

    def blocking_reservations(self, equipment_id, dates: DateRange) -> List[Reservation]:
        reservations = [
            Reservation("booking", b.pk, b.start_date, b.end_date, b.status)
            for b in self._booking_queryset(equipment_id, dates).order_by("start_date")
        ]
        reservations.extend(
            Reservation("group_booking", g.pk, g.start_date, g.end_date, g.status)
            for g in self._group_queryset(equipment_id, dates).order_by("start_date")
        )
        return sorted(reservations, key=lambda r: (r.start_date, r.kind, r.id))


availability_index = AvailabilityIndex()
