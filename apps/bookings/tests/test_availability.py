from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from apps.bookings.availability import AvailabilityIndex
from apps.bookings.models import Booking
from apps.equipment.models import Equipment
from apps.group_bookings.models import GroupBooking
from apps.users.models import User
from shared.domain.exceptions import ConflictError
from shared.domain.value_objects import DateRange

pytestmark = pytest.mark.django_db


@pytest.fixture
def owner():
    return User.objects.create_user(email="owner@example.com", password="x", role=User.RoleChoices.OWNER)


@pytest.fixture
def renter():
    return User.objects.create_user(email="renter@example.com", password="x")


@pytest.fixture
def equipment(owner):
    return Equipment.objects.create(owner=owner, name="Excavator", price_per_day=Decimal("100.00"))


@pytest.fixture
def start():
    return timezone.localdate() + timedelta(days=10)


def make_booking(equipment, renter, start, days=3, status=Booking.Status.PENDING):
    return Booking.objects.create(
        equipment=equipment,
        renter=renter,
        start_date=start,
        end_date=start + timedelta(days=days - 1),
        total_days=days,
        price_per_day=equipment.price_per_day,
        total_price=equipment.price_per_day * days,
        status=status,
    )


def make_group(equipment, initiator, start, days=3, status=GroupBooking.Status.COLLECTING):
    return GroupBooking.objects.create(
        equipment=equipment,
        initiator=initiator,
        start_date=start,
        end_date=start + timedelta(days=days - 1),
        total_days=days,
        price_per_day=equipment.price_per_day,
        total_price=equipment.price_per_day * days,
        total_slots=2,
        status=status,
    )


@pytest.mark.parametrize("status", ["pending", "awaiting_payment", "confirmed"])
def test_blocking_booking_statuses_conflict(equipment, renter, start, status):
    make_booking(equipment, renter, start, status=status)
    assert AvailabilityIndex().has_conflict(equipment.pk, DateRange(start, start))


@pytest.mark.parametrize("status", ["cancelled", "expired"])
def test_terminal_bookings_do_not_block(equipment, renter, start, status):
    make_booking(equipment, renter, start, status=status)
    assert not AvailabilityIndex().has_conflict(equipment.pk, DateRange(start, start))


def test_closed_interval_boundaries(equipment, renter, start):
    make_booking(equipment, renter, start, days=3)  # start .. start+2
    index = AvailabilityIndex()
    assert index.has_conflict(equipment.pk, DateRange(start + timedelta(days=2), start + timedelta(days=4)))
    assert index.has_conflict(equipment.pk, DateRange(start - timedelta(days=2), start))
    assert not index.has_conflict(equipment.pk, DateRange(start + timedelta(days=3), start + timedelta(days=4)))
    assert not index.has_conflict(equipment.pk, DateRange(start - timedelta(days=2), start - timedelta(days=1)))


def test_other_equipment_does_not_conflict(equipment, owner, renter, start):
    make_booking(equipment, renter, start)
    other = Equipment.objects.create(owner=owner, name="Crane", price_per_day=Decimal("100.00"))
    assert not AvailabilityIndex().has_conflict(other.pk, DateRange(start, start))


def test_booking_excludes_itself(equipment, renter, start):
    booking = make_booking(equipment, renter, start)
    assert not AvailabilityIndex().has_conflict(equipment.pk, booking.dates, exclude_booking_id=booking.pk)


def test_collecting_group_does_not_block_but_ready_group_does(equipment, renter, start):
    group = make_group(equipment, renter, start)
    index = AvailabilityIndex()
    assert not index.has_conflict(equipment.pk, DateRange(start, start))

    GroupBooking.objects.filter(pk=group.pk).update(status=GroupBooking.Status.READY)
    assert index.has_conflict(equipment.pk, DateRange(start, start))
    assert not index.has_conflict(equipment.pk, DateRange(start, start), exclude_group_id=group.pk)


def test_ensure_available_raises_conflict(equipment, renter, start):
    make_booking(equipment, renter, start)
    with pytest.raises(ConflictError):
        AvailabilityIndex().ensure_available(equipment.pk, DateRange(start, start))


def test_blocking_reservations_are_sorted_by_start(equipment, renter, start):
    later = make_booking(equipment, renter, start + timedelta(days=5), days=1)
    earlier = make_booking(equipment, renter, start, days=1)
    group = make_group(equipment, renter, start + timedelta(days=2), days=1, status=GroupBooking.Status.CONFIRMED)

    reservations = AvailabilityIndex().blocking_reservations(
        equipment.pk, DateRange(start, start + timedelta(days=10)),
    )

    assert [(r.kind, r.id) for r in reservations] == [
        ("booking", earlier.pk),
        ("group_booking", group.pk),
        ("booking", later.pk),
    ]
