from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from apps.bookings.models import Booking
from apps.bookings.tasks import expire_stale_bookings
from apps.equipment.models import Equipment
from apps.users.models import User

pytestmark = pytest.mark.django_db


@pytest.fixture
def equipment():
    owner = User.objects.create_user(email="owner@example.com", password="x", role=User.RoleChoices.OWNER)
    return Equipment.objects.create(owner=owner, name="Forklift", price_per_day=Decimal("400.00"))


@pytest.fixture
def renter():
    return User.objects.create_user(email="renter@example.com", password="x")


def booking(equipment, renter, offset_days, **fields):
    start = timezone.localdate() + timedelta(days=offset_days)
    return Booking.objects.create(
        equipment=equipment,
        renter=renter,
        start_date=start,
        end_date=start,
        price_per_day=equipment.price_per_day,
        total_price=equipment.price_per_day,
        **fields,
    )


def test_sweep_expires_overdue_holds_and_payment_windows(equipment, renter):
    now = timezone.now()
    stale_hold = booking(equipment, renter, 5, hold_expires_at=now - timedelta(minutes=1))
    stale_checkout = booking(
        equipment, renter, 6,
        status=Booking.Status.AWAITING_PAYMENT,
        payment_reference="BOOKING-1-AAAA",
        payment_deadline=now - timedelta(seconds=1),
    )
    live_hold = booking(equipment, renter, 7, hold_expires_at=now + timedelta(minutes=30))
    confirmed = booking(equipment, renter, 8, status=Booking.Status.CONFIRMED)

    assert expire_stale_bookings() == {"expired": 2}

    statuses = dict(Booking.objects.values_list("pk", "status"))
    assert statuses[stale_hold.pk] == Booking.Status.EXPIRED
    assert statuses[stale_checkout.pk] == Booking.Status.EXPIRED
    assert statuses[live_hold.pk] == Booking.Status.PENDING
    assert statuses[confirmed.pk] == Booking.Status.CONFIRMED


def test_sweep_is_idempotent(equipment, renter):
    booking(equipment, renter, 5, hold_expires_at=timezone.now() - timedelta(minutes=1))

    assert expire_stale_bookings() == {"expired": 1}
    assert expire_stale_bookings() == {"expired": 0}
