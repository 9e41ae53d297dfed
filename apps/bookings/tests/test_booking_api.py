"""Integration tests for booking API endpoints."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from apps.bookings.models import Booking
from apps.equipment.models import Equipment
from apps.users.models import User


class BookingAPITests(APITestCase):
    """Covers creation, conflicts, scoping and cancellation of bookings."""

    def setUp(self) -> None:
        self.renter = User.objects.create_user(
            email="renter@example.com",
            password="RenterPass123",
            role=User.RoleChoices.RENTER,
        )
        self.other_renter = User.objects.create_user(
            email="other@example.com",
            password="OtherPass123",
            role=User.RoleChoices.RENTER,
        )
        self.owner = User.objects.create_user(
            email="owner@example.com",
            password="OwnerPass123",
            role=User.RoleChoices.OWNER,
        )
        self.equipment = Equipment.objects.create(
            owner=self.owner,
            name="Concrete mixer",
            price_per_day=Decimal("5000.00"),
            currency="NGN",
        )
        self.client.force_authenticate(self.renter)
        self.list_url = reverse("booking-list")
        self.today = timezone.localdate()

    def _payload(self, start: date, end: date) -> dict[str, str]:
        return {
            "equipment": str(self.equipment.id),
            "start_date": str(start),
            "end_date": str(end),
        }

    def _book(self, start: date, end: date, user=None):
        if user is not None:
            self.client.force_authenticate(user)
        return self.client.post(self.list_url, self._payload(start, end), format="json")

    def test_renter_can_create_booking(self) -> None:
        start = self.today + timedelta(days=1)

        response = self._book(start, start + timedelta(days=2))

        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        booking = Booking.objects.get()
        self.assertEqual(booking.renter, self.renter)
        self.assertEqual(booking.status, Booking.Status.PENDING)
        self.assertEqual(booking.total_days, 3)
        self.assertEqual(booking.total_price, Decimal("15000.00"))
        self.assertIsNotNone(booking.hold_expires_at)

    def test_prevent_double_booking_on_overlap(self) -> None:
        start = self.today + timedelta(days=1)
        first = self._book(start, start + timedelta(days=2))
        self.assertEqual(first.status_code, status.HTTP_201_CREATED, first.data)

        conflict = self._book(start + timedelta(days=1), start + timedelta(days=3), user=self.other_renter)

        self.assertEqual(conflict.status_code, status.HTTP_409_CONFLICT, conflict.data)
        self.assertEqual(conflict.data["code"], "conflict")
        self.assertEqual(Booking.objects.count(), 1)

    def test_shared_boundary_day_is_a_conflict(self) -> None:
        start = self.today + timedelta(days=1)
        self._book(start, start + timedelta(days=2))

        response = self._book(start + timedelta(days=2), start + timedelta(days=4), user=self.other_renter)

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT, response.data)

    def test_next_day_booking_is_allowed(self) -> None:
        start = self.today + timedelta(days=1)
        self._book(start, start + timedelta(days=2))

        response = self._book(start + timedelta(days=3), start + timedelta(days=4), user=self.other_renter)

        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.assertEqual(Booking.objects.count(), 2)

    def test_cancelled_booking_releases_dates(self) -> None:
        start = self.today + timedelta(days=1)
        booking_id = self._book(start, start + timedelta(days=1)).data["id"]
        self.client.post(reverse("booking-cancel", args=[booking_id]), {}, format="json")

        response = self._book(start, start + timedelta(days=1), user=self.other_renter)

        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)

    def test_start_date_in_past_is_rejected(self) -> None:
        response = self._book(self.today - timedelta(days=1), self.today + timedelta(days=1))
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_end_before_start_is_rejected(self) -> None:
        start = self.today + timedelta(days=3)
        response = self._book(start, start - timedelta(days=1))
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_unavailable_equipment_is_rejected(self) -> None:
        self.equipment.is_available = False
        self.equipment.save()
        start = self.today + timedelta(days=1)

        response = self._book(start, start)

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST, response.data)
        self.assertEqual(response.data["code"], "invalid_request")

    def test_anonymous_cannot_book(self) -> None:
        self.client.force_authenticate(None)
        start = self.today + timedelta(days=1)
        response = self._book(start, start)
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_renter_can_cancel_booking(self) -> None:
        start = self.today + timedelta(days=3)
        booking_id = self._book(start, start + timedelta(days=2)).data["id"]

        response = self.client.post(
            reverse("booking-cancel", args=[booking_id]),
            {"reason": "Plans changed"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        booking = Booking.objects.get(pk=booking_id)
        self.assertEqual(booking.status, Booking.Status.CANCELLED)
        self.assertEqual(booking.cancellation_source, Booking.CancellationSource.RENTER)
        self.assertEqual(booking.cancellation_reason, "Plans changed")

    def test_owner_can_cancel_booking_on_own_equipment(self) -> None:
        start = self.today + timedelta(days=3)
        booking_id = self._book(start, start).data["id"]
        self.client.force_authenticate(self.owner)

        response = self.client.post(reverse("booking-cancel", args=[booking_id]), {}, format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data["cancellation_source"], "owner")

    def test_cancelled_booking_cannot_be_cancelled_again(self) -> None:
        start = self.today + timedelta(days=3)
        booking_id = self._book(start, start).data["id"]
        cancel_url = reverse("booking-cancel", args=[booking_id])
        self.client.post(cancel_url, {}, format="json")

        response = self.client.post(cancel_url, {}, format="json")

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "invalid_transition")

    def test_stranger_cannot_see_or_cancel_booking(self) -> None:
        start = self.today + timedelta(days=3)
        booking_id = self._book(start, start).data["id"]
        self.client.force_authenticate(self.other_renter)

        detail = self.client.get(reverse("booking-detail", args=[booking_id]))
        cancel = self.client.post(reverse("booking-cancel", args=[booking_id]), {}, format="json")

        self.assertEqual(detail.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(cancel.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(Booking.objects.get(pk=booking_id).status, Booking.Status.PENDING)

    def test_list_is_scoped_by_role(self) -> None:
        start = self.today + timedelta(days=1)
        self._book(start, start)
        self._book(start + timedelta(days=2), start + timedelta(days=2), user=self.other_renter)

        self.client.force_authenticate(self.renter)
        renter_view = self.client.get(self.list_url)
        self.client.force_authenticate(self.owner)
        owner_view = self.client.get(self.list_url)

        self.assertEqual(renter_view.data["count"], 1)
        self.assertEqual(owner_view.data["count"], 2)

    def test_overdue_hold_expires_on_read(self) -> None:
        start = self.today + timedelta(days=1)
        booking_id = self._book(start, start).data["id"]
        Booking.objects.filter(pk=booking_id).update(hold_expires_at=timezone.now() - timedelta(minutes=1))

        response = self.client.get(reverse("booking-detail", args=[booking_id]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], Booking.Status.EXPIRED)

    def test_expired_booking_no_longer_blocks(self) -> None:
        start = self.today + timedelta(days=1)
        booking_id = self._book(start, start).data["id"]
        Booking.objects.filter(pk=booking_id).update(hold_expires_at=timezone.now() - timedelta(minutes=1))
        self.client.get(self.list_url)

        response = self._book(start, start, user=self.other_renter)

        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)

    def test_availability_lists_blocking_reservations(self) -> None:
        start = self.today + timedelta(days=1)
        booking_id = self._book(start, start + timedelta(days=1)).data["id"]
        self.client.force_authenticate(None)
        url = reverse("booking-availability", args=[self.equipment.id])

        busy = self.client.get(url, {"start_date": str(start + timedelta(days=1)), "end_date": str(start + timedelta(days=5))})
        free = self.client.get(url, {"start_date": str(start + timedelta(days=2)), "end_date": str(start + timedelta(days=5))})

        self.assertEqual(busy.status_code, status.HTTP_200_OK, busy.data)
        self.assertFalse(busy.data["is_available"])
        self.assertEqual([r["id"] for r in busy.data["reservations"]], [booking_id])
        self.assertTrue(free.data["is_available"])
        self.assertEqual(free.data["reservations"], [])
