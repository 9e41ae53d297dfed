"""Overlapping booking requests for the same equipment, with real commits."""

from __future__ import annotations

import threading
from datetime import timedelta
from decimal import Decimal
from unittest.mock import Mock, patch

from django.db import connection
from django.test import TransactionTestCase, skipUnlessDBFeature
from django.utils import timezone

from apps.bookings.application import command_handlers
from apps.bookings.application.command_handlers import (
    CreateBookingCommand,
    InitiateBookingPaymentCommand,
)
from apps.bookings.availability import availability_index
from apps.bookings.models import Booking
from apps.equipment.models import Equipment
from apps.payments.tests.fakes import use_fake_gateway
from apps.users.models import User
from shared.application.context import RequestContext
from shared.application.message_bus import message_bus
from shared.domain.exceptions import ConflictError


class OverlappingBookingTests(TransactionTestCase):

    def setUp(self) -> None:
        self.gateway = use_fake_gateway(self)
        owner = User.objects.create_user(
            email="owner@example.com",
            password="x",
            role=User.RoleChoices.OWNER,
        )
        self.first_renter = User.objects.create_user(email="first@example.com", password="x")
        self.second_renter = User.objects.create_user(email="second@example.com", password="x")
        self.equipment = Equipment.objects.create(
            owner=owner,
            name="Tower crane",
            price_per_day=Decimal("1000.00"),
        )
        start = timezone.localdate() + timedelta(days=10)
        self.first_range = (start, start + timedelta(days=2))
        self.second_range = (start + timedelta(days=1), start + timedelta(days=4))

    def _command(self, renter, dates) -> CreateBookingCommand:
        return CreateBookingCommand(
            ctx=RequestContext(user_id=renter.pk, role="renter", email=renter.email),
            equipment_id=self.equipment.pk,
            start_date=dates[0],
            end_date=dates[1],
        )

    def test_only_one_of_two_overlapping_requests_is_accepted(self) -> None:
        booking = message_bus.handle_command(self._command(self.first_renter, self.first_range))

        with self.assertRaises(ConflictError):
            message_bus.handle_command(self._command(self.second_renter, self.second_range))

        checkout = message_bus.handle_command(InitiateBookingPaymentCommand(
            ctx=RequestContext(user_id=self.first_renter.pk, role="renter"),
            booking_id=booking.pk,
        ))
        booking.refresh_from_db()
        self.assertEqual(Booking.objects.count(), 1)
        self.assertEqual(booking.status, Booking.Status.AWAITING_PAYMENT)
        self.assertEqual(booking.payment_reference, checkout.reference)

    def test_equipment_is_locked_before_the_conflict_check(self) -> None:
        calls = Mock()
        lock = Mock(wraps=command_handlers.lock_equipment)
        check = Mock(wraps=availability_index.ensure_available)
        calls.attach_mock(lock, "lock_equipment")
        calls.attach_mock(check, "ensure_available")

        with patch.object(command_handlers, "lock_equipment", lock), \
                patch.object(availability_index, "ensure_available", check):
            message_bus.handle_command(self._command(self.first_renter, self.first_range))

        self.assertEqual(
            [name for name, _args, _kwargs in calls.mock_calls],
            ["lock_equipment", "ensure_available"],
        )

    @skipUnlessDBFeature("has_select_for_update")
    def test_simultaneous_requests_serialize_on_the_equipment_row(self) -> None:
        barrier = threading.Barrier(2)
        outcomes = []

        def book(renter, dates):
            try:
                barrier.wait(timeout=5)
                message_bus.handle_command(self._command(renter, dates))
                outcomes.append("created")
            except ConflictError:
                outcomes.append("conflict")
            finally:
                connection.close()

        threads = [
            threading.Thread(target=book, args=(self.first_renter, self.first_range)),
            threading.Thread(target=book, args=(self.second_renter, self.second_range)),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        self.assertEqual(sorted(outcomes), ["conflict", "created"])
        self.assertEqual(Booking.objects.count(), 1)
