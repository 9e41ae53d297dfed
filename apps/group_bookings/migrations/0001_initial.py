from decimal import Decimal

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("equipment", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="GroupBooking",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("start_date", models.DateField()),
                ("end_date", models.DateField()),
                ("total_days", models.PositiveIntegerField(default=1)),
                ("price_per_day", models.DecimalField(decimal_places=2, max_digits=12)),
                ("total_price", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                ("currency", models.CharField(default="NGN", max_length=3)),
                ("total_slots", models.PositiveSmallIntegerField(help_text="Maximum number of participants")),
                ("min_participants", models.PositiveSmallIntegerField(default=2)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("collecting", "Collecting payments"),
                            ("ready", "Ready for confirmation"),
                            ("confirmed", "Confirmed"),
                            ("cancelled", "Cancelled"),
                            ("expired", "Expired"),
                        ],
                        default="collecting",
                        max_length=20,
                    ),
                ),
                ("is_public", models.BooleanField(default=True)),
                ("notes", models.TextField(blank=True)),
                (
                    "expires_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="A collecting group past this moment expires.",
                        null=True,
                    ),
                ),
                ("ready_at", models.DateTimeField(blank=True, null=True)),
                ("confirmed_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("expired_at", models.DateTimeField(blank=True, null=True)),
                ("cancellation_reason", models.CharField(blank=True, max_length=255)),
                ("post_payment_conflict", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "equipment",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="group_bookings",
                        to="equipment.equipment",
                    ),
                ),
                (
                    "initiator",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="initiated_group_bookings",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Group booking",
                "verbose_name_plural": "Group bookings",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["equipment", "start_date", "end_date"], name="group_equipment_dates_idx"),
                    models.Index(fields=["status", "expires_at"], name="group_status_expires_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("end_date__gte", models.F("start_date"))),
                        name="group_booking_valid_dates",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("min_participants__gte", 2),
                            ("total_slots__gte", models.F("min_participants")),
                        ),
                        name="group_booking_valid_slots",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Participant",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("share_amount", models.DecimalField(decimal_places=2, max_digits=14)),
                (
                    "payment_reference",
                    models.CharField(
                        blank=True,
                        help_text="Gateway reference of the current payment attempt.",
                        max_length=100,
                        null=True,
                    ),
                ),
                (
                    "payment_status",
                    models.CharField(
                        choices=[
                            ("not_started", "Not started"),
                            ("initiated", "Initiated"),
                            ("verified", "Verified"),
                            ("failed", "Failed"),
                        ],
                        default="not_started",
                        max_length=20,
                    ),
                ),
                ("requires_refund", models.BooleanField(default=False)),
                ("joined_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "group_booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="participants",
                        to="group_bookings.groupbooking",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="group_participations",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Participant",
                "verbose_name_plural": "Participants",
                "ordering": ["joined_at"],
                "constraints": [
                    models.UniqueConstraint(fields=("group_booking", "user"), name="unique_participant_per_group"),
                ],
            },
        ),
    ]
