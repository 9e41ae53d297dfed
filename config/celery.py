import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings.dev")

app = Celery("equipment_rental")

app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()


# ============================================================================
# CELERY BEAT SCHEDULE (Periodic Tasks)
# ============================================================================

app.conf.beat_schedule = {
    # Expire bookings past their hold or payment window - every minute
    "expire-stale-bookings": {
        "task": "bookings.expire_stale_bookings",
        "schedule": 60.0,
        "options": {"expires": 50},
    },
    # Expire collecting group bookings past expires_at - every 5 minutes
    "expire-stale-group-bookings": {
        "task": "group_bookings.expire_stale_group_bookings",
        "schedule": 300.0,
        "options": {"expires": 280},
    },
    # Re-poll the gateway for payments whose webhook never arrived - every 2 minutes
    "reverify-initiated-payments": {
        "task": "payments.reverify_initiated_payments",
        "schedule": 120.0,
        "options": {"expires": 110},
    },
}
