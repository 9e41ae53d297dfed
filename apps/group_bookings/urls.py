"""URL routing for group bookings."""

from __future__ import annotations

from django.urls import include, path  # type: ignore
from rest_framework.routers import DefaultRouter  # type: ignore

from .views import GroupBookingViewSet

router = DefaultRouter()
router.register(r"", GroupBookingViewSet, basename="group-booking")

urlpatterns = [
    path("", include(router.urls)),
]
