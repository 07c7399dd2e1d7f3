"""URL routing for the bookings API."""

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .api import BookingViewSet, CarBlockViewSet

app_name = "bookings"

router = DefaultRouter()
router.register("blocks", CarBlockViewSet, basename="car-block")
router.register("", BookingViewSet, basename="booking")

urlpatterns = [
    path("", include(router.urls)),
]
