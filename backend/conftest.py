"""Shared pytest configuration and fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from typing import Callable

import pytest
from django.contrib.auth import get_user_model
from django.core.cache import cache
from rest_framework.test import APIClient

from bookings.clock import FixedClock
from bookings.conf import CancellationPolicyConfig
from bookings.models import Booking
from bookings.policy import EmergencyFeeTable, StandardRefundSchedule
from bookings.pricing import compute_pricing
from bookings.services import BookingLifecycle
from cars.models import Car
from core.settings_resolver import clear_settings_cache

User = get_user_model()

NOW = datetime(2025, 2, 20, 12, 0, tzinfo=dt_timezone.utc)


def _create_user(*, username: str, can_list: bool = True, can_rent: bool = True) -> User:
    return User.objects.create_user(
        username=username,
        password="testpass",
        email=f"{username}@example.com",
        can_list=can_list,
        can_rent=can_rent,
    )


@pytest.fixture(autouse=True)
def _reset_caches():
    cache.clear()
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def api_client():
    """DRF API client for request/response helpers."""
    return APIClient()


@pytest.fixture
def host_user():
    return _create_user(username="host", can_rent=False)


@pytest.fixture
def renter_user():
    return _create_user(username="renter", can_list=False)


@pytest.fixture
def other_user():
    return _create_user(username="other")


@pytest.fixture
def car_factory(host_user) -> Callable[..., Car]:
    def factory(**overrides) -> Car:
        data = {
            "host": host_user,
            "make": "Toyota",
            "model": "Avanza",
            "year": 2021,
            "daily_rate": Decimal("250000.00"),
            "security_deposit": Decimal("500000.00"),
        }
        data.update(overrides)
        return Car.objects.create(**data)

    return factory


@pytest.fixture
def car(car_factory):
    return car_factory()


@pytest.fixture
def booking_factory(car, renter_user) -> Callable[..., Booking]:
    """Create bookings straight in the store, priced consistently with their window."""

    def factory(**overrides) -> Booking:
        start = overrides.pop("start_date", NOW + timedelta(days=10))
        end = overrides.pop("end_date", start + timedelta(days=3))
        target_car = overrides.pop("car", car)
        daily_rate = overrides.pop("daily_rate", Decimal("250000.00"))
        pricing = compute_pricing(daily_rate=daily_rate, start=start, end=end)
        fields = {
            "car": target_car,
            "host": target_car.host,
            "renter": renter_user,
            "start_date": start,
            "end_date": end,
            "status": Booking.Status.CONFIRMED,
            **pricing.as_model_fields(),
        }
        fields.update(overrides)
        return Booking.objects.create(**fields)

    return factory


@pytest.fixture
def fixed_clock():
    return FixedClock(NOW)


@pytest.fixture
def policy_config():
    return CancellationPolicyConfig(
        deadline_offset=timedelta(hours=72),
        host_reject_min_days=1,
        pending_holds_calendar=True,
        refund_schedule=StandardRefundSchedule.from_config(
            [
                {"min_days": 7, "refund_rate": "1.00"},
                {"min_days": 3, "refund_rate": "0.50"},
            ]
        ),
        emergency_fees=EmergencyFeeTable.from_config(
            {"before_start": "0.20", "during": "0.40", "after_end": "0.60"},
            {"vehicle_breakdown": "1.0", "natural_disaster": "0.0", "medical_emergency": "0.5"},
        ),
    )


class RecordingNotifier:
    def __init__(self):
        self.calls: list[tuple[int, str]] = []

    def __call__(self, booking, event):
        self.calls.append((booking.pk, event))
        return True


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def lifecycle(fixed_clock, policy_config, notifier):
    return BookingLifecycle(clock=fixed_clock, config=policy_config, notifier=notifier)


@pytest.fixture
def auth_client():
    """Return a factory producing API clients authenticated with a JWT for the given user."""

    def factory(user) -> APIClient:
        client = APIClient()
        token_resp = client.post(
            "/api/users/token/",
            {"username": user.username, "password": "testpass"},
            format="json",
        )
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {token_resp.data['access']}")
        return client

    return factory
