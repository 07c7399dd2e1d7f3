from datetime import datetime, timedelta, timezone as dt_timezone

from bookings.clock import FixedClock, days_until, hours_until

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=dt_timezone.utc)


def test_days_until_rounds_up():
    assert days_until(NOW + timedelta(seconds=1), NOW) == 1
    assert days_until(NOW + timedelta(days=1), NOW) == 1
    assert days_until(NOW + timedelta(days=1, seconds=1), NOW) == 2
    assert days_until(NOW, NOW) == 0
    assert days_until(NOW - timedelta(seconds=1), NOW) == 0
    assert days_until(NOW - timedelta(days=2), NOW) == -2


def test_hours_until_is_zero_in_the_past():
    assert hours_until(NOW + timedelta(hours=5, minutes=59), NOW) == 5
    assert hours_until(NOW - timedelta(hours=3), NOW) == 0


def test_fixed_clock_advances():
    clock = FixedClock(NOW)
    assert clock.now() == NOW
    clock.advance(hours=2)
    assert clock.now() == NOW + timedelta(hours=2)
