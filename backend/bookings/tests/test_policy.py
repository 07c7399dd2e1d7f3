"""Tests for refund schedules, emergency fee tables and cancellation info."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal

import pytest

from bookings.errors import DeadlinePassed, IllegalTransition, InvalidInput
from bookings.models import Booking
from bookings.policy import (
    CancellationTiming,
    EmergencyFeeTable,
    StandardRefundSchedule,
    assert_can_cancel_as_renter,
    assert_can_reject,
    emergency_reason_text,
    emergency_timing,
    quote_emergency,
    standard_cancellation_info,
)

NOW = datetime(2025, 2, 20, 12, 0, tzinfo=dt_timezone.utc)

OFFSET = timedelta(hours=72)


def full_refund_schedule():
    return StandardRefundSchedule.from_config([{"min_days": 1, "refund_rate": "1.00"}])


def test_schedule_picks_largest_matching_tier():
    schedule = StandardRefundSchedule.from_config(
        [
            {"min_days": 3, "refund_rate": "0.50"},
            {"min_days": 7, "refund_rate": "1.00"},
        ]
    )
    assert schedule.rate_for(10) == Decimal("1.00")
    assert schedule.rate_for(7) == Decimal("1.00")
    assert schedule.rate_for(5) == Decimal("0.50")
    assert schedule.rate_for(2) == Decimal("0")
    assert [tier["min_days"] for tier in schedule.snapshot()] == [7, 3]


@pytest.mark.parametrize(
    "tiers",
    [
        [{"min_days": 7, "refund_rate": "0.50"}, {"min_days": 3, "refund_rate": "1.00"}],
        [{"min_days": 3, "refund_rate": "0.50"}, {"min_days": 3, "refund_rate": "0.40"}],
        [{"min_days": 3, "refund_rate": "1.50"}],
        [{"refund_rate": "1.00"}],
        [{"min_days": 1, "refund_rate": "half"}],
    ],
)
def test_schedule_rejects_bad_configuration(tiers):
    with pytest.raises(InvalidInput):
        StandardRefundSchedule.from_config(tiers)


def test_emergency_table_caps_rate_and_defaults_multiplier():
    table = EmergencyFeeTable.from_config(
        {"before_start": "0.40", "during": "0.60", "after_end": "0.80"},
        {"vehicle_breakdown": "2.0"},
    )
    assert table.rate_for("before_start", "vehicle_breakdown") == Decimal("0.80")
    assert table.rate_for("after_end", "vehicle_breakdown") == Decimal("1")
    assert table.rate_for("during", "other") == Decimal("0.60")


def test_emergency_table_requires_every_timing_and_known_reasons():
    with pytest.raises(InvalidInput, match="missing timing rates"):
        EmergencyFeeTable.from_config({"before_start": "0.1"}, {})
    with pytest.raises(InvalidInput, match="Unknown emergency reasons"):
        EmergencyFeeTable.from_config(
            {"before_start": "0.1", "during": "0.2", "after_end": "0.3"},
            {"asteroid": "1.0"},
        )


@pytest.mark.django_db
def test_cancellation_info_boundary_at_deadline(booking_factory):
    booking = booking_factory(start_date=NOW + OFFSET + timedelta(days=5))
    deadline = booking.start_date - OFFSET
    schedule = full_refund_schedule()

    before = standard_cancellation_info(
        booking, now=deadline - timedelta(seconds=1), deadline_offset=OFFSET, schedule=schedule
    )
    at = standard_cancellation_info(booking, now=deadline, deadline_offset=OFFSET, schedule=schedule)
    after = standard_cancellation_info(
        booking, now=deadline + timedelta(seconds=1), deadline_offset=OFFSET, schedule=schedule
    )

    assert before.can_cancel is True
    assert before.days_until_deadline == 1
    assert before.potential_refund == booking.total_amount
    assert at.can_cancel is False
    assert at.days_until_deadline == 0
    assert "deadline has passed" in at.cancellation_message
    assert after.can_cancel is False
    assert after.potential_refund == Decimal("0")


@pytest.mark.django_db
def test_full_refund_with_two_days_left(booking_factory):
    booking = booking_factory(start_date=NOW + OFFSET + timedelta(days=2))

    info = standard_cancellation_info(
        booking, now=NOW, deadline_offset=OFFSET, schedule=full_refund_schedule()
    )

    assert info.can_cancel is True
    assert info.days_until_deadline == 2
    assert info.potential_refund == booking.total_amount
    assert info.cancellation_deadline == booking.start_date - OFFSET


@pytest.mark.django_db
def test_refund_excludes_security_deposit(booking_factory):
    booking = booking_factory(
        start_date=NOW + timedelta(days=30),
        security_deposit=Decimal("999.00"),
    )
    info = standard_cancellation_info(
        booking, now=NOW, deadline_offset=OFFSET, schedule=full_refund_schedule()
    )
    assert info.potential_refund == booking.total_amount


@pytest.mark.django_db
@pytest.mark.parametrize(
    "status,message",
    [
        (Booking.Status.CANCELLED, "Booking is already cancelled."),
        (Booking.Status.IN_PROGRESS, "Cannot cancel booking with status: IN_PROGRESS."),
        (Booking.Status.COMPLETED, "Cannot cancel booking with status: COMPLETED."),
    ],
)
def test_blocked_statuses_explain_themselves(booking_factory, status, message):
    booking = booking_factory(status=status, start_date=NOW + timedelta(days=30))
    info = standard_cancellation_info(
        booking, now=NOW, deadline_offset=OFFSET, schedule=full_refund_schedule()
    )
    assert info.can_cancel is False
    assert info.cancellation_message == message
    with pytest.raises(IllegalTransition):
        assert_can_cancel_as_renter(info, booking)


@pytest.mark.django_db
def test_past_deadline_raises_deadline_passed(booking_factory):
    booking = booking_factory(start_date=NOW + timedelta(hours=10))
    info = standard_cancellation_info(
        booking, now=NOW, deadline_offset=OFFSET, schedule=full_refund_schedule()
    )
    with pytest.raises(DeadlinePassed):
        assert_can_cancel_as_renter(info, booking)


@pytest.mark.django_db
def test_host_reject_window(booking_factory):
    booking = booking_factory(status=Booking.Status.PENDING, start_date=NOW + timedelta(hours=30))
    assert_can_reject(booking, now=NOW, min_days=1)
    with pytest.raises(DeadlinePassed):
        assert_can_reject(booking, now=NOW, min_days=3)

    booking.status = Booking.Status.CONFIRMED
    with pytest.raises(IllegalTransition):
        assert_can_reject(booking, now=NOW, min_days=1)


@pytest.mark.django_db
def test_emergency_quote_twenty_percent(booking_factory, policy_config):
    booking = booking_factory(
        start_date=NOW + timedelta(days=5),
        end_date=NOW + timedelta(days=9),
        daily_rate=Decimal("250000.00"),
    )
    assert booking.total_amount == Decimal("1000000.00")

    quote = quote_emergency(
        booking,
        reason_code="vehicle_breakdown",
        now=NOW,
        table=policy_config.emergency_fees,
    )

    assert quote.timing == CancellationTiming.BEFORE_START
    assert quote.fee_rate == Decimal("0.20")
    assert quote.fee == Decimal("200000.00")
    assert quote.refund == Decimal("800000.00")
    text = emergency_reason_text(quote, "Engine failure")
    assert text.startswith("[Emergency: Vehicle breakdown] Engine failure")
    assert "200000.00" in text and "800000.00" in text


@pytest.mark.django_db
def test_emergency_timing_and_guards(booking_factory, policy_config):
    booking = booking_factory(start_date=NOW + timedelta(days=1), end_date=NOW + timedelta(days=3))
    assert emergency_timing(booking, NOW) == CancellationTiming.BEFORE_START
    assert emergency_timing(booking, NOW + timedelta(days=2)) == CancellationTiming.DURING
    assert emergency_timing(booking, NOW + timedelta(days=4)) == CancellationTiming.AFTER_END

    with pytest.raises(InvalidInput):
        quote_emergency(booking, reason_code="bored", now=NOW, table=policy_config.emergency_fees)

    booking.status = Booking.Status.PENDING
    with pytest.raises(IllegalTransition):
        quote_emergency(
            booking, reason_code="other", now=NOW, table=policy_config.emergency_fees
        )
