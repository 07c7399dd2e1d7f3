"""Tests for reservation windows and overlap detection."""

from __future__ import annotations

from datetime import datetime, timezone as dt_timezone

import pytest

from bookings.errors import ConflictDetected, NotFound
from bookings.models import Booking
from bookings.windows import MANUAL_BLOCK, ensure_no_conflict, find_blocks, find_conflicts, lock_car
from cars.models import CarBlock

pytestmark = pytest.mark.django_db


def day(n: int) -> datetime:
    return datetime(2025, 3, n, tzinfo=dt_timezone.utc)


@pytest.mark.parametrize(
    "start,end,clashes",
    [
        (5, 8, True),
        (1, 4, True),
        (4, 5, True),
        (3, 6, True),
        (6, 8, False),
        (1, 3, False),
    ],
)
def test_overlap_is_half_open(car, booking_factory, start, end, clashes):
    booking_factory(start_date=day(3), end_date=day(6), status=Booking.Status.CONFIRMED)

    assert bool(find_conflicts(car.pk, day(start), day(end), pending_holds_calendar=True)) is clashes


def test_confirmed_booking_blocks_overlapping_window(car, booking_factory):
    existing = booking_factory(start_date=day(1), end_date=day(5), status=Booking.Status.CONFIRMED)

    conflicts = find_conflicts(car.pk, day(4), day(8), pending_holds_calendar=True)

    assert [c.booking_id for c in conflicts] == [existing.pk]
    assert conflicts[0].status == Booking.Status.CONFIRMED
    with pytest.raises(ConflictDetected) as exc_info:
        ensure_no_conflict(car.pk, day(4), day(8), pending_holds_calendar=True)
    assert exc_info.value.details["conflicts"][0]["booking_id"] == existing.pk


def test_adjacent_window_does_not_conflict(car, booking_factory):
    booking_factory(start_date=day(1), end_date=day(5), status=Booking.Status.CONFIRMED)

    assert find_conflicts(car.pk, day(5), day(8), pending_holds_calendar=True) == []
    ensure_no_conflict(car.pk, day(5), day(8), pending_holds_calendar=True)


@pytest.mark.parametrize(
    "status",
    [Booking.Status.CANCELLED, Booking.Status.REJECTED, Booking.Status.COMPLETED, Booking.Status.DISPUTED],
)
def test_finished_bookings_free_the_calendar(car, booking_factory, status):
    booking_factory(start_date=day(1), end_date=day(5), status=status)
    assert find_conflicts(car.pk, day(2), day(4), pending_holds_calendar=True) == []


def test_pending_holds_calendar_only_when_enabled(car, booking_factory):
    booking_factory(start_date=day(1), end_date=day(5), status=Booking.Status.PENDING)

    assert len(find_conflicts(car.pk, day(2), day(4), pending_holds_calendar=True)) == 1
    assert find_conflicts(car.pk, day(2), day(4), pending_holds_calendar=False) == []


def test_exclude_booking_allows_self_update(car, booking_factory):
    booking = booking_factory(start_date=day(1), end_date=day(5))
    ensure_no_conflict(
        car.pk,
        day(2),
        day(6),
        pending_holds_calendar=True,
        exclude_booking_id=booking.pk,
    )


def test_other_cars_are_ignored(car_factory, booking_factory):
    other = car_factory(make="Honda", model="Jazz")
    booking_factory(car=other, start_date=day(1), end_date=day(5))
    mine = car_factory()
    assert find_conflicts(mine.pk, day(1), day(5), pending_holds_calendar=True) == []


def test_lock_car_missing():
    with pytest.raises(NotFound, match="Car not found."):
        lock_car(999999)


def test_host_block_rejects_overlapping_window(car):
    block = CarBlock.objects.create(
        car=car,
        start_date=day(10),
        end_date=day(15),
        block_type=CarBlock.BlockType.MAINTENANCE,
        reason="Brake service",
    )

    with pytest.raises(ConflictDetected) as exc_info:
        ensure_no_conflict(car.pk, day(14), day(18), pending_holds_calendar=True)

    details = exc_info.value.details
    assert details["conflict_type"] == MANUAL_BLOCK
    assert details["blocks"][0]["block_id"] == block.pk
    assert details["blocks"][0]["block_type"] == "maintenance"
    assert find_blocks(car.pk, day(15), day(18)) == []
    ensure_no_conflict(car.pk, day(15), day(18), pending_holds_calendar=True)


def test_blocks_on_other_cars_are_ignored(car_factory, car):
    other = car_factory(make="Honda", model="Jazz")
    CarBlock.objects.create(car=other, start_date=day(10), end_date=day(15))

    ensure_no_conflict(car.pk, day(10), day(15), pending_holds_calendar=True)
