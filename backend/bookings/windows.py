"""Per-car reservation windows and overlap detection."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from django.db.models import QuerySet

from cars.models import Car, CarBlock

from .errors import ConflictDetected, NotFound
from .models import Booking

# Statuses that always block the calendar. PENDING joins them when
# pending_holds_calendar is on.
OCCUPYING_STATUSES = frozenset(
    {
        Booking.Status.CONFIRMED,
        Booking.Status.AUTO_APPROVED,
        Booking.Status.IN_PROGRESS,
    }
)

BOOKING_CONFLICT = "booking_conflict"
MANUAL_BLOCK = "manual_block"


@dataclass(frozen=True)
class ConflictingBooking:
    booking_id: int
    car_id: int
    start_date: datetime
    end_date: datetime
    status: str

    def as_dict(self) -> dict[str, object]:
        return {
            "booking_id": self.booking_id,
            "car_id": self.car_id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "status": self.status,
        }


@dataclass(frozen=True)
class BlockedPeriod:
    block_id: int
    car_id: int
    start_date: datetime
    end_date: datetime
    block_type: str
    reason: str

    def as_dict(self) -> dict[str, object]:
        return {
            "block_id": self.block_id,
            "car_id": self.car_id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "block_type": self.block_type,
            "reason": self.reason,
        }


def occupying_statuses(pending_holds_calendar: bool) -> frozenset[str]:
    if pending_holds_calendar:
        return OCCUPYING_STATUSES | {Booking.Status.PENDING}
    return OCCUPYING_STATUSES


def occupying_bookings(
    car_id: int,
    start: datetime,
    end: datetime,
    *,
    pending_holds_calendar: bool,
    exclude_booking_id: Optional[int] = None,
) -> QuerySet[Booking]:
    # Half-open windows: one ending exactly when another starts does not clash.
    qs = Booking.objects.filter(
        car_id=car_id,
        status__in=occupying_statuses(pending_holds_calendar),
        start_date__lt=end,
        end_date__gt=start,
    )
    if exclude_booking_id is not None:
        qs = qs.exclude(pk=exclude_booking_id)
    return qs.order_by("start_date", "id")


def find_conflicts(
    car_id: int,
    start: datetime,
    end: datetime,
    *,
    pending_holds_calendar: bool,
    exclude_booking_id: Optional[int] = None,
) -> list[ConflictingBooking]:
    rows = occupying_bookings(
        car_id,
        start,
        end,
        pending_holds_calendar=pending_holds_calendar,
        exclude_booking_id=exclude_booking_id,
    ).values_list("id", "car_id", "start_date", "end_date", "status")
    return [ConflictingBooking(*row) for row in rows]


def find_blocks(car_id: int, start: datetime, end: datetime) -> list[BlockedPeriod]:
    """Host blocks overlapping [start, end), same half-open rule as bookings."""
    rows = (
        CarBlock.objects.filter(car_id=car_id, start_date__lt=end, end_date__gt=start)
        .order_by("start_date", "id")
        .values_list("id", "car_id", "start_date", "end_date", "block_type", "reason")
    )
    return [BlockedPeriod(*row) for row in rows]


def ensure_no_conflict(
    car_id: int,
    start: datetime,
    end: datetime,
    *,
    pending_holds_calendar: bool,
    exclude_booking_id: Optional[int] = None,
) -> None:
    """Raise ConflictDetected when the window clashes with a booking or a host block."""
    conflicts = find_conflicts(
        car_id,
        start,
        end,
        pending_holds_calendar=pending_holds_calendar,
        exclude_booking_id=exclude_booking_id,
    )
    if conflicts:
        raise ConflictDetected(
            details={
                "conflict_type": BOOKING_CONFLICT,
                "conflicts": [conflict.as_dict() for conflict in conflicts],
            },
        )
    blocks = find_blocks(car_id, start, end)
    if blocks:
        raise ConflictDetected(
            "The host has blocked this car for the requested dates.",
            details={
                "conflict_type": MANUAL_BLOCK,
                "blocks": [block.as_dict() for block in blocks],
            },
        )


def lock_car(car_id: int) -> Car:
    """Lock the car row so window checks and writes for it are serialized."""
    car = Car.objects.select_for_update().filter(pk=car_id).first()
    if car is None:
        raise NotFound("Car not found.")
    return car
