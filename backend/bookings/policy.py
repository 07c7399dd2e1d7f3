"""Cancellation rules: renter deadline and refund schedule, host emergency fees."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping

from django.db import models

from .clock import days_until, hours_until
from .errors import DeadlinePassed, IllegalTransition, InvalidInput
from .models import Booking
from .pricing import quantize_money

_ZERO = Decimal("0")
_ONE = Decimal("1")

RENTER_CANCELLABLE_STATUSES = frozenset(
    {Booking.Status.PENDING, Booking.Status.AUTO_APPROVED, Booking.Status.CONFIRMED}
)
EMERGENCY_CANCELLABLE_STATUSES = frozenset(
    {Booking.Status.CONFIRMED, Booking.Status.AUTO_APPROVED, Booking.Status.IN_PROGRESS}
)
HOST_REJECTABLE_STATUSES = frozenset({Booking.Status.PENDING, Booking.Status.AUTO_APPROVED})
# Offline bookings have no marketplace renter; the host may void them until the car is back.
OFFLINE_VOIDABLE_STATUSES = frozenset(
    {
        Booking.Status.PENDING,
        Booking.Status.AUTO_APPROVED,
        Booking.Status.CONFIRMED,
        Booking.Status.IN_PROGRESS,
    }
)
OFFLINE_CANCEL_MESSAGE = "Offline bookings are cancelled by the host through a rejection, without a fee."


class EmergencyReason(models.TextChoices):
    VEHICLE_BREAKDOWN = "vehicle_breakdown", "Vehicle breakdown"
    MEDICAL_EMERGENCY = "medical_emergency", "Medical emergency"
    NATURAL_DISASTER = "natural_disaster", "Natural disaster"
    FAMILY_EMERGENCY = "family_emergency", "Family emergency"
    OTHER = "other", "Other"


class CancellationTiming(models.TextChoices):
    BEFORE_START = "before_start", "Before rental start"
    DURING = "during", "Rental in progress"
    AFTER_END = "after_end", "After rental end"


def _rate(value: object, *, label: str) -> Decimal:
    try:
        rate = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise InvalidInput(f"{label} must be a decimal rate.") from exc
    if not rate.is_finite() or rate < _ZERO:
        raise InvalidInput(f"{label} must be a non-negative decimal rate.")
    return rate


@dataclass(frozen=True)
class RefundTier:
    min_days: int
    refund_rate: Decimal


@dataclass(frozen=True)
class StandardRefundSchedule:
    """
    Refund rates keyed by how many days remain before the cancellation deadline.

    A tier applies when days_until_deadline >= min_days; the tier with the
    largest matching min_days wins. No matching tier means no refund. Rates
    never increase as the deadline gets closer.
    """

    tiers: tuple[RefundTier, ...]

    def __post_init__(self) -> None:
        ordered = tuple(sorted(self.tiers, key=lambda tier: tier.min_days, reverse=True))
        seen: set[int] = set()
        for tier in ordered:
            if tier.min_days in seen:
                raise InvalidInput(f"Duplicate refund tier for {tier.min_days} days.")
            seen.add(tier.min_days)
            if not (_ZERO <= tier.refund_rate <= _ONE):
                raise InvalidInput("Refund rates must be between 0 and 1.")
        for farther, closer in zip(ordered, ordered[1:]):
            if closer.refund_rate > farther.refund_rate:
                raise InvalidInput(
                    "Refund rates must not increase as the cancellation deadline approaches."
                )
        object.__setattr__(self, "tiers", ordered)

    @classmethod
    def from_config(cls, raw: Iterable[Mapping[str, Any]]) -> "StandardRefundSchedule":
        tiers = []
        for entry in raw:
            try:
                min_days = int(entry["min_days"])
            except (KeyError, TypeError, ValueError) as exc:
                raise InvalidInput("Each refund tier needs an integer min_days.") from exc
            tiers.append(
                RefundTier(min_days=min_days, refund_rate=_rate(entry.get("refund_rate"), label="refund_rate"))
            )
        return cls(tiers=tuple(tiers))

    def rate_for(self, days_until_deadline: int) -> Decimal:
        for tier in self.tiers:
            if days_until_deadline >= tier.min_days:
                return tier.refund_rate
        return _ZERO

    def snapshot(self) -> list[dict[str, str | int]]:
        return [
            {"min_days": tier.min_days, "refund_rate": str(tier.refund_rate)} for tier in self.tiers
        ]


@dataclass(frozen=True)
class EmergencyFeeTable:
    """Fee rate = base rate for the cancellation timing x multiplier for the reason."""

    timing_rates: Mapping[str, Decimal]
    reason_multipliers: Mapping[str, Decimal]

    def __post_init__(self) -> None:
        missing = [t for t in CancellationTiming.values if t not in self.timing_rates]
        if missing:
            raise InvalidInput(f"Emergency fee table is missing timing rates: {', '.join(missing)}.")
        unknown = [r for r in self.reason_multipliers if r not in EmergencyReason.values]
        if unknown:
            raise InvalidInput(f"Unknown emergency reasons: {', '.join(unknown)}.")

    @classmethod
    def from_config(
        cls,
        timing_rates: Mapping[str, object],
        reason_multipliers: Mapping[str, object],
    ) -> "EmergencyFeeTable":
        return cls(
            timing_rates={k: _rate(v, label=f"timing rate {k}") for k, v in timing_rates.items()},
            reason_multipliers={
                k: _rate(v, label=f"multiplier {k}") for k, v in reason_multipliers.items()
            },
        )

    def base_rate(self, timing: str) -> Decimal:
        return self.timing_rates[timing]

    def multiplier(self, reason: str) -> Decimal:
        # Reasons without an explicit multiplier pay the full base rate.
        return self.reason_multipliers.get(reason, _ONE)

    def rate_for(self, timing: str, reason: str) -> Decimal:
        return min(self.base_rate(timing) * self.multiplier(reason), _ONE)


@dataclass(frozen=True)
class CancellationInfo:
    can_cancel: bool
    cancellation_deadline: datetime | None
    days_until_deadline: int
    hours_until_deadline: int
    cancellation_message: str
    potential_refund: Decimal


@dataclass(frozen=True)
class EmergencyQuote:
    reason_code: str
    timing: str
    base_rate: Decimal
    multiplier: Decimal
    fee_rate: Decimal
    total_amount: Decimal
    fee: Decimal
    refund: Decimal

    def as_details(self) -> dict[str, str]:
        return {
            "reason_code": self.reason_code,
            "timing": self.timing,
            "base_rate": str(self.base_rate),
            "multiplier": str(self.multiplier),
            "fee_rate": str(self.fee_rate),
            "total_amount": str(self.total_amount),
            "fee": str(self.fee),
            "refund": str(self.refund),
        }


@dataclass(frozen=True)
class CancellationOutcome:
    booking: Booking
    track: str
    fee: Decimal
    refund: Decimal
    details: dict[str, Any] = field(default_factory=dict)


def cancellation_deadline(booking: Booking, deadline_offset: timedelta) -> datetime:
    return booking.start_date - deadline_offset


def _not_cancellable_reason(booking: Booking, now: datetime) -> str | None:
    if booking.status == Booking.Status.CANCELLED or booking.cancelled_at is not None:
        return "Booking is already cancelled."
    if booking.is_offline:
        return OFFLINE_CANCEL_MESSAGE
    if booking.status not in RENTER_CANCELLABLE_STATUSES:
        return f"Cannot cancel booking with status: {booking.status}."
    if booking.start_date <= now:
        return "Cannot cancel a booking that has already started."
    return None


def standard_cancellation_info(
    booking: Booking,
    *,
    now: datetime,
    deadline_offset: timedelta,
    schedule: StandardRefundSchedule,
) -> CancellationInfo:
    """
    Describe whether the renter may cancel right now and what they would get back.

    The refund is a share of total_amount; the security deposit is released
    separately and is never part of it.
    """
    deadline = cancellation_deadline(booking, deadline_offset)
    days_left = days_until(deadline, now)
    hours_left = hours_until(deadline, now)

    blocked = _not_cancellable_reason(booking, now)
    if blocked is not None:
        return CancellationInfo(
            can_cancel=False,
            cancellation_deadline=deadline,
            days_until_deadline=max(days_left, 0),
            hours_until_deadline=hours_left,
            cancellation_message=blocked,
            potential_refund=_ZERO,
        )

    if days_left <= 0:
        offset_hours = int(deadline_offset.total_seconds() // 3600)
        return CancellationInfo(
            can_cancel=False,
            cancellation_deadline=deadline,
            days_until_deadline=0,
            hours_until_deadline=0,
            cancellation_message=(
                "Cancellation deadline has passed. Bookings must be cancelled at least "
                f"{offset_hours} hours before the start date (deadline was {deadline.isoformat()})."
            ),
            potential_refund=_ZERO,
        )

    refund = quantize_money(booking.total_amount * schedule.rate_for(days_left))
    return CancellationInfo(
        can_cancel=True,
        cancellation_deadline=deadline,
        days_until_deadline=days_left,
        hours_until_deadline=hours_left,
        cancellation_message=(
            f"Booking can be cancelled. {days_left} day(s) remaining until the deadline."
        ),
        potential_refund=refund,
    )


def assert_can_cancel_as_renter(info: CancellationInfo, booking: Booking) -> None:
    """Raise the typed rejection matching a negative CancellationInfo."""
    if info.can_cancel:
        return
    if (
        booking.status in RENTER_CANCELLABLE_STATUSES
        and booking.cancelled_at is None
        and not booking.is_offline
    ):
        raise DeadlinePassed(info.cancellation_message)
    raise IllegalTransition(info.cancellation_message)


def assert_can_reject(booking: Booking, *, now: datetime, min_days: int) -> None:
    if booking.is_offline:
        if booking.status not in OFFLINE_VOIDABLE_STATUSES:
            raise IllegalTransition(
                f"Cannot cancel an offline booking with status: {booking.status}."
            )
        return
    if booking.status not in HOST_REJECTABLE_STATUSES:
        raise IllegalTransition(
            f"Only pending or auto-approved bookings can be rejected (status: {booking.status})."
        )
    remaining = days_until(booking.start_date, now)
    if remaining < min_days:
        raise DeadlinePassed(
            f"Bookings can only be rejected at least {min_days} day(s) before the start date."
        )


def emergency_timing(booking: Booking, now: datetime) -> str:
    if now < booking.start_date:
        return CancellationTiming.BEFORE_START
    if now <= booking.end_date:
        return CancellationTiming.DURING
    return CancellationTiming.AFTER_END


def quote_emergency(
    booking: Booking,
    *,
    reason_code: str,
    now: datetime,
    table: EmergencyFeeTable,
) -> EmergencyQuote:
    if booking.is_offline:
        raise IllegalTransition(OFFLINE_CANCEL_MESSAGE)
    if booking.status not in EMERGENCY_CANCELLABLE_STATUSES:
        raise IllegalTransition(
            f"Emergency cancellation is not available for status: {booking.status}."
        )
    if reason_code not in EmergencyReason.values:
        raise InvalidInput(
            f"Unknown emergency reason '{reason_code}'.",
            details={"allowed": list(EmergencyReason.values)},
        )

    timing = emergency_timing(booking, now)
    base_rate = table.base_rate(timing)
    multiplier = table.multiplier(reason_code)
    fee_rate = table.rate_for(timing, reason_code)
    total = quantize_money(booking.total_amount)
    fee = quantize_money(total * fee_rate)
    return EmergencyQuote(
        reason_code=reason_code,
        timing=timing,
        base_rate=base_rate,
        multiplier=multiplier,
        fee_rate=fee_rate,
        total_amount=total,
        fee=fee,
        refund=quantize_money(total - fee),
    )


def emergency_reason_text(quote: EmergencyQuote, detail: str) -> str:
    """Human-readable cancellation_reason that keeps the priced figures with the booking."""
    label = EmergencyReason(quote.reason_code).label
    return (
        f"[Emergency: {label}] {detail.strip()} "
        f"(fee {quote.fee} at rate {quote.fee_rate}, refund {quote.refund}, "
        f"timing {quote.timing})"
    )
