"""Booking price breakdown and its validation."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping

from .errors import InvalidInput

_ZERO = Decimal("0")
_CENT = Decimal("0.01")
ONE_DAY_SECONDS = 24 * 60 * 60


def quantize_money(value: Decimal) -> Decimal:
    """Round a Decimal value to cents using HALF_UP."""
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def to_money(value: object, *, field: str) -> Decimal:
    """
    Convert user input to a cent-quantized Decimal or raise InvalidInput.

    Amounts are never rounded here: a value with sub-cent precision is rejected
    so the breakdown checks run on exactly what the caller sent.
    """
    if isinstance(value, Decimal):
        candidate = value
    elif isinstance(value, float):
        candidate = Decimal(str(value))
    else:
        try:
            candidate = Decimal(str(value))
        except (InvalidOperation, TypeError, ValueError) as exc:
            raise InvalidInput(f"{field} must be a decimal amount.") from exc
    if not candidate.is_finite():
        raise InvalidInput(f"{field} must be a decimal amount.")
    cents = quantize_money(candidate)
    if cents != candidate:
        raise InvalidInput(f"{field} cannot have more than 2 decimal places.")
    return cents


@dataclass(frozen=True)
class BookingPricing:
    daily_rate: Decimal
    total_days: int
    subtotal: Decimal
    insurance_fee: Decimal
    service_fee: Decimal
    delivery_fee: Decimal
    total_amount: Decimal
    security_deposit: Decimal = _ZERO

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "BookingPricing":
        """Build a breakdown from loosely typed input (API payloads, dicts)."""
        try:
            total_days = int(data.get("total_days"))
        except (TypeError, ValueError) as exc:
            raise InvalidInput("total_days must be a whole number.") from exc
        missing = [key for key in ("daily_rate", "subtotal", "total_amount") if key not in data]
        if missing:
            raise InvalidInput(f"Missing pricing fields: {', '.join(missing)}.")
        return cls(
            daily_rate=to_money(data["daily_rate"], field="daily_rate"),
            total_days=total_days,
            subtotal=to_money(data["subtotal"], field="subtotal"),
            insurance_fee=to_money(data.get("insurance_fee", "0"), field="insurance_fee"),
            service_fee=to_money(data.get("service_fee", "0"), field="service_fee"),
            delivery_fee=to_money(data.get("delivery_fee", "0"), field="delivery_fee"),
            total_amount=to_money(data["total_amount"], field="total_amount"),
            security_deposit=to_money(data.get("security_deposit", "0"), field="security_deposit"),
        )

    def as_model_fields(self) -> dict[str, Any]:
        return asdict(self)


def rental_days(start: datetime, end: datetime) -> int:
    """Number of billable days in [start, end); partial days count as a full day."""
    seconds = (end - start).total_seconds()
    return max(1, math.ceil(seconds / ONE_DAY_SECONDS))


def validate_booking_dates(start: datetime | None, end: datetime | None) -> None:
    """Validate that the provided instants exist and form a valid range."""
    if not start or not end:
        raise InvalidInput("Start and end dates are required.")
    if start.tzinfo is None or end.tzinfo is None:
        raise InvalidInput("Start and end dates must include a timezone.")
    if end <= start:
        raise InvalidInput("End date must be after start date.")


def compute_pricing(
    *,
    daily_rate: Decimal,
    start: datetime,
    end: datetime,
    insurance_fee: Decimal = _ZERO,
    service_fee: Decimal = _ZERO,
    delivery_fee: Decimal = _ZERO,
    security_deposit: Decimal = _ZERO,
) -> BookingPricing:
    """Price a window at a daily rate; fees are passed through unchanged."""
    validate_booking_dates(start, end)
    days = rental_days(start, end)
    subtotal = quantize_money(daily_rate * days)
    total = quantize_money(subtotal + insurance_fee + service_fee + delivery_fee)
    return BookingPricing(
        daily_rate=quantize_money(daily_rate),
        total_days=days,
        subtotal=subtotal,
        insurance_fee=quantize_money(insurance_fee),
        service_fee=quantize_money(service_fee),
        delivery_fee=quantize_money(delivery_fee),
        total_amount=total,
        security_deposit=quantize_money(security_deposit),
    )


def validate_pricing(pricing: BookingPricing, *, start: datetime, end: datetime) -> None:
    """
    Reject a breakdown that does not add up.

    - daily_rate and total_amount must be positive; fees and deposit non-negative
    - total_days must match the booked window
    - subtotal == daily_rate * total_days
    - total_amount == subtotal + insurance_fee + service_fee + delivery_fee
    """
    if pricing.daily_rate <= _ZERO:
        raise InvalidInput("daily_rate must be greater than zero.")
    if pricing.total_amount <= _ZERO:
        raise InvalidInput("total_amount must be greater than zero.")
    for name in ("insurance_fee", "service_fee", "delivery_fee", "security_deposit"):
        if getattr(pricing, name) < _ZERO:
            raise InvalidInput(f"{name} cannot be negative.")

    expected_days = rental_days(start, end)
    if pricing.total_days != expected_days:
        raise InvalidInput(
            f"total_days must be {expected_days} for the requested dates "
            f"(got {pricing.total_days})."
        )

    expected_subtotal = quantize_money(pricing.daily_rate * pricing.total_days)
    if pricing.subtotal != expected_subtotal:
        raise InvalidInput(
            f"subtotal must equal daily_rate x total_days ({expected_subtotal})."
        )

    expected_total = quantize_money(
        pricing.subtotal + pricing.insurance_fee + pricing.service_fee + pricing.delivery_fee
    )
    if pricing.total_amount != expected_total:
        raise InvalidInput(
            f"total_amount must equal subtotal plus fees ({expected_total})."
        )
