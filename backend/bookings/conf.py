"""Cancellation and calendar policy loaded from Django settings with DB overrides."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, TypeVar

from django.conf import settings

from core.settings_resolver import get_bool, get_int, get_json

from .errors import InvalidInput
from .policy import EmergencyFeeTable, StandardRefundSchedule

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CancellationPolicyConfig:
    deadline_offset: timedelta
    host_reject_min_days: int
    pending_holds_calendar: bool
    refund_schedule: StandardRefundSchedule
    emergency_fees: EmergencyFeeTable


def _build_table(keys: tuple[str, ...], build: Callable[..., T]) -> T:
    """
    Build a policy table from the effective values of keys.

    A stored override that does not produce a valid table is ignored with a
    warning and the table is rebuilt from the Django settings alone. A broken
    Django setting still raises, since that is a deployment error.
    """
    defaults = [getattr(settings, key) for key in keys]
    values = [get_json(key, default) for key, default in zip(keys, defaults)]
    if values == defaults:
        return build(*defaults)
    try:
        return build(*values)
    except (InvalidInput, TypeError, AttributeError, ValueError) as exc:
        logger.warning(
            "bookings: ignoring invalid platform setting override for %s: %s",
            ", ".join(keys),
            exc,
        )
        return build(*defaults)


def load_policy_config() -> CancellationPolicyConfig:
    """
    Build the active policy.

    Each value comes from a platform_settings.DbSetting row with the same key
    when one is in effect, otherwise from the Django setting.
    """
    deadline_hours = get_int(
        "BOOKING_CANCELLATION_DEADLINE_HOURS",
        settings.BOOKING_CANCELLATION_DEADLINE_HOURS,
    )
    reject_min_days = get_int(
        "BOOKING_HOST_REJECT_MIN_DAYS",
        settings.BOOKING_HOST_REJECT_MIN_DAYS,
    )
    pending_holds = get_bool(
        "BOOKING_PENDING_HOLDS_CALENDAR",
        settings.BOOKING_PENDING_HOLDS_CALENDAR,
    )
    return CancellationPolicyConfig(
        deadline_offset=timedelta(hours=max(deadline_hours, 0)),
        host_reject_min_days=max(reject_min_days, 0),
        pending_holds_calendar=pending_holds,
        refund_schedule=_build_table(
            ("BOOKING_STANDARD_REFUND_SCHEDULE",),
            StandardRefundSchedule.from_config,
        ),
        emergency_fees=_build_table(
            ("BOOKING_EMERGENCY_TIMING_RATES", "BOOKING_EMERGENCY_REASON_MULTIPLIERS"),
            EmergencyFeeTable.from_config,
        ),
    )
