"""Injectable "now" for deadline math."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

from django.utils import timezone

ONE_DAY_SECONDS = 24 * 60 * 60


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock backed by django.utils.timezone."""

    def now(self) -> datetime:
        return timezone.now()


@dataclass
class FixedClock:
    """Clock pinned to a given instant; tests move it with advance()."""

    current: datetime = field(default_factory=timezone.now)

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


def days_until(target: datetime, now: datetime) -> int:
    """
    Whole calendar days from now until target, rounded up.

    A target 1 second away counts as 1 day; a target in the past yields 0 or a
    negative number of days.
    """
    seconds = (target - now).total_seconds()
    return math.ceil(seconds / ONE_DAY_SECONDS)


def hours_until(target: datetime, now: datetime) -> int:
    """Whole hours from now until target, truncated toward zero."""
    return int((target - now).total_seconds() // 3600) if target > now else 0
