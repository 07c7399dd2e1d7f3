"""Typed rejections returned by the booking lifecycle engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class BookingError(Exception):
    """
    Base class for expected, caller-recoverable booking failures.

    Domain helpers raise these; BookingLifecycle converts them into a failed
    Result so callers never have to catch them. Storage failures are not
    BookingErrors and propagate unchanged.
    """

    kind = "booking_error"
    default_message = "Booking request could not be completed."

    def __init__(
        self,
        message: str | None = None,
        *,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.retryable = retryable
        self.details = details or {}
        super().__init__(self.message)

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"detail": self.message, "code": self.kind}
        if self.retryable:
            payload["retryable"] = True
        if self.details:
            payload["details"] = self.details
        return payload


class NotFound(BookingError):
    kind = "not_found"
    default_message = "Booking not found."


class Forbidden(BookingError):
    kind = "forbidden"
    default_message = "You are not allowed to perform this action on this booking."


class IllegalTransition(BookingError):
    kind = "illegal_transition"
    default_message = "This status change is not allowed."


class DeadlinePassed(BookingError):
    kind = "deadline_passed"
    default_message = "The deadline for this action has passed."


class ConflictDetected(BookingError):
    kind = "conflict"
    default_message = "Requested dates are not available for this vehicle."


class AlreadyReviewed(BookingError):
    kind = "already_reviewed"
    default_message = "You have already reviewed this booking."


class InvalidInput(BookingError):
    kind = "invalid_input"
    default_message = "Invalid booking input."


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a committed value or the BookingError that prevented it."""

    value: T | None = None
    error: BookingError | None = None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: BookingError) -> "Result[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
