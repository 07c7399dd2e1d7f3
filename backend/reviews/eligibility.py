"""Who may review whom after a rental."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from django.db import IntegrityError, transaction

from bookings.errors import (
    AlreadyReviewed,
    BookingError,
    Forbidden,
    IllegalTransition,
    InvalidInput,
    NotFound,
)
from bookings.models import Booking

from .models import Review, update_user_review_stats

logger = logging.getLogger(__name__)

NOT_PARTICIPANT = "Booking not found or you are not a participant."
OFFLINE_BOOKING = "Offline bookings are not reviewable."
NOT_COMPLETED = "Can only review completed bookings."
ALREADY_REVIEWED = "You have already reviewed this booking."


@dataclass(frozen=True)
class ReviewEligibility:
    can_review: bool
    reason: str = ""
    reviewed_id: int | None = None
    role: str = ""
    code: str = ""

    def as_dict(self) -> dict[str, object]:
        return {
            "can_review": self.can_review,
            "reason": self.reason,
            "reviewed_id": self.reviewed_id,
            "role": self.role,
        }


def _denied(code: str, reason: str, **kwargs) -> ReviewEligibility:
    return ReviewEligibility(can_review=False, reason=reason, code=code, **kwargs)


def evaluate(booking: Booking | None, reviewer_id) -> ReviewEligibility:
    """
    Decide whether reviewer_id may review the other party of booking.

    Each direction (host reviewing renter, renter reviewing host) is judged on
    its own; one side having reviewed never blocks the other.
    """
    if booking is None or reviewer_id not in (booking.host_id, booking.renter_id):
        return _denied("not_participant", NOT_PARTICIPANT)
    # Offline bookings carry the host on both sides, so there is no counterparty.
    if booking.is_offline or booking.host_id == booking.renter_id:
        return _denied("offline", OFFLINE_BOOKING)

    if reviewer_id == booking.host_id:
        reviewed_id, role = booking.renter_id, Review.Role.HOST_TO_RENTER
    else:
        reviewed_id, role = booking.host_id, Review.Role.RENTER_TO_HOST

    if booking.status != Booking.Status.COMPLETED:
        return _denied("not_completed", NOT_COMPLETED, reviewed_id=reviewed_id, role=role)

    exists = Review.objects.filter(
        booking_id=booking.pk, reviewer_id=reviewer_id, reviewed_id=reviewed_id
    ).exists()
    if exists:
        return _denied("already_reviewed", ALREADY_REVIEWED, reviewed_id=reviewed_id, role=role)

    return ReviewEligibility(can_review=True, reviewed_id=reviewed_id, role=role)


def check_review_eligibility(booking_id, reviewer_id) -> ReviewEligibility:
    booking = Booking.objects.filter(pk=booking_id).first()
    return evaluate(booking, reviewer_id)


_ERRORS: dict[str, type[BookingError]] = {
    "not_participant": NotFound,
    "offline": Forbidden,
    "not_completed": IllegalTransition,
    "already_reviewed": AlreadyReviewed,
}


def _validate_rating(rating) -> int:
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise InvalidInput("Rating must be between 1 and 5.")
    return rating


def create_review(
    *,
    booking_id,
    reviewer_id,
    reviewee_id,
    rating,
    comment: str = "",
    is_public: bool = True,
) -> Review:
    """Persist a review after re-checking eligibility under a booking row lock."""
    rating = _validate_rating(rating)

    with transaction.atomic():
        booking = Booking.objects.select_for_update().filter(pk=booking_id).first()
        verdict = evaluate(booking, reviewer_id)
        if not verdict.can_review:
            raise _ERRORS[verdict.code](verdict.reason)
        if reviewee_id != verdict.reviewed_id:
            raise Forbidden("You can only review the other party of this booking.")

        try:
            with transaction.atomic():
                review = Review.objects.create(
                    booking=booking,
                    car_id=booking.car_id,
                    reviewer_id=reviewer_id,
                    reviewed_id=reviewee_id,
                    role=verdict.role,
                    rating=rating,
                    comment=(comment or "").strip(),
                    is_public=bool(is_public),
                )
        except IntegrityError as exc:
            raise AlreadyReviewed(ALREADY_REVIEWED) from exc

        update_user_review_stats(review.reviewed)

    logger.info(
        "reviews: %s review stored by user %s",
        review.role,
        reviewer_id,
        extra={"booking_id": booking.pk},
    )
    return review
