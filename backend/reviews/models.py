from __future__ import annotations

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models


class Review(models.Model):
    class Role(models.TextChoices):
        HOST_TO_RENTER = "host_to_renter", "Host to renter"
        RENTER_TO_HOST = "renter_to_host", "Renter to host"

    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.CASCADE,
        related_name="reviews",
    )
    car = models.ForeignKey(
        "cars.Car",
        on_delete=models.CASCADE,
        related_name="reviews",
    )
    reviewer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="reviews_written",
    )
    reviewed = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="reviews_received",
    )
    role = models.CharField(max_length=32, choices=Role.choices)
    rating = models.PositiveSmallIntegerField(
        validators=[MinValueValidator(1), MaxValueValidator(5)],
    )
    comment = models.TextField(blank=True, default="")
    is_public = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["booking", "reviewer", "reviewed"],
                name="unique_review_per_booking_direction",
            ),
            models.CheckConstraint(
                condition=models.Q(rating__gte=1) & models.Q(rating__lte=5),
                name="review_rating_between_1_and_5",
            ),
        ]

    def __str__(self) -> str:
        return f"Review {self.role} by {self.reviewer_id} for booking {self.booking_id}"


def update_user_review_stats(user) -> None:
    """Recalculate rating and review_count aggregates for the given user."""
    from django.db.models import Avg, Count

    agg = Review.objects.filter(reviewed=user).aggregate(avg=Avg("rating"), count=Count("id"))
    avg = agg.get("avg")
    user.rating = round(avg, 2) if avg is not None else None
    user.review_count = agg.get("count") or 0
    user.save(update_fields=["rating", "review_count"])
