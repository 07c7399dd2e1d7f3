from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import F, Q


class Car(models.Model):
    """A vehicle a host offers for rent."""

    class Status(models.TextChoices):
        ACTIVE = "ACTIVE", "Active"
        INACTIVE = "INACTIVE", "Inactive"

    host = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="cars",
    )
    make = models.CharField(max_length=60)
    model = models.CharField(max_length=60)
    year = models.PositiveSmallIntegerField()
    daily_rate = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(0)],
        default=0,
    )
    security_deposit = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(0)],
        default=0,
    )
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.ACTIVE)
    auto_approve_bookings = models.BooleanField(
        default=False,
        help_text="Host preference: new requests start as AUTO_APPROVED instead of PENDING.",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["host", "status"], name="cars_host_status_idx"),
        ]

    def clean(self):
        if self.year and self.year < 1950:
            raise ValidationError("Unreasonable model year")

    def __str__(self) -> str:
        return f"{self.year} {self.make} {self.model}"

    @property
    def is_active(self) -> bool:
        return self.status == self.Status.ACTIVE


class CarBlock(models.Model):
    """A [start_date, end_date) period the host has taken the car off the market."""

    class BlockType(models.TextChoices):
        MANUAL = "manual", "Manual"
        MAINTENANCE = "maintenance", "Maintenance"
        PERSONAL = "personal", "Personal use"
        SEASONAL = "seasonal", "Seasonal"

    car = models.ForeignKey(Car, on_delete=models.CASCADE, related_name="blocks")
    start_date = models.DateTimeField()
    end_date = models.DateTimeField()
    block_type = models.CharField(max_length=16, choices=BlockType.choices, default=BlockType.MANUAL)
    reason = models.CharField(max_length=255, blank=True, default="")
    notes = models.TextField(blank=True, default="")
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="+",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["start_date", "id"]
        indexes = [
            models.Index(fields=["car", "start_date", "end_date"], name="cars_block_window_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(end_date__gt=F("start_date")),
                name="cars_block_end_after_start",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.get_block_type_display()} block on car {self.car_id}"
