"""Database models for vehicle bookings."""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import F, Q

from cars.models import Car


class Booking(models.Model):
    """A reservation of one car for a [start_date, end_date) window."""

    class Status(models.TextChoices):
        PENDING = "PENDING", "Pending"
        AUTO_APPROVED = "AUTO_APPROVED", "Auto approved"
        CONFIRMED = "CONFIRMED", "Confirmed"
        IN_PROGRESS = "IN_PROGRESS", "In progress"
        COMPLETED = "COMPLETED", "Completed"
        CANCELLED = "CANCELLED", "Cancelled"
        REJECTED = "REJECTED", "Rejected"
        DISPUTED = "DISPUTED", "Disputed"

    class BookingType(models.TextChoices):
        ONLINE = "ONLINE", "Online"
        OFFLINE = "OFFLINE", "Offline"

    class PartyType(models.TextChoices):
        HOST = "host", "Host"
        RENTER = "renter", "Renter"

    class ApprovalType(models.TextChoices):
        MANUAL = "manual", "Manual"
        AUTOMATIC = "automatic", "Automatic"

    class CancellationTrack(models.TextChoices):
        STANDARD = "standard", "Standard renter cancellation"
        HOST_REJECT = "host_reject", "Host rejection"
        EMERGENCY = "emergency", "Host emergency cancellation"

    car = models.ForeignKey(Car, related_name="bookings", on_delete=models.PROTECT)
    host = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="bookings_as_host",
        on_delete=models.PROTECT,
    )
    renter = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="bookings_as_renter",
        on_delete=models.PROTECT,
    )
    start_date = models.DateTimeField()
    end_date = models.DateTimeField(help_text="Return instant; must be after start_date.")
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    booking_type = models.CharField(
        max_length=8,
        choices=BookingType.choices,
        default=BookingType.ONLINE,
    )
    special_instructions = models.TextField(blank=True, default="")

    daily_rate = models.DecimalField(max_digits=12, decimal_places=2)
    total_days = models.PositiveIntegerField()
    subtotal = models.DecimalField(max_digits=12, decimal_places=2)
    insurance_fee = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    service_fee = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    delivery_fee = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    security_deposit = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    approval_type = models.CharField(
        max_length=16,
        choices=ApprovalType.choices,
        default=ApprovalType.MANUAL,
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        related_name="+",
        on_delete=models.SET_NULL,
    )
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    cancellation_reason = models.TextField(blank=True, default="")
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        related_name="+",
        on_delete=models.SET_NULL,
    )
    cancelled_by_type = models.CharField(
        max_length=8,
        choices=PartyType.choices,
        blank=True,
        default="",
    )
    cancellation_track = models.CharField(
        max_length=16,
        choices=CancellationTrack.choices,
        blank=True,
        default="",
    )
    cancellation_fee = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    refund_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    cancellation_details = models.JSONField(default=dict, blank=True)

    disputed_at = models.DateTimeField(null=True, blank=True)
    disputed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        related_name="+",
        on_delete=models.SET_NULL,
    )
    dispute_reason = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["car", "start_date", "end_date"], name="bookings_car_window_idx"),
            models.Index(fields=["car", "status"], name="bookings_car_status_idx"),
            models.Index(fields=["renter", "status"], name="bookings_renter_status_idx"),
            models.Index(fields=["host", "status"], name="bookings_host_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(end_date__gt=F("start_date")),
                name="bookings_end_after_start",
            ),
        ]

    def __str__(self) -> str:
        return f"Booking #{self.pk} for car {self.car_id} ({self.status})"

    @property
    def is_offline(self) -> bool:
        return self.booking_type == self.BookingType.OFFLINE

    def is_terminal(self) -> bool:
        """Return True if no further transition may be applied."""
        return self.status in TERMINAL_STATUSES

    def party_role(self, user_id) -> str | None:
        """Return "host" or "renter" for a participant, None otherwise."""
        if user_id is None:
            return None
        if user_id == self.host_id:
            return self.PartyType.HOST
        if user_id == self.renter_id:
            return self.PartyType.RENTER
        return None


TERMINAL_STATUSES = frozenset(
    {
        Booking.Status.COMPLETED,
        Booking.Status.CANCELLED,
        Booking.Status.REJECTED,
        Booking.Status.DISPUTED,
    }
)

# Financial and date fields may only change while a booking is still awaiting its host.
EDITABLE_STATUSES = frozenset({Booking.Status.PENDING, Booking.Status.AUTO_APPROVED})


class ManualBookingDetails(models.Model):
    """Walk-in customer data captured when a host records an offline booking."""

    booking = models.OneToOneField(
        Booking,
        on_delete=models.CASCADE,
        related_name="manual_details",
    )
    customer_name = models.CharField(max_length=160)
    customer_phone = models.CharField(max_length=32, blank=True, default="")
    customer_email = models.EmailField(blank=True, default="")
    customer_id_number = models.CharField(max_length=64, blank=True, default="")
    pickup_time = models.TimeField(null=True, blank=True)
    return_time = models.TimeField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"Manual details for booking {self.booking_id} ({self.customer_name})"


class BookingEvent(models.Model):
    """Append-only audit trail for booking lifecycle changes."""

    class Type(models.TextChoices):
        CREATED = "created", "Created"
        STATUS_CHANGE = "status_change", "Status change"
        RESCHEDULED = "rescheduled", "Rescheduled"
        NOTIFICATION_QUEUED = "notification_queued", "Notification queued"
        NOTIFICATION_FAILED = "notification_failed", "Notification failed"

    booking = models.ForeignKey(
        Booking,
        on_delete=models.CASCADE,
        related_name="events",
    )
    type = models.CharField(max_length=32, choices=Type.choices)
    payload = models.JSONField(default=dict, blank=True)
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="booking_events",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(fields=["booking", "created_at"], name="booking_event_bk_created_idx"),
            models.Index(fields=["type", "created_at"], name="booking_event_type_created_idx"),
        ]

    def __str__(self) -> str:
        return f"BookingEvent {self.pk} for booking {self.booking_id} ({self.type})"
