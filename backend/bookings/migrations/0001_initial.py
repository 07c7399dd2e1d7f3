import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


def money(**kwargs):
    return models.DecimalField(decimal_places=2, max_digits=12, **kwargs)


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("cars", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Booking",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("start_date", models.DateTimeField()),
                ("end_date", models.DateTimeField(help_text="Return instant; must be after start_date.")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("PENDING", "Pending"),
                            ("AUTO_APPROVED", "Auto approved"),
                            ("CONFIRMED", "Confirmed"),
                            ("IN_PROGRESS", "In progress"),
                            ("COMPLETED", "Completed"),
                            ("CANCELLED", "Cancelled"),
                            ("REJECTED", "Rejected"),
                            ("DISPUTED", "Disputed"),
                        ],
                        default="PENDING",
                        max_length=16,
                    ),
                ),
                (
                    "booking_type",
                    models.CharField(
                        choices=[("ONLINE", "Online"), ("OFFLINE", "Offline")],
                        default="ONLINE",
                        max_length=8,
                    ),
                ),
                ("special_instructions", models.TextField(blank=True, default="")),
                ("daily_rate", money()),
                ("total_days", models.PositiveIntegerField()),
                ("subtotal", money()),
                ("insurance_fee", money(default=0)),
                ("service_fee", money(default=0)),
                ("delivery_fee", money(default=0)),
                ("total_amount", money()),
                ("security_deposit", money(default=0)),
                (
                    "approval_type",
                    models.CharField(
                        choices=[("manual", "Manual"), ("automatic", "Automatic")],
                        default="manual",
                        max_length=16,
                    ),
                ),
                ("approved_at", models.DateTimeField(blank=True, null=True)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("cancellation_reason", models.TextField(blank=True, default="")),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                (
                    "cancelled_by_type",
                    models.CharField(
                        blank=True,
                        choices=[("host", "Host"), ("renter", "Renter")],
                        default="",
                        max_length=8,
                    ),
                ),
                (
                    "cancellation_track",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("standard", "Standard renter cancellation"),
                            ("host_reject", "Host rejection"),
                            ("emergency", "Host emergency cancellation"),
                        ],
                        default="",
                        max_length=16,
                    ),
                ),
                ("cancellation_fee", money(blank=True, null=True)),
                ("refund_amount", money(blank=True, null=True)),
                ("cancellation_details", models.JSONField(blank=True, default=dict)),
                ("disputed_at", models.DateTimeField(blank=True, null=True)),
                ("dispute_reason", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "car",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="bookings",
                        to="cars.car",
                    ),
                ),
                (
                    "host",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="bookings_as_host",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "renter",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="bookings_as_renter",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "approved_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "cancelled_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "disputed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["car", "start_date", "end_date"], name="bookings_car_window_idx"),
                    models.Index(fields=["car", "status"], name="bookings_car_status_idx"),
                    models.Index(fields=["renter", "status"], name="bookings_renter_status_idx"),
                    models.Index(fields=["host", "status"], name="bookings_host_status_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(end_date__gt=models.F("start_date")),
                        name="bookings_end_after_start",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ManualBookingDetails",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("customer_name", models.CharField(max_length=160)),
                ("customer_phone", models.CharField(blank=True, default="", max_length=32)),
                ("customer_email", models.EmailField(blank=True, default="", max_length=254)),
                ("customer_id_number", models.CharField(blank=True, default="", max_length=64)),
                ("pickup_time", models.TimeField(blank=True, null=True)),
                ("return_time", models.TimeField(blank=True, null=True)),
                ("notes", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "booking",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="manual_details",
                        to="bookings.booking",
                    ),
                ),
            ],
        ),
        migrations.CreateModel(
            name="BookingEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "type",
                    models.CharField(
                        choices=[
                            ("created", "Created"),
                            ("status_change", "Status change"),
                            ("rescheduled", "Rescheduled"),
                            ("notification_queued", "Notification queued"),
                            ("notification_failed", "Notification failed"),
                        ],
                        max_length=32,
                    ),
                ),
                ("payload", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "actor",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="booking_events",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="events",
                        to="bookings.booking",
                    ),
                ),
            ],
            options={
                "ordering": ["created_at", "id"],
                "indexes": [
                    models.Index(fields=["booking", "created_at"], name="booking_event_bk_created_idx"),
                    models.Index(fields=["type", "created_at"], name="booking_event_type_created_idx"),
                ],
            },
        ),
    ]
