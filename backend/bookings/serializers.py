"""Serializers for booking-related API endpoints."""

from __future__ import annotations

from typing import Any

from rest_framework import serializers

from cars.models import Car, CarBlock

from .models import Booking, ManualBookingDetails
from .policy import EmergencyReason

MONEY = {"max_digits": 12, "decimal_places": 2}


class ManualBookingDetailsSerializer(serializers.ModelSerializer):
    class Meta:
        model = ManualBookingDetails
        fields = (
            "customer_name",
            "customer_phone",
            "customer_email",
            "customer_id_number",
            "pickup_time",
            "return_time",
            "notes",
        )


class BookingSerializer(serializers.ModelSerializer):
    """Read representation of a booking."""

    car_title = serializers.SerializerMethodField()
    status_label = serializers.CharField(source="get_status_display", read_only=True)
    manual_details = ManualBookingDetailsSerializer(read_only=True)

    class Meta:
        model = Booking
        fields = (
            "id",
            "car",
            "car_title",
            "host",
            "renter",
            "start_date",
            "end_date",
            "status",
            "status_label",
            "booking_type",
            "special_instructions",
            "daily_rate",
            "total_days",
            "subtotal",
            "insurance_fee",
            "service_fee",
            "delivery_fee",
            "total_amount",
            "security_deposit",
            "approval_type",
            "approved_at",
            "started_at",
            "completed_at",
            "cancellation_reason",
            "cancelled_at",
            "cancelled_by",
            "cancelled_by_type",
            "cancellation_track",
            "cancellation_fee",
            "refund_amount",
            "cancellation_details",
            "disputed_at",
            "dispute_reason",
            "manual_details",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields

    def get_car_title(self, obj: Booking) -> str:
        car = obj.car
        return f"{car.year} {car.make} {car.model}"


class BookingRequestSerializer(serializers.Serializer):
    """Payload for a renter's booking request; totals are re-checked by the lifecycle."""

    car = serializers.PrimaryKeyRelatedField(queryset=Car.objects.all())
    start_date = serializers.DateTimeField()
    end_date = serializers.DateTimeField()
    daily_rate = serializers.DecimalField(**MONEY)
    total_days = serializers.IntegerField(min_value=1)
    subtotal = serializers.DecimalField(**MONEY)
    insurance_fee = serializers.DecimalField(**MONEY, required=False, default=0)
    service_fee = serializers.DecimalField(**MONEY, required=False, default=0)
    delivery_fee = serializers.DecimalField(**MONEY, required=False, default=0)
    total_amount = serializers.DecimalField(**MONEY)
    security_deposit = serializers.DecimalField(**MONEY, required=False, default=0)
    special_instructions = serializers.CharField(required=False, allow_blank=True, default="")

    PRICING_FIELDS = (
        "daily_rate",
        "total_days",
        "subtotal",
        "insurance_fee",
        "service_fee",
        "delivery_fee",
        "total_amount",
        "security_deposit",
    )

    def pricing(self) -> dict[str, Any]:
        return {key: self.validated_data[key] for key in self.PRICING_FIELDS}


class ManualBookingRequestSerializer(BookingRequestSerializer):
    customer = ManualBookingDetailsSerializer()


class CancelSerializer(serializers.Serializer):
    track = serializers.ChoiceField(
        choices=Booking.CancellationTrack.choices,
        required=False,
    )
    reason = serializers.CharField(required=False, allow_blank=True, default="")
    reason_code = serializers.ChoiceField(choices=EmergencyReason.choices, required=False)


class RejectSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class DisputeSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=2000)


class RescheduleSerializer(serializers.Serializer):
    start_date = serializers.DateTimeField()
    end_date = serializers.DateTimeField()


class CancellationInfoSerializer(serializers.Serializer):
    can_cancel = serializers.BooleanField()
    cancellation_deadline = serializers.DateTimeField(allow_null=True)
    days_until_deadline = serializers.IntegerField()
    hours_until_deadline = serializers.IntegerField()
    cancellation_message = serializers.CharField()
    potential_refund = serializers.DecimalField(**MONEY)


class EmergencyQuoteSerializer(serializers.Serializer):
    reason_code = serializers.CharField()
    timing = serializers.CharField()
    base_rate = serializers.DecimalField(max_digits=6, decimal_places=4)
    multiplier = serializers.DecimalField(max_digits=6, decimal_places=4)
    fee_rate = serializers.DecimalField(max_digits=6, decimal_places=4)
    total_amount = serializers.DecimalField(**MONEY)
    fee = serializers.DecimalField(**MONEY)
    refund = serializers.DecimalField(**MONEY)


class ConflictingBookingSerializer(serializers.Serializer):
    booking_id = serializers.IntegerField()
    car_id = serializers.IntegerField()
    start_date = serializers.DateTimeField()
    end_date = serializers.DateTimeField()
    status = serializers.CharField()


class BlockedPeriodSerializer(serializers.Serializer):
    block_id = serializers.IntegerField()
    car_id = serializers.IntegerField()
    start_date = serializers.DateTimeField()
    end_date = serializers.DateTimeField()
    block_type = serializers.CharField()
    reason = serializers.CharField()


class CarBlockSerializer(serializers.ModelSerializer):
    class Meta:
        model = CarBlock
        fields = (
            "id",
            "car",
            "start_date",
            "end_date",
            "block_type",
            "reason",
            "notes",
            "created_at",
        )
        read_only_fields = fields


class CarBlockRequestSerializer(serializers.Serializer):
    car = serializers.PrimaryKeyRelatedField(queryset=Car.objects.all())
    start_date = serializers.DateTimeField()
    end_date = serializers.DateTimeField()
    block_type = serializers.ChoiceField(
        choices=CarBlock.BlockType.choices,
        default=CarBlock.BlockType.MANUAL,
    )
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    notes = serializers.CharField(required=False, allow_blank=True, default="")
