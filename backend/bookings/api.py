"""API viewsets and permissions for bookings."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable

from django.db.models import Q
from django.utils import timezone
from django.utils.dateparse import parse_datetime
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from cars.models import CarBlock

from .errors import (
    AlreadyReviewed,
    BookingError,
    ConflictDetected,
    DeadlinePassed,
    Forbidden,
    IllegalTransition,
    InvalidInput,
    NotFound,
    Result,
)
from .filters import BookingFilter
from .models import Booking
from .serializers import (
    BlockedPeriodSerializer,
    BookingRequestSerializer,
    BookingSerializer,
    CancellationInfoSerializer,
    CancelSerializer,
    CarBlockRequestSerializer,
    CarBlockSerializer,
    ConflictingBookingSerializer,
    DisputeSerializer,
    EmergencyQuoteSerializer,
    ManualBookingRequestSerializer,
    RejectSerializer,
    RescheduleSerializer,
)
from .services import BookingLifecycle
from .windows import BlockedPeriod

AVAILABILITY_DEFAULT_DAYS = 90

ERROR_STATUS = {
    NotFound: status.HTTP_404_NOT_FOUND,
    Forbidden: status.HTTP_403_FORBIDDEN,
    IllegalTransition: status.HTTP_409_CONFLICT,
    DeadlinePassed: status.HTTP_400_BAD_REQUEST,
    ConflictDetected: status.HTTP_409_CONFLICT,
    AlreadyReviewed: status.HTTP_409_CONFLICT,
    InvalidInput: status.HTTP_400_BAD_REQUEST,
}


def error_response(error: BookingError) -> Response:
    return Response(
        error.as_dict(),
        status=ERROR_STATUS.get(type(error), status.HTTP_400_BAD_REQUEST),
    )


def result_response(
    result: Result,
    render: Callable[[object], object],
    *,
    success_status: int = status.HTTP_200_OK,
) -> Response:
    """Render a lifecycle Result as a DRF response."""
    if not result.ok:
        return error_response(result.error)
    return Response(render(result.value), status=success_status)


def _parse_instant(raw: str | None, name: str) -> datetime:
    try:
        value = parse_datetime(raw or "")
    except ValueError:
        value = None
    if value is None:
        raise InvalidInput(f"{name} must be an ISO 8601 datetime.")
    if timezone.is_naive(value):
        value = timezone.make_aware(value)
    return value


def _calendar_entry(item) -> dict:
    entry = {
        "start_date": item.start_date.isoformat(),
        "end_date": item.end_date.isoformat(),
        "kind": "block" if isinstance(item, BlockedPeriod) else "booking",
    }
    if isinstance(item, BlockedPeriod):
        entry["block_type"] = item.block_type
    return entry


class BookingViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    viewsets.GenericViewSet,
):
    """Bookings for the authenticated participant, plus their lifecycle actions."""

    serializer_class = BookingSerializer
    permission_classes = (permissions.IsAuthenticated,)
    filterset_class = BookingFilter
    ordering_fields = ("start_date", "created_at", "total_amount")
    lookup_value_regex = r"\d+"

    def get_queryset(self):
        """Restrict bookings to the ones the user hosts or rents."""
        user = self.request.user
        if not user.is_authenticated:
            return Booking.objects.none()
        return (
            Booking.objects.select_related("car", "host", "renter", "manual_details")
            .filter(Q(host=user) | Q(renter=user))
            .order_by("-created_at")
        )

    @property
    def lifecycle(self) -> BookingLifecycle:
        return BookingLifecycle()

    def _render_booking(self, booking: Booking) -> dict:
        return BookingSerializer(booking, context=self.get_serializer_context()).data

    def _role_for(self, booking_id) -> str:
        """The caller's side of the booking; unknown callers are treated as renters and rejected later."""
        booking = Booking.objects.filter(pk=booking_id).only("host_id", "renter_id").first()
        role = booking.party_role(self.request.user.id) if booking is not None else None
        return role or Booking.PartyType.RENTER

    def _default_cancel_track(self, booking_id) -> str:
        booking = Booking.objects.filter(pk=booking_id).only("host_id", "renter_id", "booking_type").first()
        if booking is None or booking.party_role(self.request.user.id) != Booking.PartyType.HOST:
            return Booking.CancellationTrack.STANDARD
        if booking.is_offline:
            return Booking.CancellationTrack.HOST_REJECT
        return Booking.CancellationTrack.EMERGENCY

    def _transition(self, request, target_status: str, *, role: str | None = None, metadata=None):
        booking_id = self.kwargs["pk"]
        result = self.lifecycle.attempt_transition(
            int(booking_id),
            request.user.id,
            role or self._role_for(booking_id),
            target_status,
            metadata,
        )
        return result_response(result, self._render_booking)

    def create(self, request, *args, **kwargs):
        """Request a car for a date range."""
        serializer = BookingRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = self.lifecycle.create_booking(
            request.user.id,
            data["car"].pk,
            data["start_date"],
            data["end_date"],
            serializer.pricing(),
            data.get("special_instructions", ""),
        )
        return result_response(result, self._render_booking, success_status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["post"], url_path="manual")
    def manual(self, request, *args, **kwargs):
        """Record an offline booking for one of the host's own cars."""
        serializer = ManualBookingRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = self.lifecycle.create_manual_booking(
            request.user.id,
            data["car"].pk,
            data["start_date"],
            data["end_date"],
            serializer.pricing(),
            dict(data["customer"]),
        )
        return result_response(result, self._render_booking, success_status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["get"], url_path="conflicts")
    def conflicts(self, request, *args, **kwargs):
        """List occupying bookings and host blocks that overlap ?start=&end= for ?car=."""
        try:
            car_id = int(request.query_params.get("car", ""))
        except (TypeError, ValueError):
            return error_response(InvalidInput("car must be a valid integer."))
        exclude = request.query_params.get("exclude")
        try:
            start = _parse_instant(request.query_params.get("start"), "start")
            end = _parse_instant(request.query_params.get("end"), "end")
            exclude_id = int(exclude) if exclude else None
        except InvalidInput as exc:
            return error_response(exc)
        except ValueError:
            return error_response(InvalidInput("exclude must be a valid integer."))

        conflicts = self.lifecycle.check_conflicts(car_id, start, end, exclude_id)
        blocks = self.lifecycle.blocked_periods(car_id, start, end)
        return Response(
            {
                "has_conflict": bool(conflicts or blocks),
                "conflicts": ConflictingBookingSerializer(conflicts, many=True).data,
                "blocks": BlockedPeriodSerializer(blocks, many=True).data,
            }
        )

    @action(
        detail=False,
        methods=["get"],
        url_path="availability",
        permission_classes=[permissions.AllowAny],
    )
    def availability(self, request, *args, **kwargs):
        """Return occupied [start, end) ranges for ?car= within an optional window."""
        car_param = request.query_params.get("car")
        if not car_param:
            return error_response(InvalidInput("car query parameter is required."))
        try:
            car_id = int(car_param)
        except (TypeError, ValueError):
            return error_response(InvalidInput("car must be a valid integer."))

        now = timezone.now()
        try:
            start = (
                _parse_instant(request.query_params["start"], "start")
                if "start" in request.query_params
                else now
            )
            end = (
                _parse_instant(request.query_params["end"], "end")
                if "end" in request.query_params
                else start + timedelta(days=AVAILABILITY_DEFAULT_DAYS)
            )
        except InvalidInput as exc:
            return error_response(exc)

        result = self.lifecycle.calendar(car_id, start, end)
        return result_response(
            result,
            lambda ranges: [_calendar_entry(item) for item in ranges],
        )

    @action(detail=True, methods=["post"], url_path="confirm")
    def confirm(self, request, *args, **kwargs):
        """Confirm a pending or auto-approved booking (host-only)."""
        return self._transition(request, Booking.Status.CONFIRMED, role=Booking.PartyType.HOST)

    @action(detail=True, methods=["post"], url_path="reject")
    def reject(self, request, *args, **kwargs):
        """Turn down a booking request; the renter is refunded in full (host-only)."""
        serializer = RejectSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = self.lifecycle.cancel(
            int(self.kwargs["pk"]),
            request.user.id,
            serializer.validated_data["reason"],
            Booking.CancellationTrack.HOST_REJECT,
        )
        return result_response(result, lambda outcome: self._render_booking(outcome.booking))

    @action(detail=True, methods=["post"], url_path="start")
    def start(self, request, *args, **kwargs):
        """Hand the car over (host-only)."""
        return self._transition(request, Booking.Status.IN_PROGRESS, role=Booking.PartyType.HOST)

    @action(detail=True, methods=["post"], url_path="complete")
    def complete(self, request, *args, **kwargs):
        """Mark a rental in progress as completed (host-only)."""
        return self._transition(request, Booking.Status.COMPLETED, role=Booking.PartyType.HOST)

    @action(detail=True, methods=["post"], url_path="dispute")
    def dispute(self, request, *args, **kwargs):
        """Flag the booking for administrative review (either party)."""
        serializer = DisputeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self._transition(
            request,
            Booking.Status.DISPUTED,
            metadata={"reason": serializer.validated_data["reason"]},
        )

    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, *args, **kwargs):
        """
        Cancel a booking.

        Renters use the standard track. Hosts use the emergency track and must
        send a reason_code and a reason describing the emergency. Offline
        bookings default to a fee-free host rejection.
        """
        serializer = CancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        booking_id = self.kwargs["pk"]
        track = data.get("track") or self._default_cancel_track(booking_id)
        result = self.lifecycle.cancel(
            int(booking_id),
            request.user.id,
            data["reason"],
            track,
            reason_code=data.get("reason_code"),
        )
        return result_response(
            result,
            lambda outcome: {
                "booking": self._render_booking(outcome.booking),
                "track": outcome.track,
                "fee": str(outcome.fee),
                "refund": str(outcome.refund),
            },
        )

    @action(detail=True, methods=["get"], url_path="cancellation-info")
    def cancellation_info(self, request, *args, **kwargs):
        """Whether the renter may still cancel and what they would get back."""
        result = self.lifecycle.check_cancellation(int(self.kwargs["pk"]), request.user.id)
        return result_response(result, lambda info: CancellationInfoSerializer(info).data)

    @action(detail=True, methods=["get"], url_path="emergency-quote")
    def emergency_quote(self, request, *args, **kwargs):
        """Preview the fee and refund of an emergency cancellation (host-only)."""
        reason_code = request.query_params.get("reason_code", "")
        result = self.lifecycle.quote_emergency_cancellation(
            int(self.kwargs["pk"]), request.user.id, reason_code
        )
        return result_response(result, lambda quote: EmergencyQuoteSerializer(quote).data)

    @action(detail=True, methods=["post"], url_path="reschedule")
    def reschedule(self, request, *args, **kwargs):
        """Move a booking that the host has not confirmed yet (renter-only)."""
        serializer = RescheduleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = self.lifecycle.reschedule(
            int(self.kwargs["pk"]),
            request.user.id,
            serializer.validated_data["start_date"],
            serializer.validated_data["end_date"],
        )
        return result_response(result, self._render_booking)


class CarBlockViewSet(
    mixins.ListModelMixin,
    mixins.CreateModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    """Periods a host has taken their cars off the market (maintenance, personal use...)."""

    serializer_class = CarBlockSerializer
    permission_classes = (permissions.IsAuthenticated,)
    lookup_value_regex = r"\d+"

    def get_queryset(self):
        qs = CarBlock.objects.filter(car__host=self.request.user).order_by("start_date", "id")
        car_param = self.request.query_params.get("car")
        if car_param and car_param.isdigit():
            qs = qs.filter(car_id=int(car_param))
        return qs

    @property
    def lifecycle(self) -> BookingLifecycle:
        return BookingLifecycle()

    def create(self, request, *args, **kwargs):
        serializer = CarBlockRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = self.lifecycle.block_car(
            request.user.id,
            data["car"].pk,
            data["start_date"],
            data["end_date"],
            data["block_type"],
            data["reason"],
            data["notes"],
        )
        return result_response(
            result,
            lambda block: CarBlockSerializer(block).data,
            success_status=status.HTTP_201_CREATED,
        )

    def destroy(self, request, *args, **kwargs):
        result = self.lifecycle.unblock_car(request.user.id, int(self.kwargs["pk"]))
        if not result.ok:
            return error_response(result.error)
        return Response(status=status.HTTP_204_NO_CONTENT)
