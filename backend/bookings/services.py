"""Single entry point for every booking lifecycle operation."""

from __future__ import annotations

import functools
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Mapping, Optional

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction

from cars.models import Car, CarBlock
from notifications import hooks
from notifications.hooks import queue_booking_notification
from reviews import eligibility
from reviews.eligibility import ReviewEligibility
from reviews.models import Review

from .clock import Clock, SystemClock, days_until
from .conf import CancellationPolicyConfig, load_policy_config
from .errors import (
    BookingError,
    ConflictDetected,
    Forbidden,
    IllegalTransition,
    InvalidInput,
    NotFound,
    Result,
)
from .models import EDITABLE_STATUSES, Booking, BookingEvent, ManualBookingDetails
from .policy import (
    CancellationInfo,
    CancellationOutcome,
    EmergencyQuote,
    assert_can_cancel_as_renter,
    assert_can_reject,
    emergency_reason_text,
    quote_emergency,
    standard_cancellation_info,
)
from .pricing import (
    BookingPricing,
    compute_pricing,
    quantize_money,
    validate_booking_dates,
    validate_pricing,
)
from .transitions import (
    HOST,
    RENTER,
    Action,
    TransitionRule,
    assert_allowed,
    assert_party,
    resolve_action,
    transition_fields,
)
from .windows import (
    BlockedPeriod,
    ConflictingBooking,
    ensure_no_conflict,
    find_blocks,
    find_conflicts,
    lock_car,
)

logger = logging.getLogger(__name__)

Notifier = Callable[[Booking, str], Any]
Track = Booking.CancellationTrack

_TRACK_BY_ACTION = {
    Action.CANCEL: Track.STANDARD,
    Action.REJECT: Track.HOST_REJECT,
    Action.EMERGENCY_CANCEL: Track.EMERGENCY,
}

MANUAL_DETAIL_FIELDS = (
    "customer_name",
    "customer_phone",
    "customer_email",
    "customer_id_number",
    "pickup_time",
    "return_time",
    "notes",
)


def _as_result(method):
    """Run a facade method and turn expected rejections into a failed Result."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs) -> Result:
        try:
            return Result.success(method(self, *args, **kwargs))
        except BookingError as exc:
            logger.info("bookings: %s rejected (%s): %s", method.__name__, exc.kind, exc.message)
            return Result.failure(exc)
        except IntegrityError:
            logger.warning("bookings: %s hit a store constraint", method.__name__, exc_info=True)
            return Result.failure(
                ConflictDetected(
                    "The booking changed while it was being saved. Please retry.",
                    retryable=True,
                )
            )

    return wrapper


class BookingLifecycle:
    """
    Load, check, commit, notify.

    Every mutating call runs in one database transaction with the booking row
    (and the car row whenever dates are involved) locked. Writes are guarded on
    the status that was read, so a concurrent change surfaces as a retryable
    ConflictDetected instead of a lost update. Notifications are queued only
    after commit and can never undo it.
    """

    def __init__(
        self,
        *,
        clock: Clock | None = None,
        config: CancellationPolicyConfig | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.clock = clock or SystemClock()
        self._config = config
        self.notifier = notifier or queue_booking_notification

    @property
    def config(self) -> CancellationPolicyConfig:
        # Reloaded per call so platform setting overrides take effect without a restart.
        return self._config or load_policy_config()

    # Store helpers

    def _get_booking(self, booking_id) -> Booking:
        booking = Booking.objects.filter(pk=booking_id).first()
        if booking is None:
            raise NotFound()
        return booking

    def _lock_booking(self, booking_id) -> Booking:
        booking = Booking.objects.select_for_update().filter(pk=booking_id).first()
        if booking is None:
            raise NotFound()
        return booking

    def _guarded_update(self, booking: Booking, observed_status: str, fields: dict[str, Any]) -> None:
        fields = {**fields, "updated_at": self.clock.now()}
        updated = Booking.objects.filter(pk=booking.pk, status=observed_status).update(**fields)
        if updated != 1:
            raise ConflictDetected(
                "The booking was changed by someone else. Please reload and retry.",
                retryable=True,
            )
        booking.refresh_from_db()

    def _record_event(self, booking: Booking, type_value: str, *, actor_id, payload: dict) -> None:
        BookingEvent.objects.create(
            booking=booking,
            type=type_value,
            actor_id=actor_id,
            payload=payload,
        )

    def _notify_after_commit(self, booking: Booking, event: str) -> None:
        transaction.on_commit(functools.partial(self._notify, booking, event), robust=True)

    def _notify(self, booking: Booking, event: str) -> None:
        try:
            queued = self.notifier(booking, event)
        except Exception:
            logger.info(
                "bookings: notification %s could not be queued",
                event,
                exc_info=True,
                extra={"booking_id": booking.pk},
            )
            BookingEvent.objects.create(
                booking=booking,
                type=BookingEvent.Type.NOTIFICATION_FAILED,
                payload={"event": event},
            )
            return
        if queued:
            BookingEvent.objects.create(
                booking=booking,
                type=BookingEvent.Type.NOTIFICATION_QUEUED,
                payload={"event": event},
            )

    def _validate_request(self, start: datetime, end: datetime, pricing) -> BookingPricing:
        validate_booking_dates(start, end)
        if not isinstance(pricing, BookingPricing):
            pricing = BookingPricing.from_mapping(pricing or {})
        validate_pricing(pricing, start=start, end=end)
        return pricing

    # Creation

    @_as_result
    def create_booking(
        self,
        renter_id,
        car_id,
        start: datetime,
        end: datetime,
        pricing: BookingPricing | Mapping[str, Any],
        special_instructions: str = "",
    ) -> Booking:
        """Record a renter's request; the car's host preference decides the initial status."""
        pricing = self._validate_request(start, end, pricing)
        now = self.clock.now()
        if start <= now:
            raise InvalidInput("Start date must be in the future.")
        config = self.config

        with transaction.atomic():
            car = lock_car(car_id)
            if not car.is_active:
                raise InvalidInput("This car is not available for booking.")
            if car.host_id == renter_id:
                raise Forbidden("You cannot book your own car.")
            renter = get_user_model().objects.filter(pk=renter_id).first()
            if renter is None:
                raise NotFound("Renter not found.")
            if not renter.can_rent:
                raise Forbidden("This account is not allowed to rent cars.")

            ensure_no_conflict(
                car.pk,
                start,
                end,
                pending_holds_calendar=config.pending_holds_calendar,
            )

            auto = car.auto_approve_bookings
            booking = Booking.objects.create(
                car=car,
                host_id=car.host_id,
                renter_id=renter_id,
                start_date=start,
                end_date=end,
                status=Booking.Status.AUTO_APPROVED if auto else Booking.Status.PENDING,
                booking_type=Booking.BookingType.ONLINE,
                special_instructions=(special_instructions or "").strip(),
                approval_type=(
                    Booking.ApprovalType.AUTOMATIC if auto else Booking.ApprovalType.MANUAL
                ),
                approved_at=now if auto else None,
                **pricing.as_model_fields(),
            )
            self._record_event(
                booking,
                BookingEvent.Type.CREATED,
                actor_id=renter_id,
                payload={"status": booking.status, "booking_type": booking.booking_type},
            )
            self._notify_after_commit(booking, hooks.CREATED)

        logger.info(
            "bookings: created %s booking for car %s",
            booking.status,
            car_id,
            extra={"booking_id": booking.pk},
        )
        return booking

    @_as_result
    def create_manual_booking(
        self,
        host_id,
        car_id,
        start: datetime,
        end: datetime,
        pricing: BookingPricing | Mapping[str, Any],
        details: Mapping[str, Any],
    ) -> Booking:
        """Record a walk-in rental the host arranged outside the marketplace."""
        pricing = self._validate_request(start, end, pricing)
        now = self.clock.now()
        if end <= now:
            raise InvalidInput("Offline bookings must end in the future.")

        details = dict(details or {})
        unknown = sorted(set(details) - set(MANUAL_DETAIL_FIELDS))
        if unknown:
            raise InvalidInput(f"Unknown customer detail fields: {', '.join(unknown)}.")
        customer_name = str(details.get("customer_name") or "").strip()
        if not customer_name:
            raise InvalidInput("Customer name is required for offline bookings.")
        details["customer_name"] = customer_name
        config = self.config

        with transaction.atomic():
            car = lock_car(car_id)
            if car.host_id != host_id:
                raise Forbidden("Only the car's host can record offline bookings.")
            ensure_no_conflict(
                car.pk,
                start,
                end,
                pending_holds_calendar=config.pending_holds_calendar,
            )
            booking = Booking.objects.create(
                car=car,
                host_id=host_id,
                renter_id=host_id,
                start_date=start,
                end_date=end,
                status=Booking.Status.AUTO_APPROVED,
                booking_type=Booking.BookingType.OFFLINE,
                approval_type=Booking.ApprovalType.AUTOMATIC,
                approved_at=now,
                approved_by_id=host_id,
                **pricing.as_model_fields(),
            )
            ManualBookingDetails.objects.create(booking=booking, **details)
            self._record_event(
                booking,
                BookingEvent.Type.CREATED,
                actor_id=host_id,
                payload={"status": booking.status, "booking_type": booking.booking_type},
            )
            self._notify_after_commit(booking, hooks.CREATED)

        logger.info(
            "bookings: recorded offline booking for car %s",
            car_id,
            extra={"booking_id": booking.pk},
        )
        return booking

    # Status changes

    @_as_result
    def attempt_transition(
        self,
        booking_id,
        actor_id,
        actor_role: str,
        target_status: str,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Booking:
        metadata = dict(metadata or {})
        rule = resolve_action(actor_role, target_status, metadata)
        if rule.target == Booking.Status.CANCELLED:
            outcome = self._cancel(
                booking_id,
                actor_id,
                str(metadata.get("reason", "")),
                _TRACK_BY_ACTION[rule.action],
                reason_code=metadata.get("reason_code"),
            )
            return outcome.booking
        return self._transition(booking_id, actor_id, actor_role, rule, metadata)

    def _transition(
        self,
        booking_id,
        actor_id,
        actor_role: str,
        rule: TransitionRule,
        metadata: dict[str, Any],
    ) -> Booking:
        with transaction.atomic():
            if rule.action == Action.CONFIRM:
                # Car before booking, the same order creation and reschedule use.
                lock_car(self._get_booking(booking_id).car_id)
            booking = self._lock_booking(booking_id)
            assert_party(booking, actor_id, actor_role)
            assert_allowed(booking, rule, actor_role)
            if rule.action == Action.CONFIRM:
                ensure_no_conflict(
                    booking.car_id,
                    booking.start_date,
                    booking.end_date,
                    pending_holds_calendar=self.config.pending_holds_calendar,
                    exclude_booking_id=booking.pk,
                )

            previous = booking.status
            fields = transition_fields(rule, actor_id=actor_id, now=self.clock.now(), metadata=metadata)
            self._guarded_update(booking, previous, fields)
            self._record_event(
                booking,
                BookingEvent.Type.STATUS_CHANGE,
                actor_id=actor_id,
                payload={"from": previous, "to": booking.status, "action": rule.action},
            )
            self._notify_after_commit(booking, hooks.STATUS_CHANGE)

        logger.info(
            "bookings: %s -> %s by %s %s",
            previous,
            booking.status,
            actor_role,
            actor_id,
            extra={"booking_id": booking.pk},
        )
        return booking

    # Cancellation

    @_as_result
    def check_cancellation(self, booking_id, actor_id) -> CancellationInfo:
        booking = self._get_booking(booking_id)
        if actor_id != booking.renter_id:
            raise Forbidden("Not authorized to cancel this booking.")
        config = self.config
        return standard_cancellation_info(
            booking,
            now=self.clock.now(),
            deadline_offset=config.deadline_offset,
            schedule=config.refund_schedule,
        )

    @_as_result
    def quote_emergency_cancellation(self, booking_id, actor_id, reason_code: str) -> EmergencyQuote:
        booking = self._get_booking(booking_id)
        assert_party(booking, actor_id, HOST)
        return quote_emergency(
            booking,
            reason_code=reason_code,
            now=self.clock.now(),
            table=self.config.emergency_fees,
        )

    @_as_result
    def cancel(
        self,
        booking_id,
        actor_id,
        reason: str,
        track: str,
        *,
        reason_code: str | None = None,
    ) -> CancellationOutcome:
        return self._cancel(booking_id, actor_id, reason, track, reason_code=reason_code)

    def _cancel(
        self,
        booking_id,
        actor_id,
        reason: str,
        track: str,
        *,
        reason_code: str | None = None,
    ) -> CancellationOutcome:
        if track not in Track.values:
            raise InvalidInput(f"Unknown cancellation track '{track}'.")
        reason = (reason or "").strip()
        config = self.config

        with transaction.atomic():
            booking = self._lock_booking(booking_id)
            now = self.clock.now()
            total = quantize_money(booking.total_amount)

            if track == Track.STANDARD:
                assert_party(booking, actor_id, RENTER)
                info = standard_cancellation_info(
                    booking,
                    now=now,
                    deadline_offset=config.deadline_offset,
                    schedule=config.refund_schedule,
                )
                assert_can_cancel_as_renter(info, booking)
                refund = info.potential_refund
                fee = quantize_money(total - refund)
                cancelled_by_type = Booking.PartyType.RENTER
                reason_text = reason or "Cancelled by renter"
                details: dict[str, Any] = {
                    "track": track,
                    "deadline": info.cancellation_deadline.isoformat(),
                    "days_until_deadline": info.days_until_deadline,
                    "refund_rate": str(config.refund_schedule.rate_for(info.days_until_deadline)),
                    "schedule": config.refund_schedule.snapshot(),
                }
            elif track == Track.HOST_REJECT:
                assert_party(booking, actor_id, HOST)
                assert_can_reject(booking, now=now, min_days=config.host_reject_min_days)
                refund, fee = total, Decimal("0.00")
                cancelled_by_type = Booking.PartyType.HOST
                reason_text = reason or "Rejected by host"
                details = {
                    "track": track,
                    "days_until_start": days_until(booking.start_date, now),
                }
            else:
                assert_party(booking, actor_id, HOST)
                if not reason_code:
                    raise InvalidInput("An emergency reason code is required.")
                quote = quote_emergency(
                    booking,
                    reason_code=reason_code,
                    now=now,
                    table=config.emergency_fees,
                )
                if not reason:
                    raise InvalidInput("Please describe the emergency.")
                refund, fee = quote.refund, quote.fee
                cancelled_by_type = Booking.PartyType.HOST
                reason_text = emergency_reason_text(quote, reason)
                details = {"track": track, "detail": reason, **quote.as_details()}

            previous = booking.status
            self._guarded_update(
                booking,
                previous,
                {
                    "status": Booking.Status.CANCELLED,
                    "cancelled_at": now,
                    "cancelled_by_id": actor_id,
                    "cancelled_by_type": cancelled_by_type,
                    "cancellation_reason": reason_text,
                    "cancellation_track": track,
                    "cancellation_fee": fee,
                    "refund_amount": refund,
                    "cancellation_details": details,
                },
            )
            self._record_event(
                booking,
                BookingEvent.Type.STATUS_CHANGE,
                actor_id=actor_id,
                payload={
                    "from": previous,
                    "to": booking.status,
                    "track": track,
                    "fee": str(fee),
                    "refund": str(refund),
                },
            )
            self._notify_after_commit(booking, hooks.CANCELLED)

        logger.info(
            "bookings: cancelled via %s track, fee=%s refund=%s",
            track,
            fee,
            refund,
            extra={"booking_id": booking.pk},
        )
        return CancellationOutcome(
            booking=booking,
            track=track,
            fee=fee,
            refund=refund,
            details=details,
        )

    # Dates

    @_as_result
    def reschedule(self, booking_id, actor_id, start: datetime, end: datetime) -> Booking:
        """Move a not-yet-confirmed booking to new dates, repriced at its stored daily rate."""
        validate_booking_dates(start, end)
        if start <= self.clock.now():
            raise InvalidInput("Start date must be in the future.")

        with transaction.atomic():
            car_id = self._get_booking(booking_id).car_id
            lock_car(car_id)
            booking = self._lock_booking(booking_id)
            assert_party(booking, actor_id, RENTER)
            if booking.status not in EDITABLE_STATUSES:
                raise IllegalTransition(
                    f"Only pending or auto-approved bookings can be rescheduled (status: {booking.status})."
                )
            ensure_no_conflict(
                car_id,
                start,
                end,
                pending_holds_calendar=self.config.pending_holds_calendar,
                exclude_booking_id=booking.pk,
            )
            pricing = compute_pricing(
                daily_rate=booking.daily_rate,
                start=start,
                end=end,
                insurance_fee=booking.insurance_fee,
                service_fee=booking.service_fee,
                delivery_fee=booking.delivery_fee,
                security_deposit=booking.security_deposit,
            )
            before = {
                "start_date": booking.start_date.isoformat(),
                "end_date": booking.end_date.isoformat(),
                "total_amount": str(booking.total_amount),
            }
            self._guarded_update(
                booking,
                booking.status,
                {"start_date": start, "end_date": end, **pricing.as_model_fields()},
            )
            self._record_event(
                booking,
                BookingEvent.Type.RESCHEDULED,
                actor_id=actor_id,
                payload={
                    "before": before,
                    "after": {
                        "start_date": booking.start_date.isoformat(),
                        "end_date": booking.end_date.isoformat(),
                        "total_amount": str(booking.total_amount),
                    },
                },
            )
            self._notify_after_commit(booking, hooks.RESCHEDULED)

        return booking

    def check_conflicts(
        self,
        car_id,
        start: datetime,
        end: datetime,
        exclude_booking_id=None,
    ) -> list[ConflictingBooking]:
        """Occupying bookings that overlap [start, end); an empty or inverted range overlaps nothing."""
        if not start or not end or end <= start:
            return []
        return find_conflicts(
            car_id,
            start,
            end,
            pending_holds_calendar=self.config.pending_holds_calendar,
            exclude_booking_id=exclude_booking_id,
        )

    def blocked_periods(self, car_id, start: datetime, end: datetime) -> list[BlockedPeriod]:
        """Host blocks that overlap [start, end); an empty or inverted range overlaps nothing."""
        if not start or not end or end <= start:
            return []
        return find_blocks(car_id, start, end)

    @_as_result
    def calendar(
        self, car_id, start: datetime, end: datetime
    ) -> list[ConflictingBooking | BlockedPeriod]:
        """Occupied ranges of a car within [start, end), bookings and host blocks by start."""
        validate_booking_dates(start, end)
        if not Car.objects.filter(pk=car_id).exists():
            raise NotFound("Car not found.")
        entries: list[ConflictingBooking | BlockedPeriod] = [
            *self.check_conflicts(car_id, start, end),
            *find_blocks(car_id, start, end),
        ]
        return sorted(entries, key=lambda entry: entry.start_date)

    # Host availability blocks

    @_as_result
    def block_car(
        self,
        host_id,
        car_id,
        start: datetime,
        end: datetime,
        block_type: str = CarBlock.BlockType.MANUAL,
        reason: str = "",
        notes: str = "",
    ) -> CarBlock:
        """Take a car off the market for [start, end); live bookings in that window must go first."""
        validate_booking_dates(start, end)
        if end <= self.clock.now():
            raise InvalidInput("Blocks must end in the future.")
        if block_type not in CarBlock.BlockType.values:
            raise InvalidInput(f"Unknown block type '{block_type}'.")

        with transaction.atomic():
            car = lock_car(car_id)
            if car.host_id != host_id:
                raise Forbidden("Only the car's host can block its calendar.")
            conflicts = find_conflicts(
                car.pk,
                start,
                end,
                pending_holds_calendar=self.config.pending_holds_calendar,
            )
            if conflicts:
                raise ConflictDetected(
                    "Bookings already occupy part of this period.",
                    details={"conflicts": [conflict.as_dict() for conflict in conflicts]},
                )
            block = CarBlock.objects.create(
                car=car,
                start_date=start,
                end_date=end,
                block_type=block_type,
                reason=(reason or "").strip(),
                notes=(notes or "").strip(),
                created_by_id=host_id,
            )

        logger.info("bookings: host %s blocked car %s (%s)", host_id, car_id, block_type)
        return block

    @_as_result
    def unblock_car(self, host_id, block_id) -> None:
        with transaction.atomic():
            block = CarBlock.objects.select_related("car").filter(pk=block_id).first()
            if block is None:
                raise NotFound("Block not found.")
            if block.car.host_id != host_id:
                raise Forbidden("Only the car's host can change its calendar.")
            lock_car(block.car_id)
            block.delete()
        logger.info("bookings: host %s removed block %s", host_id, block_id)

    # Reviews

    def check_review_eligibility(self, booking_id, reviewer_id) -> ReviewEligibility:
        return eligibility.check_review_eligibility(booking_id, reviewer_id)

    @_as_result
    def submit_review(
        self,
        booking_id,
        reviewer_id,
        reviewee_id,
        rating,
        comment: str = "",
        is_public: bool = True,
    ) -> Review:
        return eligibility.create_review(
            booking_id=booking_id,
            reviewer_id=reviewer_id,
            reviewee_id=reviewee_id,
            rating=rating,
            comment=comment,
            is_public=is_public,
        )
