from __future__ import annotations

import logging
from typing import Optional

from celery import shared_task
from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import EmailMultiAlternatives

from notifications.models import NotificationLog

logger = logging.getLogger(__name__)
User = get_user_model()

STATUS_WORDS = {
    "AUTO_APPROVED": "approved automatically",
    "CONFIRMED": "confirmed",
    "IN_PROGRESS": "started",
    "COMPLETED": "completed",
    "DISPUTED": "disputed",
}


def _get_user(user_id: int) -> Optional[User]:
    try:
        return User.objects.get(pk=user_id)
    except User.DoesNotExist:
        logger.warning("notifications: user %s no longer exists", user_id)
        return None


def _get_booking(booking_id: int):
    from bookings.models import Booking

    try:
        return Booking.objects.select_related("car", "host", "renter").get(pk=booking_id)
    except Booking.DoesNotExist:
        logger.warning("notifications: booking %s no longer exists", booking_id)
        return None


def _log_notification(
    type_: str,
    status: str,
    *,
    user_id: int | None = None,
    booking_id: int | None = None,
    error: str | None = None,
) -> None:
    try:
        NotificationLog.objects.create(
            type=type_,
            status=status,
            recipient_id=user_id,
            booking_id=booking_id,
            error=error or "",
        )
    except Exception:
        logger.exception(
            "notifications: failed to persist notification log",
            extra={"type": type_, "status": status},
        )


def _booking_url(booking_id: int) -> str:
    frontend_origin = (getattr(settings, "FRONTEND_ORIGIN", "") or "").rstrip("/")
    return f"{frontend_origin}/bookings/{booking_id}" if frontend_origin else ""


def _car_title(booking) -> str:
    car = booking.car
    return f"{car.year} {car.make} {car.model}"


def _send_email_logged(
    type_: str,
    *,
    to_email: str | None,
    subject: str,
    body: str,
    user_id: int | None = None,
    booking_id: int | None = None,
) -> bool:
    if not to_email:
        _log_notification(
            type_,
            NotificationLog.Status.FAILED,
            user_id=user_id,
            booking_id=booking_id,
            error="missing recipient email",
        )
        logger.warning("notifications: cannot send email without recipient")
        return False

    site_name = getattr(settings, "SITE_NAME", "DriveHub")
    message = EmailMultiAlternatives(
        subject=f"[{site_name}] {subject}",
        body=body,
        from_email=settings.DEFAULT_FROM_EMAIL,
        to=[to_email],
    )
    try:
        message.send(fail_silently=False)
    except Exception as exc:
        logger.exception(
            "notifications: email send failed",
            extra={"type": type_, "booking_id": booking_id, "user_id": user_id},
        )
        _log_notification(
            type_,
            NotificationLog.Status.FAILED,
            user_id=user_id,
            booking_id=booking_id,
            error=str(exc) or exc.__class__.__name__,
        )
        return False

    _log_notification(
        type_,
        NotificationLog.Status.SENT,
        user_id=user_id,
        booking_id=booking_id,
    )
    return True


@shared_task(queue="emails")
def send_booking_request_email(booking_id: int):
    """Tell the host a renter asked for their car."""
    booking = _get_booking(booking_id)
    if booking is None:
        return
    host = booking.host
    renter_name = booking.renter.get_full_name() or booking.renter.username
    body = (
        f"{renter_name} requested your {_car_title(booking)} "
        f"from {booking.start_date:%Y-%m-%d %H:%M} to {booking.end_date:%Y-%m-%d %H:%M}.\n"
        f"Status: {booking.get_status_display()}\n"
        f"Total: {booking.total_amount}\n"
        f"{_booking_url(booking_id)}"
    )
    _send_email_logged(
        "booking_request",
        to_email=host.email,
        subject=f"New booking request for {_car_title(booking)}",
        body=body,
        user_id=host.pk,
        booking_id=booking_id,
    )


@shared_task(queue="emails")
def send_booking_status_email(booking_id: int, new_status: str):
    """Notify the renter that their booking moved to a new status."""
    booking = _get_booking(booking_id)
    if booking is None:
        return
    renter = booking.renter
    status_word = STATUS_WORDS.get(new_status, "updated")
    body = (
        f"Your booking for the {_car_title(booking)} was {status_word}.\n"
        f"Dates: {booking.start_date:%Y-%m-%d %H:%M} to {booking.end_date:%Y-%m-%d %H:%M}\n"
        f"{_booking_url(booking_id)}"
    )
    _send_email_logged(
        "booking_status_update",
        to_email=renter.email,
        subject=f"Your booking for {_car_title(booking)} was {status_word}",
        body=body,
        user_id=renter.pk,
        booking_id=booking_id,
    )


@shared_task(queue="emails")
def send_booking_cancelled_email(booking_id: int):
    """Tell the party who did not cancel, including the refund that was computed."""
    booking = _get_booking(booking_id)
    if booking is None:
        return
    if booking.cancelled_by_type == booking.PartyType.HOST:
        recipient = booking.renter
        who = "the host"
    else:
        recipient = booking.host
        who = "the renter"
    lines = [
        f"The booking for the {_car_title(booking)} was cancelled by {who}.",
        f"Reason: {booking.cancellation_reason or 'not provided'}",
    ]
    if booking.refund_amount is not None:
        lines.append(f"Refund: {booking.refund_amount}")
    if booking.cancellation_fee:
        lines.append(f"Cancellation fee: {booking.cancellation_fee}")
    lines.append(_booking_url(booking_id))
    _send_email_logged(
        "booking_cancelled",
        to_email=recipient.email,
        subject=f"Booking cancelled: {_car_title(booking)}",
        body="\n".join(lines),
        user_id=recipient.pk,
        booking_id=booking_id,
    )


@shared_task(queue="emails")
def send_booking_rescheduled_email(booking_id: int):
    """Tell the host the renter moved their dates."""
    booking = _get_booking(booking_id)
    if booking is None:
        return
    host = booking.host
    body = (
        f"The booking for your {_car_title(booking)} now runs "
        f"from {booking.start_date:%Y-%m-%d %H:%M} to {booking.end_date:%Y-%m-%d %H:%M}.\n"
        f"New total: {booking.total_amount}\n"
        f"{_booking_url(booking_id)}"
    )
    _send_email_logged(
        "booking_rescheduled",
        to_email=host.email,
        subject=f"Booking dates changed for {_car_title(booking)}",
        body=body,
        user_id=host.pk,
        booking_id=booking_id,
    )
