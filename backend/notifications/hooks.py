"""Queue the email that matches a committed booking change."""

from __future__ import annotations

import logging

from notifications import tasks as notification_tasks

logger = logging.getLogger(__name__)

CREATED = "created"
STATUS_CHANGE = "status_change"
CANCELLED = "cancelled"
RESCHEDULED = "rescheduled"


def queue_booking_notification(booking, event: str) -> bool:
    """
    Hand the notification to Celery.

    Returns False when nothing needs sending. Broker errors propagate so the
    caller can record the failure.
    """
    # Offline bookings have no separate renter to write to.
    if booking.is_offline:
        return False

    if event == CREATED:
        notification_tasks.send_booking_request_email.delay(booking.id)
    elif event == STATUS_CHANGE:
        notification_tasks.send_booking_status_email.delay(booking.id, booking.status)
    elif event == CANCELLED:
        notification_tasks.send_booking_cancelled_email.delay(booking.id)
    elif event == RESCHEDULED:
        notification_tasks.send_booking_rescheduled_email.delay(booking.id)
    else:
        logger.warning("notifications: unknown booking event %s", event)
        return False

    logger.info(
        "notifications: queued %s email",
        event,
        extra={"booking_id": booking.id},
    )
    return True
