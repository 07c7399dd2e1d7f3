"""Who may move a booking from one status to another."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from django.db import models

from .errors import Forbidden, IllegalTransition, InvalidInput
from .models import TERMINAL_STATUSES, Booking

Status = Booking.Status
HOST = Booking.PartyType.HOST
RENTER = Booking.PartyType.RENTER


class Action(models.TextChoices):
    CONFIRM = "confirm", "Confirm"
    REJECT = "reject", "Reject"
    CANCEL = "cancel", "Cancel"
    EMERGENCY_CANCEL = "emergency_cancel", "Emergency cancel"
    START = "start", "Start"
    COMPLETE = "complete", "Complete"
    DISPUTE = "dispute", "Dispute"


@dataclass(frozen=True)
class TransitionRule:
    action: str
    sources: frozenset[str]
    target: str
    roles: frozenset[str]


_NON_TERMINAL = frozenset(Status.values) - TERMINAL_STATUSES

RULES: tuple[TransitionRule, ...] = (
    TransitionRule(
        Action.CONFIRM,
        frozenset({Status.PENDING, Status.AUTO_APPROVED}),
        Status.CONFIRMED,
        frozenset({HOST}),
    ),
    TransitionRule(
        Action.REJECT,
        frozenset({Status.PENDING, Status.AUTO_APPROVED}),
        Status.CANCELLED,
        frozenset({HOST}),
    ),
    TransitionRule(
        Action.CANCEL,
        frozenset({Status.PENDING, Status.AUTO_APPROVED, Status.CONFIRMED}),
        Status.CANCELLED,
        frozenset({RENTER}),
    ),
    TransitionRule(
        Action.EMERGENCY_CANCEL,
        frozenset({Status.CONFIRMED, Status.AUTO_APPROVED, Status.IN_PROGRESS}),
        Status.CANCELLED,
        frozenset({HOST}),
    ),
    TransitionRule(
        Action.START,
        frozenset({Status.CONFIRMED}),
        Status.IN_PROGRESS,
        frozenset({HOST}),
    ),
    TransitionRule(
        Action.COMPLETE,
        frozenset({Status.IN_PROGRESS}),
        Status.COMPLETED,
        frozenset({HOST}),
    ),
    TransitionRule(
        Action.DISPUTE,
        _NON_TERMINAL,
        Status.DISPUTED,
        frozenset({HOST, RENTER}),
    ),
)

_RULES_BY_ACTION = {rule.action: rule for rule in RULES}


def rule_for(action: str) -> TransitionRule:
    return _RULES_BY_ACTION[action]


def assert_party(booking: Booking, actor_id, actor_role: str) -> None:
    """Ensure actor_id really holds actor_role on this booking."""
    if actor_role == HOST:
        party_id = booking.host_id
    elif actor_role == RENTER:
        party_id = booking.renter_id
    else:
        raise InvalidInput(f"Unknown actor role '{actor_role}'.")
    if actor_id is None or actor_id != party_id:
        raise Forbidden("You are not a participant in this booking.")


def assert_allowed(booking: Booking, rule: TransitionRule, actor_role: str) -> None:
    """
    Check a rule against the booking's current status and the acting party.

    Status is checked first so acting on a finished booking is always reported
    as an illegal transition, whoever asks.
    """
    if booking.is_terminal() or booking.status not in rule.sources:
        raise IllegalTransition(
            f"Cannot {Action(rule.action).label.lower()} a booking with status {booking.status}."
        )
    if actor_role not in rule.roles:
        raise Forbidden(
            f"Only the {' or '.join(sorted(rule.roles))} can {Action(rule.action).label.lower()} "
            "this booking."
        )


def resolve_action(
    actor_role: str,
    target_status: str,
    metadata: Mapping[str, Any] | None = None,
) -> TransitionRule:
    """
    Map a requested target status to the rule that governs it.

    CANCELLED is reachable through three rules; the host gets the emergency
    track when a reason_code is supplied and the reject track otherwise.
    """
    if target_status not in Status.values:
        raise InvalidInput(f"Unknown booking status '{target_status}'.")

    if target_status == Status.CANCELLED:
        if actor_role == RENTER:
            return rule_for(Action.CANCEL)
        if (metadata or {}).get("reason_code"):
            return rule_for(Action.EMERGENCY_CANCEL)
        return rule_for(Action.REJECT)

    for rule in RULES:
        if rule.target == target_status:
            return rule
    raise IllegalTransition(f"Bookings cannot be moved to {target_status}.")


def transition_fields(
    rule: TransitionRule,
    *,
    actor_id,
    now: datetime,
    metadata: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Column values written alongside the new status for non-cancellation rules."""
    metadata = metadata or {}
    fields: dict[str, Any] = {"status": rule.target}
    if rule.action == Action.CONFIRM:
        fields.update(
            approved_at=now,
            approved_by_id=actor_id,
            approval_type=Booking.ApprovalType.MANUAL,
        )
    elif rule.action == Action.START:
        fields["started_at"] = now
    elif rule.action == Action.COMPLETE:
        fields["completed_at"] = now
    elif rule.action == Action.DISPUTE:
        fields.update(
            disputed_at=now,
            disputed_by_id=actor_id,
            dispute_reason=str(metadata.get("reason", "")).strip(),
        )
    return fields
