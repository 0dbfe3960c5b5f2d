"""Consent lifecycle state machine and actor permission rules.

Enforces valid state transitions for consent records:
  PENDING → ACTIVE (approve) | REVOKED (revoke)
  ACTIVE → SUSPENDED (suspend) | REVOKED (revoke)
  SUSPENDED → ACTIVE (resume) | REVOKED (revoke)
  PENDING | ACTIVE | SUSPENDED → EXPIRED (expiry time reached)

REVOKED and EXPIRED are terminal.
"""

from __future__ import annotations

from datetime import datetime
from typing import assert_never

from src.security.consent.errors import ConsentPermissionError, InvalidTransitionError
from src.security.consent.models import (
    ActorType,
    AuditEntry,
    ConsentAction,
    ConsentRecord,
    ConsentStatus,
)

# Valid state transitions: from_status → set of allowed to_statuses
ALLOWED_TRANSITIONS: dict[ConsentStatus, set[ConsentStatus]] = {
    ConsentStatus.PENDING: {ConsentStatus.ACTIVE, ConsentStatus.REVOKED, ConsentStatus.EXPIRED},
    ConsentStatus.ACTIVE: {ConsentStatus.SUSPENDED, ConsentStatus.REVOKED, ConsentStatus.EXPIRED},
    ConsentStatus.SUSPENDED: {ConsentStatus.ACTIVE, ConsentStatus.REVOKED, ConsentStatus.EXPIRED},
    ConsentStatus.REVOKED: set(),  # Terminal state
    ConsentStatus.EXPIRED: set(),  # Terminal state
}

ACTION_TARGETS: dict[ConsentAction, ConsentStatus] = {
    ConsentAction.APPROVE: ConsentStatus.ACTIVE,
    ConsentAction.SUSPEND: ConsentStatus.SUSPENDED,
    ConsentAction.RESUME: ConsentStatus.ACTIVE,
    ConsentAction.REVOKE: ConsentStatus.REVOKED,
}

# Actions are the only way into these transitions; expiry is time-driven.
_ACTION_SOURCES: dict[ConsentAction, set[ConsentStatus]] = {
    ConsentAction.APPROVE: {ConsentStatus.PENDING},
    ConsentAction.SUSPEND: {ConsentStatus.ACTIVE},
    ConsentAction.RESUME: {ConsentStatus.SUSPENDED},
    ConsentAction.REVOKE: {ConsentStatus.PENDING, ConsentStatus.ACTIVE, ConsentStatus.SUSPENDED},
}


def validate_transition(from_status: ConsentStatus, action: ConsentAction) -> ConsentStatus:
    """Resolve the target status for ``action`` applied in ``from_status``.

    Args:
        from_status: Current status.
        action: Requested lifecycle action.

    Returns:
        The status the record moves to.

    Raises:
        InvalidTransitionError: If the pair is not in the transition table.
    """
    to_status = ACTION_TARGETS[action]
    if from_status not in _ACTION_SOURCES[action] or to_status not in ALLOWED_TRANSITIONS[from_status]:
        raise InvalidTransitionError(from_status, to_status, action)
    return to_status


def can_expire(status: ConsentStatus) -> bool:
    return ConsentStatus.EXPIRED in ALLOWED_TRANSITIONS[status]


def can_perform(record: ConsentRecord, action: ConsentAction, actor_id: str, actor_type: ActorType) -> bool:
    """Check whether an actor may perform ``action`` on ``record``.

    - approve: only the record's subject
    - suspend / resume: admins only
    - revoke: the record's subject, the record's client, or any admin
    """
    match action:
        case ConsentAction.APPROVE:
            return actor_type is ActorType.SUBJECT and actor_id == record.subject_id
        case ConsentAction.SUSPEND | ConsentAction.RESUME:
            return actor_type is ActorType.ADMIN
        case ConsentAction.REVOKE:
            match actor_type:
                case ActorType.SUBJECT:
                    return actor_id == record.subject_id
                case ActorType.CLIENT:
                    return actor_id == record.client_id
                case ActorType.ADMIN:
                    return True
                case _:
                    assert_never(actor_type)
        case _:
            assert_never(action)


def ensure_can_perform(record: ConsentRecord, action: ConsentAction, actor_id: str, actor_type: ActorType) -> None:
    """Raise ConsentPermissionError unless the actor may perform ``action``."""
    if can_perform(record, action, actor_id, actor_type):
        return
    match action:
        case ConsentAction.APPROVE:
            message = "Only the subject can approve consent"
        case ConsentAction.SUSPEND | ConsentAction.RESUME:
            message = "Only admins can suspend or resume consent"
        case ConsentAction.REVOKE:
            message = f"{actor_type.value.capitalize()} can only revoke their own consent"
        case _:
            assert_never(action)
    raise ConsentPermissionError(message)


def can_view(record: ConsentRecord, requester_id: str, requester_type: ActorType) -> bool:
    """Subjects and clients see their own consents; admins see all."""
    match requester_type:
        case ActorType.SUBJECT:
            return requester_id == record.subject_id
        case ActorType.CLIENT:
            return requester_id == record.client_id
        case ActorType.ADMIN:
            return True
        case _:
            assert_never(requester_type)


def parse_actor_type(value: ActorType | str) -> ActorType:
    """Coerce a raw actor type, rejecting anything outside the closed set."""
    try:
        return ActorType(value)
    except ValueError as exc:
        raise ConsentPermissionError(f"Invalid actor type: {value!r}") from exc


def build_audit_entry(
    action: str,
    actor: str,
    actor_type: ActorType,
    timestamp: datetime,
    previous_status: ConsentStatus | None = None,
    new_status: ConsentStatus | None = None,
    reason: str | None = None,
) -> AuditEntry:
    """Build an audit trail entry for a consent event.

    Args:
        action: Dotted action name, e.g. ``consent.approve``.
        actor: Identifier of whoever performed the action.
        actor_type: Party type of the actor.
        timestamp: When the event happened.
        previous_status: Status before a transition, if any.
        new_status: Status after a transition, if any.
        reason: Free-text reason.

    Returns:
        The AuditEntry to append.
    """
    return AuditEntry(
        timestamp=timestamp,
        action=action,
        actor=actor,
        actor_type=actor_type,
        previous_status=previous_status,
        new_status=new_status,
        reason=reason,
    )
