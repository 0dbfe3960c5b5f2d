"""Typed failure conditions for consent lifecycle operations.

Each class carries a stable ``code`` and the HTTP status the API layer
renders it with. Authorization checks never raise these; they return a
structured denial instead.
"""

from __future__ import annotations

from src.security.consent.models import ConsentAction, ConsentStatus


class ConsentError(Exception):
    """Base class for consent lifecycle failures."""

    code = "CONSENT_ERROR"
    status_code = 500

    def __init__(self, message: str, *, details: str | None = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)


class ConsentValidationError(ConsentError):
    """Raised when a creation request is rejected (e.g. bad expiry window)."""

    code = "VALIDATION_ERROR"
    status_code = 400


class ConsentNotFoundError(ConsentError):
    """Raised when no consent exists for the given id."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, consent_id: str) -> None:
        self.consent_id = consent_id
        super().__init__(f"Consent with ID {consent_id} not found")


class ConsentPermissionError(ConsentError):
    """Raised when the actor may not perform the action or view the record."""

    code = "FORBIDDEN"
    status_code = 403


class ConsentConflictError(ConsentError):
    """Raised when the request conflicts with the record's current state."""

    code = "CONFLICT"
    status_code = 409


class InvalidTransitionError(ConsentConflictError):
    """Raised when an action is not allowed from the current status."""

    def __init__(self, from_status: ConsentStatus, to_status: ConsentStatus, action: ConsentAction) -> None:
        self.from_status = from_status
        self.to_status = to_status
        self.action = action
        super().__init__(
            f"Invalid state transition from {from_status.value} to {to_status.value} via action {action.value}"
        )


class ConsentExpiredError(ConsentConflictError):
    """Raised when updating a consent whose expiry has passed."""

    def __init__(self, consent_id: str) -> None:
        self.consent_id = consent_id
        super().__init__("Cannot update an expired consent")
