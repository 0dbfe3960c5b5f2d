"""Consent models for FDX data-sharing permissions.

A consent binds a data subject, a client application, a set of data
scopes, and a set of account identifiers for a bounded period of time.
Records carry their own append-only audit trail; the first entry is
always the creation event.

Lifecycle:
  PENDING → ACTIVE ⇄ SUSPENDED
  PENDING | ACTIVE | SUSPENDED → REVOKED
  any non-terminal → EXPIRED (time-based)

JSON field names are camelCase on the wire (``subjectId``, ``expiresAt``);
Python attributes are snake_case. Either form is accepted on input.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ConsentStatus(enum.StrEnum):
    """Current state of a consent record."""

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    REVOKED = "REVOKED"
    EXPIRED = "EXPIRED"


TERMINAL_STATUSES: frozenset[ConsentStatus] = frozenset({ConsentStatus.REVOKED, ConsentStatus.EXPIRED})


class DataScope(enum.StrEnum):
    """Closed vocabulary of FDX data permissions."""

    ACCOUNTS_READ = "accounts:read"
    TRANSACTIONS_READ = "transactions:read"
    CONTACT_READ = "contact:read"
    PAYMENT_NETWORKS_READ = "payment_networks:read"
    STATEMENTS_READ = "statements:read"


class ActorType(enum.StrEnum):
    """Party performing a consent operation."""

    SUBJECT = "subject"
    CLIENT = "client"
    ADMIN = "admin"


class ConsentAction(enum.StrEnum):
    """Explicit lifecycle actions accepted by update."""

    APPROVE = "approve"
    SUSPEND = "suspend"
    RESUME = "resume"
    REVOKE = "revoke"


class DenialReason(enum.StrEnum):
    """Reason codes produced by the authorization check."""

    INVALID_INPUT = "invalid_input"
    NO_CONSENT = "no_consent"
    CLIENT_MISMATCH = "client_mismatch"
    EXPIRED = "expired"
    REVOKED = "revoked"
    SUSPENDED = "suspended"
    NOT_ACTIVE = "not_active"
    MISSING_SCOPE = "missing_scope"
    NOT_ACCOUNT_SCOPED = "not_account_scoped"
    SYSTEM_ERROR = "system_error"


ACCESS_GRANTED = "access_granted"


def _as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _require_unique(values: list, field_name: str) -> list:
    if len(set(values)) != len(values):
        raise ValueError(f"{field_name} must not contain duplicates")
    return values


class CamelModel(BaseModel):
    """Base model serialising to camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class AuditEntry(CamelModel):
    """One immutable entry in a consent's audit trail."""

    timestamp: datetime
    action: str
    actor: str
    actor_type: ActorType
    previous_status: ConsentStatus | None = None
    new_status: ConsentStatus | None = None
    reason: str | None = None


class ConsentRecord(CamelModel):
    """Persistent consent record.

    ``id``, ``subject_id`` and ``client_id`` never change after creation.
    Only the lifecycle manager writes ``status``, ``updated_at`` and
    ``audit_trail``.
    """

    id: str
    subject_id: str
    client_id: str
    data_scopes: list[DataScope]
    account_ids: list[str]
    purpose: str
    status: ConsentStatus = ConsentStatus.PENDING
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    audit_trail: list[AuditEntry] = Field(default_factory=list)

    @field_validator("created_at", "updated_at", "expires_at")
    @classmethod
    def timestamps_aware(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_past_expiry(self, at: datetime) -> bool:
        """True once ``at`` has reached ``expires_at``."""
        return _as_utc(at) >= self.expires_at

    def covers_scopes(self, scopes: set[str] | frozenset[str]) -> bool:
        return scopes <= {scope.value for scope in self.data_scopes}

    def __repr__(self) -> str:
        return f"<ConsentRecord(id={self.id}, subject={self.subject_id}, client={self.client_id}, status={self.status})>"


class ConsentAuditEvent(CamelModel):
    """System-level audit event for outcomes not attributable to one record."""

    timestamp: datetime
    action: str = "consent.check"
    subject_id: str | None = None
    client_id: str | None = None
    scopes: list[str] = Field(default_factory=list)
    account_ids: list[str] | None = None
    allowed: bool = False
    reason: str


# ---------------------------------------------------------------------------
# Requests / responses
# ---------------------------------------------------------------------------


class CreateConsentRequest(CamelModel):
    """Payload for creating a consent in PENDING state."""

    subject_id: str = Field(..., min_length=1, max_length=255)
    client_id: str = Field(..., min_length=1, max_length=255)
    data_scopes: list[DataScope] = Field(..., min_length=1)
    account_ids: list[str] = Field(..., min_length=1)
    purpose: str = Field(..., min_length=1, max_length=1024)
    expiry: datetime

    @field_validator("data_scopes")
    @classmethod
    def unique_scopes(cls, v: list[DataScope]) -> list[DataScope]:
        return _require_unique(v, "dataScopes")

    @field_validator("account_ids")
    @classmethod
    def unique_accounts(cls, v: list[str]) -> list[str]:
        if any(not account_id for account_id in v):
            raise ValueError("accountIds must not contain empty identifiers")
        return _require_unique(v, "accountIds")

    @field_validator("purpose")
    @classmethod
    def purpose_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("purpose must not be blank")
        return v

    @field_validator("expiry")
    @classmethod
    def expiry_aware(cls, v: datetime) -> datetime:
        return _as_utc(v)


class CreateConsentResponse(CamelModel):
    """Creation summary. The audit trail is deliberately omitted."""

    id: str
    status: ConsentStatus
    subject_id: str
    client_id: str
    data_scopes: list[DataScope]
    account_ids: list[str]
    purpose: str
    created_at: datetime
    expires_at: datetime


class UpdateConsentRequest(CamelModel):
    """Payload for a lifecycle action."""

    action: ConsentAction
    reason: str | None = Field(default=None, max_length=1024)


class ConsentCheckInput(CamelModel):
    """Authorization check request.

    Fields are permissive on purpose: malformed input is reported as
    ``invalid_input`` by the checker instead of raising.
    """

    subject_id: str | None = None
    client_id: str | None = None
    scopes: list[str] = Field(default_factory=list)
    account_ids: list[str] | None = None
    as_of: datetime | None = None

    @field_validator("as_of")
    @classmethod
    def as_of_aware(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v) if v is not None else None


class ConsentCheckResult(CamelModel):
    """Outcome of an authorization check."""

    allow: bool
    consent_id: str | None = None
    expires_at: datetime | None = None
    filtered_account_ids: list[str] | None = None
    reasons: list[str] | None = None

    @classmethod
    def deny(cls, reason: DenialReason | str) -> ConsentCheckResult:
        return cls(allow=False, reasons=[str(reason)])
