"""Consent store abstraction.

Defines the ``ConsentStore`` protocol consumed by the lifecycle manager and
the authorization checker, and ``InMemoryConsentStore``, the reference
implementation. A transactional backend only has to satisfy the protocol.

Stores hand out copies: mutating a returned record never changes stored
state. Writes go through ``update`` and ``add_audit_entry``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Protocol, runtime_checkable

from src.security.consent.errors import ConsentNotFoundError
from src.security.consent.models import (
    ActorType,
    AuditEntry,
    ConsentRecord,
    ConsentStatus,
    DataScope,
)

logger = logging.getLogger(__name__)

DEMO_CONSENT_ID = "consent-001"

# Fields a store update may touch; identity and parties are immutable.
UPDATABLE_FIELDS = frozenset({"status", "updated_at"})


@runtime_checkable
class ConsentStore(Protocol):
    """Keyed storage for consent records."""

    async def create(self, record: ConsentRecord) -> ConsentRecord:
        """Persist a new record and return it."""
        ...

    async def find_by_id(self, consent_id: str) -> ConsentRecord:
        """Load a record.

        Raises:
            ConsentNotFoundError: If no record has this id.
        """
        ...

    async def update(self, consent_id: str, fields: dict[str, Any]) -> ConsentRecord:
        """Apply a partial update and return the updated record."""
        ...

    async def add_audit_entry(self, consent_id: str, entry: AuditEntry) -> None:
        """Append an entry to the record's audit trail."""
        ...

    async def find_by_subject_id(self, subject_id: str) -> list[ConsentRecord]:
        ...

    async def find_by_client_id(self, client_id: str) -> list[ConsentRecord]:
        ...

    async def list_all(self) -> list[ConsentRecord]:
        ...


class InMemoryConsentStore:
    """Process-local consent store backed by a dict.

    Each coroutine body runs without awaiting, so every single operation is
    atomic with respect to other tasks on the same event loop. Multi-step
    read-modify-write sequences are serialised by the caller's per-id lock.
    """

    def __init__(self) -> None:
        self._records: dict[str, ConsentRecord] = {}

    async def create(self, record: ConsentRecord) -> ConsentRecord:
        if record.id in self._records:
            raise ValueError(f"Consent {record.id} already exists")
        self._records[record.id] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    async def find_by_id(self, consent_id: str) -> ConsentRecord:
        record = self._records.get(consent_id)
        if record is None:
            raise ConsentNotFoundError(consent_id)
        return record.model_copy(deep=True)

    async def update(self, consent_id: str, fields: dict[str, Any]) -> ConsentRecord:
        record = self._records.get(consent_id)
        if record is None:
            raise ConsentNotFoundError(consent_id)
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)}")
        updated = record.model_copy(update=fields, deep=True)
        self._records[consent_id] = updated
        return updated.model_copy(deep=True)

    async def add_audit_entry(self, consent_id: str, entry: AuditEntry) -> None:
        record = self._records.get(consent_id)
        if record is None:
            raise ConsentNotFoundError(consent_id)
        record.audit_trail.append(entry.model_copy())

    async def find_by_subject_id(self, subject_id: str) -> list[ConsentRecord]:
        return [r.model_copy(deep=True) for r in self._records.values() if r.subject_id == subject_id]

    async def find_by_client_id(self, client_id: str) -> list[ConsentRecord]:
        return [r.model_copy(deep=True) for r in self._records.values() if r.client_id == client_id]

    async def list_all(self) -> list[ConsentRecord]:
        return [r.model_copy(deep=True) for r in self._records.values()]

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)


async def seed_demo_consent(store: ConsentStore, now: datetime) -> ConsentRecord:
    """Seed the demo consent used by local development and integration tests.

    ``user-123`` has granted ``client-456`` every scope over ``acc-001`` and
    ``acc-002``, valid for 180 days from ``now``.
    """
    created_at = now - timedelta(hours=10)
    record = ConsentRecord(
        id=DEMO_CONSENT_ID,
        subject_id="user-123",
        client_id="client-456",
        data_scopes=list(DataScope),
        account_ids=["acc-001", "acc-002"],
        purpose="Account aggregation for budgeting app",
        status=ConsentStatus.ACTIVE,
        created_at=created_at,
        updated_at=now,
        expires_at=now + timedelta(days=180),
        audit_trail=[
            AuditEntry(
                timestamp=created_at,
                action="consent.created",
                actor="client-456",
                actor_type=ActorType.CLIENT,
                new_status=ConsentStatus.PENDING,
            ),
            AuditEntry(
                timestamp=now,
                action="consent.approve",
                actor="user-123",
                actor_type=ActorType.SUBJECT,
                previous_status=ConsentStatus.PENDING,
                new_status=ConsentStatus.ACTIVE,
            ),
        ],
    )
    created = await store.create(record)
    logger.info("Seeded demo consent %s", DEMO_CONSENT_ID)
    return created
