"""System-level audit sink for consent checks.

Entries tied to one consent live in that record's ``audit_trail``. Check
outcomes that cannot be attributed to a single record (denials with no
matching consent, internal errors) go to an ``AuditSink`` instead.
"""

from __future__ import annotations

import json
import logging
from typing import Protocol, runtime_checkable

from src.security.consent.models import ConsentAuditEvent

logger = logging.getLogger(__name__)


@runtime_checkable
class AuditSink(Protocol):
    """Append-only destination for system-level consent audit events."""

    async def append(self, event: ConsentAuditEvent) -> None:
        ...


class LoggingAuditSink:
    """Write events as structured WARNING records for SIEM ingestion.

    Events are never persisted by this sink; the log stream is the record.
    """

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    async def append(self, event: ConsentAuditEvent) -> None:
        self._log.warning(
            "CONSENT_AUDIT action=%s subject=%s client=%s allowed=%s reason=%s details=%s",
            event.action,
            event.subject_id or "none",
            event.client_id or "none",
            event.allowed,
            event.reason,
            json.dumps({"scopes": event.scopes, "account_ids": event.account_ids}),
        )


class InMemoryAuditSink:
    """Collects events in memory, oldest first."""

    def __init__(self) -> None:
        self.events: list[ConsentAuditEvent] = []

    async def append(self, event: ConsentAuditEvent) -> None:
        self.events.append(event)

    def __len__(self) -> int:
        return len(self.events)
