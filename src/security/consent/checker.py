"""Consent authorization checker.

Decides whether a client may access a subject's data for a set of scopes
and, optionally, a set of accounts at a point in time. This sits on every
protected-resource request, so it never raises: any internal failure is
reported as a ``system_error`` denial (fail closed).

Records are scanned newest ``created_at`` first, ties broken by ``id``,
and the first consent that satisfies every condition wins.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from src.security.consent.audit import AuditSink, LoggingAuditSink
from src.security.consent.lifecycle import can_expire
from src.security.consent.models import (
    ConsentAuditEvent,
    ConsentCheckInput,
    ConsentCheckResult,
    ConsentRecord,
    ConsentStatus,
    DenialReason,
)
from src.security.consent.service import ConsentLifecycleManager

logger = logging.getLogger(__name__)

# Worst status first when no client consent is ACTIVE
_STATUS_DENIALS: tuple[tuple[ConsentStatus, DenialReason], ...] = (
    (ConsentStatus.EXPIRED, DenialReason.EXPIRED),
    (ConsentStatus.REVOKED, DenialReason.REVOKED),
    (ConsentStatus.SUSPENDED, DenialReason.SUSPENDED),
)


def scan_order(record: ConsentRecord) -> tuple[float, str]:
    return (-record.created_at.timestamp(), record.id)


def classify_denial(client_records: Sequence[ConsentRecord], scopes: set[str]) -> DenialReason:
    """Pick the most specific reason no consent matched.

    Args:
        client_records: The subject's consents for the requesting client,
            with lazily expired records already reported as EXPIRED.
        scopes: Requested scopes.

    Returns:
        client_mismatch, a status reason, missing_scope or not_account_scoped.
    """
    if not client_records:
        return DenialReason.CLIENT_MISMATCH

    active = [r for r in client_records if r.status is ConsentStatus.ACTIVE]
    if not active:
        statuses = {r.status for r in client_records}
        for status, reason in _STATUS_DENIALS:
            if status in statuses:
                return reason
        return DenialReason.NOT_ACTIVE

    if not any(r.covers_scopes(scopes) for r in active):
        return DenialReason.MISSING_SCOPE
    return DenialReason.NOT_ACCOUNT_SCOPED


class ConsentAuthorizationChecker:
    """Evaluates access requests against stored consents."""

    def __init__(self, manager: ConsentLifecycleManager, audit_sink: AuditSink | None = None) -> None:
        self._manager = manager
        self._store = manager.store
        self._audit_sink = audit_sink or LoggingAuditSink()

    async def check(self, check_input: ConsentCheckInput) -> ConsentCheckResult:
        """Check consent for resource access.

        Returns:
            ``allow=True`` with the matching consent id, its expiry and the
            permitted subset of the requested accounts, or ``allow=False``
            with a single reason code.
        """
        try:
            result = await self._evaluate(check_input)
        except Exception:  # Intentionally broad: the check must fail closed
            logger.exception(
                "Consent check error: subject=%s, client=%s",
                check_input.subject_id,
                check_input.client_id,
            )
            result = ConsentCheckResult.deny(DenialReason.SYSTEM_ERROR)

        if not result.allow:
            await self._record_denial(check_input, result.reasons[0] if result.reasons else "access_denied")
        return result

    async def check_consent_for_resource(
        self,
        subject_id: str,
        client_id: str,
        account_id: str,
        required_scopes: Sequence[str],
    ) -> bool:
        """Return whether the client may access one account for ``required_scopes``."""
        result = await self.check(
            ConsentCheckInput(
                subject_id=subject_id,
                client_id=client_id,
                scopes=list(required_scopes),
                account_ids=[account_id],
            )
        )
        return result.allow

    async def _evaluate(self, check_input: ConsentCheckInput) -> ConsentCheckResult:
        subject_id = check_input.subject_id
        client_id = check_input.client_id
        if not subject_id or not client_id or not check_input.scopes:
            return ConsentCheckResult.deny(DenialReason.INVALID_INPUT)

        records = await self._store.find_by_subject_id(subject_id)
        if not records:
            return ConsentCheckResult.deny(DenialReason.NO_CONSENT)

        now = self._manager.now()
        effective_time = check_input.as_of or now
        scopes = set(check_input.scopes)
        requested_accounts = list(dict.fromkeys(check_input.account_ids or []))

        client_records: list[ConsentRecord] = []
        for record in sorted(records, key=scan_order):
            if record.client_id != client_id:
                continue

            if can_expire(record.status) and record.is_past_expiry(effective_time):
                # Persist only once the expiry has really passed, not merely at as_of.
                if record.is_past_expiry(now):
                    await self._manager.expire_if_due(record.id, now)
                client_records.append(record.model_copy(update={"status": ConsentStatus.EXPIRED}))
                continue

            client_records.append(record)
            if record.status is not ConsentStatus.ACTIVE or not record.covers_scopes(scopes):
                continue

            filtered_account_ids: list[str] | None = None
            if requested_accounts:
                granted = set(record.account_ids)
                filtered_account_ids = [a for a in requested_accounts if a in granted]
                if not filtered_account_ids:
                    continue

            if not await self._manager.record_check(record.id, subject_id, scopes, effective_time):
                # Changed since the snapshot; classify on the current status
                current = await self._store.find_by_id(record.id)
                if can_expire(current.status) and current.is_past_expiry(effective_time):
                    current = current.model_copy(update={"status": ConsentStatus.EXPIRED})
                client_records[-1] = current
                continue

            logger.info(
                "Consent check granted: subject=%s, client=%s, consent=%s, scopes=%s, accounts=%s",
                subject_id,
                client_id,
                record.id,
                ",".join(sorted(scopes)),
                filtered_account_ids,
            )
            return ConsentCheckResult(
                allow=True,
                consent_id=record.id,
                expires_at=record.expires_at,
                filtered_account_ids=filtered_account_ids,
            )

        return ConsentCheckResult.deny(classify_denial(client_records, scopes))

    async def _record_denial(self, check_input: ConsentCheckInput, reason: str) -> None:
        logger.info(
            "Consent check denied: subject=%s, client=%s, reason=%s",
            check_input.subject_id,
            check_input.client_id,
            reason,
        )
        try:
            event = ConsentAuditEvent(
                timestamp=self._manager.now(),
                subject_id=check_input.subject_id,
                client_id=check_input.client_id,
                scopes=list(check_input.scopes),
                account_ids=check_input.account_ids,
                allowed=False,
                reason=reason,
            )
            await self._audit_sink.append(event)
        except Exception:  # Intentionally broad: audit failure must not turn a denial into a crash
            logger.exception("Failed to record consent denial for subject=%s", check_input.subject_id)
