"""Consent lifecycle manager for FDX data-sharing permissions.

Creates consent records and applies explicit lifecycle actions (approve,
suspend, resume, revoke) on behalf of subjects, clients and admins. Every
transition is validated against the state machine in
``src.security.consent.lifecycle`` and appended to the record's audit trail.

All status writes for one consent id, including time-based expiry, run
under that id's lock so no transition is applied against a stale status.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from src.security.consent.errors import (
    ConsentExpiredError,
    ConsentPermissionError,
    ConsentValidationError,
)
from src.security.consent.lifecycle import (
    build_audit_entry,
    can_expire,
    can_view,
    ensure_can_perform,
    parse_actor_type,
    validate_transition,
)
from src.security.consent.locks import KeyedLock
from src.security.consent.models import (
    ACCESS_GRANTED,
    ActorType,
    ConsentRecord,
    ConsentStatus,
    CreateConsentRequest,
    CreateConsentResponse,
    UpdateConsentRequest,
)
from src.security.consent.store import ConsentStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

DEFAULT_MAX_TTL = timedelta(days=365)
SYSTEM_ACTOR = "system"


def utc_now() -> datetime:
    return datetime.now(UTC)


class ConsentLifecycleManager:
    """Manages the consent lifecycle and owns all status and audit writes."""

    def __init__(
        self,
        store: ConsentStore,
        *,
        locks: KeyedLock | None = None,
        clock: Clock = utc_now,
        max_ttl: timedelta = DEFAULT_MAX_TTL,
    ) -> None:
        self._store = store
        self._locks = locks or KeyedLock()
        self._clock = clock
        self._max_ttl = max_ttl

    @property
    def store(self) -> ConsentStore:
        return self._store

    def now(self) -> datetime:
        return self._clock()

    async def create_consent(self, request: CreateConsentRequest, client_id: str) -> CreateConsentResponse:
        """Create a consent in PENDING state.

        Args:
            request: Scopes, accounts, purpose and expiry for the grant.
            client_id: The client submitting the request; recorded as the
                actor of the creation event.

        Returns:
            Creation summary without the audit trail.

        Raises:
            ConsentValidationError: If the expiry is not in the future or is
                further ahead than the maximum consent lifetime.
        """
        now = self._clock()
        self._validate_expiry(request.expiry, now)

        record = ConsentRecord(
            id=str(uuid.uuid4()),
            subject_id=request.subject_id,
            client_id=request.client_id,
            data_scopes=list(request.data_scopes),
            account_ids=list(request.account_ids),
            purpose=request.purpose,
            status=ConsentStatus.PENDING,
            created_at=now,
            updated_at=now,
            expires_at=request.expiry,
            audit_trail=[
                build_audit_entry(
                    "consent.created",
                    client_id,
                    ActorType.CLIENT,
                    now,
                    new_status=ConsentStatus.PENDING,
                )
            ],
        )
        await self._store.create(record)

        logger.info(
            "Consent created: id=%s, subject=%s, client=%s, scopes=%s",
            record.id,
            record.subject_id,
            record.client_id,
            ",".join(record.data_scopes),
        )
        return CreateConsentResponse(
            id=record.id,
            status=record.status,
            subject_id=record.subject_id,
            client_id=record.client_id,
            data_scopes=record.data_scopes,
            account_ids=record.account_ids,
            purpose=record.purpose,
            created_at=record.created_at,
            expires_at=record.expires_at,
        )

    async def update_consent(
        self,
        consent_id: str,
        request: UpdateConsentRequest,
        actor_id: str,
        actor_type: ActorType | str,
    ) -> ConsentRecord:
        """Apply a lifecycle action to a consent.

        An expired consent is moved to EXPIRED and persisted before the
        update is rejected.

        Raises:
            ConsentNotFoundError: If the consent does not exist.
            ConsentExpiredError: If the consent's expiry has passed.
            ConsentPermissionError: If the actor may not perform the action.
            InvalidTransitionError: If the action is illegal from the
                current status.
        """
        async with self._locks.hold(consent_id):
            record = await self._store.find_by_id(consent_id)
            now = self._clock()

            if record.is_past_expiry(now):
                await self._expire_locked(record, now)
                raise ConsentExpiredError(consent_id)

            actor = parse_actor_type(actor_type)
            ensure_can_perform(record, request.action, actor_id, actor)
            new_status = validate_transition(record.status, request.action)

            await self._store.update(consent_id, {"status": new_status, "updated_at": now})
            await self._store.add_audit_entry(
                consent_id,
                build_audit_entry(
                    f"consent.{request.action.value}",
                    actor_id,
                    actor,
                    now,
                    previous_status=record.status,
                    new_status=new_status,
                    reason=request.reason,
                ),
            )
            updated = await self._store.find_by_id(consent_id)

        logger.info(
            "Consent %s: id=%s, %s → %s, actor=%s (%s)",
            request.action.value,
            consent_id,
            record.status.value,
            new_status.value,
            actor_id,
            actor.value,
        )
        return updated

    async def get_consent(
        self,
        consent_id: str,
        requester_id: str,
        requester_type: ActorType | str,
    ) -> ConsentRecord:
        """Return a consent with its audit trail.

        Expires the record first if its expiry has passed; the read itself
        is not rejected for that.

        Raises:
            ConsentNotFoundError: If the consent does not exist.
            ConsentPermissionError: If the requester may not view it.
        """
        record = await self._store.find_by_id(consent_id)
        if record.is_past_expiry(self._clock()) and can_expire(record.status):
            record = await self.expire_if_due(consent_id) or await self._store.find_by_id(consent_id)

        requester = parse_actor_type(requester_type)
        if not can_view(record, requester_id, requester):
            raise ConsentPermissionError(f"{requester.value.capitalize()} can only access their own consent")
        return record

    async def expire_if_due(self, consent_id: str, now: datetime | None = None) -> ConsentRecord | None:
        """Move a consent to EXPIRED if its expiry has passed.

        Idempotent: terminal records are left untouched and their audit
        trail does not grow.

        Returns:
            The updated record if a transition happened, otherwise None.
        """
        async with self._locks.hold(consent_id):
            record = await self._store.find_by_id(consent_id)
            return await self._expire_locked(record, now or self._clock())

    async def reconcile_expired(self) -> int:
        """Expire every stored consent whose expiry has passed.

        Returns:
            Number of consents transitioned to EXPIRED.
        """
        now = self._clock()
        expired = 0
        for record in await self._store.list_all():
            if not can_expire(record.status) or not record.is_past_expiry(now):
                continue
            if await self.expire_if_due(record.id, now) is not None:
                expired += 1

        if expired:
            logger.info("Expiry reconciliation: %d consents expired", expired)
        return expired

    async def record_check(
        self,
        consent_id: str,
        subject_id: str,
        scopes: set[str],
        at: datetime | None = None,
    ) -> bool:
        """Confirm a grant against the current record and audit it.

        The record is re-read under its lock. The granted-access entry is
        appended only if the consent is still ACTIVE, not past expiry at
        ``at`` and still covers ``scopes``.

        Returns:
            True if the grant was confirmed and recorded.
        """
        async with self._locks.hold(consent_id):
            record = await self._store.find_by_id(consent_id)
            now = self._clock()
            if (
                record.status is not ConsentStatus.ACTIVE
                or record.is_past_expiry(at or now)
                or not record.covers_scopes(scopes)
            ):
                logger.info("Consent check not confirmed: id=%s, status=%s", consent_id, record.status.value)
                return False

            await self._store.add_audit_entry(
                consent_id,
                build_audit_entry(
                    "consent.check",
                    subject_id,
                    ActorType.SUBJECT,
                    now,
                    reason=ACCESS_GRANTED,
                ),
            )
        return True

    async def _expire_locked(self, record: ConsentRecord, now: datetime) -> ConsentRecord | None:
        # Caller must hold the lock for record.id.
        if not can_expire(record.status) or not record.is_past_expiry(now):
            return None

        await self._store.update(record.id, {"status": ConsentStatus.EXPIRED, "updated_at": now})
        await self._store.add_audit_entry(
            record.id,
            build_audit_entry(
                "consent.expired",
                SYSTEM_ACTOR,
                ActorType.ADMIN,
                now,
                previous_status=record.status,
                new_status=ConsentStatus.EXPIRED,
                reason="Consent expiry time reached",
            ),
        )
        logger.info("Consent expired: id=%s, previous_status=%s", record.id, record.status.value)
        return await self._store.find_by_id(record.id)

    def _validate_expiry(self, expiry: datetime, now: datetime) -> None:
        if expiry <= now:
            raise ConsentValidationError("Expiry date must be in the future")
        if expiry > now + self._max_ttl:
            raise ConsentValidationError(
                f"Expiry date cannot be more than {self._max_ttl.days} days in the future"
            )
