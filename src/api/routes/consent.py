"""Consent API routes.

Clients request consent on a subject's behalf, subjects approve it, and
admins suspend or resume it; any party may revoke its own consent. An
introspection endpoint exposes the authorization check to resource servers.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status

from src.api.deps import get_consent_checker, get_consent_manager
from src.core.auth import ActorContext, get_actor_context, require_token_scope
from src.security.consent.checker import ConsentAuthorizationChecker
from src.security.consent.models import (
    ActorType,
    ConsentCheckInput,
    ConsentCheckResult,
    ConsentRecord,
    CreateConsentRequest,
    CreateConsentResponse,
    UpdateConsentRequest,
)
from src.security.consent.service import ConsentLifecycleManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/consent", tags=["consent"])

CONSENT_WRITE_SCOPE = "consent:write"


@router.post("", status_code=status.HTTP_201_CREATED, response_model=CreateConsentResponse)
async def create_consent(
    payload: CreateConsentRequest,
    actor: ActorContext = Depends(require_token_scope(CONSENT_WRITE_SCOPE)),
    manager: ConsentLifecycleManager = Depends(get_consent_manager),
) -> CreateConsentResponse:
    """Create a consent request in PENDING state.

    The caller's client identity is recorded as the actor of the creation
    event. Returns 201 with the creation summary.
    """
    return await manager.create_consent(payload, actor.client_id or actor.actor_id)


@router.post("/check", response_model=ConsentCheckResult, response_model_exclude_none=True)
async def check_consent(
    payload: ConsentCheckInput,
    actor: ActorContext = Depends(get_actor_context),
    checker: ConsentAuthorizationChecker = Depends(get_consent_checker),
) -> ConsentCheckResult:
    """Introspect a consent decision.

    Admins may check any pair; other callers only checks for their own
    client id.
    """
    if actor.actor_type is not ActorType.ADMIN and actor.client_id != payload.client_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Clients can only introspect their own consents",
        )
    return await checker.check(payload)


@router.post("/reconcile-expired")
async def reconcile_expired(
    actor: ActorContext = Depends(get_actor_context),
    manager: ConsentLifecycleManager = Depends(get_consent_manager),
) -> dict[str, Any]:
    """Expire every consent whose expiry has passed. Admin only."""
    if actor.actor_type is not ActorType.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    expired = await manager.reconcile_expired()
    return {"expired": expired}


@router.put("/{consent_id}", response_model=ConsentRecord)
async def update_consent(
    consent_id: str,
    payload: UpdateConsentRequest,
    actor: ActorContext = Depends(get_actor_context),
    manager: ConsentLifecycleManager = Depends(get_consent_manager),
) -> ConsentRecord:
    """Apply a lifecycle action (approve, suspend, resume, revoke)."""
    return await manager.update_consent(consent_id, payload, actor.actor_id, actor.actor_type)


@router.get("/{consent_id}", response_model=ConsentRecord)
async def get_consent(
    consent_id: str,
    actor: ActorContext = Depends(get_actor_context),
    manager: ConsentLifecycleManager = Depends(get_consent_manager),
) -> ConsentRecord:
    """Return a consent with its full audit trail."""
    return await manager.get_consent(consent_id, actor.actor_id, actor.actor_type)
