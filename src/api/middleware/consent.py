"""Consent enforcement for protected FDX resource routes.

``require_consent`` builds a FastAPI dependency that takes the verified
token identity and the account ids addressed by the request, asks the
authorization checker for a decision, and either raises
``ConsentDeniedError`` (rendered with a protocol error code) or returns a
``ConsentGrant``. Handlers must restrict their response to
``grant.filtered_account_ids`` when it is set.

Usage::

    @router.get("/fdx/v6/accounts/{account_id}")
    async def get_account(grant: ConsentGrant = Depends(require_consent(DataScope.ACCOUNTS_READ))):
        ...
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from fastapi import Depends, Request

from src.api.deps import get_consent_checker
from src.api.errors import AUTHENTICATION_REQUIRED, CLIENT_ID_MISSING, ConsentDeniedError
from src.core.auth import actor_context_from_claims, get_optional_token_claims
from src.core.config import Settings, get_settings
from src.security.consent.checker import ConsentAuthorizationChecker
from src.security.consent.models import ConsentCheckInput, DataScope

logger = logging.getLogger(__name__)

ACCOUNT_PATH_PARAM = "account_id"
ACCOUNT_QUERY_PARAM = "accountIds"


@dataclass(frozen=True)
class ConsentGrant:
    """A positive consent decision for the current request."""

    consent_id: str
    subject_id: str
    client_id: str
    expires_at: datetime
    filtered_account_ids: list[str] | None = None


def extract_account_ids(request: Request, path_param: str = ACCOUNT_PATH_PARAM) -> list[str]:
    """Collect account ids from the path parameter and the ``accountIds`` query.

    The query value is a comma-separated list, as in FDX account listings.
    """
    account_ids: list[str] = []
    from_path = request.path_params.get(path_param)
    if from_path:
        account_ids.append(str(from_path))
    for raw in request.query_params.getlist(ACCOUNT_QUERY_PARAM):
        account_ids.extend(part.strip() for part in raw.split(",") if part.strip())
    return list(dict.fromkeys(account_ids))


def require_consent(
    *required_scopes: DataScope | str,
    path_param: str = ACCOUNT_PATH_PARAM,
) -> Callable[..., Awaitable[ConsentGrant]]:
    """Create a dependency enforcing consent for ``required_scopes``."""
    if not required_scopes:
        raise ValueError("require_consent needs at least one scope")
    scopes = [str(scope) for scope in required_scopes]

    async def _enforce(
        request: Request,
        claims: dict[str, Any] | None = Depends(get_optional_token_claims),
        checker: ConsentAuthorizationChecker = Depends(get_consent_checker),
        settings: Settings = Depends(get_settings),
    ) -> ConsentGrant:
        if claims is None:
            raise ConsentDeniedError([AUTHENTICATION_REQUIRED])

        actor = actor_context_from_claims(claims, settings)
        if not actor.subject_id:
            raise ConsentDeniedError([AUTHENTICATION_REQUIRED])
        if not actor.client_id:
            raise ConsentDeniedError([CLIENT_ID_MISSING])

        account_ids = extract_account_ids(request, path_param)
        result = await checker.check(
            ConsentCheckInput(
                subject_id=actor.subject_id,
                client_id=actor.client_id,
                scopes=scopes,
                account_ids=account_ids or None,
            )
        )
        if not result.allow or result.consent_id is None or result.expires_at is None:
            logger.info(
                "Consent enforcement denied %s %s: reasons=%s",
                request.method,
                request.url.path,
                result.reasons,
            )
            raise ConsentDeniedError(result.reasons)

        grant = ConsentGrant(
            consent_id=result.consent_id,
            subject_id=actor.subject_id,
            client_id=actor.client_id,
            expires_at=result.expires_at,
            filtered_account_ids=result.filtered_account_ids,
        )
        request.state.consent = grant
        return grant

    return _enforce
