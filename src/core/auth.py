"""Bearer token handling for the consent API.

Token issuance is owned by the authorization server. This module only
verifies signatures and expiry of incoming tokens, and maps verified claims
to the actor context the consent core works with:

- ``subject_id``: the ``sub`` claim (end user)
- ``client_id``: ``client_id``, else ``azp``, else ``aud`` (first entry
  when a list)
- actor type: ``admin`` when the ``scope`` claim carries the configured
  admin scope, ``subject`` when a subject is present, else ``client``
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWTError

from src.core.config import Settings, get_settings
from src.security.consent.models import ActorType

logger = logging.getLogger(__name__)

# Bearer token scheme (auto_error=False so we can give clear messages)
bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class ActorContext:
    """Verified identity of the caller."""

    actor_id: str
    actor_type: ActorType
    subject_id: str | None = None
    client_id: str | None = None
    scopes: frozenset[str] = field(default_factory=frozenset)


def create_access_token(
    claims: dict[str, Any],
    settings: Settings | None = None,
    expires_delta: timedelta = timedelta(minutes=30),
) -> str:
    """Sign a token with the local key. Development and test use only."""
    if settings is None:
        settings = get_settings()
    to_encode = claims.copy()
    to_encode["exp"] = datetime.now(UTC) + expires_delta
    return jwt.encode(to_encode, settings.jwt_verification_keys[0], algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings | None = None) -> dict[str, Any]:
    """Decode and validate a JWT token.

    Args:
        token: The raw JWT string.
        settings: Application settings.

    Returns:
        The decoded claims dict.

    Raises:
        HTTPException: If the token is invalid or expired.
    """
    if settings is None:
        settings = get_settings()

    # Try each verification key (supports key rotation)
    last_exc: PyJWTError | None = None
    for key in settings.jwt_verification_keys:
        try:
            return jwt.decode(
                token,
                key,
                algorithms=[settings.jwt_algorithm],
                options={"verify_aud": False},
            )
        except PyJWTError as exc:
            last_exc = exc
            continue

    logger.info("Rejected bearer token: %s", last_exc)
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    ) from last_exc


def token_scopes(claims: dict[str, Any]) -> frozenset[str]:
    raw = claims.get("scope") or claims.get("scp") or ""
    if isinstance(raw, str):
        return frozenset(raw.split())
    return frozenset(str(s) for s in raw)


def client_id_from_claims(claims: dict[str, Any]) -> str | None:
    for claim in ("client_id", "azp", "aud"):
        value = claims.get(claim)
        if isinstance(value, list):
            value = value[0] if value else None
        if value:
            return str(value)
    return None


def actor_context_from_claims(claims: dict[str, Any], settings: Settings | None = None) -> ActorContext:
    """Map verified token claims to an ActorContext."""
    if settings is None:
        settings = get_settings()

    scopes = token_scopes(claims)
    subject_id = str(claims["sub"]) if claims.get("sub") else None
    client_id = client_id_from_claims(claims)

    if settings.admin_scope in scopes:
        actor_type = ActorType.ADMIN
        actor_id = subject_id or client_id or "admin"
    elif subject_id:
        actor_type = ActorType.SUBJECT
        actor_id = subject_id
    else:
        actor_type = ActorType.CLIENT
        actor_id = client_id or ""

    return ActorContext(
        actor_id=actor_id,
        actor_type=actor_type,
        subject_id=subject_id,
        client_id=client_id,
        scopes=scopes,
    )


async def get_optional_token_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any] | None:
    """Decode the bearer token if one was sent; None when absent."""
    if credentials is None:
        return None
    return decode_token(credentials.credentials, settings)


async def get_token_claims(claims: dict[str, Any] | None = Depends(get_optional_token_claims)) -> dict[str, Any]:
    """FastAPI dependency returning verified claims.

    Raises:
        HTTPException 401: If no bearer token was sent.
    """
    if claims is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return claims


async def get_actor_context(
    claims: dict[str, Any] = Depends(get_token_claims),
    settings: Settings = Depends(get_settings),
) -> ActorContext:
    """FastAPI dependency returning the caller's ActorContext."""
    actor = actor_context_from_claims(claims, settings)
    if not actor.actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token carries neither subject nor client identity",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return actor


def require_token_scope(scope: str) -> Any:
    """Create a FastAPI dependency that requires a token scope.

    Admin tokens pass every scope check.
    """

    async def _check(
        actor: ActorContext = Depends(get_actor_context),
    ) -> ActorContext:
        if actor.actor_type is ActorType.ADMIN or scope in actor.scopes:
            return actor
        logger.info("Scope denied: actor=%s, required=%s", actor.actor_id, scope)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Insufficient scope: {scope} required",
        )

    return _check
