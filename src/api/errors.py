"""Protocol error codes and exception handlers for the consent API.

Denial reasons from the authorization check map onto a closed set of
error codes returned to API clients. Lifecycle failures render with the
code carried by their exception class.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Sequence

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.security.consent.errors import ConsentError

logger = logging.getLogger(__name__)


class ErrorCode(enum.StrEnum):
    """Stable error codes for consent denials."""

    INSUFFICIENT_SCOPE = "INSUFFICIENT_SCOPE"
    CONSENT_EXPIRED = "CONSENT_EXPIRED"
    CONSENT_REVOKED = "CONSENT_REVOKED"
    CONSENT_SUSPENDED = "CONSENT_SUSPENDED"
    ACCOUNT_NOT_PERMITTED = "ACCOUNT_NOT_PERMITTED"
    CLIENT_MISMATCH = "CLIENT_MISMATCH"
    NO_CONSENT_FOUND = "NO_CONSENT_FOUND"
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    CLIENT_ID_MISSING = "CLIENT_ID_MISSING"
    SYSTEM_ERROR = "SYSTEM_ERROR"
    CONSENT_DENIED = "CONSENT_DENIED"


# Adapter-level reasons raised before the checker is called
AUTHENTICATION_REQUIRED = "authentication_required"
CLIENT_ID_MISSING = "client_id_missing"

REASON_ERROR_CODES: dict[str, ErrorCode] = {
    "missing_scope": ErrorCode.INSUFFICIENT_SCOPE,
    "expired": ErrorCode.CONSENT_EXPIRED,
    "revoked": ErrorCode.CONSENT_REVOKED,
    "suspended": ErrorCode.CONSENT_SUSPENDED,
    "not_account_scoped": ErrorCode.ACCOUNT_NOT_PERMITTED,
    "client_mismatch": ErrorCode.CLIENT_MISMATCH,
    "no_consent": ErrorCode.NO_CONSENT_FOUND,
    AUTHENTICATION_REQUIRED: ErrorCode.AUTHENTICATION_REQUIRED,
    CLIENT_ID_MISSING: ErrorCode.CLIENT_ID_MISSING,
    "system_error": ErrorCode.SYSTEM_ERROR,
}

_DENIAL_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.INSUFFICIENT_SCOPE: "Consent does not cover the requested data scope",
    ErrorCode.CONSENT_EXPIRED: "Consent has expired",
    ErrorCode.CONSENT_REVOKED: "Consent has been revoked",
    ErrorCode.CONSENT_SUSPENDED: "Consent is suspended",
    ErrorCode.ACCOUNT_NOT_PERMITTED: "Consent does not cover the requested account",
    ErrorCode.CLIENT_MISMATCH: "No consent found for this client",
    ErrorCode.NO_CONSENT_FOUND: "No consent found for this subject",
    ErrorCode.AUTHENTICATION_REQUIRED: "Authentication required for consent check",
    ErrorCode.CLIENT_ID_MISSING: "Client ID not found in token for consent verification",
    ErrorCode.SYSTEM_ERROR: "Consent could not be verified",
    ErrorCode.CONSENT_DENIED: "No valid consent found for requested resource",
}


def error_code_for(reasons: Sequence[str] | None) -> ErrorCode:
    """Map the first denial reason to its protocol error code."""
    if not reasons:
        return ErrorCode.CONSENT_DENIED
    return REASON_ERROR_CODES.get(reasons[0], ErrorCode.CONSENT_DENIED)


class ConsentDeniedError(Exception):
    """Raised by the access-point adapter when a request lacks consent."""

    def __init__(self, reasons: Sequence[str] | None) -> None:
        self.reasons = list(reasons or [])
        self.code = error_code_for(self.reasons)
        self.message = _DENIAL_MESSAGES[self.code]
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        if self.code is ErrorCode.AUTHENTICATION_REQUIRED:
            return status.HTTP_401_UNAUTHORIZED
        return status.HTTP_403_FORBIDDEN


def error_body(request: Request, code: str, message: str, details: str | None = None) -> dict[str, str | None]:
    body: dict[str, str | None] = {
        "code": code,
        "message": message,
        "request_id": getattr(request.state, "request_id", "unknown"),
    }
    if details:
        body["details"] = details
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the consent error handlers to ``app``."""

    @app.exception_handler(ConsentError)
    async def consent_error_handler(request: Request, exc: ConsentError) -> JSONResponse:
        logger.info("Consent request rejected [%s]: %s %s", exc.code, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(request, exc.code, exc.message, exc.details),
        )

    @app.exception_handler(ConsentDeniedError)
    async def consent_denied_handler(request: Request, exc: ConsentDeniedError) -> JSONResponse:
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(request, exc.code.value, exc.message, ", ".join(exc.reasons) or None),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = ", ".join(
            f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', '')}" for err in exc.errors()
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_body(request, "VALIDATION_ERROR", "Invalid request parameters", details),
        )

    @app.exception_handler(Exception)  # Intentionally broad: top-level global error handler
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = getattr(request.state, "request_id", "unknown")
        logger.exception("Unhandled error [%s]: %s", request_id, exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body(request, "INTERNAL_ERROR", "An unexpected error occurred"),
        )
