"""Shared FastAPI dependencies.

The consent manager and checker are built once per application in
``create_app`` and stored on ``app.state``; these dependencies hand them to
route handlers.
"""

from __future__ import annotations

from fastapi import Request

from src.security.consent.checker import ConsentAuthorizationChecker
from src.security.consent.service import ConsentLifecycleManager


def get_consent_manager(request: Request) -> ConsentLifecycleManager:
    return request.app.state.consent_manager


def get_consent_checker(request: Request) -> ConsentAuthorizationChecker:
    return request.app.state.consent_checker
