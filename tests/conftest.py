"""Shared test fixtures for the consent service test suite.

Provides a controllable clock, an in-memory consent store and audit sink,
the lifecycle manager and checker wired to them, and a FastAPI test client
built from the same objects.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.api.main import create_app
from src.core.auth import create_access_token
from src.core.config import Settings
from src.security.consent.audit import InMemoryAuditSink
from src.security.consent.checker import ConsentAuthorizationChecker
from src.security.consent.models import (
    ActorType,
    ConsentAction,
    CreateConsentRequest,
    DataScope,
    UpdateConsentRequest,
)
from src.security.consent.service import ConsentLifecycleManager
from src.security.consent.store import InMemoryConsentStore

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
SUBJECT_ID = "user-123"
CLIENT_ID = "client-456"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = NOW) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


def make_create_request(**overrides: Any) -> CreateConsentRequest:
    """Build a valid creation request for user-123 / client-456."""
    fields: dict[str, Any] = {
        "subject_id": SUBJECT_ID,
        "client_id": CLIENT_ID,
        "data_scopes": [DataScope.ACCOUNTS_READ],
        "account_ids": ["acc-001"],
        "purpose": "budgeting",
        "expiry": NOW + timedelta(hours=24),
    }
    fields.update(overrides)
    return CreateConsentRequest(**fields)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def consent_store() -> InMemoryConsentStore:
    return InMemoryConsentStore()


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def manager(consent_store: InMemoryConsentStore, clock: FakeClock) -> ConsentLifecycleManager:
    return ConsentLifecycleManager(consent_store, clock=clock)


@pytest.fixture
def checker(manager: ConsentLifecycleManager, audit_sink: InMemoryAuditSink) -> ConsentAuthorizationChecker:
    return ConsentAuthorizationChecker(manager, audit_sink)


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with a fixed JWT secret."""
    return Settings(
        app_env="testing",
        debug=False,
        jwt_secret_key="test-secret-key-for-tests",
        jwt_algorithm="HS256",
        admin_scope="admin",
        seed_demo_consent=False,
    )


@pytest.fixture
def test_app(
    test_settings: Settings,
    consent_store: InMemoryConsentStore,
    audit_sink: InMemoryAuditSink,
    clock: FakeClock,
) -> FastAPI:
    return create_app(test_settings, store=consent_store, audit_sink=audit_sink, clock=clock)


@pytest.fixture
def client(test_app: FastAPI) -> TestClient:
    return TestClient(test_app)


@pytest.fixture
def auth_headers(test_settings: Settings) -> Callable[..., dict[str, str]]:
    """Return a factory producing Authorization headers for arbitrary claims."""

    def _headers(**claims: Any) -> dict[str, str]:
        token = create_access_token(claims, test_settings)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def make_request() -> Callable[..., CreateConsentRequest]:
    return make_create_request


@pytest.fixture
async def active_consent_id(manager: ConsentLifecycleManager) -> str:
    """Create and approve the standard consent; return its id."""
    created = await manager.create_consent(make_create_request(), CLIENT_ID)
    await manager.update_consent(
        created.id,
        UpdateConsentRequest(action=ConsentAction.APPROVE),
        SUBJECT_ID,
        ActorType.SUBJECT,
    )
    return created.id
