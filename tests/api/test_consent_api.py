"""Route-level tests for the consent lifecycle API."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from typing import Any

from fastapi.testclient import TestClient

from src.api.deps import get_consent_checker, get_consent_manager
from src.api.main import create_app
from src.core.config import Settings
from src.security.consent.audit import InMemoryAuditSink
from src.security.consent.store import DEMO_CONSENT_ID, InMemoryConsentStore

START = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

CLIENT_CLAIMS = {"client_id": "client-456", "scope": "consent:write"}
SUBJECT_CLAIMS = {"sub": "user-123", "client_id": "client-456"}
ADMIN_CLAIMS = {"sub": "ops-1", "scope": "admin"}

Headers = Callable[..., dict[str, str]]


def _create_body(**overrides: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "subjectId": "user-123",
        "clientId": "client-456",
        "dataScopes": ["accounts:read"],
        "accountIds": ["acc-001"],
        "purpose": "budgeting",
        "expiry": (START + timedelta(hours=24)).isoformat(),
    }
    body.update(overrides)
    return body


def _create(client: TestClient, auth_headers: Headers, **overrides: Any) -> dict[str, Any]:
    resp = client.post("/api/v1/consent", json=_create_body(**overrides), headers=auth_headers(**CLIENT_CLAIMS))
    assert resp.status_code == 201, resp.text
    return resp.json()


def _approve(client: TestClient, auth_headers: Headers, consent_id: str) -> dict[str, Any]:
    resp = client.put(
        f"/api/v1/consent/{consent_id}",
        json={"action": "approve"},
        headers=auth_headers(**SUBJECT_CLAIMS),
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


class TestCreateConsent:
    def test_returns_201_with_camel_case_summary(self, client: TestClient, auth_headers: Headers) -> None:
        data = _create(client, auth_headers)

        assert data["status"] == "PENDING"
        assert data["subjectId"] == "user-123"
        assert data["clientId"] == "client-456"
        assert data["dataScopes"] == ["accounts:read"]
        assert data["accountIds"] == ["acc-001"]
        assert "createdAt" in data
        assert "expiresAt" in data
        assert "auditTrail" not in data

    def test_requires_authentication(self, client: TestClient) -> None:
        resp = client.post("/api/v1/consent", json=_create_body())
        assert resp.status_code == 401

    def test_requires_write_scope(self, client: TestClient, auth_headers: Headers) -> None:
        resp = client.post("/api/v1/consent", json=_create_body(), headers=auth_headers(client_id="client-456"))
        assert resp.status_code == 403

    def test_admin_may_create(self, client: TestClient, auth_headers: Headers) -> None:
        resp = client.post("/api/v1/consent", json=_create_body(), headers=auth_headers(**ADMIN_CLAIMS))
        assert resp.status_code == 201

    def test_past_expiry_rejected(self, client: TestClient, auth_headers: Headers) -> None:
        resp = client.post(
            "/api/v1/consent",
            json=_create_body(expiry=(START - timedelta(hours=1)).isoformat()),
            headers=auth_headers(**CLIENT_CLAIMS),
        )
        assert resp.status_code == 400
        body = resp.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["message"] == "Expiry date must be in the future"

    def test_unknown_scope_rejected(self, client: TestClient, auth_headers: Headers) -> None:
        resp = client.post(
            "/api/v1/consent",
            json=_create_body(dataScopes=["accounts:write"]),
            headers=auth_headers(**CLIENT_CLAIMS),
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "VALIDATION_ERROR"
        assert "dataScopes" in resp.json()["details"]

    def test_empty_accounts_rejected(self, client: TestClient, auth_headers: Headers) -> None:
        resp = client.post(
            "/api/v1/consent",
            json=_create_body(accountIds=[]),
            headers=auth_headers(**CLIENT_CLAIMS),
        )
        assert resp.status_code == 400

    def test_duplicate_scopes_rejected(self, client: TestClient, auth_headers: Headers) -> None:
        resp = client.post(
            "/api/v1/consent",
            json=_create_body(dataScopes=["accounts:read", "accounts:read"]),
            headers=auth_headers(**CLIENT_CLAIMS),
        )
        assert resp.status_code == 400


class TestUpdateConsent:
    def test_subject_approves(self, client: TestClient, auth_headers: Headers) -> None:
        created = _create(client, auth_headers)

        data = _approve(client, auth_headers, created["id"])

        assert data["status"] == "ACTIVE"
        assert len(data["auditTrail"]) == 2
        assert data["auditTrail"][1]["action"] == "consent.approve"
        assert data["auditTrail"][1]["previousStatus"] == "PENDING"
        assert data["auditTrail"][1]["newStatus"] == "ACTIVE"
        assert data["auditTrail"][1]["actorType"] == "subject"

    def test_subject_cannot_suspend(self, client: TestClient, auth_headers: Headers) -> None:
        created = _create(client, auth_headers)
        _approve(client, auth_headers, created["id"])

        resp = client.put(
            f"/api/v1/consent/{created['id']}",
            json={"action": "suspend"},
            headers=auth_headers(**SUBJECT_CLAIMS),
        )
        assert resp.status_code == 403
        assert resp.json()["code"] == "FORBIDDEN"

    def test_admin_suspends_with_reason(self, client: TestClient, auth_headers: Headers) -> None:
        created = _create(client, auth_headers)
        _approve(client, auth_headers, created["id"])

        resp = client.put(
            f"/api/v1/consent/{created['id']}",
            json={"action": "suspend", "reason": "fraud review"},
            headers=auth_headers(**ADMIN_CLAIMS),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "SUSPENDED"
        assert resp.json()["auditTrail"][-1]["reason"] == "fraud review"

    def test_invalid_transition_conflicts(self, client: TestClient, auth_headers: Headers) -> None:
        created = _create(client, auth_headers)
        _approve(client, auth_headers, created["id"])

        resp = client.put(
            f"/api/v1/consent/{created['id']}",
            json={"action": "approve"},
            headers=auth_headers(**SUBJECT_CLAIMS),
        )
        assert resp.status_code == 409
        assert resp.json()["code"] == "CONFLICT"

    def test_unknown_action_rejected(self, client: TestClient, auth_headers: Headers) -> None:
        created = _create(client, auth_headers)
        resp = client.put(
            f"/api/v1/consent/{created['id']}",
            json={"action": "delete"},
            headers=auth_headers(**ADMIN_CLAIMS),
        )
        assert resp.status_code == 400

    def test_unknown_consent_not_found(self, client: TestClient, auth_headers: Headers) -> None:
        resp = client.put(
            "/api/v1/consent/does-not-exist",
            json={"action": "revoke"},
            headers=auth_headers(**ADMIN_CLAIMS),
        )
        assert resp.status_code == 404
        assert resp.json()["code"] == "NOT_FOUND"

    def test_expired_consent_conflicts_and_is_expired(
        self, client: TestClient, auth_headers: Headers, clock: Any
    ) -> None:
        created = _create(client, auth_headers)
        _approve(client, auth_headers, created["id"])
        clock.advance(hours=25)

        resp = client.put(
            f"/api/v1/consent/{created['id']}",
            json={"action": "revoke"},
            headers=auth_headers(**SUBJECT_CLAIMS),
        )
        assert resp.status_code == 409
        assert resp.json()["message"] == "Cannot update an expired consent"

        resp = client.get(f"/api/v1/consent/{created['id']}", headers=auth_headers(**SUBJECT_CLAIMS))
        assert resp.json()["status"] == "EXPIRED"


class TestGetConsent:
    def test_subject_reads_own_consent(self, client: TestClient, auth_headers: Headers) -> None:
        created = _create(client, auth_headers)

        resp = client.get(f"/api/v1/consent/{created['id']}", headers=auth_headers(**SUBJECT_CLAIMS))

        assert resp.status_code == 200
        data = resp.json()
        assert data["id"] == created["id"]
        assert data["auditTrail"][0]["action"] == "consent.created"
        assert data["auditTrail"][0]["actor"] == "client-456"

    def test_other_subject_forbidden(self, client: TestClient, auth_headers: Headers) -> None:
        created = _create(client, auth_headers)
        resp = client.get(f"/api/v1/consent/{created['id']}", headers=auth_headers(sub="user-999"))
        assert resp.status_code == 403

    def test_client_reads_own_consent(self, client: TestClient, auth_headers: Headers) -> None:
        created = _create(client, auth_headers)
        resp = client.get(f"/api/v1/consent/{created['id']}", headers=auth_headers(client_id="client-456"))
        assert resp.status_code == 200

    def test_invalid_token_rejected(self, client: TestClient) -> None:
        resp = client.get("/api/v1/consent/anything", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401


class TestCheckConsent:
    def test_granted_check_omits_reasons(self, client: TestClient, auth_headers: Headers) -> None:
        created = _create(client, auth_headers)
        _approve(client, auth_headers, created["id"])

        resp = client.post(
            "/api/v1/consent/check",
            json={
                "subjectId": "user-123",
                "clientId": "client-456",
                "scopes": ["accounts:read"],
                "accountIds": ["acc-001", "acc-002"],
            },
            headers=auth_headers(client_id="client-456"),
        )

        assert resp.status_code == 200
        data = resp.json()
        assert data["allow"] is True
        assert data["consentId"] == created["id"]
        assert data["filteredAccountIds"] == ["acc-001"]
        assert "reasons" not in data

    def test_denied_check_returns_reason(
        self, client: TestClient, auth_headers: Headers, audit_sink: InMemoryAuditSink
    ) -> None:
        resp = client.post(
            "/api/v1/consent/check",
            json={"subjectId": "user-123", "clientId": "client-456", "scopes": ["accounts:read"]},
            headers=auth_headers(client_id="client-456"),
        )

        assert resp.status_code == 200
        assert resp.json() == {"allow": False, "reasons": ["no_consent"]}
        assert audit_sink.events[0].reason == "no_consent"

    def test_other_client_forbidden(self, client: TestClient, auth_headers: Headers) -> None:
        resp = client.post(
            "/api/v1/consent/check",
            json={"subjectId": "user-123", "clientId": "client-456", "scopes": ["accounts:read"]},
            headers=auth_headers(client_id="client-999"),
        )
        assert resp.status_code == 403

    def test_admin_checks_any_client(self, client: TestClient, auth_headers: Headers) -> None:
        resp = client.post(
            "/api/v1/consent/check",
            json={"subjectId": "user-123", "clientId": "client-456", "scopes": []},
            headers=auth_headers(**ADMIN_CLAIMS),
        )
        assert resp.status_code == 200
        assert resp.json()["reasons"] == ["invalid_input"]


class TestReconcileExpired:
    def test_admin_reconciles(self, client: TestClient, auth_headers: Headers, clock: Any) -> None:
        _create(client, auth_headers)
        clock.advance(days=2)

        resp = client.post("/api/v1/consent/reconcile-expired", headers=auth_headers(**ADMIN_CLAIMS))

        assert resp.status_code == 200
        assert resp.json() == {"expired": 1}

    def test_non_admin_forbidden(self, client: TestClient, auth_headers: Headers) -> None:
        resp = client.post("/api/v1/consent/reconcile-expired", headers=auth_headers(**SUBJECT_CLAIMS))
        assert resp.status_code == 403


class TestDemoSeed:
    def test_lifespan_seeds_demo_consent(self, test_settings: Settings, auth_headers: Headers) -> None:
        settings = test_settings.model_copy(update={"seed_demo_consent": True})
        store = InMemoryConsentStore()
        app = create_app(settings, store=store, audit_sink=InMemoryAuditSink())

        with TestClient(app) as seeded:
            resp = seeded.get(f"/api/v1/consent/{DEMO_CONSENT_ID}", headers=auth_headers(**SUBJECT_CLAIMS))

        assert len(store) == 1
        assert resp.status_code == 200
        assert resp.json()["status"] == "ACTIVE"
        assert resp.json()["accountIds"] == ["acc-001", "acc-002"]


class TestAppWiring:
    def test_dependencies_share_app_state(self, test_app: Any, consent_store: InMemoryConsentStore) -> None:
        request = SimpleNamespace(app=test_app)

        manager = get_consent_manager(request)  # type: ignore[arg-type]
        checker = get_consent_checker(request)  # type: ignore[arg-type]

        assert manager is test_app.state.consent_manager
        assert manager.store is consent_store
        assert checker is test_app.state.consent_checker
