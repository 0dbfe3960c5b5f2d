"""Consent service FastAPI application entry point.

Configures the FastAPI app with:
- CORS, request-id and security-header middleware
- Consent store, lifecycle manager and authorization checker on app.state
- Lifespan hook seeding the demo consent when enabled
- Consent and health routers
- Error handlers rendering ``{"code", "message", "request_id"}`` bodies
- OpenAPI documentation at /docs (debug mode only)
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.errors import register_exception_handlers
from src.api.middleware.security import RequestIDMiddleware, SecurityHeadersMiddleware
from src.api.routes import consent, health
from src.api.version import API_VERSION
from src.core.config import Settings, get_settings
from src.security.consent.audit import AuditSink, LoggingAuditSink
from src.security.consent.checker import ConsentAuthorizationChecker
from src.security.consent.service import Clock, ConsentLifecycleManager, utc_now
from src.security.consent.store import ConsentStore, InMemoryConsentStore, seed_demo_consent

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Seed demo data on startup when configured."""
    settings: Settings = app.state.settings
    if settings.seed_demo_consent:
        manager: ConsentLifecycleManager = app.state.consent_manager
        await seed_demo_consent(app.state.consent_store, manager.now())
    logger.info("%s started (env=%s)", settings.app_name, settings.app_env)

    yield

    logger.info("%s stopped", settings.app_name)


def create_app(
    settings: Settings | None = None,
    *,
    store: ConsentStore | None = None,
    audit_sink: AuditSink | None = None,
    clock: Clock = utc_now,
) -> FastAPI:
    """Create and configure the FastAPI application.

    The in-memory store is the default backing store; pass ``store`` to
    substitute another implementation of the ConsentStore protocol.
    """
    if settings is None:
        settings = get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        description="Consent lifecycle and authorization for FDX data sharing",
        version=API_VERSION,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    # -- Consent services ---
    consent_store = store if store is not None else InMemoryConsentStore()
    manager = ConsentLifecycleManager(
        consent_store,
        clock=clock,
        max_ttl=timedelta(days=settings.consent_max_ttl_days),
    )
    app.state.settings = settings
    # Request-scoped dependencies resolve the same settings instance the app was built with
    app.dependency_overrides[get_settings] = lambda: settings
    app.state.consent_store = consent_store
    app.state.consent_manager = manager
    app.state.consent_checker = ConsentAuthorizationChecker(manager, audit_sink or LoggingAuditSink())

    # -- Middleware ---
    # Note: middleware is applied in reverse order (last added = first executed).
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID", "Accept"],
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # -- Routes ---
    app.include_router(health.router)
    app.include_router(consent.router)

    # -- Error Handlers ---
    register_exception_handlers(app)

    return app


# Application instance used by uvicorn
app = create_app()
