"""FastAPI middleware and request adapters for the consent service."""

from src.api.middleware.consent import ConsentGrant, require_consent
from src.api.middleware.security import RequestIDMiddleware, SecurityHeadersMiddleware

__all__ = [
    "ConsentGrant",
    "RequestIDMiddleware",
    "SecurityHeadersMiddleware",
    "require_consent",
]
