"""Health check endpoint."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter

from src.api.version import API_VERSION

router = APIRouter(tags=["health"])


@router.get("/api/v1/health")
async def health_check() -> dict[str, Any]:
    """Report service liveness and version."""
    return {
        "status": "healthy",
        "version": API_VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
    }
