"""Application configuration using Pydantic Settings v2.

Loads configuration from environment variables with .env file support.
All settings are validated at startup and available as typed attributes.
"""

from __future__ import annotations

import functools
import json
from typing import Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Consent service settings.

    Configuration is loaded from environment variables.
    A .env file in the project root is also read if present.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────────
    app_name: str = "FDX Consent Service"
    app_env: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # ── HTTP ─────────────────────────────────────────────────────
    cors_origins: list[str] = ["http://localhost:3000"]

    # ── Security / Auth ───────────────────────────────────────────
    jwt_secret_key: str = "dev-secret-key-change-in-production"
    jwt_secret_keys: str = ""  # Comma-separated list for key rotation
    jwt_algorithm: str = "HS256"
    admin_scope: str = "admin"

    # ── Consent ──────────────────────────────────────────────────
    consent_max_ttl_days: int = 365
    seed_demo_consent: bool = False

    @property
    def jwt_verification_keys(self) -> list[str]:
        """Return list of keys to try for JWT verification (supports rotation).

        If jwt_secret_keys is set (comma-separated), returns all keys.
        Otherwise returns just the single jwt_secret_key.
        """
        if self.jwt_secret_keys:
            keys = [k.strip() for k in self.jwt_secret_keys.split(",") if k.strip()]
            if keys:
                return keys
        return [self.jwt_secret_key]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Any) -> list[str]:
        """Parse CORS origins from JSON string or list."""
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
                if isinstance(parsed, list):
                    return [str(item) for item in parsed]
            except (json.JSONDecodeError, TypeError):
                return [origin.strip() for origin in v.split(",")]
        if isinstance(v, list):
            return [str(item) for item in v]
        return ["http://localhost:3000"]

    @field_validator("consent_max_ttl_days")
    @classmethod
    def validate_ttl(cls, v: int) -> int:
        if v < 1:
            raise ValueError("consent_max_ttl_days must be at least 1")
        return v


@functools.lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""
    return Settings()
