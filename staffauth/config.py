from __future__ import annotations

import os
import secrets
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from staffauth.logging import get_logger

logger = get_logger(__name__)

# HS256 keys shorter than this are rejected outright
MIN_JWT_SECRET_LENGTH = 32


class EventsBackend(str, Enum):
    """Where notification events are delivered."""

    REDIS = "redis"
    LOG = "log"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Process-wide settings, read once at startup."""

    database_url: str = env_field(
        "postgresql://localhost:5432/staffauth", "DATABASE_URL"
    )
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Deterministic testing behaviors (sync Redis client, runtime resets)",
    )
    store_timeout_seconds: float = env_field(
        5.0,
        "STORE_TIMEOUT_SECONDS",
        description="Upper bound for Postgres pool waits and Redis socket operations",
    )

    jwt_secret: str = env_field(None, "JWT_SECRET", validate_default=True)
    jwt_issuer: str = env_field("staffauth", "JWT_ISSUER")
    access_token_ttl_minutes: int = env_field(
        24 * 60,
        "ACCESS_TOKEN_TTL_MINUTES",
        description="Access token lifetime in minutes",
    )
    refresh_token_ttl_minutes: int = env_field(
        7 * 24 * 60,
        "REFRESH_TOKEN_TTL_MINUTES",
        description="Refresh token lifetime in minutes",
    )
    allowed_email_domain: str = env_field(
        "@empresa.com",
        "ALLOWED_EMAIL_DOMAIN",
        description="Only addresses whose '@domain' equals this value may register",
    )

    events_backend: EventsBackend = env_field(EventsBackend.REDIS, "EVENTS_BACKEND")
    user_events_stream: str = env_field("staffauth.user.created", "USER_EVENTS_STREAM")
    email_events_stream: str = env_field("staffauth.email.send", "EMAIL_EVENTS_STREAM")
    notification_timeout_seconds: float = env_field(
        2.0, "NOTIFICATION_TIMEOUT_SECONDS"
    )
    notify_failed_login: bool = env_field(
        True,
        "NOTIFY_FAILED_LOGIN",
        description="Email the account of record when a wrong password is supplied",
    )
    login_url: str = env_field("http://localhost:8000/login", "LOGIN_URL")

    model_config = ConfigDict(extra="ignore", frozen=True)

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("events_backend")
    @classmethod
    def _validate_events_backend(cls, value: EventsBackend) -> EventsBackend:
        return EventsBackend(value)

    @field_validator("allowed_email_domain")
    @classmethod
    def _normalize_domain(cls, value: str) -> str:
        value = (value or "").strip()
        if not value or value == "@":
            raise ValueError("allowed_email_domain must not be empty")
        return value if value.startswith("@") else f"@{value}"

    @field_validator("access_token_ttl_minutes", "refresh_token_ttl_minutes")
    @classmethod
    def _positive_ttl(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("token lifetimes must be positive")
        return value

    @field_validator("jwt_secret", mode="before")
    @classmethod
    def _ensure_jwt_secret(cls, value: str | None) -> str:
        if value:
            if len(value) < MIN_JWT_SECRET_LENGTH:
                raise ValueError(
                    f"JWT_SECRET must be at least {MIN_JWT_SECRET_LENGTH} characters"
                )
            return value
        # Tokens signed with a generated key do not survive a restart
        logger.warning(
            "jwt_secret_generated",
            message="JWT_SECRET not set; issued tokens are invalidated on restart",
        )
        return secrets.token_urlsafe(64)

    @model_validator(mode="after")
    def _refresh_outlives_access(self) -> "Settings":
        if self.refresh_token_ttl_minutes < self.access_token_ttl_minutes:
            raise ValueError("refresh token lifetime must not be shorter than access")
        return self


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
