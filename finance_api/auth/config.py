"""Configuration loading for session tracking and abuse protection."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from .rate_limiter import DEFAULT_LIMITS, RateLimiterConfig


_DEFAULT_MAX_SESSIONS_PER_USER = 5
_DEFAULT_STALE_SESSION_DAYS = 7
_DEFAULT_INACTIVE_SWEEP_MINUTES = 30
_DEFAULT_HEARTBEAT_SECONDS = 5 * 60
_DEFAULT_IDLE_TIMEOUT_SECONDS = 30 * 60
_DEFAULT_IDLE_WARNING_SECONDS = 2 * 60
_DEFAULT_RECENT_AUTH_MINUTES = 5
_DEFAULT_DOCUMENT_STORE = "postgres"
_VALID_DOCUMENT_STORES = ("memory", "postgres")


@dataclass(frozen=True)
class DatabaseConfig:
    host: str = "database"
    port: str = "5432"
    database: str = "finance_tracker"
    user: str = "finance_user"
    password: str = "finance_pass"

    def as_connect_kwargs(self) -> dict[str, str]:
        return {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
            "password": self.password,
        }


@dataclass(frozen=True)
class SecurityConfig:
    jwt_secret: str
    jwt_issuer: str | None = None
    jwt_audience: str | None = None
    max_sessions_per_user: int = _DEFAULT_MAX_SESSIONS_PER_USER
    stale_session_days: int = _DEFAULT_STALE_SESSION_DAYS
    inactive_sweep_minutes: int = _DEFAULT_INACTIVE_SWEEP_MINUTES
    heartbeat_seconds: int = _DEFAULT_HEARTBEAT_SECONDS
    idle_timeout_seconds: int = _DEFAULT_IDLE_TIMEOUT_SECONDS
    idle_warning_seconds: int = _DEFAULT_IDLE_WARNING_SECONDS
    recent_auth_minutes: int = _DEFAULT_RECENT_AUTH_MINUTES
    rate_limits: dict[str, RateLimiterConfig] = field(default_factory=lambda: dict(DEFAULT_LIMITS))
    document_store: str = _DEFAULT_DOCUMENT_STORE
    database: DatabaseConfig = field(default_factory=DatabaseConfig)


def _parse_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _load_rate_limit(name: str, default: RateLimiterConfig) -> RateLimiterConfig:
    prefix = f"RATE_LIMIT_{name.upper()}"
    config = RateLimiterConfig(
        window_seconds=_parse_int(os.getenv(f"{prefix}_WINDOW_SECONDS"), default.window_seconds),
        max_attempts=_parse_int(os.getenv(f"{prefix}_MAX_ATTEMPTS"), default.max_attempts),
        block_seconds=_parse_int(os.getenv(f"{prefix}_BLOCK_SECONDS"), default.block_seconds),
    )
    if config.max_attempts < 1:
        raise ValueError(f"{prefix}_MAX_ATTEMPTS must be at least 1")
    return config


def _load_database_config() -> DatabaseConfig:
    defaults = DatabaseConfig()
    return DatabaseConfig(
        host=os.getenv("DB_HOST", defaults.host),
        port=os.getenv("DB_PORT", defaults.port),
        database=os.getenv("DB_NAME", defaults.database),
        user=os.getenv("DB_USER", defaults.user),
        password=os.getenv("DB_PASSWORD", defaults.password),
    )


def load_security_config() -> SecurityConfig:
    """Load security configuration from environment variables."""
    jwt_secret = os.getenv("API_JWT_SECRET", "").strip()
    if not jwt_secret:
        raise ValueError("API_JWT_SECRET must be set")

    max_sessions = _parse_int(os.getenv("SESSION_MAX_PER_USER"), _DEFAULT_MAX_SESSIONS_PER_USER)
    if max_sessions < 1:
        raise ValueError("SESSION_MAX_PER_USER must be at least 1")

    document_store = os.getenv("DOCUMENT_STORE", _DEFAULT_DOCUMENT_STORE).strip().lower()
    if document_store not in _VALID_DOCUMENT_STORES:
        raise ValueError(f"DOCUMENT_STORE must be one of: {', '.join(_VALID_DOCUMENT_STORES)}")

    return SecurityConfig(
        jwt_secret=jwt_secret,
        jwt_issuer=os.getenv("API_JWT_ISSUER") or None,
        jwt_audience=os.getenv("API_JWT_AUDIENCE") or None,
        max_sessions_per_user=max_sessions,
        stale_session_days=_parse_int(os.getenv("SESSION_STALE_DAYS"), _DEFAULT_STALE_SESSION_DAYS),
        inactive_sweep_minutes=_parse_int(
            os.getenv("SESSION_INACTIVE_SWEEP_MINUTES"),
            _DEFAULT_INACTIVE_SWEEP_MINUTES,
        ),
        heartbeat_seconds=_parse_int(os.getenv("SESSION_HEARTBEAT_SECONDS"), _DEFAULT_HEARTBEAT_SECONDS),
        idle_timeout_seconds=_parse_int(os.getenv("IDLE_TIMEOUT_SECONDS"), _DEFAULT_IDLE_TIMEOUT_SECONDS),
        idle_warning_seconds=_parse_int(os.getenv("IDLE_WARNING_SECONDS"), _DEFAULT_IDLE_WARNING_SECONDS),
        recent_auth_minutes=_parse_int(os.getenv("RECENT_AUTH_MINUTES"), _DEFAULT_RECENT_AUTH_MINUTES),
        rate_limits={name: _load_rate_limit(name, default) for name, default in DEFAULT_LIMITS.items()},
        document_store=document_store,
        database=_load_database_config(),
    )
