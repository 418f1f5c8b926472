import pytest

from finance_api.auth.config import DatabaseConfig, load_security_config
from finance_api.auth.rate_limiter import DEFAULT_LIMITS, RateLimiterConfig


def test_load_security_config_requires_jwt_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("API_JWT_SECRET", raising=False)
    with pytest.raises(ValueError, match="API_JWT_SECRET"):
        load_security_config()


def test_load_security_config_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("API_JWT_SECRET", "jwt-secret")
    for name in (
        "SESSION_MAX_PER_USER",
        "SESSION_STALE_DAYS",
        "SESSION_HEARTBEAT_SECONDS",
        "IDLE_TIMEOUT_SECONDS",
        "IDLE_WARNING_SECONDS",
        "DOCUMENT_STORE",
        "DB_HOST",
        "RATE_LIMIT_LOGIN_MAX_ATTEMPTS",
    ):
        monkeypatch.delenv(name, raising=False)

    config = load_security_config()

    assert config.jwt_secret == "jwt-secret"
    assert config.max_sessions_per_user == 5
    assert config.stale_session_days == 7
    assert config.inactive_sweep_minutes == 30
    assert config.heartbeat_seconds == 300
    assert config.idle_timeout_seconds == 1800
    assert config.idle_warning_seconds == 120
    assert config.recent_auth_minutes == 5
    assert config.rate_limits == DEFAULT_LIMITS
    assert config.document_store == "postgres"
    assert config.database.host == DatabaseConfig().host


def test_load_security_config_parses_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("API_JWT_SECRET", "jwt-secret")
    monkeypatch.setenv("API_JWT_ISSUER", "finance-tracker")
    monkeypatch.setenv("SESSION_MAX_PER_USER", "3")
    monkeypatch.setenv("SESSION_STALE_DAYS", "14")
    monkeypatch.setenv("IDLE_TIMEOUT_SECONDS", "600")
    monkeypatch.setenv("DOCUMENT_STORE", " Memory ")
    monkeypatch.setenv("DB_HOST", "localhost")
    monkeypatch.setenv("DB_PORT", "5433")
    monkeypatch.setenv("RATE_LIMIT_LOGIN_MAX_ATTEMPTS", "3")
    monkeypatch.setenv("RATE_LIMIT_DELETE_BLOCK_SECONDS", "60")

    config = load_security_config()

    assert config.jwt_issuer == "finance-tracker"
    assert config.max_sessions_per_user == 3
    assert config.stale_session_days == 14
    assert config.idle_timeout_seconds == 600
    assert config.document_store == "memory"
    assert config.database.as_connect_kwargs()["host"] == "localhost"
    assert config.database.as_connect_kwargs()["port"] == "5433"
    assert config.rate_limits["login"] == RateLimiterConfig(window_seconds=900, max_attempts=3, block_seconds=3600)
    assert config.rate_limits["delete"].block_seconds == 60


def test_load_security_config_rejects_zero_session_cap(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("API_JWT_SECRET", "jwt-secret")
    monkeypatch.setenv("SESSION_MAX_PER_USER", "0")
    with pytest.raises(ValueError, match="SESSION_MAX_PER_USER"):
        load_security_config()


def test_load_security_config_rejects_unknown_store(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("API_JWT_SECRET", "jwt-secret")
    monkeypatch.setenv("DOCUMENT_STORE", "firestore")
    with pytest.raises(ValueError, match="DOCUMENT_STORE"):
        load_security_config()


def test_load_security_config_rejects_zero_attempt_budget(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("API_JWT_SECRET", "jwt-secret")
    monkeypatch.setenv("RATE_LIMIT_CREATE_MAX_ATTEMPTS", "0")
    with pytest.raises(ValueError, match="RATE_LIMIT_CREATE_MAX_ATTEMPTS"):
        load_security_config()
