"""Pytest configuration for API tests."""

import os
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import jwt
import pytest

# Set default environment variables for testing before any imports
# This ensures api.py can be imported without a database
os.environ.setdefault("API_JWT_SECRET", "test-jwt-secret-67890-finance-tracker")
os.environ.setdefault("DOCUMENT_STORE", "memory")

from finance_api.auth.config import SecurityConfig
from finance_api.auth.jwt_service import JWT_ALGORITHM
from finance_api.services.session_cache import LocalSessionIdCache
from finance_api.services.session_service import SessionRegistry
from finance_api.store.document_store import InMemoryDocumentStore

TEST_JWT_SECRET = "test-jwt-secret-67890-finance-tracker"

DESKTOP_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/120.0 Safari/537.36"

TOKEN_TTL = timedelta(minutes=15)


class FakeClock:
    """Manually advanced clock.

    Starts at the real current time so tokens signed by PyJWT, which checks
    expiry against the system time, stay valid in tests.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime.now(timezone.utc).replace(microsecond=0)

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryDocumentStore(clock)


@pytest.fixture
def security_config():
    return SecurityConfig(jwt_secret=TEST_JWT_SECRET, document_store="memory")


@pytest.fixture
def make_registry(store, clock):
    """Factory for a registry bound to one client."""

    def _make(user_id="user-1", user_agent=DESKTOP_UA, cache=None, policy=None):
        return SessionRegistry(
            store=store,
            cache=cache if cache is not None else LocalSessionIdCache(),
            current_user_id=lambda: user_id,
            user_agent=user_agent,
            clock=clock,
            policy=policy,
        )

    return _make


def sign_token(config, user_id, roles=(), issued_at=None, auth_time=None, ttl=TOKEN_TTL, **claims):
    """Sign a bearer token the way the identity provider does.

    Extra keyword arguments override or add claims.
    """
    issued_at = issued_at or datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + ttl).timestamp()),
        "auth_time": int((auth_time or issued_at).timestamp()),
        "jti": str(uuid4()),
        "roles": sorted(set(roles)),
    }
    if config.jwt_issuer:
        payload["iss"] = config.jwt_issuer
    if config.jwt_audience:
        payload["aud"] = config.jwt_audience
    payload.update(claims)
    return jwt.encode(payload, config.jwt_secret, algorithm=JWT_ALGORITHM)


@pytest.fixture
def make_token(security_config):
    """Factory for signed bearer tokens; ``config`` signs with other settings."""

    def _make(user_id="user-1", roles=(), config=None, **kwargs):
        return sign_token(config or security_config, user_id, roles=roles, **kwargs)

    return _make


@pytest.fixture
def test_client(security_config, store, clock):
    """Provide a FastAPI TestClient wired to the in-memory store and fake clock."""
    from fastapi.testclient import TestClient

    from finance_api.api import create_app

    with TestClient(create_app(security_config, store, clock)) as client:
        yield client


@pytest.fixture
def auth_headers(make_token):
    """Factory for bearer headers, optionally carrying the client's session id."""

    def _make(user_id="user-1", roles=(), session_id=None, user_agent=DESKTOP_UA, **kwargs):
        headers = {
            "Authorization": f"Bearer {make_token(user_id, roles=roles, **kwargs)}",
            "User-Agent": user_agent,
        }
        if session_id:
            headers["X-Session-Id"] = session_id
        return headers

    return _make
