from datetime import datetime, timedelta, timezone

import jwt
import pytest

from finance_api.auth.config import SecurityConfig
from finance_api.auth.jwt_service import decode_token, read_unverified_claims
from finance_api.auth.principal import principal_from_claims


def _build_config(**overrides) -> SecurityConfig:
    values = {"jwt_secret": "jwt-secret-for-unit-tests-0123456789"}
    values.update(overrides)
    return SecurityConfig(**values)


def test_decode_token_returns_claims(make_token) -> None:
    config = _build_config()
    auth_time = datetime.now(timezone.utc) - timedelta(minutes=30)

    claims = decode_token(make_token(roles=["admin", "auditor"], auth_time=auth_time, config=config), config)

    assert claims["sub"] == "user-1"
    assert claims["jti"]
    assert claims["roles"] == ["admin", "auditor"]
    assert claims["auth_time"] == int(auth_time.timestamp())


def test_decode_token_rejects_other_secret(make_token) -> None:
    token = make_token(config=_build_config(jwt_secret="another-secret-for-unit-tests-98765"))

    with pytest.raises(jwt.InvalidSignatureError):
        decode_token(token, _build_config())


def test_decode_token_rejects_expired_token(make_token) -> None:
    config = _build_config()
    token = make_token(config=config, issued_at=datetime.now(timezone.utc) - timedelta(hours=1))

    with pytest.raises(jwt.ExpiredSignatureError):
        decode_token(token, config)


def test_issuer_and_audience_are_enforced(make_token) -> None:
    config = _build_config(jwt_issuer="finance-tracker", jwt_audience="finance-web")
    token = make_token(config=config)

    assert decode_token(token, config)["iss"] == "finance-tracker"
    with pytest.raises(jwt.InvalidIssuerError):
        decode_token(token, _build_config(jwt_issuer="someone-else", jwt_audience="finance-web"))


def test_decode_token_requires_subject() -> None:
    config = _build_config()
    now = int(datetime.now(timezone.utc).timestamp())
    token = jwt.encode({"iat": now, "exp": now + 60, "jti": "abc"}, config.jwt_secret, algorithm="HS256")

    with pytest.raises(jwt.MissingRequiredClaimError):
        decode_token(token, config)


def test_read_unverified_claims_ignores_signature_and_expiry(make_token) -> None:
    issued = datetime.now(timezone.utc) - timedelta(hours=2)
    token = make_token("user-9", config=_build_config(jwt_secret="another-secret-for-unit-tests-98765"), issued_at=issued)

    claims = read_unverified_claims(token)

    assert claims["sub"] == "user-9"


def test_principal_from_claims() -> None:
    claims = {"sub": 42, "roles": ["admin"], "jti": "abc"}

    principal = principal_from_claims(claims, "token", "agent")

    assert principal.user_id == "42"
    assert principal.roles == frozenset({"admin"})
    assert principal.user_agent == "agent"
    assert principal.claims is claims
