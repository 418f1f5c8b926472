"""Token validation against the identity provider."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

import jwt

from ..clock import SYSTEM_CLOCK, Clock
from ..models.user import fetch_user_profile, is_user_disabled
from ..store.document_store import DocumentStore
from .config import SecurityConfig
from .jwt_service import decode_token
from .principal import Principal
from .revocation_list import TokenRevocationList

logger = logging.getLogger(__name__)

TOKEN_EXPIRED = "auth/user-token-expired"
USER_DISABLED = "auth/user-disabled"
INVALID_TOKEN = "auth/invalid-user-token"

# Codes that end the session outright
FORCE_SIGN_OUT_CODES = frozenset({TOKEN_EXPIRED, USER_DISABLED, INVALID_TOKEN})


class TokenValidationError(Exception):
    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(message or code)
        self.code = code

    @property
    def forces_sign_out(self) -> bool:
        return self.code in FORCE_SIGN_OUT_CODES


class IdentityProvider(Protocol):
    def validate_token(self, principal: Principal) -> dict[str, Any]:
        ...

    def sign_out(self, principal: Principal) -> None:
        ...


@dataclass(frozen=True)
class TokenInfo:
    issued_at: datetime
    expires_at: datetime
    auth_time: datetime
    claims: dict[str, Any]


def _from_epoch(value: Any) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class JwtIdentityProvider:
    """Validates HS256 bearer tokens and tracks signed-out token ids."""

    def __init__(
        self,
        config: SecurityConfig,
        revocations: TokenRevocationList | None = None,
        store: DocumentStore | None = None,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        self._config = config
        self._clock = clock
        self._revocations = revocations or TokenRevocationList(clock)
        self._store = store

    def validate_token(self, principal: Principal) -> dict[str, Any]:
        """Validate the principal's token and return its claims.

        Raises:
            TokenValidationError: With one of the ``auth/*`` codes.
        """
        try:
            claims = decode_token(principal.token, self._config)
        except jwt.ExpiredSignatureError:
            raise TokenValidationError(TOKEN_EXPIRED, "Token expired")
        except jwt.InvalidTokenError as e:
            raise TokenValidationError(INVALID_TOKEN, f"Invalid token: {e}")

        if self._revocations.is_revoked(claims["jti"]):
            raise TokenValidationError(INVALID_TOKEN, "Token has been signed out")

        if str(claims["sub"]) != principal.user_id:
            raise TokenValidationError(INVALID_TOKEN, "Token subject mismatch")

        if self._store is not None and is_user_disabled(fetch_user_profile(self._store, principal.user_id)):
            raise TokenValidationError(USER_DISABLED, "User account is disabled")

        return claims

    def sign_out(self, principal: Principal) -> None:
        """Revoke the principal's token id.

        Only a token with a valid signature is recorded; expired or forged
        tokens are already rejected and leave the revocation list untouched.
        """
        try:
            claims = decode_token(principal.token, self._config)
        except jwt.InvalidTokenError as e:
            logger.info(
                "Sign-out without revocation",
                extra={"user_id": principal.user_id, "reason": type(e).__name__},
            )
            return

        token_id = str(claims["jti"])
        expires_at = _from_epoch(claims["exp"])
        if expires_at <= self._clock.now():
            return
        self._revocations.revoke(token_id, expires_at)
        logger.info(
            "Token signed out",
            extra={"user_id": str(claims["sub"]), "token_id": token_id[:8] + "..."},
        )


def get_token_info(token: str, config: SecurityConfig) -> TokenInfo | None:
    """Issue, expiry and authentication times for a valid token; None if invalid."""
    try:
        claims = decode_token(token, config)
    except jwt.InvalidTokenError as e:
        logger.warning("Token info unavailable", extra={"reason": "invalid_token", "error": str(e)})
        return None

    return TokenInfo(
        issued_at=_from_epoch(claims["iat"]),
        expires_at=_from_epoch(claims["exp"]),
        auth_time=_from_epoch(claims.get("auth_time", claims["iat"])),
        claims=claims,
    )


def requires_recent_auth(
    token: str,
    config: SecurityConfig,
    max_age: timedelta = timedelta(minutes=5),
    clock: Clock = SYSTEM_CLOCK,
) -> bool:
    """Whether the user must re-authenticate before a sensitive operation."""
    info = get_token_info(token, config)
    if info is None:
        return True
    return clock.now() - info.auth_time > max_age


def validate_token_for_critical_operation(provider: IdentityProvider, principal: Principal) -> bool:
    """True if the token is still good; False means the caller should sign out."""
    try:
        provider.validate_token(principal)
    except TokenValidationError as e:
        logger.error(
            "Invalid token on critical operation",
            extra={"user_id": principal.user_id, "reason": e.code},
        )
        return False
    return True
