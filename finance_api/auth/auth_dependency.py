"""Auth dependencies for FastAPI endpoints."""

from __future__ import annotations

import logging
from typing import Callable

import jwt
from fastapi import HTTPException, Request, status

from .jwt_service import read_unverified_claims
from .principal import Principal, principal_from_claims
from .token_validation import IdentityProvider, TokenValidationError

logger = logging.getLogger(__name__)

INVALID_TOKEN_REASON = "invalid-token"


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _reject(request: Request, reason: str, detail: str, **context) -> HTTPException:
    logger.warning(
        f"Auth failed: {detail.lower()}",
        extra={
            "reason": reason,
            "client_ip": request.client.host if request.client else "unknown",
            "endpoint": request.url.path,
            "status_code": 401,
            **context,
        },
    )
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"reason": INVALID_TOKEN_REASON, "message": detail},
    )


def read_bearer_principal(request: Request) -> Principal:
    """Principal from the bearer token's claims, without validating it.

    Used only by sign-in, which validates the token itself as its first step.
    """
    token = _bearer_token(request)
    if not token:
        raise _reject(request, "missing_token", "Authentication required - missing bearer token")
    try:
        claims = read_unverified_claims(token)
    except jwt.InvalidTokenError as e:
        raise _reject(request, "malformed_token", "Malformed token", error=str(e))
    if not claims.get("sub"):
        raise _reject(request, "missing_subject", "Token has no subject")
    return principal_from_claims(claims, token, request.headers.get("user-agent", ""))


def build_auth_dependency(identity: IdentityProvider) -> Callable[[Request], Principal]:
    """Build a FastAPI dependency that enforces bearer-token authentication."""

    def _dependency(request: Request) -> Principal:
        principal = read_bearer_principal(request)
        try:
            claims = identity.validate_token(principal)
        except TokenValidationError as e:
            raise _reject(request, e.code, str(e), user_id=principal.user_id)

        logger.debug(
            "Auth successful",
            extra={
                "endpoint": request.url.path,
                "user_id": principal.user_id,
                "token_id": str(claims.get("jti", ""))[:8] + "...",
            },
        )
        return principal_from_claims(claims, principal.token, principal.user_agent)

    return _dependency
