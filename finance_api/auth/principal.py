"""The authenticated caller."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Principal:
    user_id: str
    token: str
    user_agent: str = ""
    roles: frozenset[str] = frozenset()
    claims: dict[str, Any] = field(default_factory=dict)


def principal_from_claims(claims: dict[str, Any], token: str, user_agent: str = "") -> Principal:
    """Build a principal from JWT claims."""
    return Principal(
        user_id=str(claims.get("sub", "")),
        token=token,
        user_agent=user_agent or "",
        roles=frozenset(claims.get("roles", []) or []),
        claims=claims,
    )
