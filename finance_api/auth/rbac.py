"""Role gate for operator-only endpoints such as the global session sweep."""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from fastapi import Depends, HTTPException, status

from ..dependencies import require_principal
from .principal import Principal

logger = logging.getLogger(__name__)


def require_roles(required_roles: Iterable[str]) -> Callable[[Principal], Principal]:
    """Dependency factory admitting principals whose token carries any of ``required_roles``."""
    allowed = frozenset(required_roles)

    def _role_gate(principal: Principal = Depends(require_principal)) -> Principal:
        if allowed.isdisjoint(principal.roles):
            logger.warning(
                "Role check failed",
                extra={"user_id": principal.user_id, "required_roles": sorted(allowed)},
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires one of the roles: {', '.join(sorted(allowed))}",
            )
        return principal

    return _role_gate
