"""Explicit wrapper for housekeeping calls that must never break the caller."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BestEffortResult(Generic[T]):
    ok: bool
    value: T | None = None
    error: Exception | None = None


def run_best_effort(
    label: str,
    func: Callable[..., T],
    *args: Any,
    default: T | None = None,
    **kwargs: Any,
) -> BestEffortResult[T]:
    """Run ``func`` and turn any failure into a logged, ignorable result.

    Args:
        label: Short operation name used in the log line.
        func: Callable to run.
        default: Value reported when the call fails.

    Returns:
        BestEffortResult with ``ok`` False and the exception when the call raised.
    """
    try:
        return BestEffortResult(ok=True, value=func(*args, **kwargs))
    except Exception as e:
        logger.warning(
            "Best-effort operation failed",
            extra={"operation": label, "error": str(e)},
            exc_info=True,
        )
        return BestEffortResult(ok=False, value=default, error=e)
