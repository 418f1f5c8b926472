"""Wall-clock abstraction shared by the limiter, session registry and stores."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Clock backed by the real UTC time."""

    def now(self) -> datetime:
        return _utcnow()


SYSTEM_CLOCK = SystemClock()
