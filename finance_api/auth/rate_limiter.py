"""Per-identifier attempt limiter with escalating lockout."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import Lock
from typing import Mapping

from ..clock import SYSTEM_CLOCK, Clock


@dataclass(frozen=True)
class RateLimiterConfig:
    window_seconds: int
    max_attempts: int
    block_seconds: int


LOGIN_LIMIT = RateLimiterConfig(window_seconds=15 * 60, max_attempts=5, block_seconds=60 * 60)
CREATE_LIMIT = RateLimiterConfig(window_seconds=60, max_attempts=10, block_seconds=5 * 60)
UPDATE_LIMIT = RateLimiterConfig(window_seconds=60, max_attempts=20, block_seconds=3 * 60)
DELETE_LIMIT = RateLimiterConfig(window_seconds=60, max_attempts=5, block_seconds=10 * 60)

DEFAULT_LIMITS: dict[str, RateLimiterConfig] = {
    "login": LOGIN_LIMIT,
    "create": CREATE_LIMIT,
    "update": UPDATE_LIMIT,
    "delete": DELETE_LIMIT,
}

RECORD_OPERATIONS = ("create", "update", "delete")


@dataclass
class RateLimitEntry:
    count: int
    window_start: datetime
    blocked_until: datetime | None = None


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    retry_after_seconds: int | None = None
    remaining_attempts: int | None = None


@dataclass(frozen=True)
class AttemptInfo:
    attempts: int
    remaining_attempts: int


class RateLimiter:
    """Fixed-window attempt counter that blocks an identifier once it exceeds its budget.

    Bursts at window boundaries are possible; in exchange each identifier
    costs a single entry and no timestamp history.
    """

    def __init__(
        self,
        config: RateLimiterConfig,
        clock: Clock = SYSTEM_CLOCK,
        cleanup_interval_seconds: int = 300,
    ) -> None:
        self._config = config
        self._clock = clock
        self._window = timedelta(seconds=config.window_seconds)
        self._block = timedelta(seconds=config.block_seconds)
        self._entries: dict[str, RateLimitEntry] = {}
        self._lock = Lock()
        self._last_cleanup: datetime = clock.now()
        self._cleanup_interval_seconds = cleanup_interval_seconds

    @property
    def config(self) -> RateLimiterConfig:
        return self._config

    def _fresh_entry(self, identifier: str, now: datetime) -> RateLimitResult:
        self._entries[identifier] = RateLimitEntry(count=1, window_start=now)
        return RateLimitResult(allowed=True, remaining_attempts=self._config.max_attempts - 1)

    def _is_expired(self, entry: RateLimitEntry, now: datetime) -> bool:
        if entry.blocked_until is not None:
            return now >= entry.blocked_until
        return now - entry.window_start > self._window

    def _remove_expired(self, now: datetime) -> int:
        """Drop entries whose window or block is over.

        Should be called while holding self._lock.
        """
        expired_keys = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
        for key in expired_keys:
            del self._entries[key]
        return len(expired_keys)

    def check_limit(self, identifier: str) -> RateLimitResult:
        """Count one attempt for ``identifier`` and decide whether it may proceed."""
        now = self._clock.now()
        with self._lock:
            # Periodic sweep to bound memory growth
            if (now - self._last_cleanup).total_seconds() >= self._cleanup_interval_seconds:
                self._remove_expired(now)
                self._last_cleanup = now

            entry = self._entries.get(identifier)
            if entry is None:
                return self._fresh_entry(identifier, now)

            if entry.blocked_until is not None:
                if now < entry.blocked_until:
                    retry_after = math.ceil((entry.blocked_until - now).total_seconds())
                    return RateLimitResult(allowed=False, retry_after_seconds=retry_after, remaining_attempts=0)
                del self._entries[identifier]
                return self._fresh_entry(identifier, now)

            if now - entry.window_start > self._window:
                return self._fresh_entry(identifier, now)

            entry.count += 1
            if entry.count > self._config.max_attempts:
                entry.blocked_until = now + self._block
                return RateLimitResult(
                    allowed=False,
                    retry_after_seconds=math.ceil(self._block.total_seconds()),
                    remaining_attempts=0,
                )

            return RateLimitResult(allowed=True, remaining_attempts=self._config.max_attempts - entry.count)

    def record_success(self, identifier: str) -> None:
        """Forget every attempt recorded for ``identifier``."""
        with self._lock:
            self._entries.pop(identifier, None)

    def get_attempt_info(self, identifier: str) -> AttemptInfo | None:
        with self._lock:
            entry = self._entries.get(identifier)
            if entry is None:
                return None
            return AttemptInfo(
                attempts=entry.count,
                remaining_attempts=max(0, self._config.max_attempts - entry.count),
            )

    def cleanup(self) -> int:
        """Remove expired entries and return how many were dropped."""
        now = self._clock.now()
        with self._lock:
            removed = self._remove_expired(now)
            self._last_cleanup = now
            return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


@dataclass(frozen=True)
class RateLimiters:
    """One independent limiter per named configuration."""

    login: RateLimiter
    create: RateLimiter
    update: RateLimiter
    delete: RateLimiter

    def for_operation(self, operation: str) -> RateLimiter:
        if operation not in RECORD_OPERATIONS:
            raise ValueError(f"Unknown operation: {operation}. Valid operations: {', '.join(RECORD_OPERATIONS)}")
        return getattr(self, operation)

    def cleanup(self) -> int:
        return sum(limiter.cleanup() for limiter in (self.login, self.create, self.update, self.delete))


def build_rate_limiters(
    limits: Mapping[str, RateLimiterConfig] | None = None,
    clock: Clock = SYSTEM_CLOCK,
) -> RateLimiters:
    """Build the login/create/update/delete limiters, filling gaps with the defaults."""
    merged = dict(DEFAULT_LIMITS)
    if limits:
        merged.update(limits)
    return RateLimiters(
        login=RateLimiter(merged["login"], clock=clock),
        create=RateLimiter(merged["create"], clock=clock),
        update=RateLimiter(merged["update"], clock=clock),
        delete=RateLimiter(merged["delete"], clock=clock),
    )


def format_retry_message(result: RateLimitResult, operation: str = "login") -> str:
    """User-facing countdown text for a rejected attempt."""
    retry_after = result.retry_after_seconds or 0
    if operation == "login":
        minutes = max(1, math.ceil(retry_after / 60))
        plural = "s" if minutes > 1 else ""
        return f"Too many failed attempts. Please try again in {minutes} minute{plural}."
    return f"You have exceeded the {operation} limit. Try again in {retry_after} seconds."
