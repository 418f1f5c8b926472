"""In-memory list of signed-out token ids."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from threading import Lock

from ..clock import SYSTEM_CLOCK, Clock


@dataclass
class RevokedToken:
    expires_at: datetime


class TokenRevocationList:
    """Remembers revoked token ids (jti) until the token would have expired anyway."""

    def __init__(self, clock: Clock = SYSTEM_CLOCK) -> None:
        self._clock = clock
        self._entries: dict[str, RevokedToken] = {}
        self._lock = Lock()

    def _prune(self, now: datetime) -> None:
        expired_keys = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired_keys:
            self._entries.pop(key, None)

    def revoke(self, token_id: str, expires_at: datetime) -> None:
        with self._lock:
            self._entries[token_id] = RevokedToken(expires_at=expires_at)

    def is_revoked(self, token_id: str) -> bool:
        with self._lock:
            self._prune(self._clock.now())
            return token_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            self._prune(self._clock.now())
            return len(self._entries)
