"""Local slot remembering which session record belongs to this client."""

from __future__ import annotations

from threading import Lock
from typing import MutableMapping, Protocol

SESSION_ID_KEY = "sessionId"


class SessionIdCache(Protocol):
    def get(self) -> str | None:
        ...

    def set(self, session_id: str) -> None:
        ...

    def clear(self) -> None:
        ...


class LocalSessionIdCache:
    """Single ``sessionId`` slot over a client-local key-value mapping.

    The cached id is only a lookup key; the record it names may have been
    evicted server-side at any time.
    """

    def __init__(self, storage: MutableMapping[str, str] | None = None, initial: str | None = None) -> None:
        self._storage: MutableMapping[str, str] = storage if storage is not None else {}
        self._lock = Lock()
        if initial:
            self._storage[SESSION_ID_KEY] = initial

    def get(self) -> str | None:
        with self._lock:
            return self._storage.get(SESSION_ID_KEY) or None

    def set(self, session_id: str) -> None:
        with self._lock:
            self._storage[SESSION_ID_KEY] = session_id

    def clear(self) -> None:
        with self._lock:
            self._storage.pop(SESSION_ID_KEY, None)
