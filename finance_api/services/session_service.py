"""Active session registry service layer."""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from ..auth.device_detection import classify_device
from ..clock import SYSTEM_CLOCK, Clock
from ..models.session import (
    SessionRecord,
    delete_session_document,
    fetch_sessions,
    fetch_sessions_inactive_since,
    insert_session,
    touch_session,
)
from ..store.document_store import DocumentNotFoundError, DocumentStore
from .session_cache import SessionIdCache

logger = logging.getLogger(__name__)

MAX_SESSIONS_PER_USER = 5
STALE_SESSION_AGE = timedelta(days=7)
INACTIVE_SESSION_AGE = timedelta(minutes=30)

_BASE36 = string.digits + string.ascii_lowercase


@dataclass(frozen=True)
class SessionPolicy:
    max_sessions_per_user: int = MAX_SESSIONS_PER_USER
    stale_after: timedelta = STALE_SESSION_AGE
    suspicious_session_count: int = 3
    suspicious_device_types: int = 2


@dataclass(frozen=True)
class SuspiciousSessionReport:
    is_suspicious: bool
    session_count: int
    reason: str | None = None


def generate_session_id(now: datetime) -> str:
    """Build an opaque ``<epoch-ms>_<random>`` session identifier."""
    millis = int(now.timestamp() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"{millis}_{suffix}"


def _short(value: str | None) -> str | None:
    # Only log a prefix of opaque identifiers
    return value[:8] + "..." if value else value


class SessionRegistry:
    """Tracks the active sessions a user holds across devices.

    Each method is an independent write against the store. There is no
    transaction spanning them, so two devices signing in at the same moment
    can both pass ``enforce_session_limit`` and briefly exceed the cap until
    the next sign-in enforces it again.
    """

    def __init__(
        self,
        store: DocumentStore,
        cache: SessionIdCache,
        current_user_id: Callable[[], str | None],
        user_agent: str = "",
        clock: Clock = SYSTEM_CLOCK,
        policy: SessionPolicy | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._current_user_id = current_user_id
        self._user_agent = user_agent or ""
        self._clock = clock
        self._policy = policy or SessionPolicy()

    @property
    def policy(self) -> SessionPolicy:
        return self._policy

    def get_current_session_id(self) -> str | None:
        return self._cache.get()

    def forget_current_session(self) -> None:
        self._cache.clear()

    def register_session(self, user_id: str) -> str:
        """Create a session record for this client and remember its id locally.

        Raises:
            DocumentStoreError: If the record cannot be written.
        """
        session_id = generate_session_id(self._clock.now())
        try:
            insert_session(
                self._store,
                user_id=user_id,
                session_id=session_id,
                device_info=classify_device(self._user_agent),
                user_agent=self._user_agent,
            )
        except Exception as e:
            logger.error(
                "Session registration failed",
                extra={"user_id": user_id, "error": str(e)},
            )
            raise

        self._cache.set(session_id)
        logger.info(
            "Session registered",
            extra={"user_id": user_id, "session_id": _short(session_id)},
        )
        return session_id

    def _forget_missing_session(self, user_id: str, session_id: str) -> bool:
        self._cache.clear()
        logger.info(
            "Cached session no longer exists",
            extra={"user_id": user_id, "session_id": _short(session_id)},
        )
        return False

    def update_session_activity(self) -> bool:
        """Refresh ``lastActive`` on this client's session record.

        Returns:
            True if the record was refreshed; False if there is no signed-in
            user, no cached id, the record is gone, or the store failed. A
            missing record also clears the cached id so the caller registers
            a new session.
        """
        user_id = self._current_user_id()
        session_id = self._cache.get()
        if not user_id or not session_id:
            logger.warning(
                "Session activity skipped: no user or no session id",
                extra={"user_id": user_id, "session_id": _short(session_id)},
            )
            return False

        try:
            records = fetch_sessions(self._store, user_id, session_id)
            if not records:
                return self._forget_missing_session(user_id, session_id)
            touch_session(self._store, records[0].id)
            return True
        except DocumentNotFoundError:
            # Deleted between the lookup and the write
            return self._forget_missing_session(user_id, session_id)
        except Exception as e:
            logger.error(
                "Session activity update failed",
                extra={"user_id": user_id, "session_id": _short(session_id), "error": str(e)},
            )
            return False

    def get_user_sessions(self, user_id: str) -> list[SessionRecord]:
        return fetch_sessions(self._store, user_id)

    def revoke_session(self, user_id: str, session_id: str) -> None:
        """Delete every record for ``(user_id, session_id)``.

        Duplicates should not exist, but all of them are removed if they do.
        """
        for record in fetch_sessions(self._store, user_id, session_id):
            delete_session_document(self._store, record.id)
        logger.info(
            "Session revoked",
            extra={"user_id": user_id, "session_id": _short(session_id)},
        )

    def enforce_session_limit(self, user_id: str) -> int:
        """Evict the least recently active sessions so one more fits under the cap.

        Must run before registering a new session so the new one is never
        evicted by the same pass.

        Returns:
            Number of sessions evicted.
        """
        sessions = self.get_user_sessions(user_id)
        cap = self._policy.max_sessions_per_user
        if len(sessions) < cap:
            return 0

        oldest_first = sorted(sessions, key=lambda record: record.last_active)
        to_remove = oldest_first[: len(sessions) - (cap - 1)]
        for record in to_remove:
            self.revoke_session(user_id, record.session_id)

        logger.info(
            "Session limit enforced",
            extra={"user_id": user_id, "evicted": len(to_remove), "cap": cap},
        )
        return len(to_remove)

    def revoke_all_other_sessions(self, user_id: str, current_session_id: str) -> int:
        """Revoke every session except ``current_session_id`` and return how many went."""
        others = [s for s in self.get_user_sessions(user_id) if s.session_id != current_session_id]
        for record in others:
            self.revoke_session(user_id, record.session_id)
        return len(others)

    def detect_suspicious_sessions(self, user_id: str) -> SuspiciousSessionReport:
        """Flag too many concurrent sessions or too many device types.

        Advisory only: a lookup failure is reported as not suspicious.
        """
        try:
            sessions = self.get_user_sessions(user_id)
        except Exception as e:
            logger.error(
                "Suspicious session detection failed",
                extra={"user_id": user_id, "error": str(e)},
            )
            return SuspiciousSessionReport(is_suspicious=False, session_count=0)

        session_count = len(sessions)
        max_sessions = self._policy.suspicious_session_count
        if session_count > max_sessions:
            return SuspiciousSessionReport(
                is_suspicious=True,
                session_count=session_count,
                reason=(
                    f"You have {session_count} active sessions. "
                    f"At most {max_sessions} are recommended."
                ),
            )

        device_types = {s.device_info for s in sessions}
        if len(device_types) > self._policy.suspicious_device_types:
            return SuspiciousSessionReport(
                is_suspicious=True,
                session_count=session_count,
                reason=f"Active sessions from {len(device_types)} different device types.",
            )

        return SuspiciousSessionReport(is_suspicious=False, session_count=session_count)

    def cleanup_old_sessions(self, user_id: str) -> int:
        """Revoke the user's sessions idle for longer than the stale threshold."""
        cutoff = self._clock.now() - self._policy.stale_after
        cleaned = 0
        for record in self.get_user_sessions(user_id):
            if record.last_active < cutoff:
                self.revoke_session(user_id, record.session_id)
                cleaned += 1
        return cleaned


def cleanup_inactive_sessions(
    store: DocumentStore,
    clock: Clock = SYSTEM_CLOCK,
    max_idle: timedelta = INACTIVE_SESSION_AGE,
) -> int:
    """Delete every user's sessions idle for longer than ``max_idle``.

    Scheduled/admin sweep across all users, unlike the per-user cleanup that
    runs on sign-in.
    """
    cutoff = clock.now() - max_idle
    inactive = fetch_sessions_inactive_since(store, cutoff)
    if not inactive:
        logger.info("No inactive sessions to clean up", extra={"cutoff": cutoff.isoformat()})
        return 0

    for record in inactive:
        delete_session_document(store, record.id)

    logger.info(
        "Inactive sessions removed",
        extra={"deleted": len(inactive), "cutoff": cutoff.isoformat()},
    )
    return len(inactive)
