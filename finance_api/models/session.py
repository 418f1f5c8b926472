"""Active-session data access helpers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from ..store.document_store import SERVER_TIMESTAMP, Document, DocumentStore

ACTIVE_SESSIONS = "activeSessions"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _parse_timestamp(value: Any) -> datetime:
    """Normalize a stored timestamp to an aware datetime.

    A missing value sorts as the oldest possible time.
    """
    if value is None:
        return _EPOCH
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if not isinstance(value, datetime):
        raise ValueError(f"Unsupported timestamp value: {value!r}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class SessionRecord:
    id: str
    user_id: str
    session_id: str
    device_info: str
    user_agent: str
    created_at: datetime
    last_active: datetime

    @classmethod
    def from_document(cls, document: Document) -> SessionRecord:
        data = document.data
        return cls(
            id=document.id,
            user_id=data["userId"],
            session_id=data["sessionId"],
            device_info=data.get("deviceInfo", ""),
            user_agent=data.get("userAgent", ""),
            created_at=_parse_timestamp(data.get("createdAt")),
            last_active=_parse_timestamp(data.get("lastActive")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "device_info": self.device_info,
            "user_agent": self.user_agent,
            "created_at": self.created_at.isoformat(),
            "last_active": self.last_active.isoformat(),
        }


def insert_session(
    store: DocumentStore,
    user_id: str,
    session_id: str,
    device_info: str,
    user_agent: str,
) -> str:
    """Persist a new session record stamped with the store's clock.

    Returns:
        The store document id.
    """
    return store.create(
        ACTIVE_SESSIONS,
        {
            "userId": user_id,
            "sessionId": session_id,
            "deviceInfo": device_info,
            "userAgent": user_agent,
            "createdAt": SERVER_TIMESTAMP,
            "lastActive": SERVER_TIMESTAMP,
        },
    )


def fetch_sessions(store: DocumentStore, user_id: str, session_id: str | None = None) -> list[SessionRecord]:
    """Fetch a user's sessions, optionally narrowed to one session id."""
    filters = [("userId", "==", user_id)]
    if session_id is not None:
        filters.append(("sessionId", "==", session_id))
    return [SessionRecord.from_document(doc) for doc in store.query(ACTIVE_SESSIONS, filters)]


def fetch_sessions_inactive_since(store: DocumentStore, cutoff: datetime) -> list[SessionRecord]:
    """Fetch sessions of every user whose last activity predates ``cutoff``."""
    documents = store.query(ACTIVE_SESSIONS, [("lastActive", "<", cutoff)])
    return [SessionRecord.from_document(doc) for doc in documents]


def touch_session(store: DocumentStore, doc_id: str) -> None:
    store.update(ACTIVE_SESSIONS, doc_id, {"lastActive": SERVER_TIMESTAMP})


def delete_session_document(store: DocumentStore, doc_id: str) -> None:
    store.delete(ACTIVE_SESSIONS, doc_id)
