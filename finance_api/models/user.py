"""User profile data access helpers."""

from __future__ import annotations

from typing import Any

from ..store.document_store import SERVER_TIMESTAMP, DocumentStore

USERS = "users"


def fetch_user_profile(store: DocumentStore, user_id: str) -> dict[str, Any] | None:
    """Fetch a user's profile document.

    Args:
        store: Document store.
        user_id: Identity-provider user id, also the document id.

    Returns:
        Profile dict or None if the document does not exist (yet).
    """
    return store.get(USERS, user_id)


def create_user_profile(
    store: DocumentStore,
    user_id: str,
    email: str,
    name: str = "",
    photo_url: str | None = None,
) -> dict[str, Any]:
    """Create the profile document unless it already exists."""
    existing = fetch_user_profile(store, user_id)
    if existing is not None:
        return existing

    profile: dict[str, Any] = {
        "uid": user_id,
        "email": email,
        "name": name,
        "createdAt": SERVER_TIMESTAMP,
        "updatedAt": SERVER_TIMESTAMP,
    }
    if photo_url:
        profile["photoURL"] = photo_url
    store.set(USERS, user_id, profile)
    return fetch_user_profile(store, user_id) or profile


def is_user_disabled(profile: dict[str, Any] | None) -> bool:
    return bool(profile and profile.get("disabled"))
