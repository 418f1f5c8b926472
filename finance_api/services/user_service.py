"""User identity helpers for login throttling and profile bootstrap."""

from __future__ import annotations

from typing import Any

from email_validator import EmailNotValidError, validate_email

from ..models.user import create_user_profile
from ..store.document_store import DocumentStore


MAX_NAME_LENGTH = 100


def normalize_email(email: str) -> str:
    """Canonical form of an email address, used as the login rate-limit key.

    Raises:
        ValueError: If the address is not a valid email.
    """
    try:
        validated = validate_email(email.strip(), check_deliverability=False)
    except EmailNotValidError:
        raise ValueError("Invalid email format")
    return validated.normalized.lower()


def ensure_user_profile(
    store: DocumentStore,
    user_id: str,
    email: str,
    name: str = "",
    photo_url: str | None = None,
) -> dict[str, Any]:
    """Create the user's profile document on first sign-in.

    Args:
        store: Document store
        user_id: Identity-provider user id
        email: User email (must be valid)
        name: Display name
        photo_url: Optional avatar URL

    Returns:
        The existing or newly created profile

    Raises:
        ValueError: If validation fails
    """
    normalized = normalize_email(email)
    name = name.strip()
    if len(name) > MAX_NAME_LENGTH:
        raise ValueError(f"Name must be at most {MAX_NAME_LENGTH} characters")
    return create_user_profile(store, user_id, email=normalized, name=name, photo_url=photo_url)
