"""Sign-in and sign-out orchestration."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Sequence

from ..auth.principal import Principal
from ..auth.token_validation import IdentityProvider, TokenValidationError
from ..models.user import fetch_user_profile
from ..store.document_store import DocumentStore
from .activity import IDLE_TIMEOUT_REASON
from .best_effort import run_best_effort
from .notifications import LEVEL_WARNING, NotificationSink, notify_safely
from .session_service import SessionRegistry

logger = logging.getLogger(__name__)

INVALID_TOKEN_REDIRECT = "/login?reason=invalid-token"
IDLE_TIMEOUT_REDIRECT = f"/login?reason={IDLE_TIMEOUT_REASON}"

PROFILE_RETRY_DELAYS = (0.3, 0.6, 0.9)


class SignInState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    TOKEN_PENDING = "token_pending"
    AUTHENTICATED = "authenticated"
    READY = "ready"


@dataclass(frozen=True)
class SignInOutcome:
    state: SignInState
    session_id: str | None = None
    profile: dict[str, Any] | None = None
    warning: str | None = None
    redirect: str | None = None


class SignInService:
    """Runs the ordered sign-in sequence for one client.

    Steps run strictly in order because each relies on what the previous one
    persisted: token check, profile load, cap enforcement, session
    register/refresh, stale cleanup, suspicious-session check.
    """

    def __init__(
        self,
        identity: IdentityProvider,
        registry: SessionRegistry,
        store: DocumentStore,
        notifier: NotificationSink | None = None,
        profile_retry_delays: Sequence[float] = PROFILE_RETRY_DELAYS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._identity = identity
        self._registry = registry
        self._store = store
        self._notifier = notifier
        self._profile_retry_delays = tuple(profile_retry_delays)
        self._sleep = sleep
        self.state = SignInState.UNAUTHENTICATED

    def load_profile(self, user_id: str) -> dict[str, Any] | None:
        """Load the profile, waiting for it to appear right after sign-up.

        Returns None when it is still missing after every retry or the store
        fails.
        """
        try:
            profile = fetch_user_profile(self._store, user_id)
            for delay in self._profile_retry_delays:
                if profile is not None:
                    break
                self._sleep(delay)
                profile = fetch_user_profile(self._store, user_id)
        except Exception as e:
            logger.error("Error loading user profile", extra={"user_id": user_id, "error": str(e)})
            return None

        if profile is None:
            logger.warning("User profile not found after retries", extra={"user_id": user_id})
        return profile

    def _establish_session(self, user_id: str) -> str | None:
        cached = self._registry.get_current_session_id()
        if cached and self._registry.update_session_activity():
            return cached
        try:
            return self._registry.register_session(user_id)
        except Exception as e:
            # Session tracking degrades; the user still gets in
            logger.error(
                "Proceeding without a tracked session",
                extra={"user_id": user_id, "error": str(e)},
            )
            return None

    def sign_in(self, principal: Principal) -> SignInOutcome:
        user_id = principal.user_id
        self.state = SignInState.TOKEN_PENDING
        try:
            self._identity.validate_token(principal)
        except TokenValidationError as e:
            logger.warning(
                "Sign-in rejected: invalid token",
                extra={"user_id": user_id, "reason": e.code},
            )
            if e.forces_sign_out:
                run_best_effort("identity sign-out", self._identity.sign_out, principal)
            self.state = SignInState.UNAUTHENTICATED
            return SignInOutcome(state=self.state, redirect=INVALID_TOKEN_REDIRECT)

        self.state = SignInState.AUTHENTICATED
        profile = self.load_profile(user_id)

        run_best_effort("enforce session limit", self._registry.enforce_session_limit, user_id)
        session_id = self._establish_session(user_id)

        run_best_effort("cleanup old sessions", self._registry.cleanup_old_sessions, user_id, default=0)
        report = self._registry.detect_suspicious_sessions(user_id)
        warning = None
        if report.is_suspicious:
            warning = report.reason
            logger.warning(
                "Suspicious session pattern",
                extra={"user_id": user_id, "session_count": report.session_count, "reason": report.reason},
            )
            notify_safely(self._notifier, LEVEL_WARNING, warning)

        self.state = SignInState.READY
        logger.info("Sign-in complete", extra={"user_id": user_id, "tracked_session": session_id is not None})
        return SignInOutcome(state=self.state, session_id=session_id, profile=profile, warning=warning)

    def sign_out(self, principal: Principal) -> bool:
        """Revoke this client's session if possible, then clear local auth state regardless.

        Returns:
            Whether the session record was revoked.
        """
        revoked = False
        session_id = self._registry.get_current_session_id()
        if session_id:
            result = run_best_effort("revoke session", self._registry.revoke_session, principal.user_id, session_id)
            revoked = result.ok

        self._registry.forget_current_session()
        run_best_effort("identity sign-out", self._identity.sign_out, principal)
        self.state = SignInState.UNAUTHENTICATED
        return revoked

    def expire_idle(self, principal: Principal) -> SignInOutcome:
        """Sign out a client whose idle timeout fired.

        The redirect carries the ``timeout`` reason so the login page can say
        why the user was signed out.
        """
        logger.info("Signing out idle client", extra={"user_id": principal.user_id, "reason": IDLE_TIMEOUT_REASON})
        self.sign_out(principal)
        return SignInOutcome(state=self.state, redirect=IDLE_TIMEOUT_REDIRECT)
