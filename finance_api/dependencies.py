"""Service wiring shared by the HTTP routes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from threading import Lock
from typing import Callable

from fastapi import FastAPI, Request

from .auth.auth_dependency import build_auth_dependency
from .auth.config import SecurityConfig, load_security_config
from .auth.principal import Principal
from .auth.rate_limiter import RateLimiters, build_rate_limiters
from .auth.revocation_list import TokenRevocationList
from .auth.token_validation import JwtIdentityProvider
from .clock import SYSTEM_CLOCK, Clock
from .services.notifications import NotificationSink
from .services.session_cache import LocalSessionIdCache
from .services.session_service import SessionPolicy, SessionRegistry
from .services.sign_in_service import SignInService
from .store.document_store import DocumentStore, InMemoryDocumentStore
from .store.postgres_store import PostgresDocumentStore, connect_from_config

logger = logging.getLogger(__name__)

_container_lock = Lock()


def session_policy_from_config(config: SecurityConfig) -> SessionPolicy:
    return SessionPolicy(
        max_sessions_per_user=config.max_sessions_per_user,
        stale_after=timedelta(days=config.stale_session_days),
    )


def build_document_store(config: SecurityConfig, clock: Clock = SYSTEM_CLOCK) -> DocumentStore:
    if config.document_store == "memory":
        logger.info("Using in-memory document store")
        return InMemoryDocumentStore(clock)
    return PostgresDocumentStore(connect_from_config(config.database))


@dataclass
class ServiceContainer:
    config: SecurityConfig
    store: DocumentStore
    clock: Clock
    limiters: RateLimiters
    identity: JwtIdentityProvider
    policy: SessionPolicy
    authenticate: Callable[[Request], Principal]

    def registry_for(self, principal: Principal, session_id: str | None = None) -> SessionRegistry:
        """Registry bound to one client, seeded with the session id that client remembers."""
        return SessionRegistry(
            store=self.store,
            cache=LocalSessionIdCache(initial=session_id),
            current_user_id=lambda: principal.user_id,
            user_agent=principal.user_agent,
            clock=self.clock,
            policy=self.policy,
        )

    def sign_in_service(self, registry: SessionRegistry, notifier: NotificationSink | None = None) -> SignInService:
        return SignInService(
            identity=self.identity,
            registry=registry,
            store=self.store,
            notifier=notifier,
        )


def build_container(
    config: SecurityConfig | None = None,
    store: DocumentStore | None = None,
    clock: Clock | None = None,
) -> ServiceContainer:
    if config is None:
        config = load_security_config()
    if clock is None:
        clock = SYSTEM_CLOCK
    if store is None:
        store = build_document_store(config, clock)

    identity = JwtIdentityProvider(
        config,
        revocations=TokenRevocationList(clock),
        store=store,
        clock=clock,
    )
    return ServiceContainer(
        config=config,
        store=store,
        clock=clock,
        limiters=build_rate_limiters(config.rate_limits, clock),
        identity=identity,
        policy=session_policy_from_config(config),
        authenticate=build_auth_dependency(identity),
    )


def container_for_app(app: FastAPI) -> ServiceContainer:
    """The app's service container, built from the environment on first use."""
    state = app.state
    container = getattr(state, "container", None)
    if container is None:
        with _container_lock:
            container = getattr(state, "container", None)
            if container is None:
                container = build_container()
                state.container = container
    return container


def get_container(request: Request) -> ServiceContainer:
    return container_for_app(request.app)


def require_principal(request: Request) -> Principal:
    """Resolve the authenticated principal using the app's identity provider."""
    return get_container(request).authenticate(request)
