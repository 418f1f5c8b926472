import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .auth.auth_dependency import INVALID_TOKEN_REASON, read_bearer_principal
from .auth.config import SecurityConfig
from .auth.principal import Principal
from .auth.rate_limiter import RECORD_OPERATIONS, RateLimitResult, format_retry_message
from .auth.rbac import require_roles
from .auth.token_validation import requires_recent_auth, validate_token_for_critical_operation
from .clock import Clock
from .dependencies import ServiceContainer, build_container, container_for_app, get_container, require_principal
from .models.user import USERS, fetch_user_profile
from .services.activity import DEFAULT_ACTIVITY_EVENTS
from .services.best_effort import run_best_effort
from .services.notifications import CollectingNotificationSink
from .services.session_service import cleanup_inactive_sessions
from .services.sign_in_service import SignInState
from .services.user_service import ensure_user_profile, normalize_email
from .store.document_store import DocumentStore, DocumentStoreError
from .store.postgres_store import PostgresDocumentStore

logger = logging.getLogger(__name__)

SESSION_HEADER = "X-Session-Id"


# Pydantic models
class LoginAttemptRequest(BaseModel):
    email: str


class RateLimitDecision(BaseModel):
    allowed: bool
    retry_after_seconds: Optional[int] = None
    remaining_attempts: Optional[int] = None
    message: Optional[str] = None


class AttemptInfoResponse(BaseModel):
    attempts: int
    remaining_attempts: int


class ProfileRequest(BaseModel):
    email: str
    name: str = ""
    photo_url: Optional[str] = None


class SignInResponse(BaseModel):
    state: str
    session_id: Optional[str] = None
    profile: Optional[Dict[str, Any]] = None
    warning: Optional[str] = None
    notifications: List[str] = []


class SessionOut(BaseModel):
    session_id: str
    device_info: str
    user_agent: str
    created_at: str
    last_active: str
    current: bool = False


def _decision(result: RateLimitResult, operation: str) -> RateLimitDecision:
    if not result.allowed:
        message = format_retry_message(result, operation)
        raise HTTPException(
            status_code=429,
            detail={
                "allowed": False,
                "retry_after_seconds": result.retry_after_seconds,
                "remaining_attempts": 0,
                "message": message,
            },
            headers={"Retry-After": str(result.retry_after_seconds)},
        )
    return RateLimitDecision(
        allowed=True,
        retry_after_seconds=result.retry_after_seconds,
        remaining_attempts=result.remaining_attempts,
    )


def _login_identifier(email: str) -> str:
    try:
        return normalize_email(email)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


def _verified_emails(principal: Principal, store: DocumentStore) -> set[str]:
    """Login identifiers that belong to the authenticated caller."""
    profile = fetch_user_profile(store, principal.user_id) or {}
    emails = set()
    for email in (principal.claims.get("email"), profile.get("email")):
        if isinstance(email, str) and email.strip():
            emails.add(email.strip().lower())
    return emails


def _require_valid_token(container: ServiceContainer, principal: Principal) -> None:
    if not validate_token_for_critical_operation(container.identity, principal):
        raise HTTPException(status_code=401, detail={"reason": INVALID_TOKEN_REASON})


router = APIRouter()


@router.get("/")
def read_root():
    """Root endpoint."""
    return {
        "message": "Finance Tracker Session API",
        "version": "1.0.0",
        "endpoints": {
            "login_attempts": "/auth/login-attempts",
            "sign_in": "/auth/sign-in",
            "sign_out": "/auth/sign-out",
            "idle_timeout": "/auth/idle-timeout",
            "sessions": "/sessions",
            "heartbeat": "/sessions/heartbeat",
            "rate_limits": "/rate-limits/{operation}",
            "health": "/health",
        },
    }


@router.get("/health")
def health_check(container: ServiceContainer = Depends(get_container)):
    """Health check endpoint."""
    try:
        container.store.get(USERS, "__health__")
        return {"status": "healthy", "document_store": "connected"}
    except DocumentStoreError as e:
        return {"status": "unhealthy", "error": str(e)}


@router.post("/auth/login-attempts", response_model=RateLimitDecision)
def check_login_attempt(body: LoginAttemptRequest, container: ServiceContainer = Depends(get_container)):
    """Count a login attempt before the credentials are sent to the identity provider."""
    identifier = _login_identifier(body.email)
    return _decision(container.limiters.login.check_limit(identifier), "login")


@router.post("/auth/login-attempts/success")
def record_login_success(
    body: LoginAttemptRequest,
    principal: Principal = Depends(require_principal),
    container: ServiceContainer = Depends(get_container),
):
    """Clear failed-attempt history once the owner of the email has signed in."""
    identifier = _login_identifier(body.email)
    if identifier not in _verified_emails(principal, container.store):
        logger.warning(
            "Login history reset refused",
            extra={"user_id": principal.user_id, "identifier": identifier[:3] + "..."},
        )
        raise HTTPException(status_code=403, detail="Email does not belong to the signed-in user")
    container.limiters.login.record_success(identifier)
    return {"status": "success"}


@router.get("/auth/login-attempts", response_model=AttemptInfoResponse)
def get_login_attempts(
    email: str = Query(..., description="Email used for the login attempts"),
    container: ServiceContainer = Depends(get_container),
):
    info = container.limiters.login.get_attempt_info(_login_identifier(email))
    if info is None:
        raise HTTPException(status_code=404, detail="No attempts recorded")
    return AttemptInfoResponse(attempts=info.attempts, remaining_attempts=info.remaining_attempts)


@router.post("/auth/sign-in", response_model=SignInResponse)
def sign_in(
    principal: Principal = Depends(read_bearer_principal),
    x_session_id: Optional[str] = Header(None),
    container: ServiceContainer = Depends(get_container),
):
    """Validate the token and register or refresh this client's session."""
    registry = container.registry_for(principal, x_session_id)
    notifier = CollectingNotificationSink()
    outcome = container.sign_in_service(registry, notifier).sign_in(principal)

    if outcome.state is SignInState.UNAUTHENTICATED:
        raise HTTPException(
            status_code=401,
            detail={"reason": INVALID_TOKEN_REASON, "redirect": outcome.redirect},
        )

    return SignInResponse(
        state=outcome.state.value,
        session_id=outcome.session_id,
        profile=outcome.profile,
        warning=outcome.warning,
        notifications=[message for _, message in notifier.messages],
    )


@router.post("/auth/sign-out")
def sign_out(
    principal: Principal = Depends(require_principal),
    x_session_id: Optional[str] = Header(None),
    container: ServiceContainer = Depends(get_container),
):
    registry = container.registry_for(principal, x_session_id)
    revoked = container.sign_in_service(registry).sign_out(principal)
    return {"status": "signed_out", "session_revoked": revoked}


@router.post("/auth/idle-timeout")
def idle_sign_out(
    principal: Principal = Depends(require_principal),
    x_session_id: Optional[str] = Header(None),
    container: ServiceContainer = Depends(get_container),
):
    """Sign out a client whose idle timeout fired."""
    registry = container.registry_for(principal, x_session_id)
    outcome = container.sign_in_service(registry).expire_idle(principal)
    return {"status": "signed_out", "redirect": outcome.redirect}


@router.post("/users/me/profile")
def create_profile(
    body: ProfileRequest,
    principal: Principal = Depends(require_principal),
    container: ServiceContainer = Depends(get_container),
):
    """Create the caller's profile document if it does not exist yet."""
    try:
        return ensure_user_profile(container.store, principal.user_id, body.email, body.name, body.photo_url)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.post("/sessions/heartbeat")
def session_heartbeat(
    principal: Principal = Depends(require_principal),
    x_session_id: Optional[str] = Header(None),
    container: ServiceContainer = Depends(get_container),
):
    """Refresh lastActive; ``active`` False tells the client to register a new session."""
    registry = container.registry_for(principal, x_session_id)
    return {"active": registry.update_session_activity()}


@router.get("/sessions/policy")
def session_policy(
    principal: Principal = Depends(require_principal),
    container: ServiceContainer = Depends(get_container),
):
    """Timer settings the client uses for its idle timeout and heartbeat."""
    config = container.config
    return {
        "idle_timeout_seconds": config.idle_timeout_seconds,
        "idle_warning_seconds": config.idle_warning_seconds,
        "heartbeat_seconds": config.heartbeat_seconds,
        "activity_events": sorted(DEFAULT_ACTIVITY_EVENTS),
        "max_sessions_per_user": container.policy.max_sessions_per_user,
    }


@router.get("/sessions", response_model=List[SessionOut])
def list_sessions(
    principal: Principal = Depends(require_principal),
    x_session_id: Optional[str] = Header(None),
    container: ServiceContainer = Depends(get_container),
):
    registry = container.registry_for(principal, x_session_id)
    sessions = sorted(
        registry.get_user_sessions(principal.user_id),
        key=lambda record: record.last_active,
        reverse=True,
    )
    return [
        SessionOut(
            session_id=record.session_id,
            device_info=record.device_info,
            user_agent=record.user_agent,
            created_at=record.created_at.isoformat(),
            last_active=record.last_active.isoformat(),
            current=record.session_id == x_session_id,
        )
        for record in sessions
    ]


@router.post("/sessions/revoke-others")
def revoke_other_sessions(
    principal: Principal = Depends(require_principal),
    x_session_id: Optional[str] = Header(None),
    container: ServiceContainer = Depends(get_container),
):
    """Log out every other device of the caller."""
    if not x_session_id:
        raise HTTPException(status_code=400, detail=f"{SESSION_HEADER} header is required")
    _require_valid_token(container, principal)
    max_age = timedelta(minutes=container.config.recent_auth_minutes)
    if requires_recent_auth(principal.token, container.config, max_age, container.clock):
        raise HTTPException(status_code=401, detail={"reason": "recent-auth-required"})

    registry = container.registry_for(principal, x_session_id)
    revoked = registry.revoke_all_other_sessions(principal.user_id, x_session_id)
    return {"revoked": revoked}


@router.delete("/sessions/{session_id}")
def revoke_session(
    session_id: str,
    principal: Principal = Depends(require_principal),
    container: ServiceContainer = Depends(get_container),
):
    _require_valid_token(container, principal)
    container.registry_for(principal).revoke_session(principal.user_id, session_id)
    return {"status": "revoked", "session_id": session_id}


@router.post("/rate-limits/{operation}", response_model=RateLimitDecision)
def check_operation_limit(
    operation: str,
    principal: Principal = Depends(require_principal),
    container: ServiceContainer = Depends(get_container),
):
    """Decide whether the caller may perform a create/update/delete on a financial record."""
    if operation not in RECORD_OPERATIONS:
        raise HTTPException(status_code=404, detail=f"Unknown operation: {operation}")
    limiter = container.limiters.for_operation(operation)
    return _decision(limiter.check_limit(principal.user_id), operation)


@router.post("/admin/sessions/cleanup")
def cleanup_sessions(
    principal: Principal = Depends(require_roles(["admin"])),
    container: ServiceContainer = Depends(get_container),
):
    """Remove every user's sessions that have been inactive past the sweep threshold."""
    max_idle = timedelta(minutes=container.config.inactive_sweep_minutes)
    deleted = cleanup_inactive_sessions(container.store, container.clock, max_idle)
    expired_limits = container.limiters.cleanup()
    return {
        "success": True,
        "deleted_count": deleted,
        "expired_rate_limit_entries": expired_limits,
        "timestamp": container.clock.now().isoformat(),
    }


def _document_store_unavailable(request: Request, exc: DocumentStoreError) -> JSONResponse:
    logger.error(
        "Document store failure",
        extra={"endpoint": request.url.path, "error": str(exc)},
    )
    return JSONResponse(status_code=503, content={"detail": "Document store unavailable"})


def create_app(
    config: Optional[SecurityConfig] = None,
    store: Optional[DocumentStore] = None,
    clock: Optional[Clock] = None,
) -> FastAPI:
    """Create the app; the service container is built from the environment unless given parts."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        container = container_for_app(app)
        if isinstance(container.store, PostgresDocumentStore):
            run_best_effort("ensure document schema", container.store.ensure_schema)
        yield

    application = FastAPI(
        title="Finance Tracker Session API",
        description="Session tracking and abuse protection for the personal finance tracker",
        version="1.0.0",
        lifespan=lifespan,
    )
    if config is not None or store is not None or clock is not None:
        application.state.container = build_container(config, store, clock)
    application.add_exception_handler(DocumentStoreError, _document_store_unavailable)
    application.include_router(router)
    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
