"""Authentication router bridging the external auth service to local sessions.

- POST /auth/login - Full handshake: external login, decode, local session
- POST /auth/create-session - Mint a session from an already decoded payload
- POST /auth/validate-session - Check a session token (optionally its token hash)
- GET /auth/me - Identity behind the X-Session-Token header
- POST /auth/logout - Revoke the caller's session and clear the cookie
- POST /auth/revoke - Revoke one session, or every session of a user
- GET /auth/sessions - Session analytics listing (admin)
- GET /auth/sessions/active - The caller's active sessions
- POST /auth/refresh - Refresh the external token pair and decode it
- POST /auth/register - Forward account registration to the external service
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, Header, Query, Request, Response, status
from sqlalchemy.exc import SQLAlchemyError

from regportal.api.dependencies import AppSettings, AuthGatewayDep, DbSession, SessionServiceDep
from regportal.api.middleware.auth import (
    SESSION_HEADER_NAME,
    AuthContextDep,
    ensure_account_exists,
    get_client_ip,
    require_role,
    session_cookie_name,
)
from regportal.api.middleware.errors import (
    APIError,
    AuthenticationError,
    UpstreamError,
    ValidationAPIError,
)
from regportal.api.schemas.auth import (
    ActiveSessionResponse,
    CreateSessionRequest,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    MeResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    RegisterResponse,
    RevokeRequest,
    RevokeResponse,
    SessionAnalyticsResponse,
    SessionCreatedResponse,
    SessionSummaryResponse,
    SuccessResponse,
    UserResponse,
    ValidateSessionRequest,
)
from regportal.services.auth_gateway import (
    AuthGatewayError,
    InvalidCredentialsError,
    Registration,
    RegistrationRejectedError,
    TokenDecodeError,
    TokenRefreshError,
    UpstreamTimeoutError,
)
from regportal.services.crypto import hash_for_log
from regportal.services.roles import UserRole
from regportal.services.session import ClientInfo, DecodedTokenPayload, InvalidTokenPayloadError

if TYPE_CHECKING:
    from regportal.core.config import Settings

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/auth",
    tags=["auth"],
    responses={
        401: {"description": "Authentication required"},
        403: {"description": "Forbidden"},
        500: {"description": "Internal server error"},
    },
)

INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"
INVALID_SESSION_MESSAGE = "Invalid session"


def _gateway_error_to_api(exc: AuthGatewayError) -> APIError:
    """Normalise an external auth failure for the client."""
    if isinstance(exc, InvalidCredentialsError):
        return AuthenticationError(INVALID_CREDENTIALS_MESSAGE)
    if isinstance(exc, TokenRefreshError):
        return AuthenticationError("Failed to refresh token")
    if isinstance(exc, TokenDecodeError):
        return UpstreamError("Failed to decode token")
    if isinstance(exc, RegistrationRejectedError):
        return ValidationAPIError("Registration rejected", detail=exc.detail)
    if isinstance(exc, UpstreamTimeoutError):
        return UpstreamError("Authentication service timed out", timeout=True)
    return UpstreamError()


def _set_session_cookie(
    request: Request, response: Response, session_token: str, settings: Settings
) -> None:
    """Set the httponly session cookie read by the auth middleware."""
    response.set_cookie(
        key=session_cookie_name(request),
        value=session_token,
        httponly=True,
        samesite="lax",
        secure=settings.session.cookie_secure,
        max_age=settings.session.cookie_max_age,
        path="/",
    )


def _client_info(
    request: Request, reported_ip: str | None, reported_ua: str | None
) -> ClientInfo:
    return ClientInfo(
        ip_address=get_client_ip(request, fallback=reported_ip),
        user_agent=reported_ua or request.headers.get("User-Agent"),
    )


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: DbSession,
    service: SessionServiceDep,
    gateway: AuthGatewayDep,
    settings: AppSettings,
) -> LoginResponse:
    """Authenticate against the external service and open a local session.

    Each step depends on the previous one; none is retried.
    """
    try:
        tokens = await gateway.login(body.username, body.password)
        decoded = await gateway.decode_token(tokens.access)
    except AuthGatewayError as exc:
        logger.info("Login failed: user=%s reason=%s", hash_for_log(body.username), exc)
        raise _gateway_error_to_api(exc) from exc

    try:
        payload = DecodedTokenPayload.from_mapping(decoded)
    except InvalidTokenPayloadError as exc:
        logger.error("Auth service returned an unusable payload: %s", exc)
        raise UpstreamError("Failed to decode token") from exc

    created = await service.create_session(
        payload,
        tokens.access,
        tokens.refresh,
        _client_info(request, None, None),
    )
    await ensure_account_exists(db, created.user)
    await db.commit()

    _set_session_cookie(request, response, created.session_token, settings)

    return LoginResponse(
        session_id=created.session_id,
        session_token=created.session_token,
        user=UserResponse.from_identity(created.user),
        expires=created.expires,
        access=tokens.access,
        refresh=tokens.refresh,
    )


@router.post("/create-session", response_model=SessionCreatedResponse)
async def create_session(
    body: CreateSessionRequest,
    request: Request,
    db: DbSession,
    service: SessionServiceDep,
) -> SessionCreatedResponse:
    """Mint a session from a payload the external decode endpoint produced."""
    try:
        payload = DecodedTokenPayload.from_mapping(body.decoded_payload)
    except InvalidTokenPayloadError as exc:
        raise ValidationAPIError(str(exc)) from exc

    created = await service.create_session(
        payload,
        body.access_token,
        body.refresh_token,
        _client_info(request, body.client_info.ip_address, body.client_info.user_agent),
    )
    await ensure_account_exists(db, created.user)
    await db.commit()

    return SessionCreatedResponse(
        session_id=created.session_id,
        session_token=created.session_token,
        user=UserResponse.from_identity(created.user),
        expires=created.expires,
    )


@router.post("/validate-session", response_model=SessionSummaryResponse)
async def validate_session(
    body: ValidateSessionRequest,
    db: DbSession,
    service: SessionServiceDep,
) -> SessionSummaryResponse:
    """Validate a session token. Every failure is the same 401."""
    summary = await service.validate_session(body.session_token, body.token_hash)
    if summary is None:
        raise AuthenticationError(INVALID_SESSION_MESSAGE)
    await db.commit()

    return SessionSummaryResponse(
        session_id=summary.session_id,
        user=UserResponse.from_identity(summary.user),
        expires=summary.expires,
    )


@router.get("/me", response_model=MeResponse)
async def me(
    db: DbSession,
    service: SessionServiceDep,
    session_token: Annotated[str | None, Header(alias=SESSION_HEADER_NAME)] = None,
) -> MeResponse:
    """Identity behind the X-Session-Token header."""
    if not session_token:
        raise AuthenticationError("No session token provided")

    summary = await service.validate_session(session_token)
    if summary is None:
        raise AuthenticationError(INVALID_SESSION_MESSAGE)
    await db.commit()

    return MeResponse(user=UserResponse.from_identity(summary.user))


@router.post("/logout", response_model=SuccessResponse)
async def logout(
    request: Request,
    response: Response,
    db: DbSession,
    service: SessionServiceDep,
    body: LogoutRequest | None = None,
) -> SuccessResponse:
    """Revoke the session and clear the cookie.

    Always reports success: the client clears its state regardless.
    """
    session_token = (body.session_token if body else None) or request.cookies.get(
        session_cookie_name(request)
    )
    reason = (body.reason if body else None) or "logout"

    if session_token:
        try:
            await service.revoke_session(session_token, reason=reason)
            await db.commit()
        except SQLAlchemyError:
            logger.exception("Logout revoke failed: token=%s", hash_for_log(session_token))
            await db.rollback()

    response.delete_cookie(session_cookie_name(request), path="/")
    return SuccessResponse()


@router.post("/revoke", response_model=RevokeResponse)
async def revoke(
    body: RevokeRequest,
    db: DbSession,
    service: SessionServiceDep,
) -> RevokeResponse:
    """Revoke a single session, or all sessions of ``userId`` with ``revokeAll``."""
    if body.revoke_all and body.user_id:
        count = await service.revoke_all_user_sessions(
            body.user_id, revoked_by=body.revoked_by, reason=body.reason
        )
    elif body.session_token:
        found = await service.revoke_session(
            body.session_token, revoked_by=body.revoked_by, reason=body.reason
        )
        count = 1 if found else 0
    else:
        raise ValidationAPIError("sessionToken or userId required")

    await db.commit()
    return RevokeResponse(revoked=count)


async def _analytics_access(
    request: Request, db: DbSession, service: SessionServiceDep, settings: AppSettings
) -> None:
    if settings.session.analytics_requires_admin:
        await require_role(request, service, UserRole.ADMIN)
        # keep the last_accessed touch made while resolving the cookie
        await db.commit()


@router.get(
    "/sessions",
    response_model=list[SessionAnalyticsResponse],
    dependencies=[Depends(_analytics_access)],
)
async def list_session_analytics(
    service: SessionServiceDep,
    settings: AppSettings,
    user_id: Annotated[str | None, Query(alias="userId")] = None,
    days: Annotated[int | None, Query(ge=1, le=366)] = None,
) -> list[SessionAnalyticsResponse]:
    """Login/logout records for the last ``days`` days, newest first."""
    rows = await service.get_session_analytics(
        user_id or None, days or settings.session.analytics_default_days
    )
    return [SessionAnalyticsResponse.model_validate(row) for row in rows]


@router.get("/sessions/active", response_model=list[ActiveSessionResponse])
async def list_active_sessions(
    context: AuthContextDep,
    db: DbSession,
    service: SessionServiceDep,
) -> list[ActiveSessionResponse]:
    """The caller's valid sessions, most recently used first."""
    if not context.is_authenticated or context.user is None:
        raise AuthenticationError()
    await db.commit()

    sessions = await service.get_user_active_sessions(context.user.id)
    return [
        ActiveSessionResponse(
            session_id=s.session_id,
            created_at=s.created_at,
            last_accessed=s.last_accessed,
            expires=s.expires,
            ip_address=s.ip_address,
            user_agent=s.user_agent,
            device_info=s.device_info,
            is_current=s.session_id == context.session_id,
        )
        for s in sessions
    ]


@router.post("/refresh", response_model=RefreshResponse)
async def refresh(body: RefreshRequest, gateway: AuthGatewayDep) -> RefreshResponse:
    """Refresh the external token pair.

    The local session keeps the expiry it was created with; the client
    updates its own cached expiry from ``decoded``.
    """
    try:
        result = await gateway.refresh_and_decode(body.refresh_token)
    except AuthGatewayError as exc:
        logger.info("Token refresh failed: %s", exc)
        raise _gateway_error_to_api(exc) from exc

    return RefreshResponse(access=result.access, refresh=result.refresh, decoded=result.decoded)


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(body: RegisterRequest, gateway: AuthGatewayDep) -> RegisterResponse:
    """Create an account on the external auth service."""
    registration = Registration(
        username=body.username,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        email=body.email,
        is_staff=body.is_staff,
        is_superuser=body.is_superuser,
    )
    try:
        upstream = await gateway.register(registration)
    except AuthGatewayError as exc:
        logger.info("Registration failed: user=%s reason=%s", hash_for_log(body.username), exc)
        raise _gateway_error_to_api(exc) from exc

    logger.info("Registered external account: user=%s", hash_for_log(body.username))
    message = upstream.get("message") if isinstance(upstream.get("message"), str) else None
    return RegisterResponse(message=message)
