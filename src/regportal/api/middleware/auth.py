"""Request authentication helpers built on the session service.

- get_auth_context: resolve the session cookie to an identity
- require_auth / require_role: raise 401 / 403 when the context falls short
- has_role: hierarchical role comparison (VIEWER < AGENT < SUPERVISOR < ADMIN)
- ensure_account_exists: idempotent local profile upsert for an identity
- FastAPI dependency wrappers for route-level protection

The resolved identity comes from the session row itself; nothing is joined
against local tables for authorization.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, Request
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from regportal.api.dependencies import SessionServiceDep
from regportal.api.middleware.errors import AuthenticationError, AuthorizationError
from regportal.services.crypto import hash_for_log
from regportal.services.roles import UserRole, role_satisfies
from regportal.services.session import ExternalIdentity

if TYPE_CHECKING:
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from regportal.services.session import SessionService

logger = logging.getLogger(__name__)

DEFAULT_SESSION_COOKIE_NAME = "session-token"
SESSION_HEADER_NAME = "X-Session-Token"

AuthenticatedUser = ExternalIdentity


@dataclass(frozen=True, slots=True)
class AuthContext:
    """Outcome of resolving a request's session."""

    is_authenticated: bool
    user: AuthenticatedUser | None = None
    session_id: UUID | None = None


UNAUTHENTICATED = AuthContext(is_authenticated=False)


def session_cookie_name(request: Request) -> str:
    """Cookie carrying the session token for this app."""
    settings = getattr(request.app.state, "settings", None)
    if settings is None:
        return DEFAULT_SESSION_COOKIE_NAME
    return settings.session.cookie_name


def get_client_ip(request: Request, fallback: str | None = None) -> str | None:
    """Best guess at the client address.

    First X-Forwarded-For hop, then X-Real-IP, then ``fallback`` (a
    client-reported address), then the socket peer.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if fallback:
        return fallback

    if request.client:
        return request.client.host

    return None


async def get_auth_context(request: Request, service: SessionService) -> AuthContext:
    """Resolve the session cookie of a request.

    A request without the cookie is unauthenticated without touching the
    database. Storage errors are logged and also read as unauthenticated.
    """
    session_token = request.cookies.get(session_cookie_name(request))
    if not session_token:
        return UNAUTHENTICATED

    try:
        summary = await service.validate_session(session_token)
    except SQLAlchemyError:
        logger.exception("Auth context validation failed: token=%s", hash_for_log(session_token))
        return UNAUTHENTICATED

    if summary is None:
        return UNAUTHENTICATED

    return AuthContext(is_authenticated=True, user=summary.user, session_id=summary.session_id)


async def require_auth(request: Request, service: SessionService) -> AuthenticatedUser:
    """Authenticated identity of the request.

    Raises:
        AuthenticationError: If the request has no valid session.
    """
    context = await get_auth_context(request, service)
    if not context.is_authenticated or context.user is None:
        raise AuthenticationError()
    return context.user


def has_role(user: AuthenticatedUser, required_role: str | UserRole) -> bool:
    """True iff the user's role ranks at or above ``required_role``."""
    return role_satisfies(user.role, required_role)


async def require_role(
    request: Request, service: SessionService, required_role: str | UserRole
) -> AuthenticatedUser:
    """Authenticated identity holding at least ``required_role``.

    Raises:
        AuthenticationError: If the request has no valid session.
        AuthorizationError: If the role is insufficient.
    """
    user = await require_auth(request, service)
    if not has_role(user, required_role):
        role_name = required_role.value if isinstance(required_role, UserRole) else required_role
        logger.info(
            "Role check failed: user=%s role=%s required=%s",
            hash_for_log(user.id),
            user.role,
            role_name,
        )
        raise AuthorizationError(f"Role '{role_name}' required")
    return user


def _insert_for(db: AsyncSession) -> Callable:
    """Dialect-specific INSERT construct supporting ON CONFLICT."""
    bind = db.bind
    if bind is not None and bind.dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert


async def ensure_account_exists(db: AsyncSession, user: AuthenticatedUser) -> None:
    """Create or refresh the local account row for an external identity.

    A single INSERT ... ON CONFLICT DO UPDATE, so two first logins of the
    same user cannot collide. Does not commit.
    """
    from regportal.db.models.account import Account

    now = datetime.now(UTC)
    stmt = _insert_for(db)(Account).values(
        account_id=user.id,
        email=user.email,
        name=user.name,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[Account.account_id],
        set_={
            "email": stmt.excluded.email,
            "name": stmt.excluded.name,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    await db.execute(stmt)
    logger.debug("Account upserted for external user=%s", hash_for_log(user.id))


# ---------------------------------------------------------------------------
# FastAPI Dependencies for route-level auth
# ---------------------------------------------------------------------------


async def current_auth_context(request: Request, service: SessionServiceDep) -> AuthContext:
    """Dependency form of get_auth_context."""
    return await get_auth_context(request, service)


AuthContextDep = Annotated[AuthContext, Depends(current_auth_context)]


async def require_authenticated_user(context: AuthContextDep) -> AuthenticatedUser:
    """Dependency that requires a valid session cookie.

    Raises:
        AuthenticationError: If the request is not authenticated.
    """
    if not context.is_authenticated or context.user is None:
        raise AuthenticationError()
    return context.user


CurrentUser = Annotated[AuthenticatedUser, Depends(require_authenticated_user)]


def role_required(role: str | UserRole) -> Callable:
    """Factory for role-checking dependencies.

    Usage:
        @router.get("/auth/sessions")
        async def list_sessions(user: AuthenticatedUser = Depends(role_required("ADMIN"))):
            ...
    """

    async def _check_role(user: CurrentUser) -> AuthenticatedUser:
        if not has_role(user, role):
            role_name = role.value if isinstance(role, UserRole) else role
            raise AuthorizationError(f"Role '{role_name}' required")
        return user

    return _check_role
