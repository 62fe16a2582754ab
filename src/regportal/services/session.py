"""Session bridging service.

Sessions are minted locally after the external authentication microservice
has vouched for a user:
- Opaque random session tokens, keyed one-to-one to a session row
- Identity snapshot (external id, email, name, coarse role) cached per session
- Validation with an optional access-token hash cross-check
- Single and bulk revocation, keeping the row for audit
- A parallel analytics trail (login/logout/duration per session)
- An idempotent cleanup sweep for expired and revoked sessions

Analytics writes are best-effort: they run inside a savepoint and a failure
there never unwinds the session write that preceded it.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from regportal.services.crypto import (
    generate_session_token,
    hash_for_log,
    hash_token,
    tokens_match,
)
from regportal.services.devices import classify_device_type, describe_device
from regportal.services.roles import map_external_roles

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from regportal.db.models.session import SessionAnalytics

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 30
DEFAULT_ANALYTICS_DAYS = 30

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SessionError(Exception):
    """Base exception for session operations."""

    pass


class InvalidTokenPayloadError(SessionError):
    """Raised when a decoded token payload lacks the claims a session needs."""

    pass


@dataclass(frozen=True, slots=True)
class TokenProfile:
    """Profile block of a decoded external token."""

    username: str = ""
    first_name: str = ""
    last_name: str = ""
    email: str = ""

    @property
    def display_name(self) -> str:
        """``first last``, falling back to the username when both are blank."""
        full = f"{self.first_name} {self.last_name}".strip()
        return full or self.username


@dataclass(frozen=True, slots=True)
class DecodedTokenPayload:
    """Identity claims returned by the external decode endpoint.

    Attributes:
        user_id: External user id (stringified).
        exp: Expiry as unix seconds (fractions kept).
        roles: Free-form external role names.
        profile: Username, names and email.
    """

    user_id: str
    exp: float
    roles: tuple[str, ...] = ()
    profile: TokenProfile = field(default_factory=TokenProfile)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> DecodedTokenPayload:
        """Build a payload from decoded JSON claims.

        Raises:
            InvalidTokenPayloadError: If ``user_id`` or ``exp`` is missing or
                malformed, or ``roles``/``profile`` have the wrong shape.
        """
        if not isinstance(data, Mapping):
            raise InvalidTokenPayloadError("Decoded payload must be an object")

        user_id = data.get("user_id")
        if user_id is None or isinstance(user_id, bool) or str(user_id).strip() == "":
            raise InvalidTokenPayloadError("Decoded payload is missing user_id")

        exp = data.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, int | float):
            raise InvalidTokenPayloadError("Decoded payload is missing a numeric exp")

        roles = data.get("roles") or []
        if not isinstance(roles, list | tuple) or not all(isinstance(r, str) for r in roles):
            raise InvalidTokenPayloadError("Decoded payload roles must be a list of strings")

        raw_profile = data.get("profile") or {}
        if not isinstance(raw_profile, Mapping):
            raise InvalidTokenPayloadError("Decoded payload profile must be an object")

        profile = TokenProfile(
            username=str(raw_profile.get("username") or ""),
            first_name=str(raw_profile.get("first_name") or ""),
            last_name=str(raw_profile.get("last_name") or ""),
            email=str(raw_profile.get("email") or ""),
        )
        return cls(user_id=str(user_id), exp=float(exp), roles=tuple(roles), profile=profile)

    @property
    def expires(self) -> datetime:
        return datetime.fromtimestamp(self.exp, tz=UTC)


@dataclass(frozen=True, slots=True)
class ClientInfo:
    """Where a session was created from."""

    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True, slots=True)
class ExternalIdentity:
    """Identity snapshot cached on a session; ``id`` is the external user id."""

    id: str
    email: str | None
    name: str | None
    role: str


@dataclass(frozen=True, slots=True)
class CreatedSession:
    """Public result of minting a session (never carries the token hash)."""

    session_id: uuid.UUID
    session_token: str
    user: ExternalIdentity
    expires: datetime


@dataclass(frozen=True, slots=True)
class SessionSummary:
    """Result of a successful validation."""

    session_id: uuid.UUID
    user: ExternalIdentity
    expires: datetime


@dataclass(frozen=True, slots=True)
class SessionInfo:
    """Listing entry for a user's active sessions."""

    session_id: uuid.UUID
    user: ExternalIdentity
    created_at: datetime
    last_accessed: datetime
    expires: datetime
    ip_address: str | None
    user_agent: str | None
    device_info: str | None


@dataclass(frozen=True, slots=True)
class SessionCandidate:
    """A session selected for a bulk mutation.

    Carries exactly what the mutation phase needs so the selection and the
    mutation can run (and be tested) separately.
    """

    session_id: uuid.UUID
    created_at: datetime
    expires: datetime
    is_active: bool
    revoked_at: datetime | None = None

    @property
    def ended_at(self) -> datetime:
        """When the session stopped being usable."""
        return self.revoked_at or self.expires


@dataclass(frozen=True, slots=True)
class CleanupResult:
    """Counts reported by one cleanup sweep."""

    analytics_closed: int = 0
    deactivated: int = 0
    deleted: int = 0

    @property
    def changed_anything(self) -> bool:
        return bool(self.analytics_closed or self.deactivated or self.deleted)


def _duration_seconds(start: datetime, end: datetime) -> int:
    """Whole seconds between two instants, never negative."""
    return max(0, int((end - start).total_seconds()))


class SessionService:
    """Create, validate, revoke, list and sweep bridged sessions.

    The service flushes but never commits; the caller owns the transaction.

    Example:
        service = SessionService(db)

        created = await service.create_session(
            DecodedTokenPayload.from_mapping(decoded),
            access_token,
            refresh_token,
            ClientInfo(ip_address="10.0.0.1"),
        )
        summary = await service.validate_session(created.session_token)
        await service.revoke_session(created.session_token, reason="logout")
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the session service.

        Args:
            db_session: SQLAlchemy async session for database operations.
            retention_days: Age after which inactive sessions are purged.
            clock: Source of "now"; defaults to the UTC wall clock.
        """
        self._db = db_session
        self._retention = timedelta(days=retention_days)
        self._clock = clock or _utcnow

    def _now(self) -> datetime:
        return self._clock()

    async def _best_effort(self, description: str, operation: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``operation`` inside a savepoint, logging and absorbing DB errors.

        Returns the operation's result, or None when it failed.
        """
        try:
            async with self._db.begin_nested():
                return await operation()
        except SQLAlchemyError:
            logger.warning("Best-effort write failed: %s", description, exc_info=True)
            return None

    async def create_session(
        self,
        payload: DecodedTokenPayload,
        access_token: str,
        refresh_token: str | None = None,
        client_info: ClientInfo | None = None,
    ) -> CreatedSession:
        """Mint a local session for an externally authenticated user.

        Args:
            payload: Decoded identity claims from the external service.
            access_token: External bearer token; only its hash is stored.
            refresh_token: Not persisted; the client keeps it.
            client_info: Optional IP address and user agent.

        Returns:
            CreatedSession with the new opaque session token.
        """
        from regportal.db.models.session import Session, SessionAnalytics

        client = client_info or ClientInfo()
        now = self._now()
        role = map_external_roles(payload.roles).value
        identity = ExternalIdentity(
            id=payload.user_id,
            email=payload.profile.email or None,
            name=payload.profile.display_name or None,
            role=role,
        )

        session = Session(
            session_id=uuid.uuid4(),
            session_token=generate_session_token(),
            external_user_id=identity.id,
            user_email=identity.email,
            user_name=identity.name,
            user_role=role,
            expires=payload.expires,
            token_hash=hash_token(access_token),
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            device_info=describe_device(client.user_agent).value,
            is_active=True,
            created_at=now,
            last_accessed=now,
        )
        self._db.add(session)
        await self._db.flush()

        async def _record_login() -> None:
            self._db.add(
                SessionAnalytics(
                    analytics_id=uuid.uuid4(),
                    session_id=session.session_id,
                    external_user_id=identity.id,
                    user_email=identity.email,
                    user_name=identity.name,
                    user_role=role,
                    login_time=now,
                    ip_address=client.ip_address,
                    user_agent=client.user_agent,
                    device_type=classify_device_type(client.user_agent).value,
                )
            )
            await self._db.flush()

        await self._best_effort("analytics row for new session", _record_login)

        logger.info(
            "Session created: session_id=%s, user=%s, role=%s, expires=%s",
            session.session_id,
            hash_for_log(identity.id),
            role,
            session.expires.isoformat(),
        )

        return CreatedSession(
            session_id=session.session_id,
            session_token=session.session_token,
            user=identity,
            expires=session.expires,
        )

    async def validate_session(
        self,
        session_token: str,
        token_hash: str | None = None,
    ) -> SessionSummary | None:
        """Resolve a session token to its identity.

        Not-found, revoked, expired and hash-mismatch all collapse to None.

        Args:
            session_token: Opaque session token.
            token_hash: Optional SHA-256 of the access token the session was
                created with; checked when given.

        Returns:
            SessionSummary if the session is usable, None otherwise.
        """
        from regportal.db.models.session import Session

        if not session_token:
            return None

        result = await self._db.execute(
            select(Session).where(Session.session_token == session_token)
        )
        session = result.scalar_one_or_none()

        if session is None:
            logger.debug("Session validation failed: token not found")
            return None

        now = self._now()
        if not session.is_valid_at(now):
            logger.debug(
                "Session validation failed: session_id=%s inactive or expired", session.session_id
            )
            return None

        if token_hash and not tokens_match(token_hash, session.token_hash):
            logger.warning(
                "Session validation failed: token hash mismatch for session_id=%s",
                session.session_id,
            )
            return None

        async def _touch() -> None:
            await self._db.execute(
                update(Session)
                .where(Session.session_id == session.session_id)
                .values(last_accessed=now)
            )

        await self._best_effort("last_accessed update", _touch)

        return SessionSummary(
            session_id=session.session_id,
            user=ExternalIdentity(
                id=session.external_user_id,
                email=session.user_email,
                name=session.user_name,
                role=session.user_role,
            ),
            expires=session.expires,
        )

    async def _close_analytics(self, candidate: SessionCandidate, logout_time: datetime) -> int:
        """Close the open analytics row of one session. Returns rows updated."""
        from regportal.db.models.session import SessionAnalytics

        async def _close() -> int:
            result = await self._db.execute(
                update(SessionAnalytics)
                .where(SessionAnalytics.session_id == candidate.session_id)
                .where(SessionAnalytics.logout_time.is_(None))
                .values(
                    logout_time=logout_time,
                    duration=_duration_seconds(candidate.created_at, logout_time),
                )
            )
            return result.rowcount or 0

        closed = await self._best_effort(
            f"analytics close for session_id={candidate.session_id}", _close
        )
        return closed or 0

    async def revoke_session(
        self,
        session_token: str,
        revoked_by: str | None = None,
        reason: str | None = None,
    ) -> bool:
        """Revoke one session and close its analytics row.

        Re-revoking an already revoked session overwrites the revoke metadata.

        Returns:
            True if a session matched the token, False otherwise.
        """
        from regportal.db.models.session import Session

        now = self._now()
        result = await self._db.execute(
            update(Session)
            .where(Session.session_token == session_token)
            .values(
                is_active=False,
                revoked_at=now,
                revoked_by=revoked_by,
                revoke_reason=reason,
            )
            .returning(Session.session_id, Session.created_at, Session.expires)
        )
        row = result.one_or_none()
        if row is None:
            logger.info("Session revoke: no session for token=%s", hash_for_log(session_token))
            return False

        candidate = SessionCandidate(
            session_id=row.session_id,
            created_at=row.created_at,
            expires=row.expires,
            is_active=False,
            revoked_at=now,
        )
        await self._close_analytics(candidate, now)

        logger.info(
            "Session revoked: session_id=%s, by=%s, reason=%s",
            candidate.session_id,
            revoked_by,
            reason,
        )
        return True

    async def select_revocation_candidates(self, external_user_id: str) -> list[SessionCandidate]:
        """Phase one of a bulk revoke: the user's sessions still marked active."""
        from regportal.db.models.session import Session

        result = await self._db.execute(
            select(Session)
            .where(Session.external_user_id == external_user_id)
            .where(Session.is_active == True)  # noqa: E712
        )
        return [
            SessionCandidate(
                session_id=s.session_id,
                created_at=s.created_at,
                expires=s.expires,
                is_active=s.is_active,
                revoked_at=s.revoked_at,
            )
            for s in result.scalars().all()
        ]

    async def apply_revocation(
        self,
        candidates: Sequence[SessionCandidate],
        revoked_by: str | None = None,
        reason: str | None = None,
    ) -> int:
        """Phase two of a bulk revoke: deactivate candidates, close their analytics.

        Returns:
            Number of session rows updated.
        """
        from regportal.db.models.session import Session

        if not candidates:
            return 0

        now = self._now()
        result = await self._db.execute(
            update(Session)
            .where(Session.session_id.in_([c.session_id for c in candidates]))
            .values(
                is_active=False,
                revoked_at=now,
                revoked_by=revoked_by,
                revoke_reason=reason,
            )
        )
        for candidate in candidates:
            await self._close_analytics(candidate, now)

        return result.rowcount or 0

    async def revoke_all_user_sessions(
        self,
        external_user_id: str,
        revoked_by: str | None = None,
        reason: str | None = None,
    ) -> int:
        """Revoke every active session of one external user.

        A session created for the same user between the two phases is not
        revoked.

        Returns:
            Number of sessions revoked.
        """
        candidates = await self.select_revocation_candidates(external_user_id)
        count = await self.apply_revocation(candidates, revoked_by=revoked_by, reason=reason)

        if count > 0:
            logger.info(
                "All sessions revoked: user=%s, count=%d, by=%s, reason=%s",
                hash_for_log(external_user_id),
                count,
                revoked_by,
                reason,
            )
        return count

    async def get_user_active_sessions(self, external_user_id: str) -> list[SessionInfo]:
        """Valid sessions of one user, most recently accessed first."""
        from regportal.db.models.session import Session

        result = await self._db.execute(
            select(Session)
            .where(Session.external_user_id == external_user_id)
            .where(Session.is_active == True)  # noqa: E712
            .where(Session.expires > self._now())
            .order_by(Session.last_accessed.desc())
        )
        return [
            SessionInfo(
                session_id=s.session_id,
                user=ExternalIdentity(
                    id=s.external_user_id,
                    email=s.user_email,
                    name=s.user_name,
                    role=s.user_role,
                ),
                created_at=s.created_at,
                last_accessed=s.last_accessed,
                expires=s.expires,
                ip_address=s.ip_address,
                user_agent=s.user_agent,
                device_info=s.device_info,
            )
            for s in result.scalars().all()
        ]

    async def get_session_analytics(
        self,
        external_user_id: str | None = None,
        days: int = DEFAULT_ANALYTICS_DAYS,
    ) -> list[SessionAnalytics]:
        """Analytics rows with a login in the last ``days`` days, newest first."""
        from regportal.db.models.session import SessionAnalytics

        since = self._now() - timedelta(days=days)
        query = select(SessionAnalytics).where(SessionAnalytics.login_time >= since)
        if external_user_id:
            query = query.where(SessionAnalytics.external_user_id == external_user_id)
        query = query.order_by(SessionAnalytics.login_time.desc())

        result = await self._db.execute(query)
        return list(result.scalars().all())

    async def select_cleanup_candidates(self) -> list[SessionCandidate]:
        """Phase one of the sweep: sessions that are expired or inactive."""
        from regportal.db.models.session import Session

        now = self._now()
        result = await self._db.execute(
            select(Session).where(
                or_(Session.expires < now, Session.is_active == False)  # noqa: E712
            )
        )
        return [
            SessionCandidate(
                session_id=s.session_id,
                created_at=s.created_at,
                expires=s.expires,
                is_active=s.is_active,
                revoked_at=s.revoked_at,
            )
            for s in result.scalars().all()
        ]

    async def apply_cleanup(self, candidates: Sequence[SessionCandidate]) -> CleanupResult:
        """Phase two of the sweep.

        Closes open analytics rows at ``revoked_at`` (or ``expires``), marks
        expired-but-active sessions inactive, then purges inactive sessions
        older than the retention window. Analytics rows are never deleted.
        """
        from regportal.db.models.session import Session

        now = self._now()

        analytics_closed = 0
        for candidate in candidates:
            analytics_closed += await self._close_analytics(candidate, candidate.ended_at)

        deactivated = 0
        still_active = [c.session_id for c in candidates if c.is_active and c.expires < now]
        if still_active:
            result = await self._db.execute(
                update(Session)
                .where(Session.session_id.in_(still_active))
                .where(Session.is_active == True)  # noqa: E712
                .values(is_active=False)
            )
            deactivated = result.rowcount or 0

        cutoff = now - self._retention
        result = await self._db.execute(
            delete(Session)
            .where(Session.created_at < cutoff)
            .where(Session.is_active == False)  # noqa: E712
        )
        deleted = result.rowcount or 0

        return CleanupResult(
            analytics_closed=analytics_closed,
            deactivated=deactivated,
            deleted=deleted,
        )

    async def cleanup_expired_sessions(self) -> CleanupResult:
        """Sweep expired and revoked sessions. Safe to run repeatedly."""
        candidates = await self.select_cleanup_candidates()
        outcome = await self.apply_cleanup(candidates)

        if outcome.changed_anything:
            logger.info(
                "Session cleanup: candidates=%d, analytics_closed=%d, deactivated=%d, deleted=%d",
                len(candidates),
                outcome.analytics_closed,
                outcome.deactivated,
                outcome.deleted,
            )
        else:
            logger.debug("Session cleanup: nothing to do")
        return outcome
