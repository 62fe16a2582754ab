"""Client-side session holder for applications talking to the regportal API.

AuthClient owns the credentials a front end keeps between requests (session
token, external token pair, cached user) and their lifecycle:
- load(): hydrate from storage on start-up
- login(): run the server-side handshake and persist the result
- a background task that re-validates every 30 minutes and refreshes the
  external tokens when fewer than 15 minutes remain
- logout(): best-effort server revoke, then unconditional local clear

Role checks here are for display decisions only; the server re-checks.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import json
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from regportal.client.storage import (
    ACCESS_TOKEN_KEY,
    ALL_KEYS,
    REFRESH_TOKEN_KEY,
    SESSION_TOKEN_KEY,
    TOKEN_HASH_KEY,
    USER_DATA_KEY,
    MemoryTokenStorage,
    TokenStorage,
)
from regportal.services.crypto import hash_token
from regportal.services.roles import UserRole, role_satisfies

logger = logging.getLogger(__name__)

REVALIDATE_INTERVAL = timedelta(minutes=30)
REFRESH_WINDOW = timedelta(minutes=15)
DEFAULT_TIMEOUT = 10.0
LOGIN_ROUTE = "/login"


class AuthStatus(str, enum.Enum):
    LOADING = "loading"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


class AuthClientError(Exception):
    """A login attempt failed.

    ``status_code`` is None when the server could not be reached.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass(frozen=True, slots=True)
class ClientUser:
    """Cached identity, as returned by the server."""

    id: str
    email: str | None
    name: str | None
    role: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClientUser:
        return cls(
            id=str(data["id"]),
            email=data.get("email"),
            name=data.get("name"),
            role=str(data.get("role") or UserRole.VIEWER.value),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "email": self.email, "name": self.name, "role": self.role}


@dataclass(frozen=True, slots=True)
class AuthState:
    """Snapshot of the client's authentication state."""

    status: AuthStatus = AuthStatus.LOADING
    user: ClientUser | None = None
    session_expires: datetime | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.status is AuthStatus.AUTHENTICATED

    @property
    def is_loading(self) -> bool:
        return self.status is AuthStatus.LOADING

    def time_until_expiry(self, now: datetime) -> timedelta | None:
        if self.session_expires is None:
            return None
        return self.session_expires - now

    def is_near_expiry(self, now: datetime, window: timedelta = REFRESH_WINDOW) -> bool:
        """True while the session is still live but inside the refresh window."""
        remaining = self.time_until_expiry(now)
        return remaining is not None and timedelta(0) < remaining < window


UNAUTHENTICATED_STATE = AuthState(status=AuthStatus.UNAUTHENTICATED)


def _parse_datetime(value: Any) -> datetime:
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AuthClient:
    """Holds and maintains one user's session against the regportal API.

    Example usage:
        storage = MemoryTokenStorage()
        async with AuthClient("http://localhost:8000", storage=storage) as auth:
            auth.load()
            if not auth.state.is_authenticated:
                await auth.login("alice", "secret")
            auth.start()
            headers = auth.get_auth_header()
    """

    def __init__(
        self,
        base_url: str = "",
        *,
        storage: TokenStorage | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        navigate: Callable[[str], None] | None = None,
        clock: Callable[[], datetime] | None = None,
        revalidate_interval: timedelta = REVALIDATE_INTERVAL,
        refresh_window: timedelta = REFRESH_WINDOW,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Root URL of the regportal API.
            storage: Where credentials persist; in-memory by default.
            transport: Optional httpx transport (MockTransport, ASGITransport).
            navigate: Called with the login route after logout.
            clock: Source of "now"; defaults to the UTC wall clock.
            revalidate_interval: Period of the background check.
            refresh_window: Remaining lifetime below which tokens are refreshed.
            timeout: HTTP timeout in seconds.
        """
        self._base_url = base_url
        self._storage = storage if storage is not None else MemoryTokenStorage()
        self._transport = transport
        self._navigate = navigate
        self._clock = clock or _utcnow
        self._revalidate_interval = revalidate_interval
        self._refresh_window = refresh_window
        self._timeout = timeout

        self._client: httpx.AsyncClient | None = None
        self._state = AuthState()
        self._task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None

    async def __aenter__(self) -> AuthClient:
        """Enter async context manager."""
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        """Exit async context manager."""
        await self.stop()
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get the HTTP client, raising if not in context."""
        if self._client is None:
            msg = "AuthClient must be used as async context manager"
            raise RuntimeError(msg)
        return self._client

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def storage(self) -> TokenStorage:
        return self._storage

    # ------------------------------------------------------------------
    # Local state
    # ------------------------------------------------------------------

    def _store_user(self, user: ClientUser, expires: datetime) -> None:
        blob = {**user.to_dict(), "expires": expires.isoformat()}
        self._storage.set(USER_DATA_KEY, json.dumps(blob))

    def load(self) -> bool:
        """Hydrate state from storage.

        Returns:
            True if an unexpired session was found.
        """
        session_token = self._storage.get(SESSION_TOKEN_KEY)
        raw_user = self._storage.get(USER_DATA_KEY)

        if not session_token or not raw_user:
            self._state = UNAUTHENTICATED_STATE
            return False

        try:
            data = json.loads(raw_user)
            user = ClientUser.from_dict(data)
            expires = _parse_datetime(data["expires"])
        except (ValueError, KeyError, TypeError):
            logger.warning("Stored user data is unreadable; clearing auth state")
            self.clear()
            return False

        if expires <= self._clock():
            logger.info("Stored session has expired; clearing auth state")
            self.clear()
            return False

        self._state = AuthState(
            status=AuthStatus.AUTHENTICATED, user=user, session_expires=expires
        )
        return True

    def clear(self) -> None:
        """Forget every stored credential."""
        for key in ALL_KEYS:
            self._storage.remove(key)
        self._state = UNAUTHENTICATED_STATE

    # ------------------------------------------------------------------
    # Server interactions
    # ------------------------------------------------------------------

    async def login(self, username: str, password: str) -> ClientUser:
        """Log in through the server and persist the resulting session.

        Raises:
            AuthClientError: If the server rejects the login or is unreachable.
        """
        client = self._get_client()
        try:
            response = await client.post(
                "/auth/login", json={"username": username, "password": password}
            )
        except httpx.HTTPError as e:
            raise AuthClientError("Authentication service unavailable") from e

        if not response.is_success:
            message = "Login failed"
            with contextlib.suppress(ValueError):
                message = response.json().get("message") or message
            raise AuthClientError(message, status_code=response.status_code)

        data = response.json()
        user = ClientUser.from_dict(data["user"])
        expires = _parse_datetime(data["expires"])

        self._storage.set(SESSION_TOKEN_KEY, data["sessionToken"])
        self._storage.set(ACCESS_TOKEN_KEY, data["access"])
        self._storage.set(REFRESH_TOKEN_KEY, data["refresh"])
        # The server compares against the hash of the token used at login
        self._storage.set(TOKEN_HASH_KEY, hash_token(data["access"]))
        self._store_user(user, expires)

        self._state = AuthState(
            status=AuthStatus.AUTHENTICATED, user=user, session_expires=expires
        )
        logger.info("Logged in as role=%s", user.role)
        return user

    async def validate_session(self) -> bool:
        """Re-check the session with the server.

        Any failure (rejection or network error) clears local state.
        """
        session_token = self._storage.get(SESSION_TOKEN_KEY)
        if not session_token:
            return False

        body: dict[str, Any] = {"sessionToken": session_token}
        token_hash = self._storage.get(TOKEN_HASH_KEY)
        if token_hash:
            body["tokenHash"] = token_hash

        client = self._get_client()
        try:
            response = await client.post("/auth/validate-session", json=body)
        except httpx.HTTPError:
            logger.warning("Session validation request failed", exc_info=True)
            self.clear()
            return False

        if not response.is_success:
            logger.info("Session no longer valid (status=%d)", response.status_code)
            self.clear()
            return False

        data = response.json()
        user = ClientUser.from_dict(data["user"])
        expires = _parse_datetime(data["expires"])
        self._store_user(user, expires)
        self._state = AuthState(
            status=AuthStatus.AUTHENTICATED, user=user, session_expires=expires
        )
        return True

    async def refresh_token(self) -> bool:
        """Refresh the external token pair; logs out on failure.

        Only the locally cached expiry moves forward. The stored token hash
        keeps the login-time value the server session was created with.
        """
        refresh_value = self._storage.get(REFRESH_TOKEN_KEY)
        if not refresh_value:
            logger.info("No refresh token available")
            await self.logout("Token refresh failed")
            return False

        client = self._get_client()
        try:
            response = await client.post("/auth/refresh", json={"refreshToken": refresh_value})
            response.raise_for_status()
            data = response.json()
            expires = datetime.fromtimestamp(int(data["decoded"]["exp"]), tz=UTC)
        except (httpx.HTTPError, ValueError, KeyError, TypeError):
            logger.warning("Token refresh failed", exc_info=True)
            await self.logout("Token refresh failed")
            return False

        self._storage.set(ACCESS_TOKEN_KEY, data["access"])
        self._storage.set(REFRESH_TOKEN_KEY, data["refresh"])
        if self._state.user is not None:
            self._store_user(self._state.user, expires)
        self._state = replace(self._state, session_expires=expires)
        return True

    async def check_token_expiry(self) -> None:
        """Refresh inside the refresh window; log out once expired."""
        remaining = self._state.time_until_expiry(self._clock())
        if remaining is None:
            return
        if timedelta(0) < remaining < self._refresh_window:
            await self.refresh_token()
        elif remaining <= timedelta(0):
            await self.logout("Session expired")

    async def logout(self, reason: str | None = None) -> None:
        """Revoke on the server if possible, then clear local state.

        Never raises for network or server errors.
        """
        session_token = self._storage.get(SESSION_TOKEN_KEY)
        if session_token and self._client is not None:
            try:
                await self._client.post(
                    "/auth/logout", json={"sessionToken": session_token, "reason": reason}
                )
            except httpx.HTTPError:
                logger.warning("Logout request failed; clearing local state anyway")

        self.clear()
        if self._navigate is not None:
            self._navigate(LOGIN_ROUTE)

    # ------------------------------------------------------------------
    # Request helpers
    # ------------------------------------------------------------------

    def get_auth_header(self) -> dict[str, str]:
        """Headers for outgoing API calls; empty strings mean no credential."""
        access = self._storage.get(ACCESS_TOKEN_KEY)
        session_token = self._storage.get(SESSION_TOKEN_KEY)
        return {
            "Authorization": f"Bearer {access}" if access else "",
            "X-Session-Token": session_token or "",
        }

    def has_role(self, role: str | UserRole | Sequence[str | UserRole]) -> bool:
        """Hierarchical role check; a list passes if any entry passes."""
        user = self._state.user
        if user is None:
            return False
        if isinstance(role, str | UserRole):
            return role_satisfies(user.role, role)
        return any(role_satisfies(user.role, r) for r in role)

    # ------------------------------------------------------------------
    # Background revalidation
    # ------------------------------------------------------------------

    async def tick(self) -> None:
        """One revalidation cycle: validate, then check the expiry."""
        if not self._state.is_authenticated:
            return
        if await self.validate_session():
            await self.check_token_expiry()

    async def _run(self, stop_event: asyncio.Event) -> None:
        interval = self._revalidate_interval.total_seconds()
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except TimeoutError:
                try:
                    await self.tick()
                except Exception:
                    logger.exception("Background session check failed")

    def start(self) -> None:
        """Start the background revalidation task (idempotent)."""
        if self._task is not None and not self._task.done():
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(self._stop_event))

    async def stop(self) -> None:
        """Stop the background task and wait for it to finish."""
        if self._task is None:
            return
        if self._stop_event is not None:
            self._stop_event.set()
        await self._task
        self._task = None
        self._stop_event = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()
