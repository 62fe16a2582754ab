"""Client for the external authentication microservice.

The microservice owns identities and issues JWT bearer pairs. This module
wraps its four JSON endpoints:
- login: {username, password} -> {access, refresh}
- decode-token: {token} -> {payload}
- refresh: {refresh} -> {access, refresh}
- register: profile fields -> upstream acknowledgement

No step is retried. Timeouts are reported separately from rejections so an
unreachable service never reads as "invalid credentials".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from regportal.core.config import AuthServiceSettings

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


@dataclass(frozen=True)
class AuthGatewayConfig:
    """Configuration for the external auth client."""

    base_url: str
    login_path: str = "/login/"
    decode_path: str = "/decode-token/"
    refresh_path: str = "/refresh/"
    register_path: str = "/register/"
    timeout: float = DEFAULT_TIMEOUT

    @classmethod
    def from_settings(cls, settings: AuthServiceSettings) -> AuthGatewayConfig:
        """Create config from the auth_service settings group."""
        return cls(
            base_url=settings.base_url,
            login_path=settings.login_path,
            decode_path=settings.decode_path,
            refresh_path=settings.refresh_path,
            register_path=settings.register_path,
            timeout=settings.timeout,
        )


@dataclass(frozen=True, slots=True)
class TokenPair:
    """Access/refresh bearer pair issued by the microservice."""

    access: str
    refresh: str


@dataclass(frozen=True, slots=True)
class RefreshResult:
    """A refreshed token pair together with the decoded new access token."""

    access: str
    refresh: str
    decoded: dict[str, Any]


@dataclass(frozen=True, slots=True)
class Registration:
    """Account registration request forwarded to the microservice."""

    username: str
    password: str
    first_name: str
    last_name: str
    email: str
    is_staff: bool = False
    is_superuser: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "username": self.username,
            "password": self.password,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "is_staff": self.is_staff,
            "is_superuser": self.is_superuser,
        }


class AuthGatewayError(Exception):
    """Base exception for external auth errors."""

    pass


class InvalidCredentialsError(AuthGatewayError):
    """The login endpoint rejected the credentials."""

    pass


class TokenDecodeError(AuthGatewayError):
    """The decode endpoint rejected the access token."""

    pass


class TokenRefreshError(AuthGatewayError):
    """The refresh endpoint rejected the refresh token."""

    pass


class RegistrationRejectedError(AuthGatewayError):
    """The register endpoint refused the request.

    ``detail`` carries the upstream validation body when there is one.
    """

    def __init__(self, message: str, detail: Any = None) -> None:
        super().__init__(message)
        self.detail = detail


class UpstreamUnavailableError(AuthGatewayError):
    """The microservice could not be reached or answered with a server error."""

    pass


class UpstreamTimeoutError(UpstreamUnavailableError):
    """The microservice did not answer within the configured timeout."""

    pass


class ExternalAuthGateway:
    """Async client for the external authentication microservice.

    Example usage:
        config = AuthGatewayConfig(base_url="http://auth:8019/api/auth_microservice")
        async with ExternalAuthGateway(config) as gateway:
            tokens = await gateway.login("alice", "secret")
            payload = await gateway.decode_token(tokens.access)
    """

    def __init__(
        self,
        config: AuthGatewayConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the gateway.

        Args:
            config: Endpoint locations and timeout.
            transport: Optional httpx transport (tests pass a MockTransport).
        """
        self._config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> ExternalAuthGateway:
        """Enter async context manager."""
        self._client = httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=self._config.timeout,
            transport=self._transport,
            headers={"Accept": "application/json"},
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        """Exit async context manager."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get the HTTP client, raising if not in context."""
        if self._client is None:
            msg = "ExternalAuthGateway must be used as async context manager"
            raise RuntimeError(msg)
        return self._client

    async def _post(self, operation: str, path: str, body: dict[str, Any]) -> httpx.Response:
        client = self._get_client()
        try:
            return await client.post(path, json=body)
        except httpx.TimeoutException as e:
            logger.error(
                "Auth service %s timed out after %.1fs", operation, self._config.timeout
            )
            raise UpstreamTimeoutError(f"Auth service {operation} timed out") from e
        except httpx.TransportError as e:
            logger.error("Auth service %s unreachable: %s", operation, e)
            raise UpstreamUnavailableError(f"Cannot reach auth service for {operation}") from e

    @staticmethod
    def _json(operation: str, response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            logger.error("Auth service %s returned a non-JSON body", operation)
            raise UpstreamUnavailableError(f"Malformed {operation} response") from e
        if not isinstance(data, dict):
            logger.error("Auth service %s returned %s, expected an object", operation, type(data))
            raise UpstreamUnavailableError(f"Malformed {operation} response")
        return data

    def _raise_for_server_error(self, operation: str, response: httpx.Response) -> None:
        if response.status_code >= 500:
            logger.error(
                "Auth service %s failed: status=%d body=%s",
                operation,
                response.status_code,
                response.text[:200],
            )
            raise UpstreamUnavailableError(
                f"Auth service {operation} failed: {response.status_code}"
            )

    def _token_pair(self, operation: str, response: httpx.Response) -> TokenPair:
        data = self._json(operation, response)
        access = data.get("access")
        refresh = data.get("refresh")
        if not isinstance(access, str) or not isinstance(refresh, str) or not access:
            logger.error("Auth service %s response is missing access/refresh", operation)
            raise UpstreamUnavailableError(f"Malformed {operation} response")
        return TokenPair(access=access, refresh=refresh)

    async def login(self, username: str, password: str) -> TokenPair:
        """Exchange credentials for a token pair.

        Raises:
            InvalidCredentialsError: If the service rejects the credentials.
            UpstreamUnavailableError: On network failure, 5xx or malformed body.
            UpstreamTimeoutError: If the service does not answer in time.
        """
        response = await self._post(
            "login", self._config.login_path, {"username": username, "password": password}
        )
        self._raise_for_server_error("login", response)
        if not response.is_success:
            logger.info("Auth service rejected login: status=%d", response.status_code)
            raise InvalidCredentialsError("Invalid credentials")
        return self._token_pair("login", response)

    async def decode_token(self, access_token: str) -> dict[str, Any]:
        """Ask the service to decode an access token.

        Returns:
            The ``payload`` claims object.

        Raises:
            TokenDecodeError: If the service rejects the token.
        """
        response = await self._post("decode", self._config.decode_path, {"token": access_token})
        self._raise_for_server_error("decode", response)
        if not response.is_success:
            logger.warning("Auth service rejected token decode: status=%d", response.status_code)
            raise TokenDecodeError("Failed to decode token")

        payload = self._json("decode", response).get("payload")
        if not isinstance(payload, dict):
            logger.error("Auth service decode response has no payload object")
            raise TokenDecodeError("Failed to decode token")
        return payload

    async def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new token pair.

        Raises:
            TokenRefreshError: If the service rejects the refresh token.
        """
        response = await self._post(
            "refresh", self._config.refresh_path, {"refresh": refresh_token}
        )
        self._raise_for_server_error("refresh", response)
        if not response.is_success:
            logger.info("Auth service rejected refresh: status=%d", response.status_code)
            raise TokenRefreshError("Failed to refresh token")
        return self._token_pair("refresh", response)

    async def refresh_and_decode(self, refresh_token: str) -> RefreshResult:
        """Refresh the pair, then decode the new access token.

        The local session is left untouched; its expiry stays the one taken
        at login.
        """
        pair = await self.refresh(refresh_token)
        decoded = await self.decode_token(pair.access)
        return RefreshResult(access=pair.access, refresh=pair.refresh, decoded=decoded)

    async def register(self, registration: Registration) -> dict[str, Any]:
        """Create an account on the microservice.

        Raises:
            RegistrationRejectedError: On a 4xx answer, with the upstream body.
        """
        response = await self._post(
            "register", self._config.register_path, registration.to_payload()
        )
        self._raise_for_server_error("register", response)
        if not response.is_success:
            try:
                detail = response.json()
            except ValueError:
                detail = response.text[:500] or None
            logger.info("Auth service rejected registration: status=%d", response.status_code)
            raise RegistrationRejectedError("Registration rejected", detail=detail)

        if not response.content:
            return {}
        return self._json("register", response)
