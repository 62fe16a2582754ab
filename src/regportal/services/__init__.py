"""Regportal service layer.

- SessionService: local session minting, validation, revocation and cleanup
- ExternalAuthGateway: client for the external authentication microservice
- roles: coarse role mapping and hierarchy checks
- crypto: token hashing and generation
- devices: user-agent classification
"""

from regportal.services.auth_gateway import (
    AuthGatewayConfig,
    AuthGatewayError,
    ExternalAuthGateway,
    InvalidCredentialsError,
    Registration,
    RegistrationRejectedError,
    RefreshResult,
    TokenDecodeError,
    TokenPair,
    TokenRefreshError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)
from regportal.services.crypto import generate_session_token, hash_for_log, hash_token
from regportal.services.roles import ROLE_HIERARCHY, UserRole, map_external_roles, role_satisfies
from regportal.services.session import (
    CleanupResult,
    ClientInfo,
    CreatedSession,
    DecodedTokenPayload,
    ExternalIdentity,
    InvalidTokenPayloadError,
    SessionError,
    SessionInfo,
    SessionService,
    SessionSummary,
)

__all__ = [
    "ROLE_HIERARCHY",
    "AuthGatewayConfig",
    "AuthGatewayError",
    "CleanupResult",
    "ClientInfo",
    "CreatedSession",
    "DecodedTokenPayload",
    "ExternalAuthGateway",
    "ExternalIdentity",
    "InvalidCredentialsError",
    "InvalidTokenPayloadError",
    "RefreshResult",
    "Registration",
    "RegistrationRejectedError",
    "SessionError",
    "SessionInfo",
    "SessionService",
    "SessionSummary",
    "TokenDecodeError",
    "TokenPair",
    "TokenRefreshError",
    "UpstreamTimeoutError",
    "UpstreamUnavailableError",
    "UserRole",
    "generate_session_token",
    "hash_for_log",
    "hash_token",
    "map_external_roles",
    "role_satisfies",
]
