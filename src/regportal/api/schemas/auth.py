"""Request/response schemas for the /auth endpoints.

Wire names are camelCase (``sessionToken``, ``decodedPayload``); the models
also accept snake_case field names when populated from Python.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from regportal.services.session import ExternalIdentity


class CamelModel(BaseModel):
    """Base model with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserResponse(CamelModel):
    """Identity snapshot attached to a session."""

    id: str = Field(..., description="External user id")
    email: str | None = None
    name: str | None = None
    role: str = Field(..., description="ADMIN, SUPERVISOR, AGENT or VIEWER")

    @classmethod
    def from_identity(cls, identity: ExternalIdentity) -> UserResponse:
        return cls(id=identity.id, email=identity.email, name=identity.name, role=identity.role)


class ClientInfoInput(CamelModel):
    """Client-reported connection details."""

    ip_address: str | None = Field(default=None, max_length=64)
    user_agent: str | None = None


class LoginRequest(CamelModel):
    """Credentials forwarded to the external auth service."""

    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1)


class CreateSessionRequest(CamelModel):
    """Decoded identity plus tokens from a completed external login."""

    decoded_payload: dict[str, Any]
    access_token: str = Field(..., min_length=1)
    refresh_token: str | None = None
    client_info: ClientInfoInput = Field(default_factory=ClientInfoInput)


class SessionCreatedResponse(CamelModel):
    """A freshly minted local session."""

    session_id: UUID
    session_token: str
    user: UserResponse
    expires: datetime


class LoginResponse(SessionCreatedResponse):
    """Session plus the external token pair the client keeps."""

    access: str
    refresh: str


class ValidateSessionRequest(CamelModel):
    session_token: str = Field(..., min_length=1)
    token_hash: str | None = None


class SessionSummaryResponse(CamelModel):
    """Result of a successful validation."""

    session_id: UUID
    user: UserResponse
    expires: datetime


class MeResponse(CamelModel):
    user: UserResponse


class LogoutRequest(CamelModel):
    """Logout body; the session cookie is used when no token is given."""

    session_token: str | None = None
    reason: str | None = Field(default=None, max_length=255)


class RevokeRequest(CamelModel):
    """Either ``sessionToken`` or ``userId`` with ``revokeAll``."""

    session_token: str | None = None
    user_id: str | None = None
    revoke_all: bool = False
    revoked_by: str | None = Field(default=None, max_length=255)
    reason: str | None = Field(default=None, max_length=255)


class SuccessResponse(CamelModel):
    success: bool = True


class RevokeResponse(SuccessResponse):
    revoked: int = Field(default=0, description="Number of sessions revoked")


class RefreshRequest(CamelModel):
    refresh_token: str = Field(..., min_length=1)


class RefreshResponse(CamelModel):
    """New token pair and the decoded claims of the new access token."""

    access: str
    refresh: str
    decoded: dict[str, Any]


class RegisterRequest(CamelModel):
    """Account registration forwarded to the external auth service."""

    username: str = Field(..., min_length=1, max_length=150)
    password: str = Field(..., min_length=8)
    first_name: str = Field(..., min_length=1, max_length=150)
    last_name: str = Field(..., min_length=1, max_length=150)
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    is_staff: bool = False
    is_superuser: bool = False


class RegisterResponse(SuccessResponse):
    message: str | None = None


class ActiveSessionResponse(CamelModel):
    """One of the caller's active sessions."""

    session_id: UUID
    created_at: datetime
    last_accessed: datetime
    expires: datetime
    ip_address: str | None = None
    user_agent: str | None = None
    device_info: str | None = None
    is_current: bool = False


class SessionAnalyticsResponse(CamelModel):
    """One login/logout record."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    analytics_id: UUID = Field(..., serialization_alias="id")
    session_id: UUID
    external_user_id: str
    user_email: str | None = None
    user_name: str | None = None
    user_role: str
    login_time: datetime
    logout_time: datetime | None = None
    duration: int | None = Field(default=None, description="Seconds from login to logout")
    ip_address: str | None = None
    user_agent: str | None = None
    device_type: str
