"""Pydantic schemas for the regportal API."""

from regportal.api.schemas.auth import (
    ActiveSessionResponse,
    ClientInfoInput,
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

__all__ = [
    "ActiveSessionResponse",
    "ClientInfoInput",
    "CreateSessionRequest",
    "LoginRequest",
    "LoginResponse",
    "LogoutRequest",
    "MeResponse",
    "RefreshRequest",
    "RefreshResponse",
    "RegisterRequest",
    "RegisterResponse",
    "RevokeRequest",
    "RevokeResponse",
    "SessionAnalyticsResponse",
    "SessionCreatedResponse",
    "SessionSummaryResponse",
    "SuccessResponse",
    "UserResponse",
    "ValidateSessionRequest",
]
