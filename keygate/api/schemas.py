"""Pydantic schemas for the authentication API."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class HealthResponse(BaseModel):
    """Health check response."""

    status: HealthStatus = Field(..., description="Overall system health")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Health check timestamp",
    )
    version: str = Field(default="0.1.0", description="Application version")
    message: str | None = Field(default=None, description="Additional status message")


class BeginRegistrationRequest(BaseModel):
    """Body for POST register-options."""

    username: str = Field(..., max_length=100)


class BeginAuthenticationRequest(BaseModel):
    """Body for POST login-options; username is optional (discoverable credentials)."""

    username: str | None = Field(default=None, max_length=100)


class CeremonyOptionsResponse(BaseModel):
    """Options for navigator.credentials.create()/get() plus the ceremony handle."""

    ceremony_id: str
    options: dict[str, Any]


class FinishCeremonyRequest(BaseModel):
    """Browser response for a pending ceremony."""

    ceremony_id: str = Field(..., min_length=1, max_length=128)
    response: dict[str, Any] = Field(..., description="PublicKeyCredential serialized as JSON")


class UserInfo(BaseModel):
    id: int
    username: str


class AuthSuccessResponse(BaseModel):
    """Returned by register-verify and login-verify; the session is in the cookie."""

    success: bool = True
    user: UserInfo


class LogoutResponse(BaseModel):
    success: bool = True


class MeResponse(BaseModel):
    user: UserInfo
