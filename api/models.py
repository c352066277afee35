"""
API request and response models for the Gatekeeper REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Request fields are optional at this layer: "field missing" is a domain
validation outcome produced by AuthService, so every client sees the same
{"success": false, "message": ...} envelope for it. The models only bound
lengths and types.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/auth/signup."""

    username: Optional[str] = Field(default=None, max_length=64)
    email: Optional[str] = Field(default=None, max_length=320)
    password: Optional[str] = Field(default=None, max_length=128)


class LoginRequest(BaseModel):
    """Request body for POST /api/auth/login."""

    email: Optional[str] = Field(default=None, max_length=320)
    password: Optional[str] = Field(default=None, max_length=128)


class VerifyEmailRequest(BaseModel):
    code: Optional[str] = Field(default=None, max_length=64)


class EmailRequest(BaseModel):
    """Request body for POST /api/auth/forgot-password and /resend-verification."""

    email: Optional[str] = Field(default=None, max_length=320)


class ResetPasswordRequest(BaseModel):
    password: Optional[str] = Field(default=None, max_length=128)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserProfile(BaseModel):
    """Public profile -- never carries the password hash or pending secrets."""

    id: Optional[str] = None
    username: str
    email: str
    is_verified: bool
    last_login: Optional[str] = None


class Envelope(BaseModel):
    """Every response body: success flag, optional message, then operation data."""

    model_config = ConfigDict(extra="allow")

    success: bool
    message: Optional[str] = None


class HealthResponse(BaseModel):
    """Response body for GET /api/health."""

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
