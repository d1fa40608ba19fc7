"""
API request and response models for the admin portal auth endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two
with the explicit from_* constructors below.

Request models only bound field sizes and never trim input: a password is
hashed exactly as typed. Content rules (blank names or email, password
length) belong to the auth engine so every caller -- HTTP or CLI -- gets the
same ValidationFailed error. Only a wrongly typed or oversized field is a 422.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import AccessGrant, AccountStatus, AuthSession, IdentitySnapshot, Role

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    email: str = Field(default="", max_length=255)
    password: str = Field(default="", max_length=128)


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    first_name: str = Field(default="", max_length=50)
    last_name: str = Field(default="", max_length=50)
    email: str = Field(default="", max_length=255)
    password: str = Field(default="", max_length=128)


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh and /auth/logout."""

    model_config = ConfigDict(str_strip_whitespace=True)

    refresh_token: str = Field(default="", max_length=4096)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class IdentityResponse(BaseModel):
    """Outward identity view. Built from IdentitySnapshot, which has no password field."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    handle: str
    first_name: str
    last_name: str
    role: Role
    status: AccountStatus
    can_manage_identities: bool
    can_view_reports: bool
    can_manage_settings: bool
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    @classmethod
    def from_snapshot(cls, snapshot: IdentitySnapshot) -> "IdentityResponse":
        return cls(
            id=snapshot.id,
            email=snapshot.email,
            handle=snapshot.handle,
            first_name=snapshot.first_name,
            last_name=snapshot.last_name,
            role=snapshot.role,
            status=snapshot.status,
            can_manage_identities=snapshot.can_manage_identities,
            can_view_reports=snapshot.can_view_reports,
            can_manage_settings=snapshot.can_manage_settings,
            created_at=snapshot.created_at,
            last_login_at=snapshot.last_login_at,
        )


class LoginResponse(BaseModel):
    """Response for POST /auth/login and POST /auth/register."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # access token lifetime in milliseconds
    user: IdentityResponse

    @classmethod
    def from_session(cls, session: AuthSession) -> "LoginResponse":
        return cls(
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            expires_in=session.expires_in_ms,
            user=IdentityResponse.from_snapshot(session.identity),
        )


class TokenResponse(BaseModel):
    """Response for POST /auth/refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int

    @classmethod
    def from_grant(cls, grant: AccessGrant) -> "TokenResponse":
        return cls(access_token=grant.access_token, expires_in=grant.expires_in_ms)


class RevokedSessionsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    revoked: int


class SessionReportResponse(BaseModel):
    """Response for GET /auth/sessions/report."""

    model_config = ConfigDict(frozen=True)

    active_sessions: int


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
