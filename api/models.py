"""
API request and response models for authgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Field limits here only bound payload size. The username rules (length,
character set) are enforced by auth/validation.py so a bad username produces
the same ValidationError whether it arrives over HTTP or from a script.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import SessionPrincipal

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/login."""

    username: str = Field(max_length=255)
    password: str = Field(max_length=255)


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/signup.

    email is stored for reference only; nothing validates or sends to it.
    """

    username: str = Field(max_length=255)
    email: str = Field(default="", max_length=255)
    password: str = Field(max_length=255)
    password_confirmation: str = Field(max_length=255)


class SettingsUpdate(BaseModel):
    """Request body for POST /api/v1/settings.

    Mirrors the settings form: a username field and two checkboxes. An
    unchecked box is simply absent, hence the False defaults.
    """

    user_name: str = Field(max_length=255)
    premium: bool = False
    admin: bool = False


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class PrincipalResponse(BaseModel):
    """The signed-in identity as shown to its own session."""

    model_config = ConfigDict(frozen=True)

    username: str
    is_admin: bool
    is_premium: bool

    @classmethod
    def from_principal(cls, principal: SessionPrincipal) -> "PrincipalResponse":
        return cls(username=principal.username, is_admin=principal.is_admin, is_premium=principal.is_premium)


class HomeResponse(BaseModel):
    """Response for GET /api/v1/ -- public, personalised when signed in."""

    model_config = ConfigDict(frozen=True)

    authenticated: bool
    principal: Optional[PrincipalResponse] = None


class PageResponse(BaseModel):
    """Body of the role-gated pages (/premium, /admin)."""

    model_config = ConfigDict(frozen=True)

    page: str
    message: str
    username: str


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
