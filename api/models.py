"""
API request and response models for the authkeep REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Password fields run the same policy check as AuthService
(auth.passwords.password_policy_violation) so weak passwords are rejected with a
422 before any bcrypt work happens.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from auth.models import User
from auth.passwords import password_policy_violation

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    buyer_renter = "buyer_renter"
    seller_landlord = "seller_landlord"


def _check_policy(value: str) -> str:
    reason = password_policy_violation(value)
    if reason is not None:
        raise ValueError(reason)
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    role: RoleEnum = RoleEnum.buyer_renter
    first_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    phone: Optional[str] = Field(default=None, max_length=30)

    @field_validator("first_name", "last_name", "phone", mode="before")
    @classmethod
    def strip_profile_fields(cls, value):
        # Passwords are taken verbatim; only profile text is trimmed.
        return value.strip() if isinstance(value, str) else value

    @field_validator("password")
    @classmethod
    def password_policy(cls, value: str) -> str:
        return _check_policy(value)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    No policy check on password here -- a login attempt must fail with the
    generic bad-credentials error, not a hint about the password rules.
    """

    email: EmailStr
    password: str = Field(min_length=1, max_length=255)
    remember_me: bool = False


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class VerifyEmailRequest(BaseModel):
    token: str = Field(min_length=1, max_length=256)


class ResetPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/reset-password."""

    token: str = Field(min_length=1, max_length=256)
    new_password: str = Field(min_length=8, max_length=128)

    @field_validator("new_password")
    @classmethod
    def password_policy(cls, value: str) -> str:
        return _check_policy(value)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserView(BaseModel):
    """Public projection of a User. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    role: str
    verified: bool
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    created_at: str = ""

    @classmethod
    def from_user(cls, user: User) -> "UserView":
        """Build a UserView from the auth domain dataclass."""
        return cls(
            id=user.id,
            email=user.email,
            role=user.role,
            verified=user.verified,
            first_name=user.first_name,
            last_name=user.last_name,
            phone=user.phone,
            created_at=user.created_at or "",
        )


class AuthResponse(BaseModel):
    """Response for register and login: the user plus a fresh token pair."""

    model_config = ConfigDict(frozen=True)

    message: str
    user: UserView
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


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
    components: dict[str, str]
