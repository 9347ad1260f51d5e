"""Auth request and response models with validation.

Request bodies are parsed into these command models before any service code
runs; anything that fails here is rejected with a 422 and no state change.
JSON field names are camelCase on the wire.
"""

import re
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from src.models.user import RefreshTokenRecord, Role, User

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PASSWORD_STRENGTH_PATTERN = re.compile(r"(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128
# bcrypt only accepts the first 72 bytes of input
PASSWORD_MAX_BYTES = 72
REFRESH_TOKEN_MIN_LENGTH = 20


def normalize_email(value: str) -> str:
    """Trim and lower-case an email, then check its shape."""
    email = value.strip().lower()
    if len(email) > 255 or not EMAIL_PATTERN.match(email):
        raise ValueError("Invalid email address")
    return email


def check_password_strength(value: str) -> str:
    """Require 8-128 chars with a lower-case letter, an upper-case letter and a digit.

    The UTF-8 encoding must also fit in 72 bytes, so multi-byte passwords
    hit the limit before 128 characters.
    """
    if len(value) < PASSWORD_MIN_LENGTH:
        raise ValueError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
    if len(value) > PASSWORD_MAX_LENGTH:
        raise ValueError(f"Password must be at most {PASSWORD_MAX_LENGTH} characters")
    if len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes")
    if not PASSWORD_STRENGTH_PATTERN.search(value):
        raise ValueError(
            "Password must contain at least one lowercase letter, "
            "one uppercase letter and one digit"
        )
    return value


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase JSON keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _NewPasswordMixin(CamelModel):
    """Shared password + confirmation validation."""

    @field_validator("password", check_fields=False)
    @classmethod
    def password_strong(cls, v: str) -> str:
        return check_password_strength(v)

    @model_validator(mode="after")
    def passwords_match(self):
        """Ensure confirm_password equals the new password."""
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class RegisterRequest(_NewPasswordMixin):
    """Self-service account registration.

    Attributes:
        email: Account email (normalized to lower case)
        password: New password (8-128 chars, mixed case and a digit)
        confirm_password: Must equal password
        name: Optional display name
    """

    email: str
    password: str
    confirm_password: str
    name: Optional[str] = Field(default=None, max_length=255)

    @field_validator("email")
    @classmethod
    def email_valid(cls, v: str) -> str:
        return normalize_email(v)


class LoginRequest(CamelModel):
    """Login credentials.

    Attributes:
        email: Account email
        password: Account password
        remember_me: Selects the long refresh-token lifetime
    """

    email: str
    password: str = Field(..., min_length=1)
    remember_me: bool = False

    @field_validator("email")
    @classmethod
    def email_valid(cls, v: str) -> str:
        return normalize_email(v)


class RefreshRequest(CamelModel):
    """Request to exchange a refresh token for a new token pair."""

    refresh_token: str

    @field_validator("refresh_token")
    @classmethod
    def refresh_token_well_formed(cls, v: str) -> str:
        token = v.strip()
        if len(token) < REFRESH_TOKEN_MIN_LENGTH:
            raise ValueError("Invalid refresh token")
        return token


class LogoutRequest(CamelModel):
    """Logout body. The refresh token is optional.

    Never rejects: a refresh token that is not a string is treated as absent.
    """

    refresh_token: Optional[str] = None

    @field_validator("refresh_token", mode="before")
    @classmethod
    def ignore_non_string(cls, v: Any) -> Optional[str]:
        return v if isinstance(v, str) else None


class ForgotPasswordRequest(CamelModel):
    """Request a password reset email."""

    email: str

    @field_validator("email")
    @classmethod
    def email_valid(cls, v: str) -> str:
        return normalize_email(v)


class ResetPasswordRequest(_NewPasswordMixin):
    """Complete a password reset with the emailed token."""

    token: str = Field(..., min_length=1)
    password: str
    confirm_password: str


class ChangePasswordRequest(CamelModel):
    """Change the password of the signed-in user."""

    current_password: str = Field(..., min_length=1)
    new_password: str
    confirm_password: str

    @field_validator("new_password")
    @classmethod
    def new_password_strong(cls, v: str) -> str:
        return check_password_strength(v)

    @model_validator(mode="after")
    def passwords_match(self) -> "ChangePasswordRequest":
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


# ---------------------------------------------------------------------------
# Token, identity and session values
# ---------------------------------------------------------------------------


class TokenClaims(BaseModel):
    """Verified claims of an access or refresh credential."""

    subject: str
    role: Role
    token_type: str
    jti: str
    email: Optional[str] = None
    name: Optional[str] = None
    issued_at: datetime
    expires_at: datetime


class Identity(BaseModel):
    """Identity context attached to a request by the session verifier."""

    user_id: UUID
    role: Role
    email: Optional[str] = None
    name: Optional[str] = None


class DeviceInfo(BaseModel):
    """Client metadata stored alongside a refresh record."""

    user_agent: str = "unknown"
    ip: str = "unknown"


class ExternalIdentityClaims(BaseModel):
    """Claim set from the identity provider, already verified upstream.

    Instances are built by the provider exchange from its own back-channel
    response; they are never parsed from caller-supplied tokens.
    """

    subject: str
    email: str
    name: Optional[str] = None

    @field_validator("email")
    @classmethod
    def email_valid(cls, v: str) -> str:
        return normalize_email(v)


class SessionResult(BaseModel):
    """A freshly minted credential pair and the refresh record persisted for it."""

    user: User
    access_token: str
    refresh_token: str
    refresh_record: RefreshTokenRecord


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class UserSummary(CamelModel):
    """Trimmed identity summary returned to callers."""

    id: UUID
    email: str
    name: Optional[str] = None
    role: Role

    @classmethod
    def from_user(cls, user: User) -> "UserSummary":
        return cls(id=user.id, email=user.email, name=user.name, role=user.role)


class UserProfile(UserSummary):
    """Current-user view including timestamps."""

    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserProfile":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class RegisteredUser(UserSummary):
    """Newly created account (no credential material)."""

    created_at: datetime


class RegisterResponse(CamelModel):
    user: RegisteredUser


class MeResponse(CamelModel):
    user: UserProfile


class MessageResponse(CamelModel):
    message: str


class SessionResponse(CamelModel):
    """Login/refresh response. The access token travels in the cookie only.

    Attributes:
        user: Identity summary
        refresh_token: Refresh credential the caller must resend on refresh/logout
        refresh_id: ID of the persisted refresh record
        refresh_expires_at: Expiry of the refresh credential
    """

    user: UserSummary
    refresh_token: str
    refresh_id: UUID
    refresh_expires_at: datetime

    @classmethod
    def from_session(cls, session: SessionResult) -> "SessionResponse":
        return cls(
            user=UserSummary.from_user(session.user),
            refresh_token=session.refresh_token,
            refresh_id=session.refresh_record.id,
            refresh_expires_at=session.refresh_record.expires_at,
        )


class ResetPasswordResponse(CamelModel):
    """Reset completion. Session fields are absent when auto-login is disabled."""

    message: str
    user: UserSummary
    refresh_token: Optional[str] = None
    refresh_id: Optional[UUID] = None
    refresh_expires_at: Optional[datetime] = None


class RevokedSessionsResponse(CamelModel):
    revoked: int
