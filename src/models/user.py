"""User, refresh-record and reset-token models."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class Role(str, Enum):
    """Roles carried in access tokens."""

    USER = "ROLE_USER"
    ADMIN = "ROLE_ADMIN"


class User(BaseModel):
    """A registered account. The password hash is never part of this model."""

    id: UUID
    email: str
    name: Optional[str] = None
    role: Role = Role.USER
    password_changed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class RefreshTokenRecord(BaseModel):
    """Persistent record of one refresh credential.

    Records are mutated but never deleted. A rotated record keeps the hash of
    its successor in replaced_by_token_hash, which forms the rotation chain.
    """

    id: UUID
    user_id: UUID
    token_hash: str
    remember_me: bool = False
    user_agent: str = "unknown"
    ip: str = "unknown"
    issued_at: datetime
    last_used_at: datetime
    expires_at: datetime
    revoked: bool = False
    replaced_by_token_hash: Optional[str] = None

    @property
    def is_rotated(self) -> bool:
        return self.replaced_by_token_hash is not None

    def is_active(self, now: datetime) -> bool:
        """Active means not revoked, not rotated and not yet expired."""
        return not self.revoked and not self.is_rotated and self.expires_at > now


class PasswordResetToken(BaseModel):
    """A single-use password reset token (only its hash is stored)."""

    id: UUID
    user_id: UUID
    token_hash: str
    expires_at: datetime
    used_at: Optional[datetime] = None
    created_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return self.used_at is None and self.expires_at > now
