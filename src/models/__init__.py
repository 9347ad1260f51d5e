"""Models package exports."""

from src.models.auth import (
    DeviceInfo,
    ExternalIdentityClaims,
    Identity,
    SessionResult,
    TokenClaims,
)
from src.models.user import PasswordResetToken, RefreshTokenRecord, Role, User

__all__ = [
    "DeviceInfo",
    "ExternalIdentityClaims",
    "Identity",
    "PasswordResetToken",
    "RefreshTokenRecord",
    "Role",
    "SessionResult",
    "TokenClaims",
    "User",
]
