"""Services package exports."""

from src.services.auth_service import AuthService
from src.services.logging_service import configure_logging, get_logger
from src.services.password_reset_service import PasswordResetService
from src.services.rotation_service import RefreshRotationService
from src.services.session_service import SessionService

__all__ = [
    "AuthService",
    "PasswordResetService",
    "RefreshRotationService",
    "SessionService",
    "configure_logging",
    "get_logger",
]
