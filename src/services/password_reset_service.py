"""Password reset flow: request a reset link, then complete it."""

from datetime import datetime, timezone
from typing import Optional

import structlog

from src.config import get_settings
from src.errors import UnauthenticatedError
from src.models.auth import DeviceInfo, ResetPasswordRequest, SessionResult
from src.models.user import User
from src.services.auth_service import AuthService, generate_reset_token, hash_token
from src.services.email_service import EmailService, schedule_email
from src.services.password_reset_store import PasswordResetStore
from src.services.session_service import SessionService
from src.services.user_service import UserService

logger = structlog.get_logger(__name__)

# Returned for every forgot-password request, whether or not the account exists.
FORGOT_PASSWORD_MESSAGE = "If an account exists for this email, a reset link has been sent."
INVALID_RESET_TOKEN_MESSAGE = "Invalid or expired reset token"


class PasswordResetService:
    """Issues reset tokens and applies password resets."""

    def __init__(
        self,
        user_service: Optional[UserService] = None,
        reset_store: Optional[PasswordResetStore] = None,
        session_service: Optional[SessionService] = None,
        email_service: Optional[EmailService] = None,
        auth_service: Optional[AuthService] = None,
    ):
        self.settings = get_settings()
        self.auth_service = auth_service or AuthService()
        self.user_service = user_service or UserService()
        self.reset_store = reset_store or PasswordResetStore()
        self.session_service = session_service or SessionService(
            user_service=self.user_service, auth_service=self.auth_service
        )
        self.email_service = email_service or EmailService()

    async def request_reset(self, email: str) -> str:
        """Issue a reset token for the account with this email, if any.

        The response is the same constant message either way and the email is
        sent in the background, so neither the body nor the latency reveals
        whether the account exists.

        Args:
            email: Normalized email address

        Returns:
            The generic confirmation message
        """
        result = await self.user_service.get_by_email(email)
        if result is None:
            logger.info("password_reset_requested", account_found=False)
            return FORGOT_PASSWORD_MESSAGE

        user, _ = result
        now = datetime.now(timezone.utc)
        raw_token = generate_reset_token()

        await self.reset_store.issue(
            user.id,
            hash_token(raw_token),
            expires_at=now + self.settings.password_reset_lifetime,
            now=now,
        )
        schedule_email(self.email_service.send_password_reset_email(user.email, raw_token))

        logger.info("password_reset_requested", account_found=True, user_id=str(user.id))
        return FORGOT_PASSWORD_MESSAGE

    async def complete_reset(
        self, request: ResetPasswordRequest, device: DeviceInfo
    ) -> tuple[User, Optional[SessionResult]]:
        """Apply a new password using a reset token.

        On success every existing session of the user is revoked. When
        auto-login is enabled a new short session is started for the caller.

        Returns:
            Tuple of (updated User, new session or None)

        Raises:
            UnauthenticatedError: If the token is unknown, used or expired
        """
        now = datetime.now(timezone.utc)
        password_hash = self.auth_service.hash_password(request.password)

        result = await self.reset_store.complete(hash_token(request.token), password_hash, now)
        if result is None:
            logger.warning("password_reset_rejected")
            raise UnauthenticatedError(INVALID_RESET_TOKEN_MESSAGE)

        user, _ = result
        if not self.settings.password_reset_auto_login:
            return user, None

        session = await self.session_service.start_session(user, remember_me=False, device=device)
        return user, session
