"""Login, logout and session start orchestration.

login_external is the entry point for the identity-provider code exchange,
which runs outside this service and hands over verified claims only.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

import structlog

from src.errors import UnauthenticatedError
from src.models.auth import (
    ChangePasswordRequest,
    DeviceInfo,
    ExternalIdentityClaims,
    LoginRequest,
    SessionResult,
)
from src.models.user import User
from src.services.auth_service import AuthService, hash_token
from src.services.refresh_token_store import RefreshTokenStore
from src.services.user_service import UserService

logger = structlog.get_logger(__name__)

INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"


class SessionService:
    """Starts and ends sessions (one refresh record per session)."""

    def __init__(
        self,
        user_service: Optional[UserService] = None,
        refresh_store: Optional[RefreshTokenStore] = None,
        auth_service: Optional[AuthService] = None,
    ):
        self.auth_service = auth_service or AuthService()
        self.user_service = user_service or UserService()
        self.refresh_store = refresh_store or RefreshTokenStore()

    async def start_session(
        self, user: User, remember_me: bool, device: DeviceInfo
    ) -> SessionResult:
        """Mint an access/refresh pair and persist an Active refresh record.

        The record expires exactly one refresh lifetime after issuance, the
        same instant encoded in the refresh credential.
        """
        now = datetime.now(timezone.utc)
        access_token = self.auth_service.issue_access(user, now=now)
        refresh_token = self.auth_service.issue_refresh(user, remember_me, now=now)
        expires_at = now + self.auth_service.refresh_token_lifetime(remember_me)

        record = await self.refresh_store.create(
            user_id=user.id,
            token_hash=hash_token(refresh_token),
            remember_me=remember_me,
            device=device,
            issued_at=now,
            expires_at=expires_at,
        )

        return SessionResult(
            user=user,
            access_token=access_token,
            refresh_token=refresh_token,
            refresh_record=record,
        )

    async def login(self, request: LoginRequest, device: DeviceInfo) -> SessionResult:
        """Authenticate with email and password and start a session.

        Unknown email and wrong password fail with the same error and take
        the same bcrypt time.

        Raises:
            UnauthenticatedError: If the credentials are invalid
        """
        result = await self.user_service.get_by_email(request.email)
        user, password_hash = result if result is not None else (None, None)

        if not self.auth_service.authenticate(request.password, password_hash) or user is None:
            logger.info("login_failed", known_account=user is not None)
            raise UnauthenticatedError(INVALID_CREDENTIALS_MESSAGE)

        session = await self.start_session(user, request.remember_me, device)
        logger.info(
            "user_logged_in",
            user_id=str(user.id),
            remember_me=request.remember_me,
            token_id=str(session.refresh_record.id),
        )
        return session

    async def login_external(
        self, claims: ExternalIdentityClaims, device: DeviceInfo
    ) -> SessionResult:
        """Start a session for an identity verified by the external provider.

        The account is matched (or created) by email and from then on behaves
        like a locally registered one. External sessions are always short.
        """
        user = await self.user_service.upsert_external(claims.email, claims.name)
        session = await self.start_session(user, remember_me=False, device=device)
        logger.info(
            "user_logged_in_external",
            user_id=str(user.id),
            token_id=str(session.refresh_record.id),
        )
        return session

    async def logout(self, refresh_token: Optional[str]) -> bool:
        """Revoke the supplied refresh credential, if any.

        Never fails: a missing, unknown or already revoked token is simply
        ignored. Other sessions of the same user are left untouched.

        Returns:
            True if a record was revoked
        """
        if not refresh_token:
            return False

        revoked = await self.refresh_store.revoke_by_token_hash(hash_token(refresh_token.strip()))
        logger.info("user_logged_out", refresh_token_revoked=revoked)
        return revoked

    async def change_password(
        self,
        user_id: UUID,
        request: ChangePasswordRequest,
        device: DeviceInfo,
    ) -> SessionResult:
        """Change the signed-in user's password and restart their session.

        All existing refresh records are revoked and a fresh short session is
        started so the caller stays signed in on this device.

        Raises:
            UnauthenticatedError: If the account is gone or the current password is wrong
        """
        password_hash = await self.user_service.get_password_hash(user_id)
        if not self.auth_service.authenticate(request.current_password, password_hash):
            logger.info("password_change_rejected", user_id=str(user_id))
            raise UnauthenticatedError("Current password is incorrect")

        user, _ = await self.user_service.change_password(
            user_id, request.new_password, changed_at=datetime.now(timezone.utc)
        )
        if user is None:
            raise UnauthenticatedError("Account not found")

        return await self.start_session(user, remember_me=False, device=device)

    async def revoke_all_sessions(self, user_id: UUID) -> int:
        """Revoke every active refresh record of a user."""
        return await self.refresh_store.revoke_all_for_user(user_id)
