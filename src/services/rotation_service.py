"""Refresh-token rotation protocol.

Every successful refresh retires the presented credential and issues a
replacement, so a stolen refresh token is worth at most one use. Checks run
in a fixed order:

1. the record must exist;
2. it must not be revoked, already rotated (reuse) or expired;
3. the credential's signature and claims must verify;
4. the subject claim must match the record owner;
5. the owner's password must not have changed since the record was issued;
6. the record is retired and its successor created by one conditional write.

Failures in steps 3-5 (and reuse in step 2) revoke the record before the
error is raised. Every failure surfaces as the same unauthenticated error.
"""

from datetime import datetime, timezone
from typing import NoReturn, Optional

import structlog

from src.errors import UnauthenticatedError
from src.models.auth import SessionResult
from src.models.user import RefreshTokenRecord
from src.services.auth_service import AuthService, hash_token
from src.services.refresh_token_store import RefreshTokenStore

logger = structlog.get_logger(__name__)

INVALID_REFRESH_MESSAGE = "Invalid or expired refresh token"


class RefreshRotationService:
    """Validates a refresh credential and rotates it into a new pair."""

    def __init__(
        self,
        refresh_store: Optional[RefreshTokenStore] = None,
        auth_service: Optional[AuthService] = None,
    ):
        self.auth_service = auth_service or AuthService()
        self.refresh_store = refresh_store or RefreshTokenStore()

    async def _reject(
        self, record: Optional[RefreshTokenRecord], reason: str, revoke: bool
    ) -> NoReturn:
        """Log the rejection, optionally revoke the record, and raise."""
        if record is not None and revoke:
            await self.refresh_store.revoke(record.id)
        logger.warning(
            "refresh_rejected",
            reason=reason,
            token_id=str(record.id) if record else None,
            user_id=str(record.user_id) if record else None,
            revoked=revoke,
        )
        raise UnauthenticatedError(INVALID_REFRESH_MESSAGE)

    async def rotate(self, refresh_token: str) -> SessionResult:
        """Exchange a refresh credential for a new access/refresh pair.

        Args:
            refresh_token: The refresh credential presented by the caller

        Returns:
            SessionResult with the new pair and the successor record

        Raises:
            UnauthenticatedError: On any validation failure or lost race
        """
        now = datetime.now(timezone.utc)

        found = await self.refresh_store.get_with_owner(hash_token(refresh_token))
        if found is None:
            await self._reject(None, "not_found", revoke=False)
        record, owner = found

        if record.is_rotated:
            logger.warning(
                "refresh_token_reuse_detected",
                token_id=str(record.id),
                user_id=str(record.user_id),
            )
            await self._reject(record, "reused", revoke=True)
        if record.revoked:
            await self._reject(record, "revoked", revoke=False)
        if record.expires_at <= now:
            await self._reject(record, "expired", revoke=False)

        claims = self.auth_service.verify_refresh(refresh_token)
        if claims is None:
            await self._reject(record, "invalid_signature", revoke=True)

        if claims.subject != str(record.user_id):
            await self._reject(record, "subject_mismatch", revoke=True)

        if owner.password_changed_at is not None and owner.password_changed_at > record.issued_at:
            await self._reject(record, "password_changed", revoke=True)

        new_refresh = self.auth_service.issue_refresh(owner, record.remember_me, now=now)
        new_expires_at = now + self.auth_service.refresh_token_lifetime(record.remember_me)

        successor = await self.refresh_store.rotate(
            record,
            new_token_hash=hash_token(new_refresh),
            new_expires_at=new_expires_at,
            now=now,
        )
        if successor is None:
            await self._reject(record, "concurrent_rotation", revoke=True)

        access_token = self.auth_service.issue_access(owner, now=now)

        return SessionResult(
            user=owner,
            access_token=access_token,
            refresh_token=new_refresh,
            refresh_record=successor,
        )
