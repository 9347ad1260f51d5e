"""Persistent store for single-use password reset tokens."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

import structlog

from src.database import transaction
from src.models.user import PasswordResetToken, User
from src.services.user_service import parse_row_count, row_to_user

logger = structlog.get_logger(__name__)


class PasswordResetStore:
    """Store for reset tokens and the reset unit of work."""

    async def issue(
        self,
        user_id: UUID,
        token_hash: str,
        expires_at: datetime,
        now: datetime,
    ) -> PasswordResetToken:
        """Supersede pending tokens for the user and insert a new one.

        The user row is locked for the duration of the transaction, so
        concurrent requests for the same user run one after another and leave
        exactly one unused token behind.
        """
        async with transaction() as conn:
            await conn.execute(
                "SELECT id FROM users WHERE id = $1 FOR UPDATE",
                user_id,
            )
            status = await conn.execute(
                """
                UPDATE password_reset_tokens
                SET used_at = $2
                WHERE user_id = $1 AND used_at IS NULL
                """,
                user_id,
                now,
            )
            row = await conn.fetchrow(
                """
                INSERT INTO password_reset_tokens (id, user_id, token_hash, expires_at, created_at)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING id, user_id, token_hash, expires_at, used_at, created_at
                """,
                uuid4(),
                user_id,
                token_hash,
                expires_at,
                now,
            )

        token = PasswordResetToken(
            id=row["id"],
            user_id=row["user_id"],
            token_hash=row["token_hash"],
            expires_at=row["expires_at"],
            used_at=row["used_at"],
            created_at=row["created_at"],
        )
        logger.info(
            "password_reset_token_issued",
            user_id=str(user_id),
            token_id=str(token.id),
            superseded=parse_row_count(status),
            expires_at=expires_at.isoformat(),
        )
        return token

    async def complete(
        self,
        token_hash: str,
        password_hash: str,
        now: datetime,
    ) -> Optional[tuple[User, int]]:
        """Consume a reset token and apply the new password in one transaction.

        The token is consumed by a conditional UPDATE that only matches an
        unused, unexpired token, so a token completes at most once. On success
        the password hash is replaced, password_changed_at is stamped, any
        other pending tokens of the user are superseded and every non-revoked
        refresh record of the user is revoked.

        Returns:
            Tuple of (updated User, revoked session count), or None when the
            token does not exist, was already used or has expired (nothing is
            written in that case)
        """
        async with transaction() as conn:
            user_id = await conn.fetchval(
                """
                UPDATE password_reset_tokens
                SET used_at = $2
                WHERE token_hash = $1 AND used_at IS NULL AND expires_at > $2
                RETURNING user_id
                """,
                token_hash,
                now,
            )
            if user_id is None:
                return None

            row = await conn.fetchrow(
                """
                UPDATE users
                SET password_hash = $2, password_changed_at = $3, updated_at = $3
                WHERE id = $1
                RETURNING id, email, name, role, password_changed_at, created_at, updated_at
                """,
                user_id,
                password_hash,
                now,
            )
            await conn.execute(
                """
                UPDATE password_reset_tokens
                SET used_at = $2
                WHERE user_id = $1 AND used_at IS NULL
                """,
                user_id,
                now,
            )
            status = await conn.execute(
                """
                UPDATE refresh_tokens
                SET revoked = TRUE
                WHERE user_id = $1 AND revoked = FALSE
                """,
                user_id,
            )

        revoked = parse_row_count(status)
        logger.info(
            "password_reset_completed",
            user_id=str(user_id),
            sessions_revoked=revoked,
        )
        return row_to_user(row), revoked
