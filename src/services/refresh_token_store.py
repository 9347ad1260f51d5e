"""Persistent store for refresh-token records.

Only SHA-256 hashes of refresh credentials are stored. Records are never
deleted; rotation and revocation are state changes so the rotation chain
stays available for theft detection.

Every state transition is a single conditional UPDATE against the row so
concurrent requests on different instances cannot both move a record out of
the Active state.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

import structlog

from src.database import get_pool, transaction
from src.models.auth import DeviceInfo
from src.models.user import RefreshTokenRecord, User
from src.services.user_service import parse_row_count

logger = structlog.get_logger(__name__)

_RECORD_COLUMNS = (
    "id, user_id, token_hash, remember_me, user_agent, ip, issued_at, "
    "last_used_at, expires_at, revoked, replaced_by_token_hash"
)


def _row_to_record(row) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        id=row["id"],
        user_id=row["user_id"],
        token_hash=row["token_hash"],
        remember_me=row["remember_me"],
        user_agent=row["user_agent"],
        ip=row["ip"],
        issued_at=row["issued_at"],
        last_used_at=row["last_used_at"],
        expires_at=row["expires_at"],
        revoked=row["revoked"],
        replaced_by_token_hash=row["replaced_by_token_hash"],
    )


class RefreshTokenStore:
    """Store for refresh-token records and their rotation chain."""

    async def create(
        self,
        user_id: UUID,
        token_hash: str,
        remember_me: bool,
        device: DeviceInfo,
        issued_at: datetime,
        expires_at: datetime,
    ) -> RefreshTokenRecord:
        """Persist a new Active record.

        Returns:
            The created record
        """
        pool = await get_pool()

        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO refresh_tokens (
                    id, user_id, token_hash, remember_me, user_agent, ip,
                    issued_at, last_used_at, expires_at, revoked
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $7, $8, FALSE)
                RETURNING {_RECORD_COLUMNS}
                """,
                uuid4(),
                user_id,
                token_hash,
                remember_me,
                device.user_agent,
                device.ip,
                issued_at,
                expires_at,
            )

        record = _row_to_record(row)
        logger.info(
            "refresh_token_created",
            user_id=str(user_id),
            token_id=str(record.id),
            remember_me=remember_me,
            expires_at=expires_at.isoformat(),
        )
        return record

    async def get_with_owner(
        self, token_hash: str
    ) -> Optional[tuple[RefreshTokenRecord, User]]:
        """Look up a record by token hash together with its owning user."""
        pool = await get_pool()

        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT rt.id, rt.user_id, rt.token_hash, rt.remember_me, rt.user_agent,
                       rt.ip, rt.issued_at, rt.last_used_at, rt.expires_at, rt.revoked,
                       rt.replaced_by_token_hash,
                       u.email, u.name, u.role, u.password_changed_at,
                       u.created_at AS user_created_at, u.updated_at AS user_updated_at
                FROM refresh_tokens rt
                JOIN users u ON u.id = rt.user_id
                WHERE rt.token_hash = $1
                """,
                token_hash,
            )

        if row is None:
            return None

        owner = User(
            id=row["user_id"],
            email=row["email"],
            name=row["name"],
            role=row["role"],
            password_changed_at=row["password_changed_at"],
            created_at=row["user_created_at"],
            updated_at=row["user_updated_at"],
        )
        return _row_to_record(row), owner

    async def revoke(self, record_id: UUID) -> bool:
        """Revoke one record by ID. Returns True if it was not already revoked."""
        pool = await get_pool()

        async with pool.acquire() as conn:
            status = await conn.execute(
                """
                UPDATE refresh_tokens
                SET revoked = TRUE
                WHERE id = $1 AND revoked = FALSE
                """,
                record_id,
            )

        revoked = parse_row_count(status) > 0
        if revoked:
            logger.info("refresh_token_revoked", token_id=str(record_id))
        return revoked

    async def revoke_by_token_hash(self, token_hash: str) -> bool:
        """Revoke exactly the record holding this token hash (logout).

        The forward reference of an already rotated record is left intact.
        """
        pool = await get_pool()

        async with pool.acquire() as conn:
            status = await conn.execute(
                """
                UPDATE refresh_tokens
                SET revoked = TRUE
                WHERE token_hash = $1 AND revoked = FALSE
                """,
                token_hash,
            )

        return parse_row_count(status) > 0

    async def revoke_all_for_user(self, user_id: UUID) -> int:
        """Revoke every non-revoked record of a user.

        Returns:
            Number of records revoked
        """
        pool = await get_pool()

        async with pool.acquire() as conn:
            status = await conn.execute(
                """
                UPDATE refresh_tokens
                SET revoked = TRUE
                WHERE user_id = $1 AND revoked = FALSE
                """,
                user_id,
            )

        count = parse_row_count(status)
        logger.info("all_refresh_tokens_revoked", user_id=str(user_id), count=count)
        return count

    async def rotate(
        self,
        current: RefreshTokenRecord,
        new_token_hash: str,
        new_expires_at: datetime,
        now: datetime,
    ) -> Optional[RefreshTokenRecord]:
        """Retire the current record and create its successor in one transaction.

        The retiring UPDATE only matches while the record is still Active, so
        of two concurrent rotations presenting the same token exactly one
        succeeds. The successor inherits device metadata and remember-me.

        Returns:
            The new Active record, or None if the current record was no longer
            Active when the write landed
        """
        async with transaction() as conn:
            retired_id = await conn.fetchval(
                """
                UPDATE refresh_tokens
                SET revoked = TRUE, replaced_by_token_hash = $2, last_used_at = $3
                WHERE id = $1
                  AND revoked = FALSE
                  AND replaced_by_token_hash IS NULL
                  AND expires_at > $3
                RETURNING id
                """,
                current.id,
                new_token_hash,
                now,
            )
            if retired_id is None:
                return None

            row = await conn.fetchrow(
                f"""
                INSERT INTO refresh_tokens (
                    id, user_id, token_hash, remember_me, user_agent, ip,
                    issued_at, last_used_at, expires_at, revoked
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $7, $8, FALSE)
                RETURNING {_RECORD_COLUMNS}
                """,
                uuid4(),
                current.user_id,
                new_token_hash,
                current.remember_me,
                current.user_agent,
                current.ip,
                now,
                new_expires_at,
            )

        successor = _row_to_record(row)
        logger.info(
            "refresh_token_rotated",
            user_id=str(current.user_id),
            token_id=str(current.id),
            successor_id=str(successor.id),
        )
        return successor
