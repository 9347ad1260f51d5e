"""Credential store: user lookup, registration and password changes."""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

import asyncpg
import structlog

from src.database import get_pool, transaction
from src.errors import ConflictError
from src.models.user import Role, User
from src.services.auth_service import AuthService

logger = structlog.get_logger(__name__)

# Stored for accounts created from an external identity; never a valid bcrypt hash.
EXTERNAL_PASSWORD_PLACEHOLDER = "!external-identity"

_USER_COLUMNS = "id, email, name, role, password_changed_at, created_at, updated_at"


def row_to_user(row) -> User:
    return User(
        id=row["id"],
        email=row["email"],
        name=row["name"],
        role=row["role"],
        password_changed_at=row["password_changed_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def parse_row_count(status: str) -> int:
    """Extract the affected-row count from an asyncpg status string like 'UPDATE 3'."""
    try:
        return int(str(status).split()[-1])
    except (ValueError, IndexError):
        return 0


class UserService:
    """Service for credential store operations."""

    def __init__(self):
        self.auth_service = AuthService()

    async def create_user(
        self,
        email: str,
        password: str,
        name: Optional[str] = None,
        role: Role = Role.USER,
    ) -> User:
        """Create a new user with a hashed password.

        Args:
            email: Normalized, unique email
            password: Plain-text password (will be hashed)
            name: Optional display name
            role: Role to assign; self-registration always uses ROLE_USER

        Returns:
            Created User model

        Raises:
            ConflictError: If the email is already registered
        """
        user_id = uuid4()
        now = datetime.now(timezone.utc)
        password_hash = self.auth_service.hash_password(password)

        pool = await get_pool()

        try:
            async with pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO users (id, email, password_hash, name, role, created_at, updated_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7)
                    """,
                    user_id,
                    email,
                    password_hash,
                    name,
                    role.value,
                    now,
                    now,
                )
        except asyncpg.UniqueViolationError:
            logger.info("user_registration_conflict", email=email)
            raise ConflictError("A user with this email already exists")

        logger.info("user_created", user_id=str(user_id), role=role.value)

        return User(
            id=user_id,
            email=email,
            name=name,
            role=role,
            created_at=now,
            updated_at=now,
        )

    async def get_by_email(self, email: str) -> Optional[tuple[User, str]]:
        """Get a user by email.

        Args:
            email: Normalized email to look up

        Returns:
            Tuple of (User, password_hash) or None if not found
        """
        pool = await get_pool()

        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_USER_COLUMNS}, password_hash
                FROM users
                WHERE email = $1
                """,
                email,
            )

        if row is None:
            return None

        return row_to_user(row), row["password_hash"]

    async def get_by_id(self, user_id: UUID) -> Optional[User]:
        """Get a user by UUID."""
        pool = await get_pool()

        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_USER_COLUMNS} FROM users WHERE id = $1",
                user_id,
            )

        if row is None:
            return None

        return row_to_user(row)

    async def get_password_hash(self, user_id: UUID) -> Optional[str]:
        """Return the stored password hash of a user, or None if not found."""
        pool = await get_pool()

        async with pool.acquire() as conn:
            return await conn.fetchval(
                "SELECT password_hash FROM users WHERE id = $1",
                user_id,
            )

    async def upsert_external(self, email: str, name: Optional[str]) -> User:
        """Create or refresh an account from a verified external identity.

        Existing accounts keep their password and role; only the display name
        is updated when the provider supplies one.
        """
        now = datetime.now(timezone.utc)
        pool = await get_pool()

        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO users (id, email, password_hash, name, role, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6, $6)
                ON CONFLICT (email) DO UPDATE
                SET name = COALESCE(EXCLUDED.name, users.name),
                    updated_at = EXCLUDED.updated_at
                RETURNING {_USER_COLUMNS}
                """,
                uuid4(),
                email,
                EXTERNAL_PASSWORD_PLACEHOLDER,
                name,
                Role.USER.value,
                now,
            )

        user = row_to_user(row)
        logger.info("external_identity_upserted", user_id=str(user.id))
        return user

    async def change_password(
        self, user_id: UUID, new_password: str, changed_at: datetime
    ) -> tuple[Optional[User], int]:
        """Replace a password, stamp password_changed_at and revoke all sessions.

        Both writes happen in one transaction.

        Returns:
            Tuple of (updated User or None if not found, revoked session count)
        """
        password_hash = self.auth_service.hash_password(new_password)

        async with transaction() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE users
                SET password_hash = $1, password_changed_at = $2, updated_at = $2
                WHERE id = $3
                RETURNING {_USER_COLUMNS}
                """,
                password_hash,
                changed_at,
                user_id,
            )
            if row is None:
                return None, 0
            status = await conn.execute(
                """
                UPDATE refresh_tokens
                SET revoked = TRUE
                WHERE user_id = $1 AND revoked = FALSE
                """,
                user_id,
            )

        revoked = parse_row_count(status)
        logger.info("password_changed", user_id=str(user_id), sessions_revoked=revoked)
        return row_to_user(row), revoked
