"""In-memory stand-ins for the PostgreSQL-backed stores.

They mirror the public interface and the conditional-write semantics of
UserService, RefreshTokenStore and PasswordResetStore so the session, rotation
and reset flows can be exercised end to end without a database.

MockConnection and MockPool stand in for asyncpg where the SQL itself is
under test.
"""

from datetime import datetime, timezone
from typing import Optional
from unittest.mock import AsyncMock
from uuid import UUID, uuid4

from src.errors import ConflictError
from src.models.auth import DeviceInfo
from src.models.user import PasswordResetToken, RefreshTokenRecord, Role, User
from src.services.auth_service import AuthService
from src.services.user_service import EXTERNAL_PASSWORD_PLACEHOLDER


class FakeDatabase:
    """Shared tables."""

    def __init__(self):
        self.users: dict[UUID, User] = {}
        self.password_hashes: dict[UUID, str] = {}
        self.refresh_tokens: dict[str, RefreshTokenRecord] = {}
        self.reset_tokens: dict[str, PasswordResetToken] = {}

    def refresh_records_for(self, user_id: UUID) -> list[RefreshTokenRecord]:
        return [r for r in self.refresh_tokens.values() if r.user_id == user_id]

    def unused_reset_tokens_for(self, user_id: UUID) -> list[PasswordResetToken]:
        return [
            t for t in self.reset_tokens.values()
            if t.user_id == user_id and t.used_at is None
        ]

    def _revoke_all(self, user_id: UUID) -> int:
        count = 0
        for token_hash, record in list(self.refresh_tokens.items()):
            if record.user_id == user_id and not record.revoked:
                self.refresh_tokens[token_hash] = record.model_copy(update={"revoked": True})
                count += 1
        return count


class FakeUserService:
    def __init__(self, db: FakeDatabase, auth_service: Optional[AuthService] = None):
        self.db = db
        self.auth_service = auth_service or AuthService()

    async def create_user(self, email, password, name=None, role=Role.USER) -> User:
        if any(u.email == email for u in self.db.users.values()):
            raise ConflictError("A user with this email already exists")
        now = datetime.now(timezone.utc)
        user = User(id=uuid4(), email=email, name=name, role=role, created_at=now, updated_at=now)
        self.db.users[user.id] = user
        self.db.password_hashes[user.id] = self.auth_service.hash_password(password)
        return user

    async def get_by_email(self, email):
        for user in self.db.users.values():
            if user.email == email:
                return user, self.db.password_hashes[user.id]
        return None

    async def get_by_id(self, user_id):
        return self.db.users.get(user_id)

    async def get_password_hash(self, user_id):
        return self.db.password_hashes.get(user_id)

    async def upsert_external(self, email, name):
        found = await self.get_by_email(email)
        if found is not None:
            user = found[0]
            if name:
                user = user.model_copy(update={"name": name})
                self.db.users[user.id] = user
            return user
        now = datetime.now(timezone.utc)
        user = User(id=uuid4(), email=email, name=name, role=Role.USER, created_at=now, updated_at=now)
        self.db.users[user.id] = user
        self.db.password_hashes[user.id] = EXTERNAL_PASSWORD_PLACEHOLDER
        return user

    async def change_password(self, user_id, new_password, changed_at):
        user = self.db.users.get(user_id)
        if user is None:
            return None, 0
        user = user.model_copy(update={"password_changed_at": changed_at, "updated_at": changed_at})
        self.db.users[user_id] = user
        self.db.password_hashes[user_id] = self.auth_service.hash_password(new_password)
        return user, self.db._revoke_all(user_id)


class FakeRefreshTokenStore:
    def __init__(self, db: FakeDatabase):
        self.db = db

    async def create(self, user_id, token_hash, remember_me, device: DeviceInfo, issued_at, expires_at):
        record = RefreshTokenRecord(
            id=uuid4(),
            user_id=user_id,
            token_hash=token_hash,
            remember_me=remember_me,
            user_agent=device.user_agent,
            ip=device.ip,
            issued_at=issued_at,
            last_used_at=issued_at,
            expires_at=expires_at,
        )
        self.db.refresh_tokens[token_hash] = record
        return record

    async def get_with_owner(self, token_hash):
        record = self.db.refresh_tokens.get(token_hash)
        if record is None:
            return None
        return record, self.db.users[record.user_id]

    async def revoke(self, record_id):
        for token_hash, record in self.db.refresh_tokens.items():
            if record.id == record_id and not record.revoked:
                self.db.refresh_tokens[token_hash] = record.model_copy(update={"revoked": True})
                return True
        return False

    async def revoke_by_token_hash(self, token_hash):
        record = self.db.refresh_tokens.get(token_hash)
        if record is None or record.revoked:
            return False
        self.db.refresh_tokens[token_hash] = record.model_copy(update={"revoked": True})
        return True

    async def revoke_all_for_user(self, user_id):
        return self.db._revoke_all(user_id)

    async def rotate(self, current, new_token_hash, new_expires_at, now):
        stored = self.db.refresh_tokens.get(current.token_hash)
        if stored is None or not stored.is_active(now):
            return None
        self.db.refresh_tokens[current.token_hash] = stored.model_copy(
            update={"revoked": True, "replaced_by_token_hash": new_token_hash, "last_used_at": now}
        )
        return await self.create(
            stored.user_id,
            new_token_hash,
            stored.remember_me,
            DeviceInfo(user_agent=stored.user_agent, ip=stored.ip),
            issued_at=now,
            expires_at=new_expires_at,
        )


class FakePasswordResetStore:
    def __init__(self, db: FakeDatabase):
        self.db = db

    async def issue(self, user_id, token_hash, expires_at, now):
        for pending in self.db.unused_reset_tokens_for(user_id):
            self.db.reset_tokens[pending.token_hash] = pending.model_copy(update={"used_at": now})
        token = PasswordResetToken(
            id=uuid4(),
            user_id=user_id,
            token_hash=token_hash,
            expires_at=expires_at,
            created_at=now,
        )
        self.db.reset_tokens[token_hash] = token
        return token

    async def complete(self, token_hash, password_hash, now):
        token = self.db.reset_tokens.get(token_hash)
        if token is None or not token.is_valid(now):
            return None
        user_id = token.user_id
        for pending in self.db.unused_reset_tokens_for(user_id):
            self.db.reset_tokens[pending.token_hash] = pending.model_copy(update={"used_at": now})
        user = self.db.users[user_id].model_copy(
            update={"password_changed_at": now, "updated_at": now}
        )
        self.db.users[user_id] = user
        self.db.password_hashes[user_id] = password_hash
        return user, self.db._revoke_all(user_id)


# ---------------------------------------------------------------------------
# asyncpg mock helpers
# ---------------------------------------------------------------------------

class MockConnection:
    """Mock asyncpg connection with common query methods and transactions."""

    def __init__(self):
        self.execute = AsyncMock()
        self.fetchrow = AsyncMock()
        self.fetchval = AsyncMock()
        self.fetch = AsyncMock()
        self.transactions_opened = 0

    def transaction(self):
        self.transactions_opened += 1
        return _AsyncNoop()


class MockPool:
    """Mock asyncpg pool with acquire() context manager."""

    def __init__(self, conn: MockConnection):
        self._conn = conn

    def acquire(self):
        return _MockPoolAcquire(self._conn)


class _MockPoolAcquire:
    def __init__(self, conn):
        self._conn = conn

    async def __aenter__(self):
        return self._conn

    async def __aexit__(self, *args):
        pass


class _AsyncNoop:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        pass
