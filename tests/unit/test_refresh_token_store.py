"""Unit tests for RefreshTokenStore.

Tests record creation, revocation and the conditional rotation write
with mocked asyncpg database.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from src.models.auth import DeviceInfo
from src.models.user import RefreshTokenRecord, User
from src.services.refresh_token_store import RefreshTokenStore


@pytest.fixture
def store():
    return RefreshTokenStore()


def _make_record_row(**overrides):
    now = datetime.now(timezone.utc)
    row = {
        "id": uuid4(),
        "user_id": uuid4(),
        "token_hash": "a" * 64,
        "remember_me": False,
        "user_agent": "pytest",
        "ip": "10.0.0.1",
        "issued_at": now,
        "last_used_at": now,
        "expires_at": now + timedelta(days=7),
        "revoked": False,
        "replaced_by_token_hash": None,
    }
    row.update(overrides)
    return row


# ---------------------------------------------------------------------------
# create / get_with_owner
# ---------------------------------------------------------------------------

class TestCreate:
    async def test_inserts_active_record_with_device_metadata(self, store, mock_database_pool):
        _, conn = mock_database_pool
        row = _make_record_row(remember_me=True)
        conn.fetchrow.return_value = row

        record = await store.create(
            user_id=row["user_id"],
            token_hash=row["token_hash"],
            remember_me=True,
            device=DeviceInfo(user_agent="pytest", ip="10.0.0.1"),
            issued_at=row["issued_at"],
            expires_at=row["expires_at"],
        )

        assert isinstance(record, RefreshTokenRecord)
        assert record.remember_me is True
        sql = conn.fetchrow.call_args[0][0]
        assert "INSERT INTO refresh_tokens" in sql
        args = conn.fetchrow.call_args[0][1:]
        assert "pytest" in args
        assert "10.0.0.1" in args


class TestGetWithOwner:
    async def test_returns_none_when_missing(self, store, mock_database_pool):
        _, conn = mock_database_pool
        conn.fetchrow.return_value = None

        assert await store.get_with_owner("b" * 64) is None

    async def test_returns_record_and_owner(self, store, mock_database_pool):
        _, conn = mock_database_pool
        now = datetime.now(timezone.utc)
        row = _make_record_row()
        row.update(
            {
                "email": "alice@example.com",
                "name": "Alice",
                "role": "ROLE_ADMIN",
                "password_changed_at": None,
                "user_created_at": now,
                "user_updated_at": now,
            }
        )
        conn.fetchrow.return_value = row

        record, owner = await store.get_with_owner(row["token_hash"])

        assert record.id == row["id"]
        assert isinstance(owner, User)
        assert owner.id == row["user_id"]
        assert owner.role.value == "ROLE_ADMIN"


# ---------------------------------------------------------------------------
# Revocation
# ---------------------------------------------------------------------------

class TestRevoke:
    async def test_revoke_only_touches_non_revoked_row(self, store, mock_database_pool):
        _, conn = mock_database_pool
        conn.execute.return_value = "UPDATE 1"

        assert await store.revoke(uuid4()) is True
        assert "revoked = FALSE" in conn.execute.call_args[0][0]

    async def test_revoke_reports_already_revoked(self, store, mock_database_pool):
        _, conn = mock_database_pool
        conn.execute.return_value = "UPDATE 0"

        assert await store.revoke(uuid4()) is False

    async def test_logout_revoke_leaves_forward_reference_alone(self, store, mock_database_pool):
        _, conn = mock_database_pool
        conn.execute.return_value = "UPDATE 1"

        assert await store.revoke_by_token_hash("c" * 64) is True
        sql = conn.execute.call_args[0][0]
        assert "token_hash = $1" in sql
        assert "replaced_by_token_hash" not in sql

    async def test_revoke_all_returns_count(self, store, mock_database_pool):
        _, conn = mock_database_pool
        conn.execute.return_value = "UPDATE 3"

        assert await store.revoke_all_for_user(uuid4()) == 3


# ---------------------------------------------------------------------------
# rotate
# ---------------------------------------------------------------------------

class TestRotate:
    async def test_retires_current_and_inserts_successor(self, store, mock_database_pool):
        _, conn = mock_database_pool
        current = RefreshTokenRecord(**_make_record_row(remember_me=True))
        now = datetime.now(timezone.utc)
        conn.fetchval.return_value = current.id
        conn.fetchrow.return_value = _make_record_row(
            user_id=current.user_id,
            token_hash="d" * 64,
            remember_me=True,
            issued_at=now,
            last_used_at=now,
            expires_at=now + timedelta(days=30),
        )

        successor = await store.rotate(
            current, new_token_hash="d" * 64, new_expires_at=now + timedelta(days=30), now=now
        )

        assert successor is not None
        assert successor.token_hash == "d" * 64
        assert conn.transactions_opened == 1

        retire_sql = conn.fetchval.call_args[0][0]
        assert "replaced_by_token_hash = $2" in retire_sql
        assert "revoked = FALSE" in retire_sql
        assert "replaced_by_token_hash IS NULL" in retire_sql
        assert "expires_at > $3" in retire_sql

        insert_args = conn.fetchrow.call_args[0][1:]
        assert current.user_agent in insert_args
        assert current.ip in insert_args
        assert True in insert_args

    async def test_returns_none_when_current_no_longer_active(self, store, mock_database_pool):
        _, conn = mock_database_pool
        current = RefreshTokenRecord(**_make_record_row())
        conn.fetchval.return_value = None

        successor = await store.rotate(
            current,
            new_token_hash="e" * 64,
            new_expires_at=datetime.now(timezone.utc) + timedelta(days=7),
            now=datetime.now(timezone.utc),
        )

        assert successor is None
        conn.fetchrow.assert_not_called()
