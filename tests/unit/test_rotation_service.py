"""Unit tests for refresh-token rotation against in-memory stores."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from src.errors import UnauthenticatedError
from src.models.auth import DeviceInfo
from src.models.user import User
from src.services.auth_service import AuthService, hash_token
from src.services.rotation_service import INVALID_REFRESH_MESSAGE, RefreshRotationService
from src.services.session_service import SessionService
from tests.fakes import FakeDatabase, FakeRefreshTokenStore, FakeUserService

DEVICE = DeviceInfo(user_agent="pytest-agent", ip="198.51.100.4")


@pytest.fixture
def db():
    return FakeDatabase()


@pytest.fixture
def auth_service():
    return AuthService()


@pytest.fixture
def store(db):
    return FakeRefreshTokenStore(db)


@pytest.fixture
def sessions(db, store, auth_service):
    return SessionService(
        user_service=FakeUserService(db, auth_service),
        refresh_store=store,
        auth_service=auth_service,
    )


@pytest.fixture
def rotation(store, auth_service):
    return RefreshRotationService(refresh_store=store, auth_service=auth_service)


@pytest.fixture
async def alice(db, auth_service):
    return await FakeUserService(db, auth_service).create_user("alice@example.com", "Secret123")


@pytest.fixture
async def session(sessions, alice):
    return await sessions.start_session(alice, remember_me=True, device=DEVICE)


class TestSuccessfulRotation:
    async def test_issues_new_pair_and_retires_old_record(self, rotation, session, db):
        rotated = await rotation.rotate(session.refresh_token)

        assert rotated.refresh_token != session.refresh_token
        old = db.refresh_tokens[hash_token(session.refresh_token)]
        new = db.refresh_tokens[hash_token(rotated.refresh_token)]
        assert old.revoked is True
        assert old.replaced_by_token_hash == new.token_hash
        assert new.is_active(datetime.now(timezone.utc))

    async def test_successor_inherits_device_and_remember_me(self, rotation, session, db):
        rotated = await rotation.rotate(session.refresh_token)

        new = db.refresh_tokens[hash_token(rotated.refresh_token)]
        assert new.remember_me is True
        assert new.user_agent == "pytest-agent"
        assert new.ip == "198.51.100.4"
        assert new.expires_at - new.issued_at == timedelta(days=30)

    async def test_chain_of_rotations(self, rotation, session):
        token = session.refresh_token
        for _ in range(3):
            token = (await rotation.rotate(token)).refresh_token

    async def test_new_access_token_verifies(self, rotation, session, auth_service, alice):
        rotated = await rotation.rotate(session.refresh_token)

        claims = auth_service.verify_access(rotated.access_token)
        assert claims.subject == str(alice.id)


class TestRejections:
    async def test_unknown_token(self, rotation):
        with pytest.raises(UnauthenticatedError) as exc:
            await rotation.rotate("y" * 40)
        assert exc.value.message == INVALID_REFRESH_MESSAGE

    async def test_reuse_of_rotated_token_fails_and_stays_revoked(self, rotation, session, db):
        await rotation.rotate(session.refresh_token)

        with pytest.raises(UnauthenticatedError):
            await rotation.rotate(session.refresh_token)

        old = db.refresh_tokens[hash_token(session.refresh_token)]
        assert old.revoked is True
        assert old.replaced_by_token_hash is not None

    async def test_expired_record(self, rotation, session, db):
        token_hash = hash_token(session.refresh_token)
        db.refresh_tokens[token_hash] = db.refresh_tokens[token_hash].model_copy(
            update={"expires_at": datetime.now(timezone.utc) - timedelta(seconds=1)}
        )

        with pytest.raises(UnauthenticatedError):
            await rotation.rotate(session.refresh_token)

    async def test_invalid_signature_revokes_record(self, rotation, store, alice, db):
        forged = "forged-refresh-token-value-0123456789"
        now = datetime.now(timezone.utc)
        await store.create(alice.id, hash_token(forged), False, DEVICE, now, now + timedelta(days=7))

        with pytest.raises(UnauthenticatedError):
            await rotation.rotate(forged)

        assert db.refresh_tokens[hash_token(forged)].revoked is True

    async def test_subject_mismatch_revokes_record(self, rotation, store, alice, auth_service, db):
        now = datetime.now(timezone.utc)
        stranger = User(id=uuid4(), email="eve@example.com", created_at=now, updated_at=now)
        token = auth_service.issue_refresh(stranger, remember_me=False)
        await store.create(alice.id, hash_token(token), False, DEVICE, now, now + timedelta(days=7))

        with pytest.raises(UnauthenticatedError):
            await rotation.rotate(token)

        assert db.refresh_tokens[hash_token(token)].revoked is True

    async def test_password_changed_after_issue_revokes_record(self, rotation, session, alice, db):
        changed_at = session.refresh_record.issued_at + timedelta(seconds=1)
        db.users[alice.id] = db.users[alice.id].model_copy(update={"password_changed_at": changed_at})

        with pytest.raises(UnauthenticatedError):
            await rotation.rotate(session.refresh_token)

        assert db.refresh_tokens[hash_token(session.refresh_token)].revoked is True

    async def test_lost_rotation_race_fails(self, rotation, session, store, db):
        store.rotate = AsyncMock(return_value=None)

        with pytest.raises(UnauthenticatedError):
            await rotation.rotate(session.refresh_token)

        assert db.refresh_tokens[hash_token(session.refresh_token)].revoked is True
