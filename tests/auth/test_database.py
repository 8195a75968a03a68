"""Tests for AuthDatabase against PostgreSQL (skipped without AUTH_TEST_DATABASE_URL)."""

import threading
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from auth.database import AuthDatabase
from auth.exceptions import ConflictError
from auth.types import OtpPurpose, OtpRecord, OtpStatus, SessionRecord, SessionStatus

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
COOLDOWN = timedelta(seconds=60)


@pytest.fixture
def auth_db(clean_pg):
    """AuthDatabase on an emptied schema."""
    return AuthDatabase(clean_pg)


@pytest.fixture
def user(auth_db):
    return auth_db.create_user("User@Example.com", "$2b$04$hash", "User", NOW)


def otp(email="user@example.com", created_at=NOW, **overrides) -> OtpRecord:
    fields = {
        "id": uuid4(),
        "email": email,
        "purpose": OtpPurpose.EMAIL_VERIFICATION,
        "hashed_code": "$2b$04$code",
        "expires_at": created_at + timedelta(minutes=10),
        "status": OtpStatus.ACTIVE,
        "created_at": created_at,
    }
    fields.update(overrides)
    return OtpRecord(**fields)


def session(user_id, created_at=NOW, **overrides) -> SessionRecord:
    fields = {
        "id": uuid4(),
        "hashed_secret": uuid4().hex,
        "user_id": user_id,
        "expires_at": created_at + timedelta(days=30),
        "status": SessionStatus.ACTIVE,
        "created_at": created_at,
    }
    fields.update(overrides)
    return SessionRecord(**fields)


class TestUsers:
    """User lookups and mutations."""

    def test_create_lowercases_email(self, user):
        assert user.email == "user@example.com"
        assert user.email_verified is False

    def test_lookup_case_insensitive(self, auth_db, user):
        assert auth_db.get_user_by_email("USER@example.com").id == user.id

    def test_lookup_by_id(self, auth_db, user):
        assert auth_db.get_user_by_id(user.id).email == user.email

    def test_missing_user(self, auth_db):
        assert auth_db.get_user_by_email("nobody@example.com") is None
        assert auth_db.get_user_by_id(uuid4()) is None

    def test_duplicate_email_conflicts(self, auth_db, user):
        with pytest.raises(ConflictError):
            auth_db.create_user("user@EXAMPLE.com", "$2b$04$other", None, NOW)

    def test_credentials_carry_hash(self, auth_db, user):
        creds = auth_db.get_credentials_by_email("user@example.com")
        assert creds.user.id == user.id
        assert creds.password_hash == "$2b$04$hash"

    def test_mark_verified(self, auth_db, user):
        later = NOW + timedelta(minutes=5)

        updated = auth_db.mark_email_verified(user.id, later)

        assert updated.email_verified is True
        assert updated.updated_at == later

    def test_mark_verified_unknown(self, auth_db):
        assert auth_db.mark_email_verified(uuid4(), NOW) is None


class TestOtps:
    """OTP issuance, consumption and sweeps."""

    def test_issue_then_fetch(self, auth_db):
        record = otp()

        assert auth_db.issue_otp(record, cooldown_cutoff=NOW - COOLDOWN) is None

        fetched = auth_db.get_latest_active_otp("user@example.com", record.purpose, NOW)
        assert fetched.id == record.id

    def test_cooldown_blocks(self, auth_db):
        auth_db.issue_otp(otp(), cooldown_cutoff=NOW - COOLDOWN)
        later = NOW + timedelta(seconds=10)

        blocking = auth_db.issue_otp(otp(created_at=later), cooldown_cutoff=later - COOLDOWN)

        assert blocking == NOW

    def test_issue_after_cooldown_supersedes(self, auth_db):
        first = otp()
        auth_db.issue_otp(first, cooldown_cutoff=NOW - COOLDOWN)
        later = NOW + COOLDOWN
        second = otp(created_at=later)

        assert auth_db.issue_otp(second, cooldown_cutoff=later - COOLDOWN) is None

        fetched = auth_db.get_latest_active_otp("user@example.com", second.purpose, later)
        assert fetched.id == second.id
        stats = auth_db.otp_stats(later)
        assert stats.active == 1
        assert stats.used == 1

    def test_concurrent_issue_single_winner(self, auth_db):
        barrier = threading.Barrier(5)
        outcomes = []

        def attempt():
            barrier.wait()
            outcomes.append(auth_db.issue_otp(otp(email="race@example.com"), NOW - COOLDOWN))

        threads = [threading.Thread(target=attempt) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count(None) == 1

    def test_expired_not_returned(self, auth_db):
        auth_db.issue_otp(otp(), cooldown_cutoff=NOW - COOLDOWN)

        later = NOW + timedelta(minutes=10)
        assert auth_db.get_latest_active_otp("user@example.com", OtpPurpose.EMAIL_VERIFICATION, later) is None

    def test_consume_once(self, auth_db):
        record = otp()
        auth_db.issue_otp(record, cooldown_cutoff=NOW - COOLDOWN)

        assert auth_db.consume_otp(record.id, NOW) is True
        assert auth_db.consume_otp(record.id, NOW) is False

    def test_delete_expired(self, auth_db):
        auth_db.issue_otp(otp(), cooldown_cutoff=NOW - COOLDOWN)
        later = NOW + timedelta(minutes=11)

        assert auth_db.delete_expired_otps(later, issuance_cutoff=later - COOLDOWN) == 1
        assert auth_db.delete_expired_otps(later, issuance_cutoff=later - COOLDOWN) == 0


class TestSessions:
    """Session storage, rotation and revocation."""

    def test_insert_and_lookup(self, auth_db, user):
        record = session(user.id, user_agent="Firefox")
        auth_db.insert_session(record)

        by_hash = auth_db.get_session_by_hash(record.hashed_secret)
        assert by_hash.id == record.id
        assert by_hash.status is SessionStatus.ACTIVE
        assert auth_db.get_session(record.id).user_agent == "Firefox"

    def test_rotate(self, auth_db, user):
        old = session(user.id)
        auth_db.insert_session(old)
        new = session(user.id)

        assert auth_db.rotate_session(old.id, new, NOW) is True

        rotated = auth_db.get_session(old.id)
        assert rotated.status is SessionStatus.REVOKED
        assert rotated.replaced_by == new.id
        assert auth_db.get_session(new.id).status is SessionStatus.ACTIVE

    def test_rotate_twice_refused_without_insert(self, auth_db, user):
        old = session(user.id)
        auth_db.insert_session(old)
        auth_db.rotate_session(old.id, session(user.id), NOW)
        loser = session(user.id)

        assert auth_db.rotate_session(old.id, loser, NOW) is False
        assert auth_db.get_session(loser.id) is None

    def test_concurrent_rotation_single_winner(self, auth_db, user):
        old = session(user.id)
        auth_db.insert_session(old)
        barrier = threading.Barrier(5)
        outcomes = []

        def attempt():
            barrier.wait()
            outcomes.append(auth_db.rotate_session(old.id, session(user.id), NOW))

        threads = [threading.Thread(target=attempt) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count(True) == 1
        assert len(auth_db.list_active_sessions(user.id, NOW)) == 1

    def test_revoke_paths(self, auth_db, user):
        a, b, c = session(user.id), session(user.id), session(user.id)
        for record in (a, b, c):
            auth_db.insert_session(record)

        assert auth_db.revoke_session(a.id, NOW) is True
        assert auth_db.revoke_session(a.id, NOW) is False
        assert auth_db.revoke_session_by_hash(b.hashed_secret, NOW) is True
        assert auth_db.revoke_user_sessions(user.id, NOW) == 1
        assert auth_db.list_active_sessions(user.id, NOW) == []

    def test_list_newest_first_and_unexpired(self, auth_db, user):
        older = session(user.id, created_at=NOW)
        newer = session(user.id, created_at=NOW + timedelta(minutes=1))
        stale = session(user.id, created_at=NOW - timedelta(days=40))
        for record in (older, newer, stale):
            auth_db.insert_session(record)

        active = auth_db.list_active_sessions(user.id, NOW + timedelta(minutes=2))

        assert [s.id for s in active] == [newer.id, older.id]

    def test_delete_expired(self, auth_db, user):
        auth_db.insert_session(session(user.id, created_at=NOW - timedelta(days=40)))
        auth_db.insert_session(session(user.id))

        assert auth_db.delete_expired_sessions(NOW) == 1
