"""Tests for OtpLedger - one-time code issuance and verification."""

import threading

import pytest

from auth.config import AuthConfig
from auth.exceptions import RateLimitedError
from auth.otp import OtpLedger
from auth.types import OtpPurpose, OtpStatus

VERIFY = OtpPurpose.EMAIL_VERIFICATION
RESET = OtpPurpose.PASSWORD_RESET


def wrong_code(code: str) -> str:
    """A code of the same shape that differs from the given one."""
    return "".join(str((int(d) + 1) % 10) for d in code)


class TestIssue:
    """Test code issuance."""

    def test_returns_numeric_code_of_configured_length(self, otp_ledger):
        code = otp_ledger.issue("a@example.com", VERIFY)

        assert len(code) == 6
        assert code.isdigit()

    def test_custom_length(self, auth_db, clock):
        ledger = OtpLedger(auth_db, AuthConfig(otp_length=8, otp_hash_rounds=4), clock)
        assert len(ledger.issue("a@example.com", VERIFY)) == 8

    def test_only_hash_is_stored(self, otp_ledger, auth_db):
        code = otp_ledger.issue("a@example.com", VERIFY)

        (record,) = auth_db.otps.values()
        assert record.hashed_code != code
        assert code not in record.hashed_code

    def test_record_fields(self, otp_ledger, auth_db, clock):
        otp_ledger.issue("A@Example.com ", VERIFY)

        (record,) = auth_db.otps.values()
        assert record.email == "a@example.com"
        assert record.status is OtpStatus.ACTIVE
        assert (record.expires_at - clock.now()).total_seconds() == 600

    def test_second_issue_within_cooldown_rate_limited(self, otp_ledger, clock):
        otp_ledger.issue("a@example.com", VERIFY)
        clock.advance(seconds=20)

        with pytest.raises(RateLimitedError) as exc_info:
            otp_ledger.issue("a@example.com", VERIFY)

        assert exc_info.value.retry_after_seconds == 40

    def test_retry_after_at_least_one_second(self, otp_ledger, clock):
        otp_ledger.issue("a@example.com", VERIFY)
        clock.advance(seconds=59, microseconds=900000)

        with pytest.raises(RateLimitedError) as exc_info:
            otp_ledger.issue("a@example.com", VERIFY)

        assert exc_info.value.retry_after_seconds == 1

    def test_issue_allowed_after_cooldown(self, otp_ledger, clock):
        otp_ledger.issue("a@example.com", VERIFY)
        clock.advance(seconds=60)

        otp_ledger.issue("a@example.com", VERIFY)

    def test_cooldown_is_per_purpose(self, otp_ledger):
        otp_ledger.issue("a@example.com", VERIFY)
        otp_ledger.issue("a@example.com", RESET)

    def test_cooldown_is_per_email(self, otp_ledger):
        otp_ledger.issue("a@example.com", VERIFY)
        otp_ledger.issue("b@example.com", VERIFY)

    def test_rate_limited_issue_leaves_existing_code_usable(self, otp_ledger):
        code = otp_ledger.issue("a@example.com", VERIFY)
        with pytest.raises(RateLimitedError):
            otp_ledger.issue("a@example.com", VERIFY)

        assert otp_ledger.verify("a@example.com", code, VERIFY) is True

    def test_new_code_supersedes_previous(self, otp_ledger, clock):
        first = otp_ledger.issue("a@example.com", VERIFY)
        clock.advance(seconds=61)
        second = otp_ledger.issue("a@example.com", VERIFY)

        if first != second:
            assert otp_ledger.verify("a@example.com", first, VERIFY) is False
        assert otp_ledger.verify("a@example.com", second, VERIFY) is True

    def test_at_most_one_active_record(self, otp_ledger, auth_db, clock):
        for _ in range(3):
            otp_ledger.issue("a@example.com", VERIFY)
            clock.advance(seconds=61)

        active = [o for o in auth_db.otps.values() if o.status is OtpStatus.ACTIVE]
        assert len(active) == 1

    def test_concurrent_issue_single_winner(self, otp_ledger):
        """Many threads issuing for one pair: exactly one code, the rest rate limited."""
        barrier = threading.Barrier(8)
        codes, limited = [], []

        def attempt():
            barrier.wait()
            try:
                codes.append(otp_ledger.issue("race@example.com", VERIFY))
            except RateLimitedError:
                limited.append(True)

        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(codes) == 1
        assert len(limited) == 7


class TestVerify:
    """Test code verification and consumption."""

    def test_correct_code(self, otp_ledger):
        code = otp_ledger.issue("a@example.com", VERIFY)
        assert otp_ledger.verify("a@example.com", code, VERIFY) is True

    def test_email_normalized(self, otp_ledger):
        code = otp_ledger.issue("a@example.com", VERIFY)
        assert otp_ledger.verify("  A@EXAMPLE.COM", code, VERIFY) is True

    def test_wrong_code(self, otp_ledger):
        code = otp_ledger.issue("a@example.com", VERIFY)
        assert otp_ledger.verify("a@example.com", wrong_code(code), VERIFY) is False

    def test_wrong_code_does_not_consume(self, otp_ledger):
        code = otp_ledger.issue("a@example.com", VERIFY)
        otp_ledger.verify("a@example.com", wrong_code(code), VERIFY)

        assert otp_ledger.verify("a@example.com", code, VERIFY) is True

    def test_single_use(self, otp_ledger):
        code = otp_ledger.issue("a@example.com", VERIFY)

        assert otp_ledger.verify("a@example.com", code, VERIFY) is True
        assert otp_ledger.verify("a@example.com", code, VERIFY) is False

    def test_expired_code_rejected(self, otp_ledger, clock):
        code = otp_ledger.issue("a@example.com", VERIFY)
        clock.advance(minutes=10)

        assert otp_ledger.verify("a@example.com", code, VERIFY) is False

    def test_code_valid_just_before_expiry(self, otp_ledger, clock):
        code = otp_ledger.issue("a@example.com", VERIFY)
        clock.advance(minutes=9, seconds=59)

        assert otp_ledger.verify("a@example.com", code, VERIFY) is True

    def test_wrong_purpose_rejected(self, otp_ledger):
        code = otp_ledger.issue("a@example.com", VERIFY)
        assert otp_ledger.verify("a@example.com", code, RESET) is False

    def test_no_code_issued(self, otp_ledger):
        assert otp_ledger.verify("nobody@example.com", "123456", VERIFY) is False

    @pytest.mark.parametrize("malformed", ["", "12345", "1234567", "12a456", "      "])
    def test_malformed_code_rejected(self, otp_ledger, malformed):
        otp_ledger.issue("a@example.com", VERIFY)
        assert otp_ledger.verify("a@example.com", malformed, VERIFY) is False

    def test_consumed_record_marked_used(self, otp_ledger, auth_db, clock):
        code = otp_ledger.issue("a@example.com", VERIFY)
        otp_ledger.verify("a@example.com", code, VERIFY)

        (record,) = auth_db.otps.values()
        assert record.status is OtpStatus.USED
        assert record.used_at == clock.now()

    def test_concurrent_verify_single_winner(self, otp_ledger):
        """The same correct code verified from many threads succeeds exactly once."""
        code = otp_ledger.issue("race@example.com", VERIFY)
        barrier = threading.Barrier(6)
        results = []

        def attempt():
            barrier.wait()
            results.append(otp_ledger.verify("race@example.com", code, VERIFY))

        threads = [threading.Thread(target=attempt) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1


class TestPurgeExpired:
    """Test the expiry sweep."""

    def test_removes_only_expired(self, otp_ledger, auth_db, clock):
        otp_ledger.issue("old@example.com", VERIFY)
        clock.advance(minutes=11)
        otp_ledger.issue("new@example.com", VERIFY)

        assert otp_ledger.purge_expired() == 1
        assert [o.email for o in auth_db.otps.values()] == ["new@example.com"]

    def test_idempotent(self, otp_ledger, clock):
        otp_ledger.issue("old@example.com", VERIFY)
        clock.advance(minutes=11)

        assert otp_ledger.purge_expired() == 1
        assert otp_ledger.purge_expired() == 0

    def test_clears_stale_cooldown_markers(self, otp_ledger, auth_db, clock):
        otp_ledger.issue("old@example.com", VERIFY)
        clock.advance(minutes=11)

        otp_ledger.purge_expired()

        assert auth_db.otp_issuance == {}

    def test_keeps_live_cooldown_markers(self, otp_ledger, auth_db):
        otp_ledger.issue("fresh@example.com", VERIFY)

        otp_ledger.purge_expired()

        assert ("fresh@example.com", VERIFY.value) in auth_db.otp_issuance


class TestStats:
    """Test monitoring counts."""

    def test_counts(self, otp_ledger, clock):
        used = otp_ledger.issue("used@example.com", VERIFY)
        otp_ledger.verify("used@example.com", used, VERIFY)
        otp_ledger.issue("stale@example.com", VERIFY)
        clock.advance(minutes=11)
        otp_ledger.issue("live@example.com", VERIFY)

        stats = otp_ledger.stats()

        assert stats.total == 3
        assert stats.active == 1
        assert stats.used == 1
        # used@ and stale@ are both past expiry now
        assert stats.expired == 2
