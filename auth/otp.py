"""One-time code issuance and verification.

Codes are numeric, generated with the secrets module, and persisted only as
bcrypt hashes. Issuance is throttled per (email, purpose) by a cooldown that
is enforced inside the same store transaction that supersedes older codes
and inserts the new one. Verification consumes a code at most once.
"""

import logging
import math
import secrets
from datetime import timedelta
from uuid import UUID, uuid4

from auth.config import AuthConfig
from auth.database import AuthDatabase
from auth.exceptions import RateLimitedError
from auth.passwords import hash_secret, verify_secret
from auth.types import OtpPurpose, OtpRecord, OtpStats, OtpStatus
from utils.timezone import Clock

logger = logging.getLogger(__name__)


class OtpLedger:
    """Issues and verifies one-time codes with cooldown and single-use semantics."""

    def __init__(self, auth_db: AuthDatabase, config: AuthConfig, clock: Clock | None = None):
        self._auth_db = auth_db
        self._config = config
        self._clock = clock or Clock()
        self._cooldown = timedelta(seconds=config.otp_cooldown_seconds)
        self._expiry = timedelta(minutes=config.otp_expiry_minutes)

    def _generate_code(self) -> str:
        """Uniformly random code with exactly otp_length digits (no leading-zero loss)."""
        return "".join(secrets.choice("0123456789") for _ in range(self._config.otp_length))

    def issue(
        self,
        email: str,
        purpose: OtpPurpose,
        owner_user_id: UUID | None = None,
    ) -> str:
        """Issue a new code for (email, purpose).

        Any previously issued unused code for the pair stops working.

        Returns:
            The plaintext code, for out-of-band delivery. Only its hash is stored.

        Raises:
            RateLimitedError: If the last issuance is still within the cooldown.
            TransientError: If the store is unavailable.
        """
        email = email.strip().lower()
        now = self._clock.now()
        code = self._generate_code()

        record = OtpRecord(
            id=uuid4(),
            email=email,
            purpose=purpose,
            hashed_code=hash_secret(code, self._config.otp_hash_rounds),
            expires_at=now + self._expiry,
            status=OtpStatus.ACTIVE,
            owner_user_id=owner_user_id,
            created_at=now,
        )

        blocking_issuance = self._auth_db.issue_otp(record, cooldown_cutoff=now - self._cooldown)
        if blocking_issuance is not None:
            remaining = (blocking_issuance + self._cooldown - now).total_seconds()
            retry_after = max(math.ceil(remaining), 1)
            logger.warning(f"OTP cooldown active for {email} ({purpose.value}), {retry_after}s left")
            raise RateLimitedError(retry_after_seconds=retry_after)

        logger.info(f"OTP issued for {email} ({purpose.value})")
        return code

    def verify(self, email: str, code: str, purpose: OtpPurpose) -> bool:
        """Check a code and consume it on match.

        Returns False for every failure (no code, expired, wrong code, already
        consumed by a concurrent caller) so callers cannot tell which codes
        exist. A failed attempt never changes stored state.
        """
        email = email.strip().lower()
        code = code.strip()
        if len(code) != self._config.otp_length or not code.isdigit():
            logger.warning(f"Malformed OTP attempted for {email}")
            return False

        now = self._clock.now()
        record = self._auth_db.get_latest_active_otp(email, purpose, now)

        if record is None:
            logger.warning(f"No valid OTP found for {email} ({purpose.value})")
            return False

        # The query filters on expiry too
        if not record.is_usable(now):
            logger.warning(f"Expired OTP attempted for {email} ({purpose.value})")
            return False

        if not verify_secret(code, record.hashed_code):
            logger.warning(f"Invalid OTP attempted for {email} ({purpose.value})")
            return False

        if not self._auth_db.consume_otp(record.id, now):
            logger.warning(f"OTP for {email} was consumed concurrently")
            return False

        logger.info(f"OTP verified for {email} ({purpose.value})")
        return True

    def purge_expired(self) -> int:
        """Delete expired codes. Idempotent; safe alongside live traffic.

        Expiry is also enforced at verify time, so running this late
        (or never) affects storage only, not correctness.
        """
        now = self._clock.now()
        deleted = self._auth_db.delete_expired_otps(now, issuance_cutoff=now - self._cooldown)
        if deleted > 0:
            logger.info(f"Cleaned up {deleted} expired OTPs")
        return deleted

    def stats(self) -> OtpStats:
        """Counts for monitoring."""
        return self._auth_db.otp_stats(self._clock.now())
