"""Database operations for authentication.

Tables: users, otps, otp_issuance, sessions (see sql/auth_schema.sql).

Every method is one atomic step against PostgreSQL. The multi-statement
steps (issue_otp, rotate_session) run inside a single transaction and use
conditional writes, so concurrent callers can never both win.
"""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

import psycopg2.errors

from auth.exceptions import ConflictError
from auth.types import (
    Credentials,
    OtpPurpose,
    OtpRecord,
    OtpStats,
    OtpStatus,
    SessionRecord,
    SessionStatus,
    User,
)

if TYPE_CHECKING:
    from clients.postgres_client import PostgresClient

_USER_COLUMNS = "id, email, name, email_verified, created_at, updated_at"
_OTP_COLUMNS = (
    "id, email, purpose, hashed_code, expires_at, status, owner_user_id, created_at, used_at"
)
_SESSION_COLUMNS = (
    "id, hashed_secret, user_id, expires_at, status, user_agent, ip_address, "
    "created_at, revoked_at, replaced_by"
)


class AuthDatabase:
    """Database operations for authentication."""

    def __init__(self, postgres: "PostgresClient"):
        self._db = postgres

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def get_user_by_email(self, email: str) -> User | None:
        """Find user by email (case-insensitive)."""
        row = self._db.execute_single(
            f"SELECT {_USER_COLUMNS} FROM users WHERE email = lower(%s)",
            (email,),
        )
        return User.model_validate(row) if row else None

    def get_user_by_id(self, user_id: UUID) -> User | None:
        """Find user by ID."""
        row = self._db.execute_single(
            f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s",
            (user_id,),
        )
        return User.model_validate(row) if row else None

    def get_credentials_by_email(self, email: str) -> Credentials | None:
        """Find user by email with the password hash selected."""
        row = self._db.execute_single(
            f"SELECT {_USER_COLUMNS}, password_hash FROM users WHERE email = lower(%s)",
            (email,),
        )
        if row is None:
            return None
        password_hash = row.pop("password_hash")
        return Credentials(user=User.model_validate(row), password_hash=password_hash)

    def create_user(
        self, email: str, password_hash: str, name: str | None, now: datetime
    ) -> User:
        """Create new user with email (lowercased).

        Raises:
            ConflictError: If the email is already registered.
        """
        try:
            rows = self._db.execute_returning(
                f"""INSERT INTO users (id, email, name, password_hash, email_verified,
                                       created_at, updated_at)
                    VALUES (%s, lower(%s), %s, %s, false, %s, %s)
                    RETURNING {_USER_COLUMNS}""",
                (uuid4(), email, name, password_hash, now, now),
            )
        except psycopg2.errors.UniqueViolation:
            raise ConflictError("User with this email already exists")
        return User.model_validate(rows[0])

    def mark_email_verified(self, user_id: UUID, now: datetime) -> User | None:
        """Flip email_verified to true. Never flips it back.

        Returns:
            The updated user, or None if not found.
        """
        rows = self._db.execute_returning(
            f"""UPDATE users SET email_verified = true, updated_at = %s
                WHERE id = %s
                RETURNING {_USER_COLUMNS}""",
            (now, user_id),
        )
        return User.model_validate(rows[0]) if rows else None

    # ------------------------------------------------------------------
    # One-time codes
    # ------------------------------------------------------------------

    def issue_otp(self, record: OtpRecord, cooldown_cutoff: datetime) -> datetime | None:
        """Claim the cooldown slot, supersede prior codes and store a new one.

        One transaction. The issuance marker for (email, purpose) is only
        advanced if its last issuance is at or before cooldown_cutoff; the
        upsert's row lock makes concurrent issuers for the same pair queue
        behind each other, so at most one of them gets through per window.

        Returns:
            None if the record was stored; otherwise the timestamp of the
            issuance that still holds the cooldown.
        """
        purpose = record.purpose.value
        with self._db.transaction() as cur:
            cur.execute(
                """INSERT INTO otp_issuance (email, purpose, last_issued_at)
                   VALUES (%s, %s, %s)
                   ON CONFLICT (email, purpose) DO UPDATE
                       SET last_issued_at = EXCLUDED.last_issued_at
                       WHERE otp_issuance.last_issued_at <= %s
                   RETURNING last_issued_at""",
                (record.email, purpose, record.created_at, cooldown_cutoff),
            )
            if cur.fetchone() is None:
                cur.execute(
                    """SELECT last_issued_at FROM otp_issuance
                       WHERE email = %s AND purpose = %s""",
                    (record.email, purpose),
                )
                return cur.fetchone()["last_issued_at"]

            cur.execute(
                """UPDATE otps SET status = %s, used_at = %s
                   WHERE email = %s AND purpose = %s AND status = %s""",
                (
                    OtpStatus.USED.value,
                    record.created_at,
                    record.email,
                    purpose,
                    OtpStatus.ACTIVE.value,
                ),
            )
            cur.execute(
                f"""INSERT INTO otps ({_OTP_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)""",
                (
                    record.id,
                    record.email,
                    purpose,
                    record.hashed_code,
                    record.expires_at,
                    record.status.value,
                    record.owner_user_id,
                    record.created_at,
                    record.used_at,
                ),
            )
        return None

    def get_latest_active_otp(
        self, email: str, purpose: OtpPurpose, now: datetime
    ) -> OtpRecord | None:
        """Most recent unused, unexpired code for (email, purpose)."""
        row = self._db.execute_single(
            f"""SELECT {_OTP_COLUMNS} FROM otps
                WHERE email = %s AND purpose = %s AND status = %s AND expires_at > %s
                ORDER BY created_at DESC
                LIMIT 1""",
            (email, purpose.value, OtpStatus.ACTIVE.value, now),
        )
        return OtpRecord.model_validate(row) if row else None

    def consume_otp(self, otp_id: UUID, now: datetime) -> bool:
        """Mark a code used only if it is still active.

        Returns:
            True if this call consumed it, False if something else already had.
        """
        rows = self._db.execute_returning(
            """UPDATE otps SET status = %s, used_at = %s
               WHERE id = %s AND status = %s
               RETURNING id""",
            (OtpStatus.USED.value, now, otp_id, OtpStatus.ACTIVE.value),
        )
        return len(rows) > 0

    def delete_expired_otps(self, now: datetime, issuance_cutoff: datetime) -> int:
        """Delete expired codes and stale cooldown markers. Returns codes deleted."""
        with self._db.transaction() as cur:
            cur.execute("DELETE FROM otps WHERE expires_at < %s RETURNING id", (now,))
            deleted = len(cur.fetchall())
            cur.execute(
                "DELETE FROM otp_issuance WHERE last_issued_at < %s",
                (issuance_cutoff,),
            )
        return deleted

    def otp_stats(self, now: datetime) -> OtpStats:
        """Counts of total, active, expired and used codes."""
        row = self._db.execute_single(
            """SELECT count(*) AS total,
                      count(*) FILTER (WHERE status = %s AND expires_at >= %s) AS active,
                      count(*) FILTER (WHERE expires_at < %s) AS expired,
                      count(*) FILTER (WHERE status = %s) AS used
               FROM otps""",
            (OtpStatus.ACTIVE.value, now, now, OtpStatus.USED.value),
        )
        return OtpStats.model_validate(row)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def insert_session(self, record: SessionRecord) -> None:
        """Store a new session record."""
        self._db.execute_returning(
            f"""INSERT INTO sessions ({_SESSION_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING id""",
            _session_params(record),
        )

    def get_session_by_hash(self, hashed_secret: str) -> SessionRecord | None:
        """Find session by secret hash, whatever its status."""
        row = self._db.execute_single(
            f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE hashed_secret = %s",
            (hashed_secret,),
        )
        return SessionRecord.model_validate(row) if row else None

    def get_session(self, session_id: UUID) -> SessionRecord | None:
        """Find session by ID, whatever its status."""
        row = self._db.execute_single(
            f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE id = %s",
            (session_id,),
        )
        return SessionRecord.model_validate(row) if row else None

    def rotate_session(
        self, predecessor_id: UUID, successor: SessionRecord, now: datetime
    ) -> bool:
        """Revoke the predecessor (only if still active) and insert its successor.

        One transaction: either both happen or neither does.

        Returns:
            True if this call performed the rotation, False if the predecessor
            was no longer active (a concurrent rotation or logout won).
        """
        with self._db.transaction() as cur:
            cur.execute(
                """UPDATE sessions
                   SET status = %s, revoked_at = %s, replaced_by = %s
                   WHERE id = %s AND status = %s
                   RETURNING id""",
                (
                    SessionStatus.REVOKED.value,
                    now,
                    successor.id,
                    predecessor_id,
                    SessionStatus.ACTIVE.value,
                ),
            )
            if cur.fetchone() is None:
                return False
            cur.execute(
                f"""INSERT INTO sessions ({_SESSION_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)""",
                _session_params(successor),
            )
        return True

    def revoke_session(self, session_id: UUID, now: datetime) -> bool:
        """Revoke a session if active. Returns True if this call revoked it."""
        rows = self._db.execute_returning(
            """UPDATE sessions SET status = %s, revoked_at = %s
               WHERE id = %s AND status = %s
               RETURNING id""",
            (SessionStatus.REVOKED.value, now, session_id, SessionStatus.ACTIVE.value),
        )
        return len(rows) > 0

    def revoke_session_by_hash(self, hashed_secret: str, now: datetime) -> bool:
        """Revoke the session holding this secret hash, if active."""
        rows = self._db.execute_returning(
            """UPDATE sessions SET status = %s, revoked_at = %s
               WHERE hashed_secret = %s AND status = %s
               RETURNING id""",
            (SessionStatus.REVOKED.value, now, hashed_secret, SessionStatus.ACTIVE.value),
        )
        return len(rows) > 0

    def revoke_user_sessions(self, user_id: UUID, now: datetime) -> int:
        """Revoke every active session for the user. Returns count revoked."""
        rows = self._db.execute_returning(
            """UPDATE sessions SET status = %s, revoked_at = %s
               WHERE user_id = %s AND status = %s
               RETURNING id""",
            (SessionStatus.REVOKED.value, now, user_id, SessionStatus.ACTIVE.value),
        )
        return len(rows)

    def list_active_sessions(self, user_id: UUID, now: datetime) -> list[SessionRecord]:
        """Active, unexpired sessions for the user, newest first."""
        rows = self._db.execute(
            f"""SELECT {_SESSION_COLUMNS} FROM sessions
                WHERE user_id = %s AND status = %s AND expires_at > %s
                ORDER BY created_at DESC""",
            (user_id, SessionStatus.ACTIVE.value, now),
        )
        return [SessionRecord.model_validate(row) for row in rows]

    def delete_expired_sessions(self, now: datetime) -> int:
        """Delete expired sessions. Returns count deleted."""
        rows = self._db.execute_returning(
            "DELETE FROM sessions WHERE expires_at < %s RETURNING id",
            (now,),
        )
        return len(rows)


def _session_params(record: SessionRecord) -> tuple:
    return (
        record.id,
        record.hashed_secret,
        record.user_id,
        record.expires_at,
        record.status.value,
        record.user_agent,
        record.ip_address,
        record.created_at,
        record.revoked_at,
        record.replaced_by,
    )
