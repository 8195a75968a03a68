"""Refresh-token session lifecycle management.

Sessions are rows in PostgreSQL keyed by the SHA-256 hash of an opaque
secret (secrets.token_urlsafe). The plaintext secret goes to the client
once and is never stored.

Rotation is single-use: the presented session is revoked and its successor
inserted in one transaction, conditional on the presented session still
being active. Two callers racing on one secret cannot both succeed.
"""

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from uuid import UUID, uuid4

from auth.config import AuthConfig
from auth.database import AuthDatabase
from auth.exceptions import (
    InvalidTokenError,
    RotationConflictError,
    SessionExpiredError,
    SessionNotFoundError,
    SessionRevokedError,
)
from auth.types import SessionInfo, SessionRecord, SessionStatus
from utils.timezone import Clock

logger = logging.getLogger(__name__)


@dataclass
class RotationResult:
    """Result of a successful rotation. secret is the only copy of the new plaintext."""

    session_id: UUID
    user_id: UUID
    secret: str


class SessionRegistry:
    """Persists refresh-token sessions; performs atomic rotation and revocation."""

    SECRET_BYTES = 32  # 256 bits

    def __init__(self, auth_db: AuthDatabase, config: AuthConfig, clock: Clock | None = None):
        self._auth_db = auth_db
        self._clock = clock or Clock()
        self._ttl = timedelta(days=config.refresh_token_ttl_days)

    @classmethod
    def generate_secret(cls) -> str:
        """Cryptographically secure opaque refresh secret."""
        return secrets.token_urlsafe(cls.SECRET_BYTES)

    @staticmethod
    def hash_secret(secret: str) -> str:
        """One-way hash used as the lookup key. Secrets are high-entropy, so no salt."""
        return hashlib.sha256(secret.encode("utf-8")).hexdigest()

    def _new_record(
        self, user_id: UUID, secret: str, user_agent: str | None, ip_address: str | None
    ) -> SessionRecord:
        now = self._clock.now()
        return SessionRecord(
            id=uuid4(),
            hashed_secret=self.hash_secret(secret),
            user_id=user_id,
            expires_at=now + self._ttl,
            status=SessionStatus.ACTIVE,
            user_agent=user_agent,
            ip_address=ip_address,
            created_at=now,
        )

    def create(
        self,
        user_id: UUID,
        secret: str,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> UUID:
        """Store a new session for the secret. Returns the session id."""
        record = self._new_record(user_id, secret, user_agent, ip_address)
        self._auth_db.insert_session(record)
        return record.id

    def rotate(
        self,
        presented_secret: str,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> RotationResult:
        """Exchange a refresh secret for a new one.

        Raises:
            InvalidTokenError: Secret unknown.
            SessionRevokedError: Secret already revoked (reuse of a rotated or logged-out token).
            SessionExpiredError: Session past expiry; it is revoked as a side effect,
                and later presentations keep getting this error.
            RotationConflictError: A concurrent rotation consumed the secret first.
        """
        record = self._auth_db.get_session_by_hash(self.hash_secret(presented_secret))

        if record is None:
            raise InvalidTokenError("Invalid refresh token")

        if record.status is SessionStatus.REVOKED:
            if self._lapsed(record):
                raise SessionExpiredError("Refresh token expired")
            raise SessionRevokedError("Refresh token has been revoked")

        now = self._clock.now()
        if now >= record.expires_at:
            self._auth_db.revoke_session(record.id, now)
            raise SessionExpiredError("Refresh token expired")

        new_secret = self.generate_secret()
        successor = self._new_record(
            record.user_id,
            new_secret,
            user_agent if user_agent is not None else record.user_agent,
            ip_address if ip_address is not None else record.ip_address,
        )

        if not self._auth_db.rotate_session(record.id, successor, now):
            raise RotationConflictError("Refresh token was already rotated")

        return RotationResult(session_id=successor.id, user_id=record.user_id, secret=new_secret)

    @staticmethod
    def _lapsed(record: SessionRecord) -> bool:
        # Revoked at or after expiry and never rotated: closed by the expiry check
        return (
            record.replaced_by is None
            and record.revoked_at is not None
            and record.revoked_at >= record.expires_at
        )

    def owner_of(self, secret: str) -> UUID | None:
        """User id of the session holding this secret, whatever its status."""
        record = self._auth_db.get_session_by_hash(self.hash_secret(secret))
        return record.user_id if record is not None else None

    def revoke_by_secret(self, secret: str) -> bool:
        """Revoke the session holding this secret.

        Safe to call with unknown or already revoked secrets.

        Returns:
            True if a session was revoked by this call.
        """
        return self._auth_db.revoke_session_by_hash(self.hash_secret(secret), self._clock.now())

    def revoke_one(self, user_id: UUID, session_id: UUID) -> None:
        """Revoke one of the user's sessions. No-op if already revoked.

        Raises:
            SessionNotFoundError: Session absent or owned by someone else.
        """
        record = self._auth_db.get_session(session_id)
        if record is None or record.user_id != user_id:
            raise SessionNotFoundError("Session not found")
        self._auth_db.revoke_session(session_id, self._clock.now())

    def revoke_all(self, user_id: UUID) -> int:
        """Revoke every active session for the user. Returns count revoked."""
        return self._auth_db.revoke_user_sessions(user_id, self._clock.now())

    def list_active(self, user_id: UUID) -> list[SessionInfo]:
        """Active sessions, newest first. Secrets and hashes are never included."""
        records = self._auth_db.list_active_sessions(user_id, self._clock.now())
        return [record.to_info() for record in records]

    def purge_expired(self) -> int:
        """Delete expired sessions. Idempotent; safe alongside live traffic."""
        deleted = self._auth_db.delete_expired_sessions(self._clock.now())
        if deleted > 0:
            logger.info(f"Cleaned up {deleted} expired sessions")
        return deleted
