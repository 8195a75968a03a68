"""Security event logging for auth audit trail.

Append-only log to the security_events table. Recording is best-effort:
a failed audit write is reported through the application log and never
undoes the auth step it describes.
"""

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from psycopg2.extras import Json

from auth.exceptions import TransientError
from utils.timezone import now_utc

if TYPE_CHECKING:
    from clients.postgres_client import PostgresClient

logger = logging.getLogger(__name__)


class SecurityEvent(Enum):
    """Auth security event types."""

    USER_REGISTERED = "user_registered"
    OTP_ISSUED = "otp_issued"
    OTP_DELIVERY_FAILED = "otp_delivery_failed"
    OTP_RATE_LIMITED = "otp_rate_limited"
    EMAIL_VERIFIED = "email_verified"
    EMAIL_VERIFICATION_FAILED = "email_verification_failed"
    LOGIN_SUCCEEDED = "login_succeeded"
    LOGIN_FAILED = "login_failed"
    LOGIN_RATE_LIMITED = "login_rate_limited"
    SESSION_CREATED = "session_created"
    SESSION_ROTATED = "session_rotated"
    SESSION_REVOKED = "session_revoked"
    SESSIONS_REVOKED_ALL = "sessions_revoked_all"
    REFRESH_FAILED = "refresh_failed"
    REFRESH_TOKEN_REUSE = "refresh_token_reuse"


# Events that indicate a possible stolen credential
SUSPICIOUS_EVENTS = frozenset({SecurityEvent.REFRESH_TOKEN_REUSE})


class SecurityLogger:
    """Append-only security event logger."""

    def __init__(self, postgres: "PostgresClient"):
        self._db = postgres

    def log(
        self,
        event: SecurityEvent,
        email: str | None = None,
        user_id: UUID | None = None,
        session_id: UUID | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Log security event to database."""
        if event in SUSPICIOUS_EVENTS:
            logger.warning(
                f"Suspicious auth event {event.value}: user={user_id} session={session_id} "
                f"ip={ip_address} details={details}"
            )

        try:
            self._db.execute_returning(
                """INSERT INTO security_events
                   (event_type, email, user_id, session_id, ip_address, user_agent,
                    details, created_at)
                   VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                   RETURNING id""",
                (
                    event.value,
                    email,
                    user_id,
                    session_id,
                    ip_address,
                    user_agent,
                    Json(details) if details else None,
                    now_utc(),
                ),
            )
        except TransientError:
            logger.error(f"Failed to record security event {event.value} for user={user_id}")

    def get_recent_events(
        self,
        email: str | None = None,
        user_id: UUID | None = None,
        event_type: SecurityEvent | None = None,
        limit: int = 100,
    ) -> list[dict]:
        """Query recent security events with optional filters."""
        conditions = []
        params = []

        if email:
            conditions.append("email = %s")
            params.append(email)

        if user_id:
            conditions.append("user_id = %s")
            params.append(user_id)

        if event_type:
            conditions.append("event_type = %s")
            params.append(event_type.value)

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        params.append(limit)

        return self._db.execute(
            f"""SELECT id, event_type, email, user_id, session_id, ip_address, user_agent,
                       details, created_at
                FROM security_events
                WHERE {where_clause}
                ORDER BY created_at DESC, id DESC
                LIMIT %s""",
            tuple(params),
        )
