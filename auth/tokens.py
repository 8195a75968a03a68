"""Access token issuance and verification.

Tokens are HS256 JWTs (python-jose) carrying the subject, email, verification
flag and expiry. They are stateless: validity is signature plus expiry, and
there is no revocation list. The short TTL bounds how long a leaked token is
useful.

Expiry is checked against the injected Clock rather than the library's own
wall-clock check so tests can move time deterministically.
"""

import logging
from datetime import timedelta
from uuid import UUID

from jose import JWTError, jwt
from pydantic import ValidationError

from auth.config import AuthConfig
from auth.exceptions import InvalidTokenError
from auth.types import AccessTokenClaims
from utils.timezone import Clock, from_timestamp

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
TOKEN_TYPE = "access"
MIN_SECRET_LENGTH = 32


class TokenIssuer:
    """Mints and verifies signed access tokens."""

    def __init__(self, secret_key: str, config: AuthConfig, clock: Clock | None = None):
        if not secret_key or len(secret_key) < MIN_SECRET_LENGTH:
            raise ValueError(f"JWT secret must be at least {MIN_SECRET_LENGTH} characters long")
        self._secret_key = secret_key
        self._ttl = timedelta(minutes=config.access_token_ttl_minutes)
        self._clock = clock or Clock()

    def mint(self, user_id: UUID, email: str, email_verified: bool) -> str:
        """Encode a signed access token for the user."""
        now = self._clock.now()
        payload = {
            "sub": str(user_id),
            "email": email,
            "email_verified": email_verified,
            "type": TOKEN_TYPE,
            "iat": int(now.timestamp()),
            "exp": int((now + self._ttl).timestamp()),
        }
        return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)

    def verify(self, token: str) -> AccessTokenClaims:
        """Decode and validate a token.

        Raises:
            InvalidTokenError: Bad signature, wrong type, missing claims, or expired.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as e:
            logger.warning(f"Rejected access token: {e}")
            raise InvalidTokenError("Invalid access token")

        if payload.get("type") != TOKEN_TYPE:
            raise InvalidTokenError("Invalid access token")

        try:
            claims = AccessTokenClaims(
                user_id=UUID(payload["sub"]),
                email=payload["email"],
                email_verified=payload["email_verified"],
                issued_at=from_timestamp(payload["iat"]),
                expires_at=from_timestamp(payload["exp"]),
            )
        except (KeyError, TypeError, ValueError, ValidationError):
            raise InvalidTokenError("Invalid access token")

        if self._clock.now() >= claims.expires_at:
            raise InvalidTokenError("Access token expired")

        return claims
