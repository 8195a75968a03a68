"""Per-email throttling of password checks, counted in Valkey.

Every attempt bumps a counter and pushes its expiry out by the full window,
so an address under sustained guessing stays locked until the attempts stop.

OTP issuance is throttled separately, inside the OTP store transaction
(see auth.otp).
"""

from typing import TYPE_CHECKING

from auth.config import AuthConfig
from auth.exceptions import RateLimitedError

if TYPE_CHECKING:
    from clients.valkey_client import ValkeyClient


class LoginRateLimiter:
    """Counts login attempts per email and rejects those over the limit."""

    KEY_PREFIX = "ratelimit:login:"

    def __init__(self, valkey: "ValkeyClient", config: AuthConfig):
        self._valkey = valkey
        self._limit = config.login_rate_limit_attempts
        self._window_seconds = config.login_rate_limit_window_seconds

    def _key(self, email: str) -> str:
        return self.KEY_PREFIX + email.strip().lower()

    def check_rate_limit(self, email: str) -> None:
        """Record one attempt for the email.

        Raises:
            RateLimitedError: More than the allowed attempts inside the window.
            TransientError: Valkey is unreachable; the attempt is not allowed through.
        """
        key = self._key(email)
        attempts = self._valkey.incr_with_expiry(key, self._window_seconds)
        if attempts <= self._limit:
            return

        raise RateLimitedError(retry_after_seconds=max(self._valkey.ttl(key), 1))

    def reset_rate_limit(self, email: str) -> None:
        """Forget the email's attempts (called after a successful login)."""
        self._valkey.delete(self._key(email))

    def get_remaining_attempts(self, email: str) -> int:
        used = self._valkey.get(self._key(email))
        if used is None:
            return self._limit
        return max(self._limit - int(used), 0)
