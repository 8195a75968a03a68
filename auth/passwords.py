"""Password and one-time-code hashing (bcrypt, used directly).

bcrypt is used for both low-entropy secrets: passwords at the configured
cost factor, OTP codes at a lower one since they also expire within
minutes. Refresh tokens are high-entropy and use SHA-256 instead
(see auth.session).
"""

import bcrypt

# bcrypt only looks at the first 72 bytes of input
MAX_PASSWORD_BYTES = 72


def hash_secret(plain: str, rounds: int) -> str:
    """Return a bcrypt hash of the given plaintext at the given cost factor."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_secret(plain: str, hashed: str) -> bool:
    """Return True if the plaintext matches the bcrypt hash.

    A malformed stored hash counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


class PasswordHasher:
    """Fixed-cost password hashing with timing equalization for unknown users."""

    def __init__(self, rounds: int = 12):
        self._rounds = rounds
        # Computed once so a lookup miss costs the same as a real comparison
        self._dummy_hash = hash_secret("timing-equalization-dummy", rounds)

    def hash(self, password: str) -> str:
        return hash_secret(password, self._rounds)

    def verify(self, password: str, hashed: str) -> bool:
        return verify_secret(password, hashed)

    def burn(self, password: str) -> None:
        """Spend one comparison's worth of time against a dummy hash."""
        verify_secret(password, self._dummy_hash)
