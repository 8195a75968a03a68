"""
Valkey (Redis-compatible) client for login throttling.

Simple wrapper around redis-py. Connection URL from Vault.
Fail-fast: connection problems surface as TransientError, never as
fallback values.
"""

import logging
from contextlib import contextmanager

import redis

from auth.exceptions import TransientError

logger = logging.getLogger(__name__)


class ValkeyClient:
    """
    Redis-compatible client for Valkey.

    Usage:
        client = ValkeyClient("redis://localhost:6379/0")
        count = client.incr_with_expiry("key", 60)
        client.ttl("key")  # remaining seconds
    """

    def __init__(self, url: str, socket_timeout: float = 2.0):
        """
        Initialize Valkey connection.

        Args:
            url: Redis-compatible connection URL (e.g., redis://localhost:6379/0)
            socket_timeout: Seconds before a command is abandoned

        Raises:
            TransientError: If connection fails
        """
        self._client = redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        # Verify connectivity immediately (fail-fast)
        self.ping()
        logger.info("ValkeyClient connected")

    @contextmanager
    def _translate_errors(self):
        try:
            yield
        except redis.RedisError as e:
            logger.error(f"Valkey operation failed: {e.__class__.__name__}: {e}")
            raise TransientError("Rate limit store unavailable") from e

    def ping(self) -> bool:
        """
        Health check.

        Returns True if Valkey responds.
        Raises TransientError if unreachable.
        """
        with self._translate_errors():
            self._client.ping()
        return True

    def get(self, key: str) -> str | None:
        """
        Get value by key.

        Returns None if key doesn't exist (not an error).
        """
        with self._translate_errors():
            return self._client.get(key)

    def delete(self, key: str) -> bool:
        """
        Delete key.

        Returns True if key existed and was deleted, False if key didn't exist.
        """
        with self._translate_errors():
            return self._client.delete(key) > 0

    def ttl(self, key: str) -> int:
        """
        Get remaining TTL in seconds.

        Returns:
            -2 if key doesn't exist
            -1 if key has no expiration
            Positive int: remaining seconds
        """
        with self._translate_errors():
            return self._client.ttl(key)

    def incr_with_expiry(self, key: str, expire_seconds: int) -> int:
        """
        Increment key by 1 and (re)set its TTL in one MULTI/EXEC block.

        Creates key with value 1 if it doesn't exist.
        Returns the new value.
        """
        with self._translate_errors():
            pipe = self._client.pipeline(transaction=True)
            pipe.incr(key)
            pipe.expire(key, expire_seconds)
            count, _ = pipe.execute()
            return count

    def close(self) -> None:
        """Close the connection."""
        self._client.close()
        logger.info("ValkeyClient closed")
