"""
PostgreSQL client with connection pooling and transactional units of work.

Uses psycopg2 with ThreadedConnectionPool. Every pooled connection gets a
statement_timeout so no store call can hang a flow indefinitely.

Failure model: connection errors, timeouts and pool exhaustion are raised
as TransientError (retryable). IntegrityError passes through untouched so
callers can map constraint violations to domain errors.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Tuple
from uuid import UUID

import psycopg2
import psycopg2.extras
import psycopg2.pool

from auth.exceptions import TransientError

logger = logging.getLogger(__name__)

# Global type adapter registration flag (JSONB, UUID)
_adapters_registered = False


class PostgresClient:
    """
    PostgreSQL client.

    Usage:
        db = PostgresClient(database_url)

        # Single statement, autocommitted
        rows = db.execute("SELECT id FROM users WHERE email = %s", (email,))

        # Several statements that must land together
        with db.transaction() as cur:
            cur.execute("UPDATE ...")
            cur.execute("INSERT ...")
    """

    # Class-level connection pools shared across instances
    _connection_pools: Dict[str, psycopg2.pool.ThreadedConnectionPool] = {}
    _pools_lock = threading.RLock()

    def __init__(
        self,
        database_url: str,
        statement_timeout_ms: int = 5000,
        connect_timeout: int = 10,
        max_connections: int = 20,
    ):
        self._database_url = database_url
        self._statement_timeout_ms = statement_timeout_ms
        self._connect_timeout = connect_timeout
        self._max_connections = max_connections
        self._ensure_connection_pool()

    def _ensure_connection_pool(self) -> None:
        """Create connection pool if it doesn't exist."""
        with self._pools_lock:
            if self._database_url not in self._connection_pools:
                try:
                    pool = psycopg2.pool.ThreadedConnectionPool(
                        minconn=1,
                        maxconn=self._max_connections,
                        dsn=self._database_url,
                        connect_timeout=self._connect_timeout,
                        options=f"-c statement_timeout={self._statement_timeout_ms}",
                    )
                except psycopg2.OperationalError as e:
                    logger.error(f"Could not create connection pool: {e}")
                    raise TransientError("Database unavailable") from e

                global _adapters_registered
                if not _adapters_registered:
                    psycopg2.extras.register_default_jsonb(globally=True)
                    psycopg2.extras.register_uuid()
                    _adapters_registered = True

                self._connection_pools[self._database_url] = pool
                logger.info("Connection pool created")

    @contextmanager
    def get_connection(self):
        """Borrow a pooled connection; always returned to the pool."""
        if self._database_url not in self._connection_pools:
            self._ensure_connection_pool()

        pool = self._connection_pools[self._database_url]
        conn = None

        try:
            try:
                conn = pool.getconn()
            except psycopg2.pool.PoolError as e:
                logger.error(f"Connection pool exhausted: {e}")
                raise TransientError("Database unavailable") from e
            if conn is None:
                raise TransientError("Database unavailable")

            yield conn

        finally:
            if conn:
                # Broken connections are discarded rather than recycled
                pool.putconn(conn, close=bool(conn.closed))

    @contextmanager
    def transaction(self) -> Iterator[psycopg2.extras.RealDictCursor]:
        """
        Run several statements as one atomic step.

        Commits when the block exits normally, rolls back on any exception.
        Driver errors other than IntegrityError are raised as TransientError
        without leaking driver detail to the caller.
        """
        with self.get_connection() as conn:
            try:
                with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                    yield cur
                conn.commit()
            except psycopg2.IntegrityError:
                conn.rollback()
                raise
            except psycopg2.Error as e:
                if not conn.closed:
                    conn.rollback()
                logger.error(f"Database operation failed: {e.__class__.__name__}: {e}")
                raise TransientError("Database unavailable") from e
            except BaseException:
                if not conn.closed:
                    conn.rollback()
                raise

    def _convert_params(self, params: Tuple | Dict | None) -> Tuple | Dict | None:
        """Convert UUID objects to strings."""
        if params is None:
            return None

        def convert(value: Any) -> Any:
            if isinstance(value, UUID):
                return str(value)
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, tuple):
                return tuple(convert(v) for v in value)
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(params)

    def execute(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute query, return list of row dicts. Empty list if no results."""
        with self.transaction() as cur:
            cur.execute(query, self._convert_params(params))
            if cur.description:
                return [dict(row) for row in cur.fetchall()]
            return []

    def execute_single(self, query: str, params: Tuple | Dict | None = None) -> Dict[str, Any] | None:
        """Execute query, return first row or None."""
        results = self.execute(query, params)
        return results[0] if results else None

    def execute_scalar(self, query: str, params: Tuple | Dict | None = None) -> Any:
        """Execute query, return first value of first row or None."""
        row = self.execute_single(query, params)
        return next(iter(row.values())) if row else None

    def execute_returning(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute INSERT/UPDATE/DELETE with RETURNING, return results."""
        with self.transaction() as cur:
            cur.execute(query, self._convert_params(params))
            return [dict(row) for row in cur.fetchall()]

    def close(self) -> None:
        """Close connection pool."""
        with self._pools_lock:
            if self._database_url in self._connection_pools:
                self._connection_pools[self._database_url].closeall()
                del self._connection_pools[self._database_url]
