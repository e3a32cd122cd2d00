"""
ServerConnection - psycopg2 access to the PostgreSQL server.

Every session runs in autocommit with a statement_timeout so no call can
block indefinitely. A pool sized to the fetch fan-out backs the connection;
with the default fan-out of 1 it holds a single session.
"""

import logging
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Sequence, Tuple

import psycopg2
import psycopg2.errors
import psycopg2.pool

from ..errors import ConnectionError

logger = logging.getLogger(__name__)

APPLICATION_NAME = "pg_rewarm"


class ServerConnection:
    """Pooled psycopg2 connection owned by one CacheManager operation."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5432,
        user: str = "postgres",
        password: str = "",
        database: str = "postgres",
        connect_timeout: int = 10,
        statement_timeout_ms: int = 30000,
        pool_size: int = 1,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.database = database
        self.connect_timeout = connect_timeout
        self.statement_timeout_ms = statement_timeout_ms
        self.pool_size = max(1, pool_size)
        self._pool: Optional[psycopg2.pool.ThreadedConnectionPool] = None

    @property
    def dsn_summary(self) -> str:
        return f"{self.user}@{self.host}:{self.port}/{self.database}"

    @property
    def is_connected(self) -> bool:
        return self._pool is not None and not self._pool.closed

    def connect(self) -> 'ServerConnection':
        """
        Open the pool and its first session.

        Raises:
            ConnectionError: server unreachable or authentication failed
        """
        logger.debug("Connecting to %s (pool size %d)", self.dsn_summary, self.pool_size)
        try:
            self._pool = psycopg2.pool.ThreadedConnectionPool(
                1,
                self.pool_size,
                host=self.host,
                port=self.port,
                user=self.user,
                password=self.password or None,
                dbname=self.database,
                connect_timeout=self.connect_timeout,
                application_name=APPLICATION_NAME,
                options=f"-c statement_timeout={int(self.statement_timeout_ms)}",
            )
        except psycopg2.Error as e:
            raise ConnectionError(f"Cannot connect to {self.dsn_summary}: {e}".strip()) from e
        return self

    @contextmanager
    def cursor(self) -> Iterator[Any]:
        """Check out a session from the pool and yield a cursor on it."""
        if not self.is_connected:
            raise ConnectionError(f"Not connected to {self.dsn_summary}")
        try:
            conn = self._pool.getconn()
        except psycopg2.Error as e:
            raise ConnectionError(f"Lost connection to {self.dsn_summary}: {e}".strip()) from e

        broken = False
        try:
            if not conn.autocommit:
                conn.autocommit = True
            with conn.cursor() as cur:
                yield cur
        except psycopg2.Error:
            broken = bool(conn.closed)
            raise
        finally:
            self._pool.putconn(conn, close=broken)

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Tuple]:
        """
        Run one statement and return all rows.

        Dropped sessions surface as ConnectionError; SQL errors propagate
        as the psycopg2 exception so callers can classify them.
        """
        try:
            with self.cursor() as cur:
                cur.execute(sql, params)
                if cur.description is None:
                    return []
                return cur.fetchall()
        except (psycopg2.InterfaceError, psycopg2.OperationalError) as e:
            if isinstance(e, psycopg2.errors.QueryCanceled):
                raise
            raise ConnectionError(f"Lost connection to {self.dsn_summary}: {e}".strip()) from e

    def query_one(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Tuple]:
        rows = self.query(sql, params)
        return rows[0] if rows else None

    def close(self):
        """Close every pooled session."""
        if self._pool is not None and not self._pool.closed:
            self._pool.closeall()
        self._pool = None
