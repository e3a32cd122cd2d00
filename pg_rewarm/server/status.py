"""
ServerStatus - point-in-time PostgreSQL counters used for reporting.

Provides:
- server version and block size
- bytes read from disk by the current database (pg_stat_database)
- shared_buffers capacity in pages (pg_settings)
- buffers currently holding a relation page (pg_buffercache)
"""

import logging
import re
from typing import Any, Dict, Optional, Tuple

import psycopg2

from ..errors import ConnectionError, IntrospectionUnavailableError, RewarmError
from .connection import ServerConnection

logger = logging.getLogger(__name__)

STATUS_KEYS = (
    "server_version",
    "database",
    "block_size",
    "data_read",
    "buffer_pool_pages_total",
    "buffer_pool_pages_data",
)


def query_error(error: psycopg2.Error, context: str) -> RewarmError:
    """
    Classify a failed catalog or status query.

    Timeouts and dropped sessions become ConnectionError; anything else
    (missing privilege, undefined view) is IntrospectionUnavailableError.
    """
    message = f"{context}: {str(error).strip() or type(error).__name__}"
    if isinstance(error, (psycopg2.OperationalError, psycopg2.InterfaceError)):
        return ConnectionError(message)
    return IntrospectionUnavailableError(message)


def major_version(server_version: str) -> Optional[Tuple[int, ...]]:
    """
    Major release of a server_version string.

    From 10 on the first number is the major; before that it is the
    first two ("9.6.24" -> (9, 6), "16.2 (Debian)" -> (16,)).
    """
    match = re.match(r"\s*(\d+)(?:\.(\d+))?", str(server_version or ""))
    if not match:
        return None
    first = int(match.group(1))
    if first >= 10:
        return (first,)
    return (first, int(match.group(2) or 0))


def extension_installed(connection: ServerConnection, name: str) -> bool:
    """Check pg_extension for ``name`` in the current database."""
    try:
        row = connection.query_one(
            "SELECT 1 FROM pg_extension WHERE extname = %s",
            (name,),
        )
    except psycopg2.Error as e:
        raise query_error(e, f"Cannot check for extension {name}") from e
    return row is not None


class ServerStatus:
    """
    Reads server counters.

    buffer_pool_pages_data is None when pg_buffercache is not installed,
    since PostgreSQL has no other way to count occupied buffers.
    """

    def __init__(self, connection: ServerConnection):
        self.conn = connection
        self._has_buffercache: Optional[bool] = None

    @property
    def has_buffercache(self) -> bool:
        if self._has_buffercache is None:
            self._has_buffercache = extension_installed(self.conn, "pg_buffercache")
        return self._has_buffercache

    def snapshot(self) -> Dict[str, Any]:
        """
        Collect current counters as a plain dict.

        Raises:
            ConnectionError: timeout or lost session
            IntrospectionUnavailableError: counters not readable
        """
        try:
            row = self.conn.query_one("""
                SELECT
                    current_setting('server_version'),
                    current_database(),
                    current_setting('block_size')::bigint,
                    (SELECT setting::bigint FROM pg_settings WHERE name = 'shared_buffers'),
                    (SELECT coalesce(blks_read, 0) FROM pg_stat_database
                      WHERE datname = current_database())
            """)
        except psycopg2.Error as e:
            raise query_error(e, "Cannot read server status") from e
        server_version, database, block_size, shared_buffers, blks_read = row

        status = {
            "server_version": server_version,
            "database": database,
            "block_size": int(block_size),
            "data_read": int(blks_read or 0) * int(block_size),
            "buffer_pool_pages_total": int(shared_buffers),
            "buffer_pool_pages_data": self._get_pages_data(),
        }
        logger.debug("Server status: %s", status)
        return status

    def _get_pages_data(self) -> Optional[int]:
        if not self.has_buffercache:
            return None
        try:
            row = self.conn.query_one(
                "SELECT count(*) FROM pg_buffercache WHERE relfilenode IS NOT NULL"
            )
        except psycopg2.Error as e:
            raise query_error(e, "Cannot count occupied buffers") from e
        return int(row[0])
