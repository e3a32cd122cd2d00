"""
PageEnumerator - lists the pages resident in shared_buffers.
"""

import logging
from typing import Any, Dict, List

import psycopg2

from ..errors import IntrospectionUnavailableError
from ..image.models import PageDescriptor
from .connection import ServerConnection
from .status import ServerStatus, extension_installed, query_error

logger = logging.getLogger(__name__)

# Main fork pages of the current database, most valuable first.
# A buffer is matched on (database, tablespace, filenode); rel.reltablespace
# is 0 for relations in the database's default tablespace.
# usagecount is the clock-sweep counter (higher survives eviction longer);
# bufferid breaks ties so the order is stable.
BUFFER_PAGES_QUERY = """
    SELECT
        coalesce(tbl.oid::regclass::text, rel.oid::regclass::text) AS table_name,
        CASE WHEN rel.relkind = 'i' THEN rel.oid::regclass::text ELSE '' END AS index_name,
        rel.oid AS space_id,
        b.relblocknumber AS page_number
    FROM pg_buffercache b
    JOIN pg_database db
      ON db.oid = b.reldatabase
     AND db.datname = current_database()
    JOIN pg_class rel
      ON pg_relation_filenode(rel.oid) = b.relfilenode
     AND b.reltablespace = CASE WHEN rel.reltablespace = 0
                                THEN db.dattablespace
                                ELSE rel.reltablespace END
    LEFT JOIN pg_index idx
      ON idx.indexrelid = rel.oid
    LEFT JOIN pg_class tbl
      ON tbl.oid = idx.indrelid
    WHERE b.relforknumber = 0
      AND rel.relkind IN ('r', 'i', 'm', 't')
    ORDER BY b.usagecount DESC NULLS LAST, b.bufferid
"""


class PageEnumerator:
    """Reads buffer-pool membership through pg_buffercache."""

    def __init__(self, connection: ServerConnection):
        """
        Initialize page enumerator.

        Args:
            connection: connected ServerConnection
        """
        self.conn = connection
        self._status = ServerStatus(connection)

    def ensure_available(self):
        """
        Raise IntrospectionUnavailableError unless pg_buffercache is usable.
        """
        if not extension_installed(self.conn, "pg_buffercache"):
            raise IntrospectionUnavailableError(
                f"pg_buffercache is not installed in database '{self.conn.database}'. "
                "Run: CREATE EXTENSION pg_buffercache"
            )

    def check_prewarm(self):
        """
        Raise IntrospectionUnavailableError unless pg_prewarm is usable.
        """
        if not extension_installed(self.conn, "pg_prewarm"):
            raise IntrospectionUnavailableError(
                f"pg_prewarm is not installed in database '{self.conn.database}'. "
                "Run: CREATE EXTENSION pg_prewarm"
            )

    def enumerate(self) -> List[PageDescriptor]:
        """
        Query resident pages in eviction-priority order.

        Returns:
            PageDescriptor list without duplicate (space_id, page_number)

        Raises:
            ConnectionError: server unreachable or the query timed out
            IntrospectionUnavailableError: pg_buffercache missing or not readable
        """
        self.ensure_available()
        try:
            rows = self.conn.query(BUFFER_PAGES_QUERY)
        except psycopg2.Error as e:
            raise query_error(e, "Cannot read pg_buffercache") from e

        pages = []
        seen = set()
        for table_name, index_name, space_id, page_number in rows:
            page = PageDescriptor(
                table_name=table_name,
                index_name=index_name or "",
                space_id=int(space_id),
                page_number=int(page_number),
            )
            if page.key in seen:
                continue
            seen.add(page.key)
            pages.append(page)

        if len(pages) != len(rows):
            logger.debug("Dropped %d duplicate buffer rows", len(rows) - len(pages))
        logger.info("Enumerated %d resident pages", len(pages))
        return pages

    def status(self) -> Dict[str, Any]:
        """Current server counters (see ServerStatus)."""
        return self._status.snapshot()
