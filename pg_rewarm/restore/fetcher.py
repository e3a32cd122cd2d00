"""
PageFetcher - pulls one page back into shared_buffers.

pg_prewarm in 'buffer' mode reads the requested block through PostgreSQL's
own buffer manager, so the page lands in shared_buffers exactly as if a
query had touched it.
"""

import logging
from typing import Optional

import psycopg2
import psycopg2.errors

from ..errors import ConnectionError, FetchErrorKind, PageFetchError
from ..image.models import PageDescriptor
from ..server.connection import ServerConnection

logger = logging.getLogger(__name__)

PREWARM_QUERY = "SELECT pg_prewarm(%s::regclass, 'buffer', 'main', %s, %s)"

MISSING_OBJECT_ERRORS = (
    psycopg2.errors.UndefinedTable,
    psycopg2.errors.UndefinedObject,
    psycopg2.errors.InvalidSchemaName,
)


def classify_error(error: Exception) -> str:
    """Map a fetch exception to a FetchErrorKind value."""
    if isinstance(error, MISSING_OBJECT_ERRORS):
        return FetchErrorKind.MISSING.value
    if isinstance(error, psycopg2.errors.QueryCanceled):
        return FetchErrorKind.TIMEOUT.value
    if isinstance(error, psycopg2.errors.InvalidParameterValue):
        return FetchErrorKind.RANGE.value
    if isinstance(error, (ConnectionError, psycopg2.OperationalError, psycopg2.InterfaceError)):
        return FetchErrorKind.CONNECTION.value
    return FetchErrorKind.ERROR.value


class PageFetcher:
    """Issues targeted single-block reads against the live server."""

    def __init__(self, connection: ServerConnection):
        self.conn = connection

    def fetch(self, page: PageDescriptor) -> Optional[PageFetchError]:
        """
        Read ``page`` into the buffer pool.

        Returns:
            None on success, otherwise the PageFetchError describing why
            the page was not fetched. Server-side failures never raise.
        """
        try:
            with self.conn.cursor() as cur:
                cur.execute(PREWARM_QUERY, (page.relation, page.page_number, page.page_number))
                row = cur.fetchone()
        except (psycopg2.Error, ConnectionError) as e:
            message = str(e).strip().splitlines()[0] if str(e).strip() else type(e).__name__
            failure = PageFetchError(
                relation=page.relation,
                page_number=page.page_number,
                kind=classify_error(e),
                message=message,
                sqlstate=getattr(e, "pgcode", None),
            )
            logger.debug("Fetch failed: %s", failure)
            return failure

        if not row or not row[0]:
            return PageFetchError(
                relation=page.relation,
                page_number=page.page_number,
                kind=FetchErrorKind.RANGE.value,
                message="no block was read",
            )
        return None
