"""
SQLite cache image - a single-file embedded database.

Pages live in an indexed table ordered by an explicit ``seq`` column, so
read_pages() streams rows with fetchmany() instead of loading the whole
list into memory.
"""

import sqlite3
from typing import Iterable, Iterator, Optional

from ..errors import ImageCorruptError, InvalidConfigurationError
from .base import CacheImage
from .models import PageDescriptor, SnapshotMetadata

SCHEMA = [
    """
    CREATE TABLE image_format (
        name    TEXT    NOT NULL,
        version INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE metadata (
        captured_at             TEXT    NOT NULL,
        server_version          TEXT    NOT NULL,
        buffer_pool_pages_total INTEGER NOT NULL,
        buffer_pool_pages_data  INTEGER NOT NULL,
        page_count              INTEGER NOT NULL,
        "database"              TEXT    NOT NULL DEFAULT ''
    )
    """,
    """
    CREATE TABLE pages (
        seq         INTEGER PRIMARY KEY,
        table_name  TEXT    NOT NULL,
        index_name  TEXT    NOT NULL DEFAULT '',
        space_id    INTEGER NOT NULL,
        page_number INTEGER NOT NULL
    )
    """,
    "CREATE UNIQUE INDEX pages_physical ON pages (space_id, page_number)",
]

METADATA_COLUMNS = (
    "captured_at",
    "server_version",
    "buffer_pool_pages_total",
    "buffer_pool_pages_data",
    "page_count",
    "database",
)


def _column_list() -> str:
    return ", ".join(f'"{column}"' for column in METADATA_COLUMNS)


class SqliteCacheImage(CacheImage):
    """Cache image stored in an SQLite database file."""

    format_name = "sqlite"
    fetch_size = 1000

    def __init__(self):
        super().__init__()
        self._conn: Optional[sqlite3.Connection] = None
        self._next_seq = 0

    # =========================================================================
    # Write
    # =========================================================================

    def _open_write(self):
        if self.path.exists() and self.path.stat().st_size > 0:
            raise InvalidConfigurationError(f"Refusing to write over existing file {self.path}")
        self._conn = sqlite3.connect(str(self.path))
        self._next_seq = 0
        for statement in SCHEMA:
            self._conn.execute(statement)
        self._conn.execute(
            "INSERT INTO image_format (name, version) VALUES (?, ?)",
            (self.format_name, self.format_version),
        )

    def _write_pages(self, pages: Iterable[PageDescriptor]) -> int:
        start = self._next_seq
        rows = []
        for page in pages:
            rows.append((self._next_seq, page.table_name, page.index_name,
                         page.space_id, page.page_number))
            self._next_seq += 1
        self._conn.execute("SAVEPOINT write_pages")
        try:
            self._conn.executemany(
                "INSERT INTO pages (seq, table_name, index_name, space_id, page_number) "
                "VALUES (?, ?, ?, ?, ?)",
                rows,
            )
        except sqlite3.IntegrityError as e:
            self._conn.execute("ROLLBACK TO write_pages")
            self._conn.execute("RELEASE write_pages")
            self._next_seq = start
            raise InvalidConfigurationError(f"Duplicate page in page list: {e}") from e
        self._conn.execute("RELEASE write_pages")
        return len(rows)

    def _finish_write(self):
        values = self._metadata.to_dict()
        self._conn.execute(
            f"INSERT INTO metadata ({_column_list()}) "
            f"VALUES ({', '.join('?' for _ in METADATA_COLUMNS)})",
            tuple(values[column] for column in METADATA_COLUMNS),
        )
        self._conn.commit()

    # =========================================================================
    # Read
    # =========================================================================

    def _open_read(self):
        if not self.path.is_file():
            raise FileNotFoundError(f"Cache image not found: {self.path}")
        self._conn = sqlite3.connect(self.path.resolve().as_uri() + "?mode=ro", uri=True)
        try:
            header = self._conn.execute("SELECT name, version FROM image_format").fetchall()
        except sqlite3.DatabaseError as e:
            raise ImageCorruptError(f"{self.path} is not a valid SQLite cache image: {e}") from e
        if len(header) != 1:
            raise ImageCorruptError(f"{self.path} has {len(header)} format header rows")
        self.check_header(*header[0])

        try:
            rows = self._conn.execute(
                f"SELECT {_column_list()} FROM metadata"
            ).fetchall()
            if len(rows) != 1:
                raise ImageCorruptError(f"{self.path} has {len(rows)} metadata rows")
            metadata = SnapshotMetadata.from_dict(dict(zip(METADATA_COLUMNS, rows[0])))
            self._validate_pages(metadata)
        except sqlite3.DatabaseError as e:
            raise ImageCorruptError(f"{self.path} failed validation: {e}") from e

        self._metadata = metadata

    def _validate_pages(self, metadata: SnapshotMetadata):
        """Check the page table in SQL so nothing is loaded into memory."""
        total, bad = self._conn.execute(
            """
            SELECT count(*),
                   coalesce(sum(typeof(table_name) != 'text' OR table_name = ''
                                OR typeof(index_name) != 'text'
                                OR typeof(space_id) != 'integer' OR space_id < 0
                                OR typeof(page_number) != 'integer' OR page_number < 0), 0)
            FROM pages
            """
        ).fetchone()
        if bad:
            raise ImageCorruptError(f"{self.path} contains {bad} malformed page rows")
        if total != metadata.page_count:
            raise ImageCorruptError(
                f"{self.path} metadata declares {metadata.page_count} pages, found {total}"
            )
        distinct = self._conn.execute(
            "SELECT count(*) FROM (SELECT DISTINCT space_id, page_number FROM pages)"
        ).fetchone()[0]
        if distinct != total:
            raise ImageCorruptError(f"{self.path} contains duplicate pages")

    def _read_pages(self) -> Iterator[PageDescriptor]:
        cursor = self._conn.execute(
            "SELECT table_name, index_name, space_id, page_number FROM pages ORDER BY seq"
        )
        try:
            while True:
                rows = cursor.fetchmany(self.fetch_size)
                if not rows:
                    break
                for row in rows:
                    yield PageDescriptor(*row)
        finally:
            cursor.close()

    def _release(self):
        if self._conn is not None:
            if self.mode == "w":
                self._conn.rollback()
            self._conn.close()
            self._conn = None
        self._next_seq = 0
