"""
Data models for cache images.
"""

from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..errors import ImageCorruptError


@dataclass(frozen=True)
class PageDescriptor:
    """One page resident in shared_buffers."""

    table_name: str                        # Owning table (regclass text)
    index_name: str                        # Index relation, "" for heap pages
    space_id: int                          # Relation file node
    page_number: int                       # Block number in the main fork

    @property
    def relation(self) -> str:
        """Relation whose block has to be read to bring this page back."""
        return self.index_name or self.table_name

    @property
    def key(self):
        return (self.space_id, self.page_number)

    def to_row(self) -> List[Any]:
        """Compact list form used by the JSON image."""
        return [self.table_name, self.index_name, self.space_id, self.page_number]

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> 'PageDescriptor':
        """Build from a 4-item row, validating field types."""
        if not isinstance(row, (list, tuple)) or len(row) != 4:
            raise ImageCorruptError(f"Malformed page record: {row!r}")
        table_name, index_name, space_id, page_number = row
        if not isinstance(table_name, str) or not table_name:
            raise ImageCorruptError(f"Page record without table name: {row!r}")
        if index_name is None:
            index_name = ""
        if not isinstance(index_name, str):
            raise ImageCorruptError(f"Page record with invalid index name: {row!r}")
        for value in (space_id, page_number):
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ImageCorruptError(f"Page record with invalid identifier: {row!r}")
        return cls(table_name, index_name, space_id, page_number)


@dataclass(frozen=True)
class SnapshotMetadata:
    """Server state at the time the page list was captured."""

    captured_at: str                       # ISO timestamp (UTC)
    server_version: str
    buffer_pool_pages_total: int
    buffer_pool_pages_data: int
    page_count: int
    database: str = ""

    @classmethod
    def create(
        cls,
        server_version: str,
        buffer_pool_pages_total: int,
        buffer_pool_pages_data: int,
        page_count: int,
        database: str = "",
        captured_at: Optional[str] = None,
    ) -> 'SnapshotMetadata':
        """Create metadata stamped with the current time."""
        return cls(
            captured_at=captured_at or datetime.now(timezone.utc).isoformat(),
            server_version=server_version,
            buffer_pool_pages_total=buffer_pool_pages_total,
            buffer_pool_pages_data=buffer_pool_pages_data,
            page_count=page_count,
            database=database,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SnapshotMetadata':
        """Create from dictionary, raising ImageCorruptError on bad input."""
        if not isinstance(data, dict):
            raise ImageCorruptError("Metadata section is not a mapping")
        try:
            metadata = cls(
                captured_at=data["captured_at"],
                server_version=data["server_version"],
                buffer_pool_pages_total=data["buffer_pool_pages_total"],
                buffer_pool_pages_data=data["buffer_pool_pages_data"],
                page_count=data["page_count"],
                database=data.get("database", "") or "",
            )
        except KeyError as e:
            raise ImageCorruptError(f"Metadata is missing field {e}") from e

        for name in ("captured_at", "server_version", "database"):
            if not isinstance(getattr(metadata, name), str):
                raise ImageCorruptError(f"Metadata field '{name}' must be a string")
        for name in ("buffer_pool_pages_total", "buffer_pool_pages_data", "page_count"):
            value = getattr(metadata, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ImageCorruptError(f"Metadata field '{name}' must be a non-negative integer")
        return metadata


def check_unique(pages: Iterable[PageDescriptor], error=ImageCorruptError) -> List[PageDescriptor]:
    """Materialize ``pages``, rejecting duplicate (space_id, page_number) pairs."""
    seen = set()
    result = []
    for page in pages:
        if page.key in seen:
            raise error(
                f"Duplicate page {page.space_id}/{page.page_number} in page list"
            )
        seen.add(page.key)
        result.append(page)
    return result
