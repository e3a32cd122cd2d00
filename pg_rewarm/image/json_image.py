"""
JSON cache image - the whole snapshot as one JSON document.

Layout:
    {
      "format": {"name": "json", "version": 1},
      "metadata": {...SnapshotMetadata...},
      "pages": [[table_name, index_name, space_id, page_number], ...]
    }

Keys are sorted and separators fixed, so the same snapshot always produces
the same bytes. Reading materializes the full page list in memory.
"""

import json
from typing import Iterable, Iterator, List, Set

from ..errors import ImageCorruptError, InvalidConfigurationError
from .base import CacheImage
from .models import PageDescriptor, SnapshotMetadata, check_unique


class JsonCacheImage(CacheImage):
    """Cache image stored as a single JSON document."""

    format_name = "json"

    def __init__(self):
        super().__init__()
        self._pages: List[PageDescriptor] = []
        self._keys: Set = set()

    def _open_write(self):
        self._pages = []
        self._keys = set()

    def _write_pages(self, pages: Iterable[PageDescriptor]) -> int:
        # A rejected call leaves the image as it was before the call
        batch = list(pages)
        keys = set()
        for page in batch:
            if page.key in self._keys or page.key in keys:
                raise InvalidConfigurationError(
                    f"Duplicate page {page.space_id}/{page.page_number} in page list"
                )
            keys.add(page.key)
        self._keys.update(keys)
        self._pages.extend(batch)
        return len(batch)

    def _finish_write(self):
        document = {
            "format": {"name": self.format_name, "version": self.format_version},
            "metadata": self._metadata.to_dict(),
            "pages": [page.to_row() for page in self._pages],
        }
        text = json.dumps(document, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
        with open(self.path, "w", encoding="utf-8", newline="\n") as f:
            f.write(text)
            f.write("\n")

    def _open_read(self):
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ImageCorruptError(f"{self.path} is not a valid JSON cache image: {e}") from e

        if not isinstance(document, dict) or not isinstance(document.get("format"), dict):
            raise ImageCorruptError(f"{self.path} has no format header")
        header = document["format"]
        self.check_header(header.get("name"), header.get("version"))

        metadata = SnapshotMetadata.from_dict(document.get("metadata"))
        rows = document.get("pages")
        if not isinstance(rows, list):
            raise ImageCorruptError(f"{self.path} has no page list")
        pages = check_unique(PageDescriptor.from_row(row) for row in rows)
        if len(pages) != metadata.page_count:
            raise ImageCorruptError(
                f"{self.path} metadata declares {metadata.page_count} pages, found {len(pages)}"
            )

        self._pages = pages
        self._metadata = metadata

    def _read_pages(self) -> Iterator[PageDescriptor]:
        return iter(list(self._pages))

    def _release(self):
        self._pages = []
        self._keys = set()
