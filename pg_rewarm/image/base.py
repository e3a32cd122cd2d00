"""
CacheImage - contract shared by every cache image backend.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, Iterator, Optional, Union

from ..errors import ImageVersionMismatch, InvalidConfigurationError
from .models import PageDescriptor, SnapshotMetadata

# Highest image layout version this build reads and the one it writes
FORMAT_VERSION = 1

READ = "r"
WRITE = "w"


class CacheImage(ABC):
    """
    One persisted snapshot: a header, a SnapshotMetadata record and an
    ordered list of PageDescriptor.

    Lifecycle: open(path, "w") → write_metadata() → write_pages() → close(),
    or open(path, "r") → read_metadata() / read_pages() → close().
    A failed open leaves the instance closed with nothing loaded.
    Used as a context manager, an exception inside a write block discards
    the output instead of completing it.
    """

    format_name: str = ""
    format_version: int = FORMAT_VERSION

    def __init__(self):
        self.path: Optional[Path] = None
        self.mode: Optional[str] = None
        self._metadata: Optional[SnapshotMetadata] = None
        self._pages_written = 0

    # =========================================================================
    # Public contract
    # =========================================================================

    def open(self, path: Union[str, Path], mode: str = READ) -> 'CacheImage':
        """Open ``path`` for reading ("r") or writing ("w")."""
        if mode not in (READ, WRITE):
            raise InvalidConfigurationError(f"Unknown image mode '{mode}' (expected 'r' or 'w')")
        if self.is_open:
            raise RuntimeError(f"Cache image already open on {self.path}")

        self.path = Path(path)
        self.mode = mode
        self._metadata = None
        self._pages_written = 0
        try:
            if mode == READ:
                self._open_read()
            else:
                self._open_write()
        except BaseException:
            self._release()
            self._reset()
            raise
        return self

    @property
    def is_open(self) -> bool:
        return self.mode is not None

    def write_metadata(self, metadata: SnapshotMetadata):
        self._require(WRITE)
        self._metadata = metadata

    def write_pages(self, pages: Iterable[PageDescriptor]) -> int:
        """Append ``pages`` in order. Returns the number written."""
        self._require(WRITE)
        count = self._write_pages(pages)
        self._pages_written += count
        return count

    def read_metadata(self) -> SnapshotMetadata:
        self._require(READ)
        return self._metadata

    def read_pages(self) -> Iterator[PageDescriptor]:
        """Iterate pages in saved order. Every call starts from the first page."""
        self._require(READ)
        return self._read_pages()

    def close(self):
        """Finish the image. In write mode this is where output is completed."""
        if not self.is_open:
            return
        try:
            if self.mode == WRITE:
                if self._metadata is None:
                    raise InvalidConfigurationError("Cache image closed without metadata")
                if self._metadata.page_count != self._pages_written:
                    raise InvalidConfigurationError(
                        f"Metadata declares {self._metadata.page_count} pages "
                        f"but {self._pages_written} were written"
                    )
                self._finish_write()
        finally:
            self._release()
            self._reset()

    def abort(self):
        """Close without completing any pending write."""
        if self.is_open:
            self._release()
            self._reset()

    def __enter__(self) -> 'CacheImage':
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None and self.mode == WRITE:
            self.abort()
        else:
            self.close()

    # =========================================================================
    # Helpers for backends
    # =========================================================================

    def check_header(self, name, version):
        """Reject images written by another backend or a newer layout."""
        if name != self.format_name:
            raise ImageVersionMismatch(
                f"{self.path} declares format '{name}', expected '{self.format_name}'"
            )
        if isinstance(version, bool) or not isinstance(version, int) or version < 1:
            raise ImageVersionMismatch(f"{self.path} declares invalid format version {version!r}")
        if version > self.format_version:
            raise ImageVersionMismatch(
                f"{self.path} is format version {version}; "
                f"this build supports up to {self.format_version}"
            )

    def _require(self, mode: str):
        if self.mode != mode:
            state = f"open for '{self.mode}'" if self.mode else "closed"
            raise RuntimeError(f"Cache image is {state}; operation needs mode '{mode}'")

    def _reset(self):
        self.mode = None
        self._metadata = None
        self._pages_written = 0

    # =========================================================================
    # Backend hooks
    # =========================================================================

    @abstractmethod
    def _open_read(self):
        """Load header and metadata; set self._metadata."""

    @abstractmethod
    def _open_write(self):
        """Prepare an empty image at self.path."""

    @abstractmethod
    def _write_pages(self, pages: Iterable[PageDescriptor]) -> int:
        """Store pages after any already written."""

    @abstractmethod
    def _read_pages(self) -> Iterator[PageDescriptor]:
        """Yield pages in saved order."""

    @abstractmethod
    def _finish_write(self):
        """Persist everything written so far."""

    @abstractmethod
    def _release(self):
        """Drop handles and buffers. Must be safe to call at any point."""
