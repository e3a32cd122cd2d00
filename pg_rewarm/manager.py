"""
CacheManager - save and restore of buffer-pool snapshots.

State machine (one operation per manager):
IDLE → CONNECTED → SAVING    → CLOSED
                 → RESTORING → CLOSED
(any state) → FAILED
"""

import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from .errors import (
    InvalidConfigurationError,
    InvalidStateTransition,
    PageFetchError,
    Phase,
    RewarmError,
)
from .image import CacheImage, DEFAULT_FORMAT, SnapshotMetadata, get_image_class
from .restore import BatchRestorer, BatchResult, PageFetcher, validate_positive_int
from .server import PageEnumerator, ServerConnection, major_version
from .state import State, StateMachine
from .timing import TimingLedger

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1000


@dataclass
class CacheConfig:
    """Options the engine recognizes. Never read from ambient state."""
    image_format: str = DEFAULT_FORMAT
    batch_size: int = DEFAULT_BATCH_SIZE

    # Database connection
    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str = ""
    database: str = "postgres"

    # Fetch fan-out per batch (also the connection pool size)
    concurrency: int = 1

    # Timeouts
    connect_timeout: int = 10              # seconds
    statement_timeout: int = 30000         # milliseconds

    def validate(self):
        """Raise InvalidConfigurationError for unusable values."""
        for name in ("batch_size", "port", "concurrency", "connect_timeout", "statement_timeout"):
            validate_positive_int(name, getattr(self, name))
        if not self.host:
            raise InvalidConfigurationError("host is required")
        if not self.user:
            raise InvalidConfigurationError("user is required")


@dataclass
class SaveReport:
    """Result of CacheManager.save()."""
    success: bool
    path: Optional[Path] = None
    page_count: int = 0
    metadata: Optional[SnapshotMetadata] = None
    timings: Dict[str, float] = field(default_factory=dict)
    cancelled: bool = False


@dataclass
class RestoreReport:
    """Result of CacheManager.restore()."""
    pages_fetched: int
    pages_attempted: int
    metadata: SnapshotMetadata
    timings: Dict[str, float] = field(default_factory=dict)
    status_before: Dict[str, Any] = field(default_factory=dict)
    status_after: Dict[str, Any] = field(default_factory=dict)
    batches: int = 0
    cancelled: bool = False
    warnings: List[str] = field(default_factory=list)
    errors: List[PageFetchError] = field(default_factory=list)

    @property
    def pages_failed(self) -> int:
        return self.pages_attempted - self.pages_fetched


def connect_server(config: CacheConfig) -> ServerConnection:
    """Default connection factory: a psycopg2 pool sized to the fan-out."""
    return ServerConnection(
        host=config.host,
        port=config.port,
        user=config.user,
        password=config.password,
        database=config.database,
        connect_timeout=config.connect_timeout,
        statement_timeout_ms=config.statement_timeout,
        pool_size=config.concurrency,
    )


class CacheManager:
    """
    Orchestrates one save or one restore.

    The image backend is resolved in the constructor, so an unknown format
    fails before any file or network access.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        connection_factory: Optional[Callable[[CacheConfig], Any]] = None,
    ):
        self.config = config or CacheConfig()
        self.image_class = get_image_class(self.config.image_format)
        self.config.validate()

        self._connection_factory = connection_factory or connect_server
        self.conn = None
        self.state_machine = StateMachine()
        self.timings = TimingLedger()
        self._phase_name: Optional[str] = None

    @property
    def state(self) -> State:
        return self.state_machine.state

    # =========================================================================
    # Save
    # =========================================================================

    def save(
        self,
        path: Union[str, Path],
        cancel: Optional[threading.Event] = None,
    ) -> SaveReport:
        """
        Capture the buffer pool and write it to ``path``.

        The image is written to a temporary file next to ``path`` and moved
        into place only once complete. If ``cancel`` is set by the time the
        page list is in hand, nothing is written and the report says so.
        """
        self._ensure_idle()
        target = Path(path)
        logger.info("Saving buffer pool snapshot to %s (%s)", target, self.image_class.format_name)

        try:
            self._connect()
            self.state_machine.transition(State.SAVING)
            enumerator = PageEnumerator(self.conn)

            with self._phase(Phase.ENUMERATE):
                pages = enumerator.enumerate()
            with self._phase(Phase.STATUS):
                status = enumerator.status()

            if cancel is not None and cancel.is_set():
                logger.info("Save cancelled; no image written")
                self._finish()
                return SaveReport(
                    success=False,
                    page_count=len(pages),
                    timings=self.timings.to_dict(),
                    cancelled=True,
                )

            metadata = SnapshotMetadata.create(
                server_version=status["server_version"],
                buffer_pool_pages_total=status["buffer_pool_pages_total"],
                buffer_pool_pages_data=status["buffer_pool_pages_data"] or len(pages),
                page_count=len(pages),
                database=status.get("database") or self.config.database,
            )
            with self._phase(Phase.WRITE):
                self._write_image(target, metadata, pages)

            self._finish({"pages": len(pages)})
        except BaseException as e:
            self._fail(e)
            raise

        logger.info("Saved %d pages to %s", len(pages), target)
        return SaveReport(
            success=True,
            path=target,
            page_count=len(pages),
            metadata=metadata,
            timings=self.timings.to_dict(),
        )

    def _write_image(self, target: Path, metadata: SnapshotMetadata, pages):
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
        os.close(fd)
        tmp_path = Path(tmp_name)

        image: CacheImage = self.image_class()
        try:
            image.open(tmp_path, "w")
            image.write_metadata(metadata)
            image.write_pages(pages)
            image.close()
            os.replace(tmp_path, target)
        except BaseException:
            image.abort()
            if tmp_path.exists():
                tmp_path.unlink()
            raise

    # =========================================================================
    # Restore
    # =========================================================================

    def restore(
        self,
        path: Union[str, Path],
        batch_size: Optional[int] = None,
        on_batch: Optional[Callable[[int, int], None]] = None,
        cancel: Optional[threading.Event] = None,
        on_batch_result: Optional[Callable[[BatchResult], None]] = None,
        on_metadata: Optional[Callable[[SnapshotMetadata], None]] = None,
    ) -> RestoreReport:
        """
        Re-warm the server from the image at ``path``.

        The image is opened and validated before connecting. Per-page
        failures never raise; they show up as pages_attempted minus
        pages_fetched. A set ``cancel`` event stops the run after the
        current batch and the partial result is returned.
        """
        self._ensure_idle()
        if batch_size is None:
            batch_size = self.config.batch_size
        source = Path(path)
        image: CacheImage = self.image_class()

        try:
            self._phase_name = Phase.CONFIGURE.value
            validate_positive_int("batch_size", batch_size)

            with self._phase(Phase.READ):
                if not source.is_file():
                    raise InvalidConfigurationError(f"Cache image not found: {source}")
                image.open(source, "r")
                metadata = image.read_metadata()
            if on_metadata is not None:
                on_metadata(metadata)
            logger.info(
                "Restoring %d pages from %s (captured %s on PostgreSQL %s)",
                metadata.page_count, source, metadata.captured_at, metadata.server_version,
            )

            self._connect()
            enumerator = PageEnumerator(self.conn)
            with self._phase(Phase.STATUS):
                enumerator.check_prewarm()
                status_before = enumerator.status()
            warnings = self._check_capacity(metadata, status_before)

            self.state_machine.transition(State.RESTORING)
            restorer = BatchRestorer(
                PageFetcher(self.conn),
                concurrency=self.config.concurrency,
                on_batch_result=on_batch_result,
            )
            pages = image.read_pages()
            try:
                with self._phase(Phase.FETCH):
                    pages_fetched = restorer.restore(pages, batch_size, on_batch, cancel)
            finally:
                close_pages = getattr(pages, "close", None)
                if close_pages is not None:
                    close_pages()

            status_after = self._status_after(enumerator, warnings)

            image.close()
            self._finish({
                "pages_fetched": pages_fetched,
                "pages_attempted": restorer.pages_attempted,
                "cancelled": restorer.cancelled,
            })
        except BaseException as e:
            image.abort()
            self._fail(e)
            raise

        logger.info(
            "Restore %s: %d of %d pages fetched in %d batches",
            "cancelled" if restorer.cancelled else "finished",
            pages_fetched, restorer.pages_attempted, len(restorer.results),
        )
        return RestoreReport(
            pages_fetched=pages_fetched,
            pages_attempted=restorer.pages_attempted,
            metadata=metadata,
            timings=self.timings.to_dict(),
            status_before=status_before,
            status_after=status_after,
            batches=len(restorer.results),
            cancelled=restorer.cancelled,
            warnings=warnings,
            errors=restorer.errors,
        )

    def _status_after(self, enumerator: PageEnumerator, warnings: List[str]) -> Dict[str, Any]:
        """Counters after the fetch; a failure here only costs the statistics."""
        try:
            with self._phase(Phase.STATUS):
                return enumerator.status()
        except RewarmError as e:
            message = f"Could not read server status after restore: {e.message}"
            logger.warning(message)
            warnings.append(message)
            return {}

    def _check_capacity(self, metadata: SnapshotMetadata, status: Dict[str, Any]) -> List[str]:
        warnings = []
        capacity = status.get("buffer_pool_pages_total")
        if capacity and metadata.page_count > capacity:
            message = (
                f"Image holds {metadata.page_count} pages but shared_buffers on the "
                f"target has room for {capacity}; later pages will evict earlier ones"
            )
            logger.warning(message)
            warnings.append(message)
        image_major = major_version(metadata.server_version)
        target_major = major_version(status.get("server_version"))
        if image_major and target_major and image_major != target_major:
            message = (
                f"Image was captured on PostgreSQL {metadata.server_version}, "
                f"target runs {status['server_version']}"
            )
            logger.warning(message)
            warnings.append(message)
        return warnings

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _ensure_idle(self):
        if self.state_machine.state != State.IDLE:
            raise InvalidStateTransition(
                f"CacheManager already used (state {self.state_machine.state.name}); "
                "create a new one for each operation"
            )

    @contextmanager
    def _phase(self, phase: Phase) -> Iterator[None]:
        self._phase_name = phase.value
        with self.timings.measure(phase.value):
            yield

    def _connect(self):
        with self._phase(Phase.CONNECT):
            self.conn = self._connection_factory(self.config)
            self.conn.connect()
        self.state_machine.transition(State.CONNECTED)

    def _close_connection(self):
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def _finish(self, metadata: Optional[Dict[str, Any]] = None):
        self._phase_name = Phase.CLOSE.value
        self._close_connection()
        self.state_machine.transition(State.CLOSED, metadata)
        self.timings.freeze()
        logger.debug("State history:\n%s", self.state_machine.format_history())

    def _fail(self, error: BaseException):
        if isinstance(error, RewarmError):
            error.with_phase(self._phase_name)
        logger.error("Operation failed during %s: %s", self._phase_name, error)
        try:
            self._close_connection()
        finally:
            self.state_machine.fail({"phase": self._phase_name, "error": str(error)})
            self.timings.freeze()
            logger.debug("State history:\n%s", self.state_machine.format_history())
