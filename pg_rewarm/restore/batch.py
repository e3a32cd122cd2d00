"""
BatchRestorer - replays a page list against the server in batches.

Batches run strictly one after another. Within a batch, fetches may fan out
over a thread pool; the fetched/attempted tally is updated under a lock.
Per-page failures are recorded and skipped, so a run always finishes and
reports how much it achieved.
"""

import itertools
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, List, Optional, Tuple

from ..errors import InvalidConfigurationError, PageFetchError
from ..image.models import PageDescriptor
from .fetcher import PageFetcher

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True)
class BatchResult:
    """Outcome of one batch."""
    batch_index: int
    pages_attempted: int
    pages_fetched: int
    errors: Tuple[PageFetchError, ...] = ()


def validate_positive_int(name: str, value) -> int:
    """Return ``value`` if it is a positive int, else raise InvalidConfigurationError."""
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise InvalidConfigurationError(f"{name} must be a positive integer, got {value!r}")
    return value


def iter_batches(pages: Iterable[PageDescriptor], batch_size: int) -> Iterator[List[PageDescriptor]]:
    """Consecutive slices of ``batch_size`` pages; the last may be shorter."""
    iterator = iter(pages)
    while True:
        batch = list(itertools.islice(iterator, batch_size))
        if not batch:
            return
        yield batch


class BatchRestorer:
    """Drives PageFetcher over a page list, one batch at a time."""

    def __init__(
        self,
        fetcher: PageFetcher,
        concurrency: int = 1,
        on_batch_result: Optional[Callable[[BatchResult], None]] = None,
    ):
        """
        Args:
            fetcher: object with fetch(page) -> Optional[PageFetchError]
            concurrency: fetches in flight per batch; must not exceed the
                connection pool size
            on_batch_result: optional hook receiving each BatchResult
        """
        self.fetcher = fetcher
        self.concurrency = validate_positive_int("concurrency", concurrency)
        self.on_batch_result = on_batch_result

        self._lock = threading.Lock()
        self.pages_attempted = 0
        self.pages_fetched = 0
        self.results: List[BatchResult] = []
        self.cancelled = False

    @property
    def errors(self) -> List[PageFetchError]:
        """Every per-page failure of the last run, in batch order."""
        return [error for result in self.results for error in result.errors]

    def restore(
        self,
        pages: Iterable[PageDescriptor],
        batch_size: int,
        on_batch: Optional[ProgressCallback] = None,
        cancel: Optional[threading.Event] = None,
    ) -> int:
        """
        Fetch every page in ``pages``.

        Args:
            pages: page list in priority order (may be a lazy iterator)
            batch_size: pages per batch, positive
            on_batch: called once per batch with (pages_fetched, pages_attempted)
            cancel: checked before each batch; once set, no further batch starts

        Returns:
            Total pages fetched
        """
        validate_positive_int("batch_size", batch_size)

        self.pages_attempted = 0
        self.pages_fetched = 0
        self.results = []
        self.cancelled = False

        executor = None
        if self.concurrency > 1:
            executor = ThreadPoolExecutor(
                max_workers=self.concurrency,
                thread_name_prefix="pg_rewarm-fetch",
            )
        try:
            for index, batch in enumerate(iter_batches(pages, batch_size)):
                if cancel is not None and cancel.is_set():
                    self.cancelled = True
                    logger.info("Restore cancelled before batch %d", index)
                    break

                result = self._run_batch(index, batch, executor)
                self.results.append(result)

                if result.errors:
                    logger.warning(
                        "Batch %d: %d of %d pages not fetched",
                        index, len(result.errors), result.pages_attempted,
                    )
                else:
                    logger.debug("Batch %d: %d pages fetched", index, result.pages_fetched)

                if self.on_batch_result is not None:
                    self.on_batch_result(result)
                if on_batch is not None:
                    on_batch(self.pages_fetched, self.pages_attempted)
        finally:
            if executor is not None:
                executor.shutdown(wait=True)

        return self.pages_fetched

    def _run_batch(
        self,
        index: int,
        batch: List[PageDescriptor],
        executor: Optional[ThreadPoolExecutor],
    ) -> BatchResult:
        if executor is None:
            outcomes = [self._fetch_one(page) for page in batch]
        else:
            outcomes = list(executor.map(self._fetch_one, batch))

        errors = tuple(outcome for outcome in outcomes if outcome is not None)
        return BatchResult(
            batch_index=index,
            pages_attempted=len(batch),
            pages_fetched=len(batch) - len(errors),
            errors=errors,
        )

    def _fetch_one(self, page: PageDescriptor) -> Optional[PageFetchError]:
        failure = self.fetcher.fetch(page)
        with self._lock:
            self.pages_attempted += 1
            if failure is None:
                self.pages_fetched += 1
        return failure
