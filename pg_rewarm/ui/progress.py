"""
RestoreProgress - live progress bar fed by the per-batch callback.
"""

from typing import Optional

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)


class RestoreProgress:
    """
    Progress bar for a restore run.

    Usage:
        with RestoreProgress(console) as progress:
            manager.restore(path, on_metadata=progress.set_metadata,
                            on_batch=progress.update)
    """

    def __init__(self, console: Optional[Console] = None, enabled: bool = True):
        self.total_pages: Optional[int] = None
        self.console = console or Console()
        self.enabled = enabled
        self.pages_fetched = 0
        self.pages_attempted = 0
        self.batches = 0
        self._task = None
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold cyan]Re-warming[/]"),
            BarColumn(),
            MofNCompleteColumn(),
            TextColumn("[red]{task.fields[failed]} failed[/]"),
            TimeElapsedColumn(),
            TimeRemainingColumn(),
            console=self.console,
            transient=False,
            disable=not enabled,
        )

    def __enter__(self) -> 'RestoreProgress':
        self._progress.start()
        self._task = self._progress.add_task("restore", total=self.total_pages or None, failed=0)
        return self

    def __exit__(self, exc_type, exc, tb):
        self._progress.stop()

    def set_metadata(self, metadata):
        """on_metadata callback: size the bar from the image's page count."""
        self.total_pages = metadata.page_count
        if self._task is not None:
            self._progress.update(self._task, total=self.total_pages or None)

    def update(self, pages_fetched: int, pages_attempted: int):
        """on_batch callback: cumulative counters after each batch."""
        self.pages_fetched = pages_fetched
        self.pages_attempted = pages_attempted
        self.batches += 1
        if self._task is not None:
            self._progress.update(
                self._task,
                completed=pages_attempted,
                failed=pages_attempted - pages_fetched,
            )
