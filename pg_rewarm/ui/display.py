"""
ResultDisplay - prints save/restore outcomes with rich.
"""

from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ..manager import RestoreReport, SaveReport
from ..report import RunStatistics, format_bytes


def _fmt_percent(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{value:.1f}%"


class ResultDisplay:
    """
    Console output for pg_rewarm.
    """

    def __init__(self, console: Optional[Console] = None, quiet: bool = False):
        self.console = console or Console()
        self.quiet = quiet

    def print(self, *args, **kwargs):
        """Print to console."""
        if self.quiet:
            return
        self.console.print(*args, **kwargs)

    def print_error(self, message: str):
        """Errors are printed even in quiet mode."""
        self.console.print(f"[bold red]Error:[/] {escape(message)}")

    def print_banner(self, mode: str, summary: str):
        if self.quiet:
            return
        self.console.print(Panel(
            summary,
            title=f"[bold cyan]pg_rewarm {mode}[/]",
            border_style="cyan",
            box=box.ROUNDED,
        ))

    def print_save(self, report: SaveReport):
        if report.cancelled:
            self.print("[yellow]Save cancelled; no image written.[/]")
            return
        self.print(
            f"[green]Saved {report.page_count} pages[/] to [bold]{report.path}[/]"
        )
        self.print(self.timing_table(report.timings))

    def print_restore(self, report: RestoreReport):
        for warning in report.warnings:
            self.print(f"[yellow]Warning:[/] {escape(warning)}")
        if report.cancelled:
            self.print("[yellow]Restore cancelled; partial result below.[/]")
        self.print(self.statistics_table(RunStatistics.from_restore(report)))

    def timing_table(self, timings: Dict[str, float]) -> Table:
        table = Table(title="Timing", box=box.SIMPLE)
        table.add_column("Phase", style="cyan")
        table.add_column("Seconds", justify="right")
        for phase, seconds in timings.items():
            table.add_row(phase, f"{seconds:.3f}")
        table.add_row("[bold]total[/]", f"[bold]{sum(timings.values()):.3f}[/]")
        return table

    def statistics_table(self, stats: RunStatistics) -> Table:
        table = Table(title="Restore statistics", box=box.SIMPLE)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right")
        for label, value in self.statistics_rows(stats):
            table.add_row(label, value)
        return table

    @staticmethod
    def statistics_rows(stats: RunStatistics) -> List[List[Any]]:
        """Label/value pairs for the statistics table."""
        speed = "n/a" if stats.fetch_speed is None else f"{stats.fetch_speed:.1f} pages/s"
        return [
            ["Run time", f"{stats.run_time:.2f}s"],
            ["Pages fetched", f"{stats.pages_fetched} / {stats.pages_attempted}"],
            ["Pages not fetched", str(stats.pages_failed)],
            ["Fetch speed", speed],
            ["Data read", format_bytes(stats.data_read_delta)],
            ["Buffer pool used (before)", _fmt_percent(stats.occupancy_before)],
            ["Buffer pool used (after)", _fmt_percent(stats.occupancy_after)],
            ["Buffer pool restored (approx.)", _fmt_percent(stats.restored_percent)],
        ]
