"""
CLI - Command-line interface for pg_rewarm.

save:    capture the pages resident in shared_buffers into an image file
restore: read them back into shared_buffers after a restart
"""

import argparse
import logging
import signal
import sys
import threading
from contextlib import contextmanager, nullcontext
from typing import Iterator, List, Optional

from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .config import Config, create_example_config
from .errors import RewarmError
from .image import available_formats
from .manager import CacheManager
from .ui import RestoreProgress, ResultDisplay

logger = logging.getLogger("pg_rewarm")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="pg_rewarm",
        description="Save and restore the PostgreSQL buffer pool working set",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Before a planned restart
    pg_rewarm save -H db1 -U postgres -d app -f /var/tmp/app.img

    # After the restart
    pg_rewarm restore -H db1 -U postgres -d app -f /var/tmp/app.img -b 500 -j 4

    # Streaming-friendly image for very large buffer pools
    pg_rewarm save --format sqlite -f /var/tmp/app.sqlite

    # Start from an example config file
    pg_rewarm --init-config /etc/pg_rewarm.toml

Environment Variables:
    PGHOST, PGPORT, PGUSER, PGPASSWORD, PGDATABASE

Requires the pg_buffercache (save) and pg_prewarm (restore) extensions.
        """,
    )
    parser.add_argument("mode", nargs="?", choices=["save", "restore"],
                        help="Operation to run")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-c", "--config", help="Path to TOML config file")
    parser.add_argument("--init-config", nargs="?", const="pg_rewarm.toml", metavar="PATH",
                        help="Write an example config file (default: pg_rewarm.toml) and exit")

    conn = parser.add_argument_group("connection")
    conn.add_argument("-H", "--host", help="Database host")
    conn.add_argument("-p", "--port", type=int, help="Database port")
    conn.add_argument("-U", "--user", help="Database user")
    conn.add_argument("-W", "--password", help="Database password (prefer PGPASSWORD)")
    conn.add_argument("-d", "--dbname", help="Database name")
    conn.add_argument("--connect-timeout", type=int, help="Connect timeout in seconds")
    conn.add_argument("--statement-timeout", type=int,
                      help="Per-statement timeout in milliseconds")

    image = parser.add_argument_group("image")
    image.add_argument("--format", dest="image_format",
                       help=f"Image format ({', '.join(available_formats())})")
    image.add_argument("-f", "--file", dest="save_file", help="Image file path")
    image.add_argument("--list-formats", action="store_true",
                       help="List supported image formats and exit")

    restore = parser.add_argument_group("restore")
    restore.add_argument("-b", "--batch-size", type=int, help="Pages per batch")
    restore.add_argument("-j", "--concurrency", type=int,
                         help="Concurrent page fetches per batch")

    output = parser.add_argument_group("output")
    output.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    output.add_argument("-q", "--quiet", action="store_true", help="Only print errors")

    args = parser.parse_args(argv)
    if not args.mode and not args.list_formats and not args.init_config:
        parser.error("mode is required (save or restore)")
    return args


def setup_logging(verbose: bool = False, quiet: bool = False, console: Optional[Console] = None):
    """Route pg_rewarm logging through rich."""
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING
    handler = RichHandler(console=console, show_path=verbose, markup=False)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.handlers[:] = [handler]
    logger.setLevel(level)
    logger.propagate = False


@contextmanager
def cancel_on_interrupt(display: ResultDisplay) -> Iterator[threading.Event]:
    """
    First Ctrl-C sets the cancel event (current batch finishes);
    a second one raises KeyboardInterrupt.
    """
    cancel = threading.Event()

    def handler(signum, frame):
        if cancel.is_set():
            raise KeyboardInterrupt
        cancel.set()
        display.print("\n[yellow]Cancelling after the current batch (Ctrl-C again to abort)...[/]")

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, previous)


def run_save(manager: CacheManager, config: Config, display: ResultDisplay) -> int:
    spinner = nullcontext() if display.quiet else \
        display.console.status("Capturing buffer pool...", spinner="dots")
    with cancel_on_interrupt(display) as cancel, spinner:
        report = manager.save(config.rewarm.save_file, cancel=cancel)
    display.print_save(report)
    return EXIT_INTERRUPTED if report.cancelled else EXIT_OK


def run_restore(manager: CacheManager, config: Config, display: ResultDisplay) -> int:
    with cancel_on_interrupt(display) as cancel:
        with RestoreProgress(console=display.console, enabled=not display.quiet) as progress:
            report = manager.restore(
                config.rewarm.save_file,
                on_metadata=progress.set_metadata,
                on_batch=progress.update,
                cancel=cancel,
            )
    display.print_restore(report)
    return EXIT_INTERRUPTED if report.cancelled else EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    console = Console(stderr=True)
    display = ResultDisplay(console=console, quiet=args.quiet)
    setup_logging(args.verbose, args.quiet, console)

    if args.list_formats:
        for name in available_formats():
            console.print(name)
        return EXIT_OK

    if args.init_config:
        try:
            path = create_example_config(args.init_config)
        except OSError as e:
            display.print_error(str(e))
            return EXIT_FAILURE
        display.print(f"Wrote example config to {path}")
        return EXIT_OK

    try:
        config = Config.load(args.config).override_from_args(args)
    except (OSError, ValueError) as e:
        display.print_error(f"Cannot load configuration: {e}")
        return EXIT_FAILURE

    errors = config.validate()
    if errors:
        for error in errors:
            display.print_error(error)
        return EXIT_FAILURE

    display.print_banner(args.mode, config.summary())

    try:
        manager = CacheManager(config.to_cache_config())
        if args.mode == "save":
            return run_save(manager, config, display)
        return run_restore(manager, config, display)
    except RewarmError as e:
        display.print_error(str(e))
        return EXIT_FAILURE
    except OSError as e:
        display.print_error(f"I/O error: {e}")
        return EXIT_FAILURE
    except KeyboardInterrupt:
        display.print_error("Interrupted by user")
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
