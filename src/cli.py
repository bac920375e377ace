#!/usr/bin/env python3
"""
CLI for following files.

Usage:
    python -m src.cli tail "/var/log/app/*.log" --positions ./data/positions
    python -m src.cli tail "/data/in/**/*.csv" --mode batch --exit-after-read
    python -m src.cli positions ./data/positions
"""

import argparse
import logging
import signal
import sys
import time
from datetime import datetime
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Load .env from project root
_env_file = Path(__file__).parent.parent / ".env"
if _env_file.exists():
    load_dotenv(_env_file)
else:
    load_dotenv()

from src.tailer import FileTailer, Listener, Observer, TailerConfig, TailerError
from src.tailer.serializer import PositionRecordSerializer


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("cli")


class GracefulShutdown:
    """Handle graceful shutdown on SIGINT/SIGTERM."""

    def __init__(self):
        self.should_exit = False
        signal.signal(signal.SIGINT, self._handler)
        signal.signal(signal.SIGTERM, self._handler)

    def _handler(self, signum, frame):
        logger.info("Received shutdown signal, stopping...")
        self.should_exit = True


class StdoutListener(Listener):
    """Writes each record to stdout, optionally prefixed by its path."""

    def __init__(self, path: Path, show_path: bool):
        super().__init__(path)
        self.show_path = show_path

    def accept(self, record: bytes) -> None:
        text = record.decode("utf-8", errors="replace")
        if self.show_path:
            print(f"{self.path}: {text}", flush=True)
        else:
            print(text, flush=True)

    def deleted(self) -> None:
        logger.info(f"File gone: {self.path}")

    def timed_out(self) -> None:
        logger.debug(f"Closed idle file: {self.path}")

    def reading_completed(self) -> None:
        logger.info(f"Finished reading: {self.path}")


class StdoutObserver(Observer):
    def __init__(self, show_path: bool):
        self.show_path = show_path

    def listener_for(self, path: Path) -> Listener:
        return StdoutListener(path, self.show_path)


def cmd_tail(args):
    """Follow files and print their records."""
    options = {
        "paths": [str(Path(p).expanduser()) for p in args.paths],
        "exclude": args.exclude or [],
        "start_position": args.start_position,
        "mode": args.mode,
        "exit_after_read": args.exit_after_read,
        "check_archive_validity": args.check_archive_validity,
        "wake_on_change": args.wake_on_change,
        "delimiter": args.delimiter.encode("utf-8").decode("unicode_escape"),
        "discover_interval": args.discover_interval,
        "sort_by": args.sort_by,
        "sort_direction": args.sort_direction,
    }
    if args.positions:
        options["position_store_path"] = Path(args.positions).resolve()
    for name in ("stat_interval", "close_older", "ignore_older", "position_store_write_interval"):
        value = getattr(args, name)
        if value is not None:
            options[name] = value
    if args.max_open_files is not None:
        options["max_open_files"] = args.max_open_files

    try:
        config = TailerConfig.from_dict(options)
        tailer = FileTailer(config, StdoutObserver(args.show_path))
    except TailerError as e:
        logger.error(str(e))
        sys.exit(1)

    shutdown = GracefulShutdown()

    with tailer:
        tailer.start_async()
        logger.info(f"Following {len(config.paths)} pattern(s)")
        for pattern in config.paths:
            logger.info(f"  - {pattern}")
        logger.info(f"Positions: {tailer.position_store_path}")
        logger.info("Press Ctrl+C to stop")

        while not shutdown.should_exit and tailer.is_running:
            time.sleep(0.5)

    logger.info("Tailer stopped")


def cmd_positions(args):
    """Print the records of a position store."""
    path = Path(args.path)
    if not path.is_file():
        logger.error(f"Position store not found: {path}")
        sys.exit(1)

    serializer = PositionRecordSerializer(retention=float("inf"))
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        records = list(serializer.deserialize(f))

    print(f"\nPosition records ({len(records)}):")
    for identity, position, last_changed_at, file_path in records:
        touched = datetime.fromtimestamp(last_changed_at).strftime("%Y-%m-%d %H:%M:%S")
        print(f"  {str(identity):<24} {position:>12}  {touched}  {file_path or '(no path)'}")


def main():
    parser = argparse.ArgumentParser(
        description="Follow files matching glob patterns and print their records",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    tail_parser = subparsers.add_parser("tail", help="Follow files and print records")
    tail_parser.add_argument("paths", nargs="+", help="Glob patterns of files to follow")
    tail_parser.add_argument("--positions", help="Position store file (derived from the patterns if omitted)")
    tail_parser.add_argument("--exclude", action="append", help="Filename pattern to skip (repeatable)")
    tail_parser.add_argument("--start-position", choices=["beginning", "end"], default="end",
                             help="Where to start reading files found at startup")
    tail_parser.add_argument("--mode", choices=["streaming", "batch"], default="streaming")
    tail_parser.add_argument("--exit-after-read", action="store_true",
                             help="Batch mode: stop once every file is read")
    tail_parser.add_argument("--check-archive-validity", action="store_true",
                             help="Batch mode: test gzip files before reading")
    tail_parser.add_argument("--wake-on-change", action="store_true",
                             help="Use filesystem notifications to react faster")
    tail_parser.add_argument("--delimiter", default="\\n", help="Record delimiter (escapes allowed)")
    tail_parser.add_argument("--stat-interval", help="Sleep between ticks, e.g. 1s or 250ms")
    tail_parser.add_argument("--discover-interval", type=int, default=15,
                             help="Re-expand patterns every N ticks")
    tail_parser.add_argument("--close-older", help="Close files idle for this long, e.g. 1h")
    tail_parser.add_argument("--ignore-older", help="Skip files not modified for this long, e.g. 2d")
    tail_parser.add_argument("--position-store-write-interval", help="Minimum time between position writes")
    tail_parser.add_argument("--max-open-files", type=int, help="Maximum number of files read at once")
    tail_parser.add_argument("--sort-by", choices=["last_modified", "path"], default="last_modified")
    tail_parser.add_argument("--sort-direction", choices=["asc", "desc"], default="asc")
    tail_parser.add_argument("--show-path", action="store_true", help="Prefix each record with its path")

    positions_parser = subparsers.add_parser("positions", help="Print the records of a position store")
    positions_parser.add_argument("path", help="Position store file")

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.command == "tail":
        cmd_tail(args)
    elif args.command == "positions":
        cmd_positions(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
