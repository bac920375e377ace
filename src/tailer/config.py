"""Configuration for the file tailer package."""

import fnmatch
import hashlib
import os
import sys
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import List, Optional

from .durations import parse_duration
from .exceptions import ConfigError, NoPositionStorePathError


DEFAULT_MAX_OPEN_FILES = 4095
FILE_READ_SIZE = 32768
POSITION_STORE_PREFIX = ".tailer_positions_"


class Mode(Enum):
    """How discovered files are consumed."""
    STREAMING = "streaming"
    BATCH = "batch"


class StartPosition(Enum):
    """Where newly discovered files are first read from."""
    BEGINNING = "beginning"
    END = "end"


class SortBy(Enum):
    """Key used to order registry snapshots."""
    LAST_MODIFIED = "last_modified"
    PATH = "path"


class SortDirection(Enum):
    """Direction used to order registry snapshots."""
    ASC = "asc"
    DESC = "desc"


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"Environment variable {name} must be a number, got {raw!r}")


def _default_max_open_files() -> int:
    value = int(_env_float("FILETAIL_MAX_OPEN_FILES", DEFAULT_MAX_OPEN_FILES))
    return value if value > 0 else DEFAULT_MAX_OPEN_FILES


_DURATION_FIELDS = (
    "stat_interval",
    "position_store_write_interval",
    "position_store_retention",
    "close_older",
    "ignore_older",
    "open_warn_interval",
    "max_files_warn_interval",
)

_ENUM_FIELDS = {
    "start_position": StartPosition,
    "mode": Mode,
    "sort_by": SortBy,
    "sort_direction": SortDirection,
}


@dataclass
class TailerConfig:
    """
    Configuration options for the file tailer.

    Attributes:
        paths: Glob patterns of files to follow (``**`` is supported)
        exclude: Filename-only shell patterns to skip
        stat_interval: Seconds to sleep between ticks
        discover_interval: Re-expand the patterns every this many ticks
        position_store_path: Where offsets are persisted (derived if None)
        position_store_write_interval: Minimum seconds between periodic flushes
        position_store_retention: Records untouched for longer are dropped
        start_position: Where files found at startup are first read from
        close_older: Idle seconds after which a fully read file is closed (None disables)
        ignore_older: Files last modified longer ago are skipped until they grow (None disables)
        max_open_files: Maximum number of simultaneously active files
        delimiter: Record delimiter
        file_chunk_size: Bytes read per chunk
        file_chunk_count: Chunks read per file per tick
        mode: Streaming (follow forever) or batch (read once, then forget)
        sort_by: Key used to order files when promoting and reading
        sort_direction: Direction of the ordering
        open_warn_interval: Minimum seconds between open/stat warnings per path
        max_files_warn_interval: Minimum seconds between open-files-limit warnings
        exit_after_read: Batch mode: stop once every discovered file is consumed
        check_archive_validity: Batch mode: test gzip archives fully before reading
        wake_on_change: Wake the tick loop early on directory change notifications
    """
    paths: List[str] = field(default_factory=list)
    exclude: List[str] = field(default_factory=list)
    stat_interval: float = 1.0
    discover_interval: int = 15
    position_store_path: Optional[Path] = None
    position_store_write_interval: float = 15.0
    position_store_retention: float = 14 * 24 * 3600.0
    start_position: StartPosition = StartPosition.END
    close_older: Optional[float] = 3600.0
    ignore_older: Optional[float] = None
    max_open_files: int = field(default_factory=_default_max_open_files)
    delimiter: str = "\n"
    file_chunk_size: int = FILE_READ_SIZE
    file_chunk_count: int = sys.maxsize
    mode: Mode = Mode.STREAMING
    sort_by: SortBy = SortBy.LAST_MODIFIED
    sort_direction: SortDirection = SortDirection.ASC
    open_warn_interval: float = field(
        default_factory=lambda: _env_float("FILETAIL_OPEN_WARN_INTERVAL", 300.0)
    )
    max_files_warn_interval: float = field(
        default_factory=lambda: _env_float("FILETAIL_MAX_FILES_WARN_INTERVAL", 20.0)
    )
    exit_after_read: bool = False
    check_archive_validity: bool = False
    wake_on_change: bool = False

    def __post_init__(self):
        if isinstance(self.paths, str):
            self.paths = [self.paths]
        if isinstance(self.exclude, str):
            self.exclude = [self.exclude]
        if self.position_store_path is not None:
            self.position_store_path = Path(self.position_store_path)
        for name, enum_cls in _ENUM_FIELDS.items():
            value = getattr(self, name)
            if not isinstance(value, enum_cls):
                try:
                    setattr(self, name, enum_cls(str(value).lower()))
                except ValueError:
                    allowed = ", ".join(e.value for e in enum_cls)
                    raise ConfigError(f"{name} must be one of {allowed}, got {value!r}")
        if self.max_open_files <= 0:
            self.max_open_files = DEFAULT_MAX_OPEN_FILES
        if self.discover_interval < 1:
            raise ConfigError(f"discover_interval must be at least 1, got {self.discover_interval}")
        if self.file_chunk_size < 1:
            raise ConfigError(f"file_chunk_size must be positive, got {self.file_chunk_size}")
        if self.file_chunk_count < 1:
            raise ConfigError(f"file_chunk_count must be positive, got {self.file_chunk_count}")
        if not self.delimiter:
            raise ConfigError("delimiter must not be empty")

    @classmethod
    def from_dict(cls, options: dict) -> "TailerConfig":
        """
        Create a config from a plain options mapping.

        Duration options accept friendly strings such as ``"5m"`` and enum
        options accept their string values.

        Raises:
            ConfigError: On unknown options or invalid values
        """
        known = {f.name for f in fields(cls)}
        unknown = set(options) - known
        if unknown:
            raise ConfigError(f"Unknown option(s): {', '.join(sorted(unknown))}")

        kwargs = dict(options)
        for name in _DURATION_FIELDS:
            if name in kwargs:
                kwargs[name] = parse_duration(kwargs[name])
        return cls(**kwargs)

    @property
    def streaming(self) -> bool:
        return self.mode is Mode.STREAMING

    @property
    def delimiter_bytes(self) -> bytes:
        return self.delimiter.encode("utf-8")

    def should_exclude(self, path: Path) -> bool:
        """
        Check if a path is excluded. Only the filename is matched.

        Args:
            path: Path to check

        Returns:
            True if the path should be skipped
        """
        name = Path(path).name
        for pattern in self.exclude:
            if fnmatch.fnmatch(name, pattern):
                return True
        return False

    def resolve_position_store_path(self) -> Path:
        """
        Work out where the position store lives.

        An explicit ``position_store_path`` wins. Otherwise a file named after
        the configured patterns is placed in ``$FILETAIL_POSITIONS_DIR`` or,
        failing that, ``$HOME``.

        Raises:
            NoPositionStorePathError: If no location can be derived
        """
        if self.position_store_path is not None:
            return self.position_store_path

        base = os.environ.get("FILETAIL_POSITIONS_DIR") or os.environ.get("HOME")
        if not base:
            raise NoPositionStorePathError(
                "No position_store_path set and neither FILETAIL_POSITIONS_DIR "
                "nor HOME is defined"
            )
        digest = hashlib.md5(",".join(self.paths).encode("utf-8")).hexdigest()
        return Path(base) / f"{POSITION_STORE_PREFIX}{digest}"
