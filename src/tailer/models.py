"""Data models for the file tailer package."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional
import time


@dataclass(frozen=True)
class Identity:
    """
    Platform-level identity of a file, independent of its path.

    Attributes:
        inode: Inode number (or file index on Windows) as a string
        maj: Device major number
        min: Device minor number
    """
    inode: str
    maj: int = 0
    min: int = 0

    def __str__(self) -> str:
        return f"{self.inode} {self.maj} {self.min}"


@dataclass(frozen=True)
class FileStat:
    """
    Snapshot of a file's stat information.

    Attributes:
        identity: Identity of the file
        size: Size in bytes
        modified_at: Unix timestamp of the last modification
    """
    identity: Identity
    size: int
    modified_at: float


class WatchedFileState(Enum):
    """States of a watched file."""
    WATCHED = "watched"
    ACTIVE = "active"
    IGNORED = "ignored"
    CLOSED = "closed"
    ROTATION_IN_PROGRESS = "rotation_in_progress"
    DELAYED_DELETE = "delayed_delete"
    UNWATCHED = "unwatched"


class TransitionKind(Enum):
    """Kinds of work dispatched to handlers."""
    CREATE = "create"
    CREATE_INITIAL = "create_initial"
    GROW = "grow"
    SHRINK = "shrink"
    DELETE = "delete"
    TIMEOUT = "timeout"
    UNIGNORE = "unignore"
    ROTATE_AS_FILE = "rotate_as_file"
    ROTATE_FROM = "rotate_from"
    READ_FILE = "read_file"
    READ_GZIP_FILE = "read_gzip_file"


@dataclass(frozen=True)
class Transition:
    """
    A unit of handler work.

    Attributes:
        kind: Which handler runs
        position: Starting offset for ROTATE_AS_FILE
        source: Watched file superseded by ROTATE_FROM
    """
    kind: TransitionKind
    position: int = 0
    source: Optional[Any] = None

    @classmethod
    def create(cls) -> "Transition":
        return cls(TransitionKind.CREATE)

    @classmethod
    def create_initial(cls) -> "Transition":
        return cls(TransitionKind.CREATE_INITIAL)

    @classmethod
    def grow(cls) -> "Transition":
        return cls(TransitionKind.GROW)

    @classmethod
    def shrink(cls) -> "Transition":
        return cls(TransitionKind.SHRINK)

    @classmethod
    def delete(cls) -> "Transition":
        return cls(TransitionKind.DELETE)

    @classmethod
    def timeout(cls) -> "Transition":
        return cls(TransitionKind.TIMEOUT)

    @classmethod
    def unignore(cls) -> "Transition":
        return cls(TransitionKind.UNIGNORE)

    @classmethod
    def rotate_as_file(cls, position: int = 0) -> "Transition":
        return cls(TransitionKind.ROTATE_AS_FILE, position=position)

    @classmethod
    def rotate_from(cls, source: Any) -> "Transition":
        return cls(TransitionKind.ROTATE_FROM, source=source)

    @classmethod
    def read_file(cls) -> "Transition":
        return cls(TransitionKind.READ_FILE)

    @classmethod
    def read_gzip_file(cls) -> "Transition":
        return cls(TransitionKind.READ_GZIP_FILE)


@dataclass
class LoopControl:
    """
    Budget for one read pass over a file.

    Attributes:
        count: Number of chunk reads allowed
        size: Bytes requested per chunk read
        more: True if unread bytes remain beyond this budget
        read_error: Set when a read fails so the loop stops early
    """
    count: int
    size: int
    more: bool = False
    read_error: bool = False

    @property
    def keep_looping(self) -> bool:
        return not self.read_error


@dataclass
class ExtractResult:
    """Outcome of reading one chunk and splitting it into records."""
    records: List[bytes] = field(default_factory=list)
    bytes_read: int = 0
    at_eof: bool = False


@dataclass
class HistoryEntry:
    """One entry of a watched file's transition history."""
    from_state: Optional[WatchedFileState]
    to_state: WatchedFileState
    timestamp: float = field(default_factory=time.time)

    def __str__(self) -> str:
        origin = self.from_state.value if self.from_state else "-"
        return f"{origin}->{self.to_state.value}"
