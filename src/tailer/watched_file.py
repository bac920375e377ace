"""Per-path watched file entity and its state machine."""

import logging
import math
import sys
import time
from collections import deque
from pathlib import Path
from typing import BinaryIO, Deque, List, Optional

from .config import StartPosition, TailerConfig
from .exceptions import InvalidStateTransitionError
from .listener import Listener
from .models import (
    ExtractResult,
    FileStat,
    HistoryEntry,
    Identity,
    LoopControl,
    WatchedFileState,
)
from .stat import stat_handle, stat_path
from .tokenizer import BufferedTokenizer


logger = logging.getLogger(__name__)

HISTORY_SIZE = 8

_S = WatchedFileState

ALLOWED_TRANSITIONS = {
    _S.WATCHED: {_S.ACTIVE, _S.IGNORED, _S.UNWATCHED, _S.DELAYED_DELETE, _S.ROTATION_IN_PROGRESS},
    _S.ACTIVE: {_S.WATCHED, _S.CLOSED, _S.ROTATION_IN_PROGRESS, _S.DELAYED_DELETE, _S.UNWATCHED},
    _S.IGNORED: {_S.WATCHED, _S.ROTATION_IN_PROGRESS, _S.DELAYED_DELETE, _S.UNWATCHED},
    _S.CLOSED: {_S.WATCHED, _S.ROTATION_IN_PROGRESS, _S.DELAYED_DELETE, _S.UNWATCHED},
    _S.ROTATION_IN_PROGRESS: {_S.WATCHED, _S.ACTIVE, _S.IGNORED, _S.DELAYED_DELETE, _S.UNWATCHED},
    _S.DELAYED_DELETE: {
        _S.WATCHED, _S.ACTIVE, _S.IGNORED, _S.CLOSED, _S.ROTATION_IN_PROGRESS, _S.UNWATCHED,
    },
    _S.UNWATCHED: set(),
}


class WatchedFile:
    """
    A discovered file and everything known about it.

    The path may change when a rename is discovered; the identity is the
    identity of the content currently being followed. ``bytes_read`` is the
    offset up to which whole records have been delivered. Bytes held in the
    tokenizer buffer have been read from disk but not yet delivered, so
    ``read_position`` (where the next read starts) is ``bytes_read`` plus the
    buffered length.
    """

    def __init__(
        self,
        path: Path,
        stat: FileStat,
        config: TailerConfig,
        listener: Optional[Listener] = None,
    ):
        self.path = Path(path)
        self.config = config
        self.identity: Identity = stat.identity
        self.stat: FileStat = stat
        self.path_stat: FileStat = stat
        self.bytes_read = 0
        self.buffer = BufferedTokenizer(config.delimiter_bytes)
        self.handle: Optional[BinaryIO] = None
        self.listener = listener or Listener(self.path)
        self.initial = True
        self.accessed_at = time.time()
        self.state = WatchedFileState.WATCHED
        self.history: Deque[HistoryEntry] = deque(maxlen=HISTORY_SIZE)
        self.history.append(HistoryEntry(None, self.state))
        self._read_loop_count = config.file_chunk_count
        self.last_open_warning_at: Optional[float] = None
        self.last_stat_warning_at: Optional[float] = None

    @classmethod
    def from_path(
        cls, path: Path, config: TailerConfig, listener: Optional[Listener] = None
    ) -> "WatchedFile":
        """Build a watched file from a fresh stat of ``path``."""
        return cls(path, stat_path(path), config, listener)

    # -- state machine -------------------------------------------------

    def _set_state(self, new_state: WatchedFileState) -> None:
        if new_state is self.state:
            return
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidStateTransitionError(
                f"{self.path}: cannot move from {self.state.value} to {new_state.value}"
            )
        self.history.append(HistoryEntry(self.state, new_state))
        self.state = new_state

    @property
    def previous_state(self) -> Optional[WatchedFileState]:
        return self.history[-1].from_state

    def recent_states(self) -> List[str]:
        return [str(entry) for entry in self.history]

    def watch(self) -> None:
        self._set_state(_S.WATCHED)

    def activate(self) -> None:
        self._set_state(_S.ACTIVE)

    def ignore(self) -> None:
        """Ignore the file, treating its current content as already read."""
        self._set_state(_S.IGNORED)
        self.buffer.reset()
        self.bytes_read = self.stat.size

    def close(self) -> None:
        self.file_close()
        self._set_state(_S.CLOSED)

    def rotation_in_progress(self) -> None:
        self._set_state(_S.ROTATION_IN_PROGRESS)

    def delay_delete(self) -> None:
        self._set_state(_S.DELAYED_DELETE)

    def restore_previous_state(self) -> None:
        """Undo a delayed delete once the path is found again."""
        previous = self.previous_state
        if self.state is _S.DELAYED_DELETE and previous is not None:
            self._set_state(previous)

    def unwatch(self) -> None:
        self.file_close()
        self.buffer.reset()
        self._set_state(_S.UNWATCHED)

    @property
    def watched(self) -> bool:
        return self.state is _S.WATCHED

    @property
    def active(self) -> bool:
        return self.state is _S.ACTIVE

    @property
    def ignored(self) -> bool:
        return self.state is _S.IGNORED

    @property
    def closed(self) -> bool:
        return self.state is _S.CLOSED

    @property
    def unwatched(self) -> bool:
        return self.state is _S.UNWATCHED

    @property
    def delayed_delete(self) -> bool:
        return self.state is _S.DELAYED_DELETE

    @property
    def rotating(self) -> bool:
        return self.state is _S.ROTATION_IN_PROGRESS

    # -- file handle ---------------------------------------------------

    def file_open(self) -> bool:
        return self.handle is not None

    def open(self) -> None:
        """
        Open the file for reading.

        Raises:
            OSError: If the file cannot be opened
        """
        if self.handle is not None:
            return
        self.handle = open(self.path, "rb")
        self.accessed_at = time.time()

    def file_close(self) -> None:
        if self.handle is None:
            return
        try:
            self.handle.close()
        except OSError as e:
            logger.debug(f"Error closing {self.path}: {e}")
        finally:
            self.handle = None

    def file_seek(self, position: int) -> None:
        self.handle.seek(position)

    def file_read(self, size: int) -> bytes:
        self.accessed_at = time.time()
        return self.handle.read(size)

    def read_extract_records(self, size: int) -> ExtractResult:
        """Read up to ``size`` bytes and split them into complete records."""
        data = self.file_read(size)
        if not data:
            return ExtractResult(at_eof=True)
        return ExtractResult(records=self.buffer.extract(data), bytes_read=len(data))

    # -- stat and identity ---------------------------------------------

    def restat(self) -> bool:
        """
        Re-stat the path.

        When the path now refers to different content while a handle is
        still open on the old content, the size is taken from the open
        handle so the old content can be drained.

        Returns:
            True if the modification time changed

        Raises:
            OSError: If the path cannot be stat'ed (FileNotFoundError if gone)
        """
        previous_mtime = self.stat.modified_at
        self.path_stat = stat_path(self.path)
        if self.path_stat.identity != self.identity and self.file_open():
            self.stat = stat_handle(self.handle)
        else:
            self.stat = self.path_stat
        return self.stat.modified_at != previous_mtime

    def restat_handle(self) -> None:
        """Refresh the size from the open handle (the path may be gone)."""
        if self.handle is not None:
            self.stat = stat_handle(self.handle)

    @property
    def rotation_detected(self) -> bool:
        return self.path_stat.identity != self.identity

    @property
    def size(self) -> int:
        return self.stat.size

    @property
    def modified_at(self) -> float:
        return self.stat.modified_at

    @property
    def read_position(self) -> int:
        return self.bytes_read + self.buffer.pending_size

    @property
    def bytes_unread(self) -> int:
        return max(0, self.stat.size - self.read_position)

    @property
    def grown(self) -> bool:
        return self.stat.size > self.read_position

    @property
    def shrunk(self) -> bool:
        return self.stat.size < self.read_position

    @property
    def size_changed(self) -> bool:
        return self.stat.size != self.read_position

    @property
    def all_read(self) -> bool:
        return self.read_position >= self.stat.size

    # -- cursor --------------------------------------------------------

    def update_bytes_read(self, position: int) -> None:
        self.bytes_read = position

    def increment_bytes_read(self, amount: int) -> None:
        self.bytes_read += amount

    def position_for_new_record(self) -> int:
        """Offset a freshly created position record starts from."""
        if self.initial and self.config.start_position is StartPosition.END:
            return self.stat.size
        return 0

    def initial_completed(self) -> None:
        self.initial = False

    # -- timing --------------------------------------------------------

    def file_ignorable(self, now: Optional[float] = None) -> bool:
        """True if last modified strictly longer ago than ``ignore_older``."""
        if self.config.ignore_older is None:
            return False
        now = time.time() if now is None else now
        return (now - self.stat.modified_at) > self.config.ignore_older

    def file_can_close(self, now: Optional[float] = None) -> bool:
        if self.config.close_older is None:
            return False
        now = time.time() if now is None else now
        return (now - self.accessed_at) > self.config.close_older

    def file_closable(self, now: Optional[float] = None) -> bool:
        return self.file_can_close(now) and self.all_read

    # -- read loop -----------------------------------------------------

    def set_depth_first_read_loop(self) -> None:
        self._read_loop_count = sys.maxsize

    def set_standard_read_loop(self) -> None:
        self._read_loop_count = self.config.file_chunk_count

    def loop_control_adjusted_for_stat_size(self) -> LoopControl:
        """Read budget for one pass, never asking for more than is unread."""
        size = self.config.file_chunk_size
        needed = math.ceil(self.bytes_unread / size)
        count = min(self._read_loop_count, needed)
        return LoopControl(count=count, size=size, more=needed > count)

    # -- rotation hand-off ---------------------------------------------

    def _take_path_content(self, position: int) -> None:
        self.file_close()
        self.buffer.reset()
        self.identity = self.path_stat.identity
        self.stat = self.path_stat
        self.bytes_read = position
        self.initial = False
        self.watch()

    def rotate_as_file(self, position: int = 0) -> None:
        """Follow the new content now at this path, starting at ``position``."""
        self._take_path_content(position)

    def rotate_from(self, other: "WatchedFile") -> None:
        """Take over the stream of ``other``, whose content now lives at this path."""
        self._take_path_content(other.bytes_read)

    # -- diagnostics ---------------------------------------------------

    def details(self) -> dict:
        return {
            "path": str(self.path),
            "identity": str(self.identity),
            "state": self.state.value,
            "size": self.stat.size,
            "bytes_read": self.bytes_read,
            "buffered": self.buffer.pending_size,
            "open": self.file_open(),
            "initial": self.initial,
            "history": self.recent_states(),
        }

    def __repr__(self) -> str:
        return (
            f"<WatchedFile {self.path} id={self.identity} state={self.state.value} "
            f"read={self.bytes_read}/{self.stat.size}>"
        )
