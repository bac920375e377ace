"""
File Tailer Package

Discovers files matching glob patterns and streams their records to a
listener, remembering how far each file was read across restarts.

Features:
- Glob discovery with filename exclusions
- Rotation handling: rename, rename cascades, copy+truncate
- Durable, identity-keyed position store with periodic atomic flushes
- Bounded number of simultaneously open files
- Streaming (follow) and batch (read once, including gzip) modes
"""

from .models import (
    Identity,
    FileStat,
    WatchedFileState,
    TransitionKind,
    Transition,
    LoopControl,
)

from .config import (
    TailerConfig,
    Mode,
    StartPosition,
    SortBy,
    SortDirection,
)

from .durations import parse_duration

from .exceptions import (
    TailerError,
    ConfigError,
    NoPositionStorePathError,
    PositionStoreError,
    InvalidStateTransitionError,
    ContentFormatError,
    TailerNotRunningError,
    TailerAlreadyRunningError,
)

from .listener import Listener, Observer, NullObserver
from .tokenizer import BufferedTokenizer
from .watched_file import WatchedFile
from .serializer import PositionRecordSerializer
from .position_store import PositionRecord, PositionStore
from .registry import Registry
from .discoverer import Discoverer
from .handlers import Dispatcher
from .processor import TailProcessor, ReadProcessor
from .scheduler import Scheduler
from .notifier import ChangeNotifier
from .tailer import FileTailer


__all__ = [
    # Models
    "Identity",
    "FileStat",
    "WatchedFileState",
    "TransitionKind",
    "Transition",
    "LoopControl",
    # Config
    "TailerConfig",
    "Mode",
    "StartPosition",
    "SortBy",
    "SortDirection",
    "parse_duration",
    # Exceptions
    "TailerError",
    "ConfigError",
    "NoPositionStorePathError",
    "PositionStoreError",
    "InvalidStateTransitionError",
    "ContentFormatError",
    "TailerNotRunningError",
    "TailerAlreadyRunningError",
    # Components
    "Listener",
    "Observer",
    "NullObserver",
    "BufferedTokenizer",
    "WatchedFile",
    "PositionRecordSerializer",
    "PositionRecord",
    "PositionStore",
    "Registry",
    "Discoverer",
    "Dispatcher",
    "TailProcessor",
    "ReadProcessor",
    "Scheduler",
    "ChangeNotifier",
    # Main Process
    "FileTailer",
]

__version__ = "0.1.0"
