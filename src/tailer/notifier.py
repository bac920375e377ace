"""Directory change notifications that wake the tick loop early."""

import glob
import logging
import threading
from pathlib import Path
from typing import Callable, Dict, Iterable, List

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer


logger = logging.getLogger(__name__)


def base_directory(pattern: str) -> Path:
    """Deepest directory of a glob pattern that contains no wildcard."""
    parts: List[str] = []
    for part in Path(pattern).parts:
        if glob.has_magic(part):
            break
        parts.append(part)
    if len(parts) == len(Path(pattern).parts):
        parts = parts[:-1]
    return Path(*parts) if parts else Path(".")


class WakeupHandler(FileSystemEventHandler):
    """Calls ``callback`` on any non-directory event."""

    def __init__(self, callback: Callable[[], None]):
        super().__init__()
        self.callback = callback

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        logger.debug(f"Change notification: {event.event_type} {event.src_path}")
        self.callback()


class ChangeNotifier:
    """
    One watchdog observer per base directory of the watched patterns.

    Notifications never drive state changes; they only shorten the sleep
    between ticks so new content is picked up sooner.
    """

    def __init__(self, callback: Callable[[], None]):
        self.callback = callback
        self._observers: Dict[Path, Observer] = {}
        self._lock = threading.Lock()

    def start_watching(self, pattern: str) -> bool:
        """
        Watch the base directory of a pattern.

        Returns:
            False if that directory is already watched or does not exist
        """
        directory = base_directory(pattern).resolve()
        recursive = "**" in pattern or any(
            glob.has_magic(part) for part in Path(pattern).parts[:-1]
        )

        with self._lock:
            if directory in self._observers:
                return False
            if not directory.is_dir():
                logger.debug(f"Not watching {directory} for changes: not a directory")
                return False

            observer = Observer()
            observer.schedule(WakeupHandler(self.callback), str(directory), recursive=recursive)
            observer.start()
            self._observers[directory] = observer
            return True

    def start_all(self, patterns: Iterable[str]) -> int:
        return sum(1 for pattern in patterns if self.start_watching(pattern))

    def stop_all(self) -> int:
        """
        Stop all observers.

        Returns:
            Number of observers stopped
        """
        with self._lock:
            count = len(self._observers)
            for observer in self._observers.values():
                observer.stop()
            for observer in self._observers.values():
                observer.join(timeout=5.0)
            self._observers.clear()
            return count

    def is_watching(self, directory: Path) -> bool:
        with self._lock:
            return Path(directory).resolve() in self._observers

    def __len__(self) -> int:
        with self._lock:
            return len(self._observers)
