"""Main tailer orchestrator."""

import logging
import threading
from pathlib import Path
from typing import List, Optional

from .config import TailerConfig
from .discoverer import Discoverer
from .exceptions import (
    TailerAlreadyRunningError,
    TailerNotRunningError,
)
from .listener import NullObserver, Observer
from .notifier import ChangeNotifier
from .position_store import PositionStore
from .processor import BaseProcessor, ReadProcessor, TailProcessor
from .registry import Registry
from .scheduler import Scheduler


logger = logging.getLogger(__name__)


class FileTailer:
    """
    Wires the position store, registry, discoverer, processor and scheduler
    together for one configuration.

    The position store is opened on construction. Positions are written
    periodically while running; call ``write_positions`` (or use the
    tailer as a context manager) to persist them on shutdown.
    """

    def __init__(
        self,
        config: Optional[TailerConfig] = None,
        observer: Optional[Observer] = None,
    ):
        """
        Initialize the tailer.

        Args:
            config: Tailer configuration
            observer: Supplies one listener per discovered path

        Raises:
            NoPositionStorePathError: If no position store location can be derived
            PositionStoreError: If the position store cannot be opened
        """
        self.config = config or TailerConfig()
        self.observer = observer or NullObserver()

        self.store = PositionStore(self.config.resolve_position_store_path(), self.config)
        self.store.open()

        self.registry = Registry(self.config)
        self.discoverer = Discoverer(self.registry, self.store, self.config, self.observer)
        if self.config.streaming:
            self.processor: BaseProcessor = TailProcessor(self.config, self.store)
        else:
            self.processor = ReadProcessor(self.config, self.store)
        self.scheduler = Scheduler(
            self.discoverer, self.registry, self.store, self.processor, self.config
        )
        self._notifier: Optional[ChangeNotifier] = None
        if self.config.wake_on_change:
            self._notifier = ChangeNotifier(self.scheduler.wake)

        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

        for pattern in self.config.paths:
            self.watch_this(pattern)

    @property
    def position_store_path(self) -> Path:
        return self.store.path

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def watch_this(self, pattern: str) -> bool:
        """
        Start following files matching a glob pattern.

        Returns:
            False if the pattern was already registered
        """
        added = self.scheduler.watch(pattern)
        if added and self._notifier is not None and self.is_running:
            self._notifier.start_watching(pattern)
        return added

    def close_file(self, path) -> bool:
        """
        Stop following one file and persist its position.

        Returns:
            False if the file was not being followed
        """
        closed = self.scheduler.unwatch(Path(path))
        if closed:
            with self.scheduler.lock:
                self.store.write("close_file")
        return closed

    def write_positions(self, reason: str = "requested") -> bool:
        with self.scheduler.lock:
            return self.store.write(reason)

    def patterns(self) -> List[str]:
        return self.discoverer.patterns

    def states(self) -> List[dict]:
        """Point-in-time details of every file in the registry."""
        with self.scheduler.lock:
            return [wf.details() for wf in self.registry.values()]

    # -- running -------------------------------------------------------

    def _mark_running(self) -> None:
        with self._lock:
            if self._running:
                raise TailerAlreadyRunningError("Tailer is already running")
            self._running = True
        self.scheduler.reset_quit()
        if self._notifier is not None:
            self._notifier.start_all(self.discoverer.patterns)
        logger.info(
            f"Tailer started: {len(self.discoverer.patterns)} pattern(s), "
            f"{len(self.registry)} file(s), mode={self.config.mode.value}"
        )

    def subscribe(self) -> None:
        """
        Run the tick loop on the calling thread until ``stop`` is called
        (or, in batch mode with ``exit_after_read``, until everything is read).

        Raises:
            TailerAlreadyRunningError: If already running
        """
        self._mark_running()
        try:
            self.scheduler.subscribe()
        finally:
            self._shutdown()

    def start_async(self) -> None:
        """
        Run the tick loop on a background thread.

        Raises:
            TailerAlreadyRunningError: If already running
        """
        self._mark_running()
        self._thread = threading.Thread(target=self._run_loop, name="TailerLoop")
        self._thread.daemon = True
        self._thread.start()

    def _run_loop(self) -> None:
        try:
            self.scheduler.subscribe()
        except Exception as e:
            logger.error(f"Tick loop failed: {e}")
        finally:
            self._shutdown()

    def stop(self, timeout: float = 5.0) -> None:
        """
        Ask the loop to stop and wait for it.

        Raises:
            TailerNotRunningError: If the tailer is not running
        """
        if not self.is_running:
            raise TailerNotRunningError("Tailer is not running")
        self.scheduler.quit()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        self._shutdown()

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for a background loop to end by itself."""
        thread = self._thread
        if thread is not None:
            thread.join(timeout=timeout)

    def _shutdown(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
        if self._notifier is not None:
            self._notifier.stop_all()
        logger.info("Tailer stopped")

    def close(self) -> None:
        """Stop if running and write positions."""
        if self.is_running:
            self.stop()
        self.write_positions("close")

    def __enter__(self) -> "FileTailer":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
