"""The tick loop: stat cadence, discovery cadence, locking and cancellation."""

import logging
import threading
from typing import Optional

from .config import TailerConfig
from .discoverer import Discoverer
from .processor import BaseProcessor
from .position_store import PositionStore
from .registry import Registry


logger = logging.getLogger(__name__)


class Scheduler:
    """
    Drives the processor once per tick.

    ``watch`` and ``unwatch`` may be called from other threads; they take the
    same lock the loop holds while it mutates the registry. Cancellation is a
    flag polled between phases and between files, so a read already under
    way always finishes.
    """

    def __init__(
        self,
        discoverer: Discoverer,
        registry: Registry,
        store: PositionStore,
        processor: BaseProcessor,
        config: TailerConfig,
    ):
        self.discoverer = discoverer
        self.registry = registry
        self.store = store
        self.processor = processor
        self.config = config
        self.lastwarn_max_files = 0.0
        self._lock = threading.RLock()
        self._quit = False
        self._quit_lock = threading.Lock()
        self._wakeup = threading.Event()
        processor.add_scheduler(self)

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    # -- cross-thread entry points ------------------------------------

    def watch(self, pattern: str) -> bool:
        """Register a pattern and expand it right away."""
        with self._lock:
            return self.discoverer.add_path(pattern)

    def unwatch(self, path) -> bool:
        """
        Stop following a path for good.

        The entry stays in the registry in the unwatched state so later
        discovery does not pick the path up again.

        Returns:
            False if the path is not being watched
        """
        with self._lock:
            watched_file = self.registry.get(path)
            if watched_file is None or watched_file.unwatched:
                return False
            self.store.release(watched_file)
            watched_file.unwatch()
            logger.info(f"Unwatched {watched_file.path}")
            return True

    def discover(self) -> None:
        with self._lock:
            self.discoverer.discover()

    # -- cancellation --------------------------------------------------

    def quit(self) -> None:
        with self._quit_lock:
            self._quit = True
        self._wakeup.set()

    def reset_quit(self) -> None:
        with self._quit_lock:
            self._quit = False
        self._wakeup.clear()

    def quit_requested(self) -> bool:
        with self._quit_lock:
            return self._quit

    def wake(self) -> None:
        """Cut the current inter-tick sleep short."""
        self._wakeup.set()

    # -- loop ----------------------------------------------------------

    def iterate_on_state(self) -> None:
        """Run one tick of the processor over a registry snapshot."""
        with self._lock:
            if self.registry.empty():
                return
            try:
                watched_files = self.registry.values()
                self.processor.process_all_states(watched_files)
            finally:
                removed = self.registry.remove_paths(self.processor.take_deletable_paths())
                if removed:
                    logger.debug(f"Removed {removed} file(s) from the registry")
                self.store.write_if_requested()

    def finished_reading(self) -> bool:
        """Batch mode with exit_after_read: nothing left to consume."""
        if self.config.streaming or not self.config.exit_after_read:
            return False
        with self._lock:
            return all(wf.unwatched for wf in self.registry.values())

    def subscribe(self, max_ticks: Optional[int] = None) -> None:
        """
        Run the loop until ``quit`` is called. A pending quit is honored
        immediately; ``reset_quit`` clears it before a restart.

        Every open handle is closed on exit; the position store is not
        flushed, that is left to the caller.
        """
        ticks = 0
        glob = 0
        logger.debug("Tick loop started")
        try:
            while not self.quit_requested():
                self.iterate_on_state()
                if self.quit_requested():
                    break
                if self.finished_reading():
                    logger.info("All files read, stopping")
                    break
                glob += 1
                if glob >= self.config.discover_interval:
                    self.discover()
                    glob = 0
                if self.quit_requested():
                    break
                ticks += 1
                if max_ticks is not None and ticks >= max_ticks:
                    break
                self._wakeup.wait(timeout=self.config.stat_interval)
                self._wakeup.clear()
        finally:
            with self._lock:
                self.registry.close_all()
            logger.debug("Tick loop stopped")
