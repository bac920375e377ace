"""Glob expansion and creation of watched files."""

import glob
import logging
from pathlib import Path
from typing import List, Optional

from .config import TailerConfig
from .listener import NullObserver, Observer
from .position_store import PositionStore
from .registry import Registry
from .watched_file import WatchedFile


logger = logging.getLogger(__name__)


class Discoverer:
    """
    Expands the registered patterns and keeps the registry in step.

    Files found by the first expansion of a pattern are "initial" and are
    read according to ``start_position``; files that appear later are read
    from the beginning.
    """

    def __init__(
        self,
        registry: Registry,
        store: PositionStore,
        config: TailerConfig,
        observer: Optional[Observer] = None,
    ):
        self.registry = registry
        self.store = store
        self.config = config
        self.observer = observer or NullObserver()
        self._patterns: List[str] = []

    @property
    def patterns(self) -> List[str]:
        return list(self._patterns)

    def add_path(self, pattern: str) -> bool:
        """
        Register a pattern and expand it immediately.

        Returns:
            False if the pattern was already registered
        """
        pattern = str(pattern)
        if pattern in self._patterns:
            return False
        self._patterns.append(pattern)
        self._discover_files(pattern, initial=True)
        return True

    def discover(self) -> None:
        """Re-expand every registered pattern."""
        for pattern in self._patterns:
            self._discover_files(pattern, initial=False)

    def _can_exclude(self, watched_file: WatchedFile, new_discovery: bool) -> bool:
        if not self.config.should_exclude(watched_file.path):
            return False
        if new_discovery:
            logger.debug(f"Skipping {watched_file.path}: matches an exclude pattern")
        watched_file.unwatch()
        return True

    def _discover_files(self, pattern: str, initial: bool) -> None:
        found = glob.glob(pattern, recursive=True) or [pattern]
        logger.debug(f"Pattern {pattern} matched {len(found)} path(s)")

        for name in found:
            path = Path(name)
            if path.is_symlink() or not path.is_file():
                continue

            watched_file = self.registry.get(path)
            new_discovery = watched_file is None
            if new_discovery:
                try:
                    watched_file = WatchedFile.from_path(
                        path, self.config, self.observer.listener_for(path)
                    )
                except OSError as e:
                    logger.debug(f"Could not stat {path} during discovery: {e}")
                    continue
                if not initial:
                    watched_file.initial_completed()

            if watched_file.unwatched or self._can_exclude(watched_file, new_discovery):
                continue

            if not new_discovery:
                continue

            if watched_file.file_ignorable():
                logger.debug(
                    f"Ignoring {path}: last modified more than "
                    f"{self.config.ignore_older}s ago"
                )
                watched_file.ignore()

            if not self.store.associate(watched_file):
                logger.debug(f"Not tracking {path}: already fully read")
                continue

            self.registry.add(watched_file)
            logger.debug(f"Discovered {path} ({watched_file.state.value})")
