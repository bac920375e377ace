"""Path-keyed collection of watched files."""

from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .config import SortBy, SortDirection, TailerConfig
from .watched_file import WatchedFile


class Registry:
    """
    Maps each discovered path to its watched file.

    Callers hold the scheduler lock while mutating it.
    """

    def __init__(self, config: TailerConfig):
        self.config = config
        self._files: Dict[Path, WatchedFile] = {}

    def add(self, watched_file: WatchedFile) -> None:
        self._files[watched_file.path] = watched_file

    def get(self, path: Path) -> Optional[WatchedFile]:
        return self._files.get(Path(path))

    def remove_paths(self, paths: Iterable[Path]) -> int:
        """
        Remove entries by path.

        Returns:
            Number of entries removed
        """
        removed = 0
        for path in paths:
            if self._files.pop(Path(path), None) is not None:
                removed += 1
        return removed

    def values(self) -> List[WatchedFile]:
        """Point-in-time snapshot ordered by the configured sort key."""
        reverse = self.config.sort_direction is SortDirection.DESC
        if self.config.sort_by is SortBy.PATH:
            key = lambda wf: str(wf.path)
        else:
            key = lambda wf: (wf.modified_at, str(wf.path))
        return sorted(self._files.values(), key=key, reverse=reverse)

    def paths(self) -> List[Path]:
        return list(self._files.keys())

    def close_all(self) -> None:
        """Close every open handle without changing any state."""
        for watched_file in self._files.values():
            watched_file.file_close()

    def empty(self) -> bool:
        return not self._files

    def __len__(self) -> int:
        return len(self._files)

    def __contains__(self, path) -> bool:
        return Path(path) in self._files
