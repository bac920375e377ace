"""Identity provider: stat snapshots keyed by platform file identity."""

import os
from pathlib import Path
from typing import BinaryIO, Union

from .models import FileStat, Identity


def _identity_from(st: os.stat_result) -> Identity:
    if os.name == "nt":
        return Identity(str(st.st_ino), 0, 0)
    return Identity(str(st.st_ino), os.major(st.st_dev), os.minor(st.st_dev))


def _file_stat_from(st: os.stat_result) -> FileStat:
    return FileStat(
        identity=_identity_from(st),
        size=st.st_size,
        modified_at=st.st_mtime,
    )


def stat_path(path: Union[str, Path]) -> FileStat:
    """
    Stat a path.

    Raises:
        FileNotFoundError: If nothing exists at the path
        OSError: On any other stat failure
    """
    return _file_stat_from(os.stat(path))


def stat_handle(handle: BinaryIO) -> FileStat:
    """Stat an open file object (follows the file even after a rename or unlink)."""
    return _file_stat_from(os.fstat(handle.fileno()))
