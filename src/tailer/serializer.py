"""Line codec for the durable position store.

Current records look like::

    <inode> <major> <minor> <offset> <last-touched> <path>

Legacy records carry only the identity and the offset::

    <inode> <major> <minor> <offset>

The path is the remainder of the line, so it may contain spaces.
"""

import logging
import time
from typing import Iterable, Iterator, List, Mapping, Optional, TextIO, Tuple

from .models import Identity


logger = logging.getLogger(__name__)


class PositionRecordSerializer:
    """
    Encodes and decodes position records.

    Records whose last-touched time is older than the retention window are
    skipped on write and their keys collected in ``expired_keys`` so the
    caller can drop them.
    """

    def __init__(self, retention: float):
        self.retention = retention
        self.expired_keys: List[Identity] = []

    def serialize(self, records: Mapping, io: TextIO, as_of: Optional[float] = None) -> None:
        as_of = time.time() if as_of is None else as_of
        self.expired_keys = []
        for identity, record in records.items():
            if record.expired(as_of, self.retention):
                self.expired_keys.append(identity)
                continue
            io.write(self.encode(identity, record.position, record.last_changed_at, record.path))

    def deserialize(self, lines: Iterable[str]) -> Iterator[Tuple[Identity, int, float, Optional[str]]]:
        """Yield ``(identity, offset, last_changed_at, path)`` for every valid line."""
        now = time.time()
        for number, line in enumerate(lines, start=1):
            line = line.rstrip("\r\n")
            if not line.strip():
                continue
            try:
                yield self.decode(line, now)
            except ValueError as e:
                logger.warning(f"Skipping invalid position record on line {number}: {line!r} ({e})")

    @staticmethod
    def encode(identity: Identity, position: int, last_changed_at: float, path=None) -> str:
        if path is None:
            return f"{identity} {position} {last_changed_at}\n"
        return f"{identity} {position} {last_changed_at} {path}\n"

    @staticmethod
    def encode_legacy(identity: Identity, position: int) -> str:
        return f"{identity} {position}\n"

    @staticmethod
    def decode(line: str, now: Optional[float] = None) -> Tuple[Identity, int, float, Optional[str]]:
        """
        Decode one record line.

        Raises:
            ValueError: If the line is not a valid record
        """
        parts = line.split(" ", 5)
        if len(parts) < 4:
            raise ValueError(f"expected at least 4 fields, got {len(parts)}")

        identity = Identity(parts[0], int(parts[1]), int(parts[2]))
        position = int(parts[3])
        if position < 0:
            raise ValueError("negative offset")

        if len(parts) == 4:
            return identity, position, time.time() if now is None else now, None

        last_changed_at = float(parts[4])
        path = parts[5] if len(parts) == 6 and parts[5] != "" else None
        return identity, position, last_changed_at, path
