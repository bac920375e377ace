"""Durable mapping of file identity to last delivered offset."""

import logging
import os
import stat as stat_module
import tempfile
import time
from pathlib import Path
from typing import Dict, List, Optional

from .config import TailerConfig
from .exceptions import PositionStoreError
from .models import Identity
from .serializer import PositionRecordSerializer


logger = logging.getLogger(__name__)


class PositionRecord:
    """
    Offset and metadata stored for one identity.

    While a watched file owns the record, the watched file's cursor is
    authoritative and ``position`` reads through to it. Releasing the owner
    caches the cursor in the record.
    """

    def __init__(
        self,
        position: int = 0,
        last_changed_at: Optional[float] = None,
        path_hint: Optional[str] = None,
        owner=None,
    ):
        self._position = position
        self.last_changed_at = time.time() if last_changed_at is None else last_changed_at
        self.path_hint = path_hint
        self.owner = owner

    @property
    def position(self) -> int:
        if self.owner is not None:
            return self.owner.bytes_read
        return self._position

    @property
    def path(self) -> Optional[str]:
        if self.owner is not None:
            return str(self.owner.path)
        return self.path_hint

    def update_position(self, position: int) -> None:
        if self.owner is not None:
            self.owner.update_bytes_read(position)
        else:
            self._position = position
        self.touch()

    def increment_position(self, amount: int) -> None:
        if self.owner is not None:
            self.owner.increment_bytes_read(amount)
        else:
            self._position += amount
        self.touch()

    def set_owner(self, watched_file) -> None:
        self.owner = watched_file
        self.path_hint = None
        self.touch()

    def unset_owner(self) -> None:
        if self.owner is None:
            return
        self._position = self.owner.bytes_read
        self.owner = None
        self.touch()

    def touch(self, now: Optional[float] = None) -> None:
        self.last_changed_at = time.time() if now is None else now

    def expired(self, now: float, retention: float) -> bool:
        return now > self.last_changed_at + retention

    def __repr__(self) -> str:
        owner = self.owner.path if self.owner is not None else None
        return f"<PositionRecord pos={self.position} owner={owner} hint={self.path_hint}>"


class PositionStore:
    """
    Identity-keyed offsets, loaded once and flushed periodically.

    Not thread-safe on its own; callers serialize access through the
    scheduler lock.
    """

    def __init__(self, path: Path, config: TailerConfig):
        self.path = Path(path)
        self.config = config
        self.serializer = PositionRecordSerializer(config.position_store_retention)
        self._records: Dict[Identity, PositionRecord] = {}
        self._last_write: Optional[float] = None
        self._write_requested = False

    # -- loading -------------------------------------------------------

    def open(self) -> None:
        """
        Load records from disk, dropping those past the retention window.

        Raises:
            PositionStoreError: If the path is a directory or cannot be read
        """
        if self.path.is_dir():
            raise PositionStoreError(f"Position store path is a directory: {self.path}")
        if not self.path.exists():
            logger.info(f"Position store {self.path} not found, starting empty")
            return

        now = time.time()
        loaded = dropped = 0
        try:
            with open(self.path, "r", encoding="utf-8", errors="surrogateescape") as f:
                for identity, position, last_changed_at, path in self.serializer.deserialize(f):
                    record = PositionRecord(position, last_changed_at, path)
                    if record.expired(now, self.config.position_store_retention):
                        dropped += 1
                        continue
                    self._records[identity] = record
                    loaded += 1
        except OSError as e:
            raise PositionStoreError(f"Cannot read position store {self.path}: {e}") from e
        logger.info(f"Opened position store {self.path}: {loaded} record(s), {dropped} expired")

    # -- lookup and mutation ------------------------------------------

    def get(self, identity: Identity) -> Optional[PositionRecord]:
        return self._records.get(identity)

    def find(self, watched_file) -> Optional[PositionRecord]:
        return self._records.get(watched_file.identity)

    def member(self, identity: Identity) -> bool:
        return identity in self._records

    def set(self, identity: Identity, record: PositionRecord) -> None:
        self._records[identity] = record

    def delete(self, identity: Identity) -> Optional[PositionRecord]:
        return self._records.pop(identity, None)

    def keys(self) -> List[Identity]:
        return list(self._records.keys())

    def empty(self) -> bool:
        return not self._records

    def __len__(self) -> int:
        return len(self._records)

    def increment(self, identity: Identity, amount: int) -> int:
        record = self._records[identity]
        record.increment_position(amount)
        return record.position

    def store_last_read(self, identity: Identity, position: int) -> None:
        record = self._records.get(identity)
        if record is not None:
            record.update_position(position)

    def bind(self, watched_file, position: int) -> PositionRecord:
        """Create or update the record of ``watched_file`` and make it the owner."""
        record = self.find(watched_file)
        if record is None:
            record = PositionRecord(position)
            self._records[watched_file.identity] = record
        watched_file.update_bytes_read(position)
        record.set_owner(watched_file)
        return record

    def release(self, watched_file) -> None:
        """Drop the ownership of ``watched_file``, caching its cursor in the record."""
        record = self.find(watched_file)
        if record is not None and record.owner is watched_file:
            record.unset_owner()

    def associate(self, watched_file) -> bool:
        """
        Bind a newly discovered watched file to an existing record.

        Returns:
            False if the file is already fully consumed in batch mode and
            should not be tracked, True otherwise
        """
        record = self.find(watched_file)
        if record is None:
            logger.debug(f"associate: no record for {watched_file.path}, deferring until open")
            return True

        if record.owner is None:
            if record.path_hint is None or record.path_hint == str(watched_file.path):
                return self._adopt(record, watched_file)
            logger.debug(
                f"associate: {watched_file.identity} recorded for {record.path_hint}, "
                f"treating {watched_file.path} as a new file"
            )
            self.delete(watched_file.identity)
            return True

        if record.owner is watched_file:
            return True

        if record.owner.file_open():
            logger.debug(
                f"associate: {watched_file.path} is {record.owner.path} renamed, "
                f"deferring to rotation hand-off"
            )
            watched_file.initial_completed()
            return True

        logger.warning(
            f"associate: identity {watched_file.identity} of {watched_file.path} "
            f"collides with {record.owner.path}, discarding its position"
        )
        record.owner = None
        self.delete(watched_file.identity)
        return True

    def _adopt(self, record: PositionRecord, watched_file) -> bool:
        watched_file.initial_completed()
        if record.position >= watched_file.size and not self.config.streaming:
            logger.debug(f"associate: {watched_file.path} already fully read")
            return False
        watched_file.update_bytes_read(record.position)
        record.set_owner(watched_file)
        logger.debug(f"associate: {watched_file.path} continues from {record.position}")
        if watched_file.read_position == watched_file.size:
            watched_file.ignore()
        return True

    # -- flushing ------------------------------------------------------

    def request_flush(self) -> None:
        """Ask for a flush; it happens now only if the write interval has elapsed."""
        self._write_requested = True
        self._flush_at_interval()

    def write_if_requested(self) -> None:
        if self._write_requested:
            self._flush_at_interval()

    def _flush_at_interval(self) -> None:
        if self._last_write is not None:
            delta = time.monotonic() - self._last_write
            if delta < self.config.position_store_write_interval:
                return
        self.write("periodic")

    def write(self, reason: Optional[str] = None) -> bool:
        """
        Write all records to disk now.

        Failures are logged and reported as False; the next flush retries.
        """
        now = time.time()
        try:
            if self._is_special_file():
                self._write_in_place(now)
            else:
                self._write_atomically(now)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to write position store {self.path} ({reason}): {e}")
            return False

        for identity in self.serializer.expired_keys:
            record = self._records.pop(identity, None)
            if record is not None:
                record.unset_owner()
                logger.debug(f"Position record for {identity} expired")

        self._last_write = time.monotonic()
        self._write_requested = False
        logger.debug(f"Wrote position store {self.path} ({reason}): {len(self._records)} record(s)")
        return True

    def _is_special_file(self) -> bool:
        try:
            mode = os.stat(self.path).st_mode
        except FileNotFoundError:
            return False
        return stat_module.S_ISCHR(mode) or stat_module.S_ISBLK(mode)

    def _write_in_place(self, now: float) -> None:
        with open(self.path, "w", encoding="utf-8", errors="surrogateescape") as f:
            self.serializer.serialize(self._records, f, now)

    def _write_atomically(self, now: float) -> None:
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(directory), prefix=f".{self.path.name}.")
        replaced = False
        try:
            with os.fdopen(fd, "w", encoding="utf-8", errors="surrogateescape") as f:
                self.serializer.serialize(self._records, f, now)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
            replaced = True
        finally:
            if not replaced:
                try:
                    os.unlink(tmp)
                except OSError:
                    pass

    def snapshot(self) -> List[dict]:
        """Plain view of every record, for diagnostics."""
        return [
            {
                "identity": str(identity),
                "position": record.position,
                "last_changed_at": record.last_changed_at,
                "path": record.path,
                "owned": record.owner is not None,
            }
            for identity, record in self._records.items()
        ]
