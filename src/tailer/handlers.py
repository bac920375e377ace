"""Transition handlers: the code that opens, reads and delivers records."""

import gzip
import logging
import time
import zlib
from typing import TYPE_CHECKING

from .config import TailerConfig
from .exceptions import ContentFormatError
from .models import LoopControl, Transition, TransitionKind
from .position_store import PositionRecord, PositionStore
from .tokenizer import BufferedTokenizer
from .watched_file import WatchedFile

if TYPE_CHECKING:
    from .processor import BaseProcessor


logger = logging.getLogger(__name__)

GZIP_SUFFIXES = (".gz", ".gzip")


class BaseHandler:
    """Shared open, read and position bookkeeping for all handlers."""

    def __init__(self, processor: "BaseProcessor", store: PositionStore, config: TailerConfig):
        self.processor = processor
        self.store = store
        self.config = config
        self._delimiter_size = len(config.delimiter_bytes)

    def handle(self, watched_file: WatchedFile, transition: Transition) -> None:
        logger.debug(f"{transition.kind.value}: {watched_file.path}")
        self.handle_specifically(watched_file, transition)

    def handle_specifically(self, watched_file: WatchedFile, transition: Transition) -> None:
        pass

    # -- opening -------------------------------------------------------

    def open_file(self, watched_file: WatchedFile) -> bool:
        """
        Open the file, notifying the listener on success.

        On failure the file goes back to the watched state so the open is
        retried on a later tick. Warnings are throttled per path.
        """
        if watched_file.file_open():
            return True
        try:
            watched_file.open()
        except OSError as e:
            now = time.time()
            last = watched_file.last_open_warning_at
            if last is None or now - last > self.config.open_warn_interval:
                logger.warning(f"Failed to open {watched_file.path}: {e}")
                watched_file.last_open_warning_at = now
            else:
                logger.debug(f"Failed to open {watched_file.path} (warning suppressed): {e}")
            watched_file.watch()
            return False
        watched_file.listener.opened()
        return True

    # -- reading -------------------------------------------------------

    def controlled_read(self, watched_file: WatchedFile, loop_control: LoopControl) -> bool:
        """
        Read up to ``loop_control.count`` chunks and deliver complete records.

        The cursor and the position record advance record by record.

        Returns:
            True if any bytes were read
        """
        changed = False
        reads = 0
        while loop_control.keep_looping and reads < loop_control.count:
            reads += 1
            try:
                result = watched_file.read_extract_records(loop_control.size)
            except OSError as e:
                logger.error(f"Error reading {watched_file.path}: {e}")
                watched_file.listener.error()
                loop_control.read_error = True
                continue
            if result.at_eof:
                break
            changed = True
            for record in result.records:
                watched_file.listener.accept(record)
                self._advance(watched_file, len(record) + self._delimiter_size)
            if result.bytes_read < loop_control.size:
                # short read: caught up with the writer
                break
        if changed:
            self.store.request_flush()
        return changed

    def read_to_limit(self, watched_file: WatchedFile) -> LoopControl:
        watched_file.file_seek(watched_file.read_position)
        loop_control = watched_file.loop_control_adjusted_for_stat_size()
        self.controlled_read(watched_file, loop_control)
        return loop_control

    def drain(self, watched_file: WatchedFile) -> None:
        """Read every remaining byte of the open handle."""
        watched_file.set_depth_first_read_loop()
        try:
            self.read_to_limit(watched_file)
        finally:
            watched_file.set_standard_read_loop()

    def _advance(self, watched_file: WatchedFile, amount: int) -> None:
        record = self.store.find(watched_file)
        if record is None:
            record = self.store.bind(watched_file, watched_file.bytes_read)
        if record.owner is watched_file:
            self.store.increment(watched_file.identity, amount)
        else:
            watched_file.increment_bytes_read(amount)

    # -- position records ----------------------------------------------

    def add_or_update_record(self, watched_file: WatchedFile) -> bool:
        """
        Make sure ``watched_file`` owns the record of its identity.

        Returns:
            False if the record belongs to another file that is still
            reading it, in which case nothing was changed
        """
        record = self.store.find(watched_file)
        if record is None:
            position = self.position_for_new_record(watched_file)
            logger.debug(f"New position record for {watched_file.path} at {position}")
            self.store.bind(watched_file, position)
        elif record.owner is None or record.owner is watched_file:
            self.update_existing(watched_file, record)
        elif record.owner.file_open():
            logger.debug(
                f"{watched_file.path}: {record.owner.path} still reads this content, deferring"
            )
            return False
        else:
            logger.debug(f"{watched_file.path}: taking over position of {record.owner.path}")
            record.unset_owner()
            self.update_existing(watched_file, record)
        watched_file.initial_completed()
        return True

    def rename_in_progress(self, watched_file: WatchedFile) -> bool:
        """
        True if another file still reads this content under its old name.

        The file is left in the watched state so the open is retried once
        the other file has handed the content over.
        """
        record = self.store.find(watched_file)
        if (
            record is not None
            and record.owner is not None
            and record.owner is not watched_file
            and record.owner.file_open()
        ):
            logger.debug(f"{watched_file.path}: rename in progress, not opening yet")
            watched_file.watch()
            return True
        return False

    def position_for_new_record(self, watched_file: WatchedFile) -> int:
        return watched_file.bytes_read

    def update_existing(self, watched_file: WatchedFile, record: PositionRecord) -> None:
        position = record.position
        if position != watched_file.bytes_read:
            watched_file.buffer.reset()
        self.store.bind(watched_file, position)


class CreateInitialHandler(BaseHandler):
    """First open of a file found at startup; honors ``start_position``."""

    def handle_specifically(self, watched_file, transition):
        if self.rename_in_progress(watched_file) or not self.open_file(watched_file):
            return
        if not self.add_or_update_record(watched_file):
            watched_file.file_close()
            watched_file.watch()

    def position_for_new_record(self, watched_file):
        return watched_file.position_for_new_record()


class CreateHandler(BaseHandler):
    """Open of a file found later, or one that was closed or rotated."""

    def handle_specifically(self, watched_file, transition):
        if self.rename_in_progress(watched_file) or not self.open_file(watched_file):
            return
        if not self.add_or_update_record(watched_file):
            watched_file.file_close()
            watched_file.watch()


class GrowHandler(BaseHandler):
    def handle_specifically(self, watched_file, transition):
        self.read_to_limit(watched_file)


class ShrinkHandler(BaseHandler):
    """The file was truncated: start again from the top."""

    def handle_specifically(self, watched_file, transition):
        logger.warning(
            f"{watched_file.path} was truncated to {watched_file.size} bytes "
            f"below read position {watched_file.read_position}, reading from the start"
        )
        watched_file.buffer.reset()
        record = self.store.find(watched_file)
        if record is None or record.owner is None or record.owner is watched_file:
            self.store.bind(watched_file, 0)
        else:
            watched_file.update_bytes_read(0)
        self.read_to_limit(watched_file)


class DeleteHandler(BaseHandler):
    """The path is gone: finish what the open handle can still read, then let go."""

    def handle_specifically(self, watched_file, transition):
        if watched_file.file_open():
            try:
                watched_file.restat_handle()
                if watched_file.grown:
                    self.drain(watched_file)
            except OSError as e:
                logger.warning(f"Could not drain deleted file {watched_file.path}: {e}")
        if watched_file.bytes_unread > 0:
            logger.warning(
                f"{watched_file.path} deleted or renamed with {watched_file.bytes_unread} "
                f"unread bytes; if found again it is read from the last position"
            )
        watched_file.listener.deleted()
        self.store.release(watched_file)
        watched_file.file_close()
        watched_file.buffer.reset()


class TimeoutHandler(BaseHandler):
    def handle_specifically(self, watched_file, transition):
        watched_file.listener.timed_out()
        self.store.release(watched_file)


class UnignoreHandler(BaseHandler):
    """An ignored file grew: its unseen content will be read from the ignore point."""

    def handle_specifically(self, watched_file, transition):
        self.add_or_update_record(watched_file)


class RotateAsFileHandler(BaseHandler):
    """The path now holds content that no other file is following."""

    def handle_specifically(self, watched_file, transition):
        self.store.release(watched_file)
        watched_file.rotate_as_file(transition.position)
        record = self.store.find(watched_file)
        if record is not None and record.owner is None:
            record.set_owner(watched_file)


class RotateFromHandler(BaseHandler):
    """The path now holds content another watched file was following; take over its stream."""

    def handle_specifically(self, watched_file, transition):
        other = transition.source
        self.store.release(watched_file)
        watched_file.rotate_from(other)
        record = self.store.find(watched_file)
        if record is not None:
            record.set_owner(watched_file)
        logger.info(f"{watched_file.path} continues the content last read as {other.path}")
        other.unwatch()
        self.processor.add_deletable_path(other.path)


class ReadFileHandler(BaseHandler):
    """Batch mode: read the whole file over one or more ticks, then forget it."""

    def handle_specifically(self, watched_file, transition):
        if self.rename_in_progress(watched_file) or not self.open_file(watched_file):
            return
        if not self.add_or_update_record(watched_file):
            watched_file.file_close()
            watched_file.watch()
            return
        loop_control = self.read_to_limit(watched_file)
        if loop_control.read_error or not watched_file.all_read:
            return

        remainder = watched_file.buffer.flush()
        if remainder:
            watched_file.listener.accept(remainder)
            self._advance(watched_file, len(remainder))
        watched_file.listener.eof()
        watched_file.listener.reading_completed()
        self.store.store_last_read(watched_file.identity, watched_file.size)
        self.store.release(watched_file)
        self.store.request_flush()
        watched_file.unwatch()
        self.processor.add_deletable_path(watched_file.path)


class ReadGzipFileHandler(BaseHandler):
    """Batch mode: decompress and deliver a gzip file in one go."""

    def handle_specifically(self, watched_file, transition):
        watched_file.listener.opened()
        try:
            if self.config.check_archive_validity:
                self._check_archive(watched_file)
            self._deliver(watched_file)
        except ContentFormatError as e:
            logger.error(f"Cannot decompress {watched_file.path}: {e}")
            watched_file.listener.error()
            self.store.release(watched_file)
            # kept in the registry as unwatched so discovery skips it
            watched_file.unwatch()
            return

        if not self.store.member(watched_file.identity):
            self.store.set(watched_file.identity, PositionRecord(0))
        self.store.store_last_read(watched_file.identity, watched_file.size)
        self.store.request_flush()
        watched_file.listener.reading_completed()
        self.store.release(watched_file)
        watched_file.unwatch()
        self.processor.add_deletable_path(watched_file.path)

    def _check_archive(self, watched_file: WatchedFile) -> None:
        try:
            with gzip.open(watched_file.path, "rb") as f:
                while f.read(self.config.file_chunk_size):
                    pass
        except (OSError, EOFError, zlib.error) as e:
            raise ContentFormatError(f"corrupt archive: {e}") from e

    def _deliver(self, watched_file: WatchedFile) -> None:
        tokenizer = BufferedTokenizer(self.config.delimiter_bytes)
        try:
            with gzip.open(watched_file.path, "rb") as f:
                while True:
                    chunk = f.read(self.config.file_chunk_size)
                    if not chunk:
                        break
                    for record in tokenizer.extract(chunk):
                        watched_file.listener.accept(record)
        except (OSError, EOFError, zlib.error) as e:
            raise ContentFormatError(f"corrupt archive: {e}") from e
        remainder = tokenizer.flush()
        if remainder:
            watched_file.listener.accept(remainder)
        watched_file.listener.eof()


class Dispatcher:
    """Selects the handler for a transition."""

    def __init__(self, processor: "BaseProcessor", store: PositionStore, config: TailerConfig):
        args = (processor, store, config)
        self.create = CreateHandler(*args)
        self.create_initial = CreateInitialHandler(*args)
        self.grow = GrowHandler(*args)
        self.shrink = ShrinkHandler(*args)
        self.delete = DeleteHandler(*args)
        self.timeout = TimeoutHandler(*args)
        self.unignore = UnignoreHandler(*args)
        self.rotate_as_file = RotateAsFileHandler(*args)
        self.rotate_from = RotateFromHandler(*args)
        self.read_file = ReadFileHandler(*args)
        self.read_gzip_file = ReadGzipFileHandler(*args)

    def dispatch(self, transition: Transition, watched_file: WatchedFile) -> None:
        kind = transition.kind
        if kind is TransitionKind.CREATE:
            handler = self.create
        elif kind is TransitionKind.CREATE_INITIAL:
            handler = self.create_initial
        elif kind is TransitionKind.GROW:
            handler = self.grow
        elif kind is TransitionKind.SHRINK:
            handler = self.shrink
        elif kind is TransitionKind.DELETE:
            handler = self.delete
        elif kind is TransitionKind.TIMEOUT:
            handler = self.timeout
        elif kind is TransitionKind.UNIGNORE:
            handler = self.unignore
        elif kind is TransitionKind.ROTATE_AS_FILE:
            handler = self.rotate_as_file
        elif kind is TransitionKind.ROTATE_FROM:
            handler = self.rotate_from
        elif kind is TransitionKind.READ_FILE:
            handler = self.read_file
        elif kind is TransitionKind.READ_GZIP_FILE:
            handler = self.read_gzip_file
        else:
            raise ValueError(f"Unknown transition: {kind}")
        handler.handle(watched_file, transition)
