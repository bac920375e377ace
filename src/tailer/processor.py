"""State processors: once per tick, move every watched file along its lifecycle."""

import logging
import time
import traceback
from pathlib import Path
from typing import TYPE_CHECKING, Callable, List

from .config import TailerConfig
from .handlers import GZIP_SUFFIXES, Dispatcher
from .models import Transition
from .position_store import PositionStore
from .watched_file import WatchedFile

if TYPE_CHECKING:
    from .scheduler import Scheduler


logger = logging.getLogger(__name__)

TRACE_FRAMES = 8


class BaseProcessor:
    """
    Shared plumbing of the streaming and batch processors.

    Every per-file step runs under a guard: a failure is logged with a
    short trace and only that file is skipped for the tick.
    """

    def __init__(self, config: TailerConfig, store: PositionStore):
        self.config = config
        self.store = store
        self.scheduler: "Scheduler" = None
        self.dispatcher = Dispatcher(self, store, config)
        self._deletable_paths: List[Path] = []

    def add_scheduler(self, scheduler: "Scheduler") -> None:
        self.scheduler = scheduler

    def quit_requested(self) -> bool:
        return self.scheduler is not None and self.scheduler.quit_requested()

    def add_deletable_path(self, path: Path) -> None:
        self._deletable_paths.append(path)

    def take_deletable_paths(self) -> List[Path]:
        paths, self._deletable_paths = self._deletable_paths, []
        return paths

    def dispatch(self, transition: Transition, watched_file: WatchedFile) -> None:
        self.dispatcher.dispatch(transition, watched_file)

    def process_all_states(self, watched_files: List[WatchedFile]) -> None:
        raise NotImplementedError

    # -- per-file helpers ----------------------------------------------

    def _each(
        self,
        watched_files: List[WatchedFile],
        action: str,
        step: Callable[[WatchedFile], None],
    ) -> None:
        for watched_file in watched_files:
            if self.quit_requested():
                logger.debug(f"{action} processing stopped: quit requested")
                return
            self._guarded(watched_file, action, step)

    def _guarded(self, watched_file: WatchedFile, action: str, step: Callable[[WatchedFile], None]) -> None:
        try:
            step(watched_file)
        except Exception as e:
            trace = "".join(traceback.format_tb(e.__traceback__, limit=-TRACE_FRAMES))
            logger.error(
                f"{action} - unexpected error on {watched_file.path}: "
                f"{type(e).__name__}: {e}\n{trace}"
            )

    def common_restat(self, watched_file: WatchedFile, action: str, delay: bool) -> bool:
        """
        Re-stat a file, handling a vanished path.

        With ``delay`` a missing path only moves the file to the delayed
        delete state; otherwise the file is deleted and unwatched.

        Returns:
            True if the stat succeeded
        """
        try:
            watched_file.restat()
        except FileNotFoundError:
            if delay:
                logger.debug(f"{action} - {watched_file.path} not found, delaying the delete")
                watched_file.delay_delete()
            else:
                self.common_deleted_reaction(watched_file, action)
            return False
        except OSError as e:
            self._warn_stat_failure(watched_file, action, e)
            return False
        return True

    def common_deleted_reaction(self, watched_file: WatchedFile, action: str) -> None:
        logger.debug(f"{action} - {watched_file.path} is gone, removing it")
        self.dispatch(Transition.delete(), watched_file)
        watched_file.unwatch()
        self.add_deletable_path(watched_file.path)

    def _warn_stat_failure(self, watched_file: WatchedFile, action: str, error: OSError) -> None:
        now = time.time()
        last = watched_file.last_stat_warning_at
        if last is None or now - last > self.config.open_warn_interval:
            logger.warning(f"{action} - cannot stat {watched_file.path}: {error}")
            watched_file.last_stat_warning_at = now
        else:
            logger.debug(f"{action} - cannot stat {watched_file.path} (warning suppressed): {error}")

    def _slots_available(self, watched_files: List[WatchedFile]) -> int:
        active = sum(1 for wf in watched_files if wf.active)
        return self.config.max_open_files - active

    def _warn_max_files(self, watched_files: List[WatchedFile]) -> None:
        waiting = sum(1 for wf in watched_files if wf.watched)
        if not waiting or self.scheduler is None:
            return
        now = time.time()
        if now - self.scheduler.lastwarn_max_files > self.config.max_files_warn_interval:
            logger.warning(
                f"Reached open files limit of {self.config.max_open_files}, "
                f"files yet to open: {waiting}"
            )
            self.scheduler.lastwarn_max_files = now


class TailProcessor(BaseProcessor):
    """Streaming mode: follow files forever, coping with rotation."""

    def process_all_states(self, watched_files: List[WatchedFile]) -> None:
        phases = (
            self.process_closed,
            self.process_ignored,
            self.process_delayed_delete,
            self.process_rotation_in_progress,
            self.process_watched,
            self.process_active,
        )
        for phase in phases:
            if self.quit_requested():
                return
            phase(watched_files)

    def process_closed(self, watched_files: List[WatchedFile]) -> None:
        def step(wf: WatchedFile) -> None:
            if not self.common_restat(wf, "Closed", delay=True):
                return
            if wf.rotation_detected:
                wf.rotation_in_progress()
            elif wf.size_changed:
                # back to watched, not active, so the open files limit holds
                wf.watch()

        self._each([wf for wf in watched_files if wf.closed], "Closed", step)

    def process_ignored(self, watched_files: List[WatchedFile]) -> None:
        def step(wf: WatchedFile) -> None:
            if not self.common_restat(wf, "Ignored", delay=True):
                return
            if wf.rotation_detected:
                wf.rotation_in_progress()
            elif wf.size_changed:
                wf.watch()
                self.dispatch(Transition.unignore(), wf)

        self._each([wf for wf in watched_files if wf.ignored], "Ignored", step)

    def process_delayed_delete(self, watched_files: List[WatchedFile]) -> None:
        def step(wf: WatchedFile) -> None:
            if not self.common_restat(wf, "Delayed delete", delay=False):
                return
            logger.debug(f"Delayed delete - {wf.path} found again")
            wf.restore_previous_state()
            if wf.rotation_detected and not wf.rotating:
                wf.rotation_in_progress()

        self._each([wf for wf in watched_files if wf.delayed_delete], "Delayed delete", step)

    def process_rotation_in_progress(self, watched_files: List[WatchedFile]) -> None:
        rotating = [wf for wf in watched_files if wf.rotating]
        if not rotating:
            return

        def drain(wf: WatchedFile) -> None:
            if not self.common_restat(wf, "Rotation in progress", delay=True):
                return
            if not wf.rotation_detected:
                logger.debug(f"Rotation in progress - {wf.path} points at its content again")
                if wf.file_open():
                    wf.activate()
                else:
                    wf.watch()
                return
            if wf.file_open() and wf.grown:
                logger.debug(
                    f"Rotation in progress - {wf.path} has {wf.bytes_unread} unread bytes "
                    f"in its old content, reading all of it"
                )
                wf.set_depth_first_read_loop()
                try:
                    self.dispatch(Transition.grow(), wf)
                finally:
                    wf.set_standard_read_loop()

        # every old content is drained before any path changes hands
        self._each(rotating, "Rotation in progress", drain)

        retry: List[WatchedFile] = []

        def hand_off(wf: WatchedFile) -> None:
            if not self._hand_off(wf, allow_rotate_from=False):
                retry.append(wf)

        self._each([wf for wf in rotating if wf.rotating], "Rotation in progress", hand_off)
        self._each(
            retry,
            "Rotation in progress",
            lambda wf: self._hand_off(wf, allow_rotate_from=True),
        )

    def _hand_off(self, wf: WatchedFile, allow_rotate_from: bool) -> bool:
        if not wf.rotating:
            return True
        record = self.store.get(wf.path_stat.identity)
        if record is None:
            logger.debug(f"Rotation in progress - {wf.path} holds new content, starting a new stream")
            self.dispatch(Transition.rotate_as_file(0), wf)
            return True
        owner = record.owner
        if owner is None or owner is wf:
            logger.debug(
                f"Rotation in progress - {wf.path} holds known content, continuing at {record.position}"
            )
            self.dispatch(Transition.rotate_as_file(record.position), wf)
            return True
        if owner.rotating and not allow_rotate_from:
            # the owner may let go of this content during this tick
            return False
        self.dispatch(Transition.rotate_from(owner), wf)
        return True

    def process_watched(self, watched_files: List[WatchedFile]) -> None:
        to_take = self._slots_available(watched_files)
        if to_take <= 0:
            self._warn_max_files(watched_files)
            return

        def step(wf: WatchedFile) -> None:
            if not self.common_restat(wf, "Watched", delay=True):
                return
            if wf.rotation_detected:
                wf.rotation_in_progress()
                return
            wf.activate()
            if wf.initial:
                self.dispatch(Transition.create_initial(), wf)
            else:
                self.dispatch(Transition.create(), wf)

        candidates = [wf for wf in watched_files if wf.watched][:to_take]
        self._each(candidates, "Watched", step)

    def process_active(self, watched_files: List[WatchedFile]) -> None:
        def step(wf: WatchedFile) -> None:
            if not self.common_restat(wf, "Active", delay=True):
                return
            if wf.rotation_detected:
                logger.debug(f"Active - {wf.path} now refers to different content")
                wf.rotation_in_progress()
                return
            if wf.grown:
                self.dispatch(Transition.grow(), wf)
            elif wf.shrunk:
                self.dispatch(Transition.shrink(), wf)
            if wf.file_closable():
                logger.debug(f"Active - {wf.path} idle and fully read, closing")
                self.dispatch(Transition.timeout(), wf)
                wf.close()

        self._each([wf for wf in watched_files if wf.active], "Active", step)


class ReadProcessor(BaseProcessor):
    """Batch mode: read every file once, from the start, then forget it."""

    def process_all_states(self, watched_files: List[WatchedFile]) -> None:
        for phase in (self.process_closed, self.process_ignored, self.process_watched, self.process_active):
            if self.quit_requested():
                return
            phase(watched_files)

    def process_closed(self, watched_files: List[WatchedFile]) -> None:
        def step(wf: WatchedFile) -> None:
            if self.common_restat(wf, "Closed", delay=False) and wf.size_changed:
                wf.watch()

        self._each([wf for wf in watched_files if wf.closed], "Closed", step)

    def process_ignored(self, watched_files: List[WatchedFile]) -> None:
        def step(wf: WatchedFile) -> None:
            if self.common_restat(wf, "Ignored", delay=False) and wf.size_changed:
                wf.watch()
                self.dispatch(Transition.unignore(), wf)

        self._each([wf for wf in watched_files if wf.ignored], "Ignored", step)

    def process_watched(self, watched_files: List[WatchedFile]) -> None:
        to_take = self._slots_available(watched_files)
        if to_take <= 0:
            self._warn_max_files(watched_files)
            return

        def step(wf: WatchedFile) -> None:
            if self.common_restat(wf, "Watched", delay=False):
                wf.activate()

        candidates = [wf for wf in watched_files if wf.watched][:to_take]
        self._each(candidates, "Watched", step)

    def process_active(self, watched_files: List[WatchedFile]) -> None:
        def step(wf: WatchedFile) -> None:
            if not self.common_restat(wf, "Active", delay=False):
                return
            if wf.path.name.lower().endswith(GZIP_SUFFIXES):
                self.dispatch(Transition.read_gzip_file(), wf)
            else:
                self.dispatch(Transition.read_file(), wf)

        self._each([wf for wf in watched_files if wf.active], "Active", step)
