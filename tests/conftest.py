"""Shared fixtures for tailer tests."""

from pathlib import Path
from typing import List, Tuple

import pytest

from src.tailer.config import TailerConfig
from src.tailer.listener import Listener, Observer
from src.tailer.tailer import FileTailer


class RecordingListener(Listener):
    """Appends every callback to a shared event list."""

    def __init__(self, path: Path, events: List[Tuple[str, str, bytes]]):
        super().__init__(path)
        self.events = events

    def _record(self, event: str, payload: bytes = None) -> None:
        self.events.append((str(self.path), event, payload))

    def opened(self):
        self._record("open")

    def accept(self, record):
        self._record("accept", record)

    def eof(self):
        self._record("eof")

    def error(self):
        self._record("error")

    def deleted(self):
        self._record("deleted")

    def timed_out(self):
        self._record("timed_out")

    def reading_completed(self):
        self._record("reading_completed")


class RecordingObserver(Observer):
    """Hands out recording listeners and lets tests query what they saw."""

    def __init__(self):
        self.events: List[Tuple[str, str, bytes]] = []

    def listener_for(self, path):
        return RecordingListener(path, self.events)

    def events_for(self, path) -> List[Tuple[str, bytes]]:
        return [(event, payload) for p, event, payload in self.events if p == str(path)]

    def records_for(self, path) -> List[bytes]:
        return [payload for event, payload in self.events_for(path) if event == "accept"]

    def all_records(self) -> List[bytes]:
        return [payload for _, event, payload in self.events if event == "accept"]


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def make_tailer(tmp_path, observer):
    """Build a FileTailer whose position store lives in tmp_path."""
    created = []

    def _make(**config_kwargs):
        config_kwargs.setdefault("position_store_path", tmp_path / "positions")
        config_kwargs.setdefault("stat_interval", 0.01)
        tailer = FileTailer(TailerConfig(**config_kwargs), observer)
        created.append(tailer)
        return tailer

    yield _make

    for tailer in created:
        if tailer.is_running:
            tailer.stop()
        tailer.registry.close_all()


@pytest.fixture
def tick():
    """Run processor ticks synchronously."""
    def _tick(tailer, count: int = 1) -> None:
        for _ in range(count):
            tailer.scheduler.iterate_on_state()

    return _tick
