"""Listener protocol used to deliver records to the downstream sink."""

from pathlib import Path


class Listener:
    """
    Receives the records and lifecycle notifications of one path-stream.

    All callbacks are invoked synchronously from the scheduler thread.
    Subclasses override only what they need; every default is a no-op.
    """

    def __init__(self, path: Path = None):
        self.path = path

    def opened(self) -> None:
        pass

    def accept(self, record: bytes) -> None:
        pass

    def eof(self) -> None:
        pass

    def error(self) -> None:
        pass

    def deleted(self) -> None:
        pass

    def timed_out(self) -> None:
        pass

    def reading_completed(self) -> None:
        pass


class Observer:
    """Factory of listeners, one per discovered path."""

    def listener_for(self, path: Path) -> Listener:
        raise NotImplementedError


class NullObserver(Observer):
    """Observer whose listeners discard everything."""

    def listener_for(self, path: Path) -> Listener:
        return Listener(path)
