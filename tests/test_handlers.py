"""Tests for handlers module."""

from src.tailer.config import TailerConfig
from src.tailer.handlers import CreateHandler, Dispatcher
from src.tailer.models import LoopControl, Transition, TransitionKind
from src.tailer.position_store import PositionStore
from src.tailer.processor import TailProcessor
from src.tailer.watched_file import WatchedFile


def make_parts(tmp_path, **config_kwargs):
    config = TailerConfig(position_store_path=tmp_path / "positions", **config_kwargs)
    store = PositionStore(config.position_store_path, config)
    processor = TailProcessor(config, store)
    return config, store, processor


def two_views(tmp_path, config, content=b"one\ntwo\n"):
    """Two watched files over the same content, as after a rename."""
    path = tmp_path / "a.log"
    path.write_bytes(content)
    old = WatchedFile.from_path(path, config)
    new = WatchedFile.from_path(path, config)
    return old, new


class TestAddOrUpdateRecord:
    """Tests for record ownership decisions when a file is opened."""

    def test_defers_to_owner_still_reading(self, tmp_path):
        config, store, processor = make_parts(tmp_path)
        old, new = two_views(tmp_path, config)
        old.open()
        store.bind(old, 4)
        handler = CreateHandler(processor, store, config)

        assert handler.add_or_update_record(new) is False
        assert store.find(new).owner is old
        old.file_close()

    def test_takes_over_from_owner_without_handle(self, tmp_path):
        config, store, processor = make_parts(tmp_path)
        old, new = two_views(tmp_path, config)
        store.bind(old, 4)
        handler = CreateHandler(processor, store, config)

        assert handler.add_or_update_record(new) is True
        record = store.find(new)
        assert record.owner is new
        assert new.bytes_read == 4
        assert new.initial is False

    def test_new_record_starts_at_cursor(self, tmp_path):
        config, store, processor = make_parts(tmp_path)
        _, new = two_views(tmp_path, config)
        new.update_bytes_read(3)
        handler = CreateHandler(processor, store, config)

        assert handler.add_or_update_record(new) is True
        assert store.find(new).position == 3


class TestCreate:
    """Tests for opening a file whose content may still be read elsewhere."""

    def test_rename_in_progress_is_not_opened(self, tmp_path):
        config, store, processor = make_parts(tmp_path)
        old, new = two_views(tmp_path, config)
        old.open()
        store.bind(old, 0)
        new.activate()

        processor.dispatch(Transition.create(), new)

        assert new.watched
        assert not new.file_open()
        old.file_close()

    def test_opens_and_binds(self, tmp_path):
        config, store, processor = make_parts(tmp_path)
        _, new = two_views(tmp_path, config)
        new.activate()

        processor.dispatch(Transition.create(), new)

        assert new.file_open()
        assert store.find(new).owner is new
        new.file_close()


class TestRotateFrom:
    """Tests for taking over another file's stream."""

    def test_superseded_file_is_unwatched(self, tmp_path):
        config, store, processor = make_parts(tmp_path)
        old, new = two_views(tmp_path, config)
        store.bind(old, 4)
        old.open()
        old.rotation_in_progress()
        new.rotation_in_progress()

        processor.dispatch(Transition.rotate_from(old), new)

        assert old.unwatched
        assert not old.file_open()
        assert new.watched
        assert new.bytes_read == 4
        assert store.find(new).owner is new
        assert processor.take_deletable_paths() == [old.path]

class TestControlledRead:
    """Tests for the chunked read loop."""

    def test_read_error_stops_the_loop(self, tmp_path, monkeypatch):
        config, store, processor = make_parts(tmp_path)
        _, wf = two_views(tmp_path, config)
        calls = []

        def failing_read(size):
            calls.append(size)
            raise OSError("device gone")

        monkeypatch.setattr(wf, "read_extract_records", failing_read)
        loop_control = LoopControl(count=5, size=4)

        assert processor.dispatcher.grow.controlled_read(wf, loop_control) is False
        assert loop_control.read_error
        assert not loop_control.keep_looping
        assert len(calls) == 1

    def test_short_read_ends_the_pass(self, tmp_path, monkeypatch):
        config, store, processor = make_parts(tmp_path)
        _, wf = two_views(tmp_path, config)
        wf.open()
        store.bind(wf, 0)
        calls = []
        real_read = wf.read_extract_records

        def counting_read(size):
            calls.append(size)
            return real_read(size)

        monkeypatch.setattr(wf, "read_extract_records", counting_read)
        loop_control = LoopControl(count=5, size=1024)

        assert processor.dispatcher.grow.controlled_read(wf, loop_control) is True
        assert len(calls) == 1
        assert wf.bytes_read == 8
        wf.file_close()



class TestDispatcher:
    """Tests for Dispatcher class."""

    def test_every_kind_has_a_handler(self, tmp_path):
        config, store, processor = make_parts(tmp_path)
        dispatcher = Dispatcher(processor, store, config)
        for kind in TransitionKind:
            assert getattr(dispatcher, kind.value) is not None
