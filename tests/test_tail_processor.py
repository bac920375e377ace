"""Tests for the streaming processor, driven tick by tick."""

import logging
import os
import time

import pytest

from src.tailer.models import WatchedFileState


def append(path, data: bytes) -> None:
    with open(path, "ab") as f:
        f.write(data)


class TestStartPosition:
    """Tests for where files found at startup begin."""

    def test_appended_lines_delivered_in_one_tick(self, tmp_path, make_tailer, observer, tick):
        path = tmp_path / "a.log"
        path.write_bytes(b"")
        tailer = make_tailer(paths=[str(tmp_path / "*.log")])
        tick(tailer)

        append(path, b"line1\nline2\n")
        tick(tailer)

        assert observer.events_for(path) == [
            ("open", None),
            ("accept", b"line1"),
            ("accept", b"line2"),
        ]
        wf = tailer.registry.get(path)
        assert tailer.store.find(wf).position == 12

    def test_end_skips_existing_content(self, tmp_path, make_tailer, observer, tick):
        path = tmp_path / "a.log"
        path.write_bytes(b"old\n")
        tailer = make_tailer(paths=[str(path)])
        tick(tailer)
        assert observer.records_for(path) == []

        append(path, b"new\n")
        tick(tailer)

        assert observer.records_for(path) == [b"new"]

    def test_beginning_reads_existing_content(self, tmp_path, make_tailer, observer, tick):
        path = tmp_path / "a.log"
        path.write_bytes(b"old\n")
        tailer = make_tailer(paths=[str(path)], start_position="beginning")

        tick(tailer)

        assert observer.records_for(path) == [b"old"]

    def test_file_created_later_is_read_from_start(self, tmp_path, make_tailer, observer, tick):
        tailer = make_tailer(paths=[str(tmp_path / "*.log")])
        path = tmp_path / "late.log"
        path.write_bytes(b"first\n")

        tailer.scheduler.discover()
        tick(tailer)

        assert observer.records_for(path) == [b"first"]


class TestReading:
    """Tests for record delivery and the cursor."""

    def test_partial_record_is_held_back(self, tmp_path, make_tailer, observer, tick):
        path = tmp_path / "a.log"
        path.write_bytes(b"abc")
        tailer = make_tailer(paths=[str(path)], start_position="beginning")
        tick(tailer)

        wf = tailer.registry.get(path)
        assert observer.records_for(path) == []
        assert wf.bytes_read == 0
        assert wf.read_position == 3

        append(path, b"def\n")
        tick(tailer)

        assert observer.records_for(path) == [b"abcdef"]
        assert tailer.store.find(wf).position == 7

    def test_custom_delimiter(self, tmp_path, make_tailer, observer, tick):
        path = tmp_path / "a.log"
        path.write_bytes(b"one||two||thr")
        tailer = make_tailer(paths=[str(path)], start_position="beginning", delimiter="||")

        tick(tailer)

        assert observer.records_for(path) == [b"one", b"two"]
        assert tailer.registry.get(path).bytes_read == 10

    def test_chunk_count_limits_one_tick(self, tmp_path, make_tailer, observer, tick):
        path = tmp_path / "a.log"
        path.write_bytes(b"aaa\nbbb\nccc\n")
        tailer = make_tailer(
            paths=[str(path)],
            start_position="beginning",
            file_chunk_size=4,
            file_chunk_count=1,
        )

        tick(tailer)
        assert observer.records_for(path) == [b"aaa"]

        tick(tailer, 2)
        assert observer.records_for(path) == [b"aaa", b"bbb", b"ccc"]

    def test_append_only_exactly_once(self, tmp_path, make_tailer, observer, tick):
        path = tmp_path / "a.log"
        path.write_bytes(b"")
        tailer = make_tailer(paths=[str(path)])
        tick(tailer)
        expected = []
        for i in range(20):
            line = f"line{i}".encode()
            expected.append(line)
            append(path, line + b"\n")
            tick(tailer)

        assert observer.records_for(path) == expected

    def test_error_on_one_file_does_not_stop_others(
        self, tmp_path, make_tailer, observer, tick, monkeypatch
    ):
        good = tmp_path / "good.log"
        bad = tmp_path / "bad.log"
        good.write_bytes(b"ok\n")
        bad.write_bytes(b"never\n")
        tailer = make_tailer(paths=[str(tmp_path / "*.log")], start_position="beginning")

        def boom():
            raise RuntimeError("stat exploded")

        monkeypatch.setattr(tailer.registry.get(bad), "restat", boom)
        tick(tailer)

        assert observer.records_for(good) == [b"ok"]
        assert observer.records_for(bad) == []


class TestTruncation:
    """Tests for a file shrinking under the reader."""

    def test_truncated_file_is_reread_from_start(self, tmp_path, make_tailer, observer, tick):
        path = tmp_path / "a.log"
        path.write_bytes(b"aaaa\nbbbb\n")
        tailer = make_tailer(paths=[str(path)], start_position="beginning")
        tick(tailer)

        with open(path, "wb") as f:
            f.write(b"cc\n")
        tick(tailer)

        assert observer.records_for(path) == [b"aaaa", b"bbbb", b"cc"]
        assert tailer.store.find(tailer.registry.get(path)).position == 3


class TestRotation:
    """Tests for renames and replaced paths."""

    def test_old_content_drained_before_new_file(self, tmp_path, make_tailer, observer, tick):
        path = tmp_path / "a.log"
        path.write_bytes(b"a1\n")
        tailer = make_tailer(paths=[str(tmp_path / "*.log")], start_position="beginning")
        tick(tailer)

        append(path, b"a2\n")
        os.rename(path, tmp_path / "a.log.1")
        path.write_bytes(b"n1\n")
        tick(tailer, 3)

        assert observer.records_for(path) == [b"a1", b"a2", b"n1"]

    def test_renamed_file_continues_without_duplicates(self, tmp_path, make_tailer, observer, tick):
        a = tmp_path / "a.log"
        b = tmp_path / "b.log"
        a.write_bytes(b"a1\n")
        tailer = make_tailer(paths=[str(tmp_path / "*.log")], start_position="beginning")
        tick(tailer)

        os.rename(a, b)
        a.write_bytes(b"n1\n")
        append(b, b"a2\n")
        tick(tailer, 3)
        tailer.scheduler.discover()
        tick(tailer, 2)

        append(b, b"a3\n")
        append(a, b"n2\n")
        tick(tailer, 3)

        assert sorted(observer.all_records()) == [b"a1", b"a2", b"a3", b"n1", b"n2"]
        assert observer.records_for(a)[:3] == [b"a1", b"a2", b"n1"]
        assert observer.records_for(b) == [b"a3"]

    def test_rename_discovered_before_rotation_is_seen(self, tmp_path, make_tailer, observer, tick):
        a = tmp_path / "a.log"
        b = tmp_path / "b.log"
        a.write_bytes(b"a1\n")
        tailer = make_tailer(paths=[str(tmp_path / "*.log")], start_position="beginning")
        tick(tailer)

        os.rename(a, b)
        a.write_bytes(b"n1\n")
        append(b, b"a2\n")
        tailer.scheduler.discover()
        tick(tailer, 4)

        assert sorted(observer.all_records()) == [b"a1", b"a2", b"n1"]

    def test_cascading_rotation_converges(self, tmp_path, make_tailer, observer, tick):
        log = tmp_path / "app.log"
        log1 = tmp_path / "app.log.1"
        log2 = tmp_path / "app.log.2"
        log.write_bytes(b"x1\n")
        log1.write_bytes(b"y1\n")
        tailer = make_tailer(paths=[str(tmp_path / "app.log*")], start_position="beginning")
        tick(tailer)

        os.rename(log1, log2)
        os.rename(log, log1)
        log.write_bytes(b"n1\n")
        tick(tailer, 3)
        tailer.scheduler.discover()
        tick(tailer, 2)

        append(log1, b"x2\n")
        append(log2, b"y2\n")
        tick(tailer, 3)

        assert sorted(observer.all_records()) == [b"n1", b"x1", b"x2", b"y1", b"y2"]

    def test_swapped_paths_hand_over_streams(self, tmp_path, make_tailer, observer, tick):
        a = tmp_path / "a.log"
        b = tmp_path / "b.log"
        a.write_bytes(b"a1\n")
        b.write_bytes(b"b1\n")
        tailer = make_tailer(paths=[str(tmp_path / "*.log")], start_position="beginning")
        tick(tailer)
        first, second = tailer.registry.get(a), tailer.registry.get(b)

        os.rename(a, tmp_path / "swap.tmp")
        os.rename(b, a)
        os.rename(tmp_path / "swap.tmp", b)
        tick(tailer, 2)

        superseded = [wf for wf in (first, second) if wf.unwatched]
        assert len(superseded) == 1
        assert superseded[0].path not in tailer.registry
        survivor = first if superseded[0] is second else second
        assert tailer.store.find(survivor).owner is survivor
        assert len(tailer.store) == 2

        tailer.scheduler.discover()
        tick(tailer)
        with open(a, "ab") as f:
            f.write(b"b2\n")
        with open(b, "ab") as f:
            f.write(b"a2\n")
        tick(tailer, 2)

        assert sorted(observer.all_records()) == [b"a1", b"a2", b"b1", b"b2"]
        assert observer.records_for(a)[-1] == b"b2"
        assert observer.records_for(b)[-1] == b"a2"


class TestDeletion:
    """Tests for files that disappear."""

    def test_delete_drains_open_handle(self, tmp_path, make_tailer, observer, tick):
        path = tmp_path / "a.log"
        path.write_bytes(b"a\n")
        tailer = make_tailer(paths=[str(path)], start_position="beginning")
        tick(tailer)

        append(path, b"b\n")
        os.remove(path)
        tick(tailer, 2)

        assert observer.records_for(path) == [b"a", b"b"]
        assert ("deleted", None) in observer.events_for(path)
        assert path not in tailer.registry

    def test_missing_for_one_tick_is_restored(self, tmp_path, make_tailer, observer, tick):
        path = tmp_path / "a.log"
        moved = tmp_path / "a.tmp"
        path.write_bytes(b"a\n")
        tailer = make_tailer(paths=[str(path)], start_position="beginning")
        tick(tailer)
        wf = tailer.registry.get(path)

        os.rename(path, moved)
        tick(tailer)
        assert wf.state is WatchedFileState.DELAYED_DELETE

        os.rename(moved, path)
        append(path, b"b\n")
        tick(tailer)

        assert wf.state is WatchedFileState.ACTIVE
        assert observer.records_for(path) == [b"a", b"b"]
        assert ("deleted", None) not in observer.events_for(path)


class TestTransientFailures:
    """Tests for open and stat failures that clear up by themselves."""

    @staticmethod
    def warnings_containing(caplog, text):
        return [
            r for r in caplog.records
            if r.levelno == logging.WARNING and text in r.getMessage()
        ]

    def test_open_failure_retried_with_one_warning(
        self, tmp_path, make_tailer, observer, tick, caplog, monkeypatch
    ):
        path = tmp_path / "a.log"
        path.write_bytes(b"a\n")
        tailer = make_tailer(paths=[str(path)], start_position="beginning")
        wf = tailer.registry.get(path)

        def deny():
            raise PermissionError(13, "Permission denied", str(path))

        monkeypatch.setattr(wf, "open", deny)
        caplog.set_level(logging.WARNING)
        tick(tailer, 3)

        assert wf.watched
        assert observer.records_for(path) == []
        assert len(self.warnings_containing(caplog, "Failed to open")) == 1

        monkeypatch.undo()
        tick(tailer)

        assert wf.active
        assert observer.records_for(path) == [b"a"]

    def test_stat_failure_retried_with_one_warning(
        self, tmp_path, make_tailer, observer, tick, caplog, monkeypatch
    ):
        path = tmp_path / "a.log"
        path.write_bytes(b"a\n")
        tailer = make_tailer(paths=[str(path)], start_position="beginning")
        tick(tailer)
        wf = tailer.registry.get(path)

        def deny():
            raise PermissionError(13, "Permission denied", str(path))

        monkeypatch.setattr(wf, "restat", deny)
        caplog.set_level(logging.WARNING)
        tick(tailer, 3)

        assert wf.active
        assert len(self.warnings_containing(caplog, "cannot stat")) == 1

        monkeypatch.undo()
        append(path, b"b\n")
        tick(tailer)

        assert observer.records_for(path) == [b"a", b"b"]

    def test_open_files_limit_warning_is_rate_limited(
        self, tmp_path, make_tailer, tick, caplog
    ):
        (tmp_path / "a.log").write_bytes(b"a\n")
        (tmp_path / "b.log").write_bytes(b"b\n")
        tailer = make_tailer(paths=[str(tmp_path / "*.log")], max_open_files=1)
        caplog.set_level(logging.WARNING)

        tick(tailer, 4)

        assert len(self.warnings_containing(caplog, "open files limit")) == 1


class TestOpenFileLimits:
    """Tests for max_open_files and close_older."""

    def test_second_file_waits_for_a_slot(self, tmp_path, make_tailer, observer, tick):
        first = tmp_path / "first.log"
        second = tmp_path / "second.log"
        first.write_bytes(b"f\n")
        second.write_bytes(b"s\n")
        os.utime(first, (1000, 1000))
        os.utime(second, (2000, 2000))
        tailer = make_tailer(
            paths=[str(tmp_path / "*.log")],
            start_position="beginning",
            max_open_files=1,
            close_older=60,
        )

        tick(tailer)
        assert observer.records_for(first) == [b"f"]
        assert observer.records_for(second) == []
        assert tailer.registry.get(second).watched

        tailer.registry.get(first).accessed_at = time.time() - 120
        tick(tailer)
        assert tailer.registry.get(first).closed

        tick(tailer)
        assert observer.records_for(second) == [b"s"]

    def test_idle_file_times_out_and_reopens_on_growth(self, tmp_path, make_tailer, observer, tick):
        path = tmp_path / "a.log"
        path.write_bytes(b"a\n")
        tailer = make_tailer(paths=[str(path)], start_position="beginning", close_older=60)
        tick(tailer)
        wf = tailer.registry.get(path)

        wf.accessed_at = time.time() - 120
        tick(tailer)

        assert wf.closed
        assert not wf.file_open()
        assert ("timed_out", None) in observer.events_for(path)
        record = tailer.store.find(wf)
        assert record.owner is None
        assert record.position == 2

        append(path, b"b\n")
        tick(tailer)

        assert wf.active
        assert observer.records_for(path) == [b"a", b"b"]


class TestIgnoreOlder:
    """Tests for files skipped because they are old."""

    def test_ignored_file_reads_only_new_content(self, tmp_path, make_tailer, observer, tick):
        path = tmp_path / "old.log"
        path.write_bytes(b"old\n")
        old = time.time() - 1000
        os.utime(path, (old, old))
        tailer = make_tailer(paths=[str(path)], start_position="beginning", ignore_older=100)
        wf = tailer.registry.get(path)
        tick(tailer)
        assert wf.ignored
        assert observer.records_for(path) == []

        append(path, b"new\n")
        tick(tailer)

        assert observer.records_for(path) == [b"new"]
        assert tailer.store.find(wf).position == 8


class TestRestart:
    """Tests for resuming from the position store."""

    def test_resume_reads_only_unseen_lines(self, tmp_path, make_tailer, observer, tick):
        path = tmp_path / "a.log"
        path.write_bytes(b"l1\nl2\n")
        first = make_tailer(paths=[str(path)], start_position="beginning")
        tick(first)
        first.close()
        first.registry.close_all()

        append(path, b"l3\n")
        second = make_tailer(paths=[str(path)], start_position="beginning")
        tick(second, 2)

        assert observer.records_for(path) == [b"l1", b"l2", b"l3"]

    @pytest.mark.skipif(os.name != "posix", reason="needs byte file names")
    def test_undecodable_file_name_is_persisted(self, tmp_path, make_tailer, observer, tick):
        path = tmp_path / os.fsdecode(b"bad\xff.log")
        path.write_bytes(b"l1\n")
        first = make_tailer(paths=[str(tmp_path / "*.log")], start_position="beginning")
        tick(first, 2)

        assert first.write_positions() is True
        first.registry.close_all()

        append(path, b"l2\n")
        second = make_tailer(paths=[str(tmp_path / "*.log")], start_position="beginning")
        tick(second)

        assert observer.records_for(path) == [b"l1", b"l2"]
