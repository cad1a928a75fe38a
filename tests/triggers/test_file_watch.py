"""Tests for runspine.triggers.file_watch.FileWatcher."""

import asyncio
from datetime import timedelta

import pytest

from runspine.core.errors import PathNotFoundError
from runspine.triggers.file_watch import FileChange, FileEvent, FileWatcher


class Recorder:
    def __init__(self):
        self.events: list[FileEvent] = []

    async def __call__(self, event: FileEvent) -> None:
        self.events.append(event)


@pytest.fixture
def recorder():
    return Recorder()


class TestPolling:
    def test_missing_directory(self, tmp_path, recorder):
        with pytest.raises(PathNotFoundError):
            FileWatcher(str(tmp_path / "nope"), "*", recorder)

    @pytest.mark.asyncio
    async def test_created_modified_deleted(self, tmp_path, recorder):
        watcher = FileWatcher(str(tmp_path), "*.csv", recorder)
        target = tmp_path / "orders.csv"

        target.write_text("a")
        assert [e.change for e in await watcher.check()] == [FileChange.CREATED]

        target.write_text("a,b,c")
        assert [e.change for e in await watcher.check()] == [FileChange.MODIFIED]

        target.unlink()
        assert [e.change for e in await watcher.check()] == [FileChange.DELETED]

        assert [e.name for e in recorder.events] == ["orders.csv"] * 3

    @pytest.mark.asyncio
    async def test_pattern_filters_names(self, tmp_path, recorder):
        watcher = FileWatcher(str(tmp_path), "*.csv", recorder)
        (tmp_path / "notes.txt").write_text("x")

        assert await watcher.check() == []
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_existing_files_are_not_reported(self, tmp_path, recorder):
        (tmp_path / "old.csv").write_text("x")
        watcher = FileWatcher(str(tmp_path), "*", recorder)
        assert await watcher.check() == []

    @pytest.mark.asyncio
    async def test_subdirectories(self, tmp_path, recorder):
        nested = tmp_path / "in" / "2024"
        nested.mkdir(parents=True)
        flat = FileWatcher(str(tmp_path), "*.csv", recorder)
        deep = FileWatcher(str(tmp_path), "*.csv", recorder, include_subdirectories=True)

        (nested / "day.csv").write_text("x")

        assert flat.poll() == []
        assert [e.change for e in deep.poll()] == [FileChange.CREATED]

    def test_describe(self):
        event = FileEvent(FileChange.CREATED, "/data/in/orders.csv")
        assert event.describe() == "File: orders.csv, Change: created"


class TestDebounce:
    @pytest.mark.asyncio
    async def test_burst_delivers_last_event_once(self, tmp_path, recorder):
        watcher = FileWatcher(str(tmp_path), "*", recorder, debounce=timedelta(milliseconds=50))
        first = tmp_path / "a.txt"
        second = tmp_path / "b.txt"

        first.write_text("1")
        await watcher.check()
        second.write_text("2")
        await watcher.check()
        assert recorder.events == []

        await asyncio.sleep(0.2)

        assert len(recorder.events) == 1
        assert recorder.events[0].name == "b.txt"

    @pytest.mark.asyncio
    async def test_quiet_periods_deliver_separately(self, tmp_path, recorder):
        watcher = FileWatcher(str(tmp_path), "*", recorder, debounce=timedelta(milliseconds=20))

        (tmp_path / "a.txt").write_text("1")
        await watcher.check()
        await asyncio.sleep(0.1)
        (tmp_path / "b.txt").write_text("2")
        await watcher.check()
        await asyncio.sleep(0.1)

        assert [e.name for e in recorder.events] == ["a.txt", "b.txt"]

    @pytest.mark.asyncio
    async def test_stop_drops_pending_event(self, tmp_path, recorder):
        watcher = FileWatcher(str(tmp_path), "*", recorder, debounce=timedelta(milliseconds=50))
        (tmp_path / "a.txt").write_text("1")
        await watcher.check()

        await watcher.stop()
        await asyncio.sleep(0.1)

        assert recorder.events == []


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_background_polling(self, tmp_path, recorder):
        watcher = FileWatcher(str(tmp_path), "*", recorder, poll_interval=0.01)
        watcher.start()
        assert watcher.is_active

        (tmp_path / "new.txt").write_text("x")
        for _ in range(100):
            if recorder.events:
                break
            await asyncio.sleep(0.01)
        await watcher.stop()

        assert [e.change for e in recorder.events] == [FileChange.CREATED]
        assert not watcher.is_active

    @pytest.mark.asyncio
    async def test_failing_callback_is_contained(self, tmp_path):
        async def broken(event):
            raise RuntimeError("callback bug")

        watcher = FileWatcher(str(tmp_path), "*", broken)
        (tmp_path / "x.txt").write_text("x")

        assert len(await watcher.check()) == 1
