"""Tests for run-state persistence and progress aggregation."""

import asyncio
import json
import signal
import threading
import time

import pytest

from testsmith.adapters.io import state_json
from testsmith.adapters.io.state_json import (
    RunStateManager,
    chunk_key,
    is_state_compatible,
    load_run_state,
)
from testsmith.application.generate_usecase import _install_signal_flush
from testsmith.application.generation.events import EventBus, RunProgressTracker
from testsmith.domain.models import ProgressEvent, ProgressEventType


def _event(kind: ProgressEventType, file: str = "src/a.ts", chunk_id: str | None = "src/a.ts#module", **kw):
    return ProgressEvent(type=kind, file=file, chunk_id=chunk_id, **kw)


class TestLoadRunState:
    """Reading state files from disk."""

    def test_missing_file(self, tmp_path):
        assert load_run_state(tmp_path / "state.json") is None

    def test_corrupt_file_is_ignored(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json", encoding="utf-8")

        assert load_run_state(path) is None

    def test_unsupported_version_is_ignored(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"version": 2}), encoding="utf-8")

        assert load_run_state(path) is None

    def test_round_trip_uses_camel_case_keys(self, tmp_path):
        path = tmp_path / "state.json"
        manager = RunStateManager(path, "sig", "basic", total_chunks=2)
        manager.record_chunk_result("src/a.ts", "src/a.ts#module", "write", tokens=12)
        manager.flush()

        raw = json.loads(path.read_text(encoding="utf-8"))
        assert raw["planSignature"] == "sig"
        assert raw["totals"]["totalChunks"] == 2
        assert "src/a.ts::src/a.ts#module" in raw["perFile"]["src/a.ts"]["chunks"]

        loaded = load_run_state(path)
        assert loaded is not None
        assert loaded.plan_signature == "sig"
        assert loaded.per_file["src/a.ts"].chunks["src/a.ts::src/a.ts#module"].tokens == 12


class TestCompatibility:
    def _state(self, tmp_path):
        return RunStateManager(tmp_path / "s.json", "sig", "agent", total_chunks=3).snapshot()

    def test_matching_state(self, tmp_path):
        assert is_state_compatible(self._state(tmp_path), "sig", "agent", 3)

    def test_signature_mode_and_total_must_match(self, tmp_path):
        state = self._state(tmp_path)

        assert not is_state_compatible(state, "other", "agent", 3)
        assert not is_state_compatible(state, "sig", "basic", 3)
        assert not is_state_compatible(state, "sig", "agent", 4)
        assert not is_state_compatible(None, "sig", "agent", 3)


class TestRunStateManager:
    """Writes, resume seeding and cleanup."""

    def test_chunk_key(self):
        assert chunk_key("src/a.ts", "src/a.ts#add") == "src/a.ts::src/a.ts#add"
        assert chunk_key("src/a.ts") == "src/a.ts::0"

    def test_without_event_loop_writes_immediately(self, tmp_path):
        path = tmp_path / "state.json"
        manager = RunStateManager(path, "sig", "basic", total_chunks=1)

        manager.record_chunk_result("src/a.ts", None, "skip", message="Types-only file")

        assert path.exists()
        assert not manager.dirty

    @pytest.mark.asyncio
    async def test_writes_are_debounced(self, tmp_path):
        path = tmp_path / "state.json"
        manager = RunStateManager(path, "sig", "basic", total_chunks=2, debounce_ms=50)

        manager.record_chunk_result("src/a.ts", "src/a.ts#add", "write")
        manager.record_chunk_result("src/a.ts", "src/a.ts#sub", "write")
        assert not path.exists()
        assert manager.dirty

        await asyncio.sleep(0.2)

        assert path.exists()
        assert not manager.dirty
        assert manager.completed_chunk_keys() == {"src/a.ts::src/a.ts#add", "src/a.ts::src/a.ts#sub"}

    @pytest.mark.asyncio
    async def test_flush_writes_pending_changes(self, tmp_path):
        path = tmp_path / "state.json"
        manager = RunStateManager(path, "sig", "basic", total_chunks=1, debounce_ms=10_000)
        manager.record_chunk_result("src/a.ts", "src/a.ts#module", "exists")

        manager.flush()

        assert load_run_state(path) is not None

    def test_complete_removes_file(self, tmp_path):
        path = tmp_path / "state.json"
        manager = RunStateManager(path, "sig", "basic", total_chunks=1)
        manager.record_chunk_result("src/a.ts", "src/a.ts#module", "write")
        assert path.exists()

        manager.complete()

        assert not path.exists()

    def test_resume_keeps_previous_chunks(self, tmp_path):
        path = tmp_path / "state.json"
        first = RunStateManager(path, "sig", "basic", total_chunks=2)
        first.record_chunk_result("src/a.ts", "src/a.ts#add", "write")
        first.set_totals(written=1, skipped=0, exists=0, completed_chunks=1)

        previous = load_run_state(path)
        resumed = RunStateManager(path, "sig", "basic", total_chunks=2, existing=previous)

        assert resumed.completed_chunk_keys() == {"src/a.ts::src/a.ts#add"}
        assert resumed.snapshot().totals.written == 1
        assert resumed.snapshot().created_at == previous.created_at


class TestRunProgressTracker:
    """Aggregation of events into totals and persisted records."""

    def test_terminal_events_update_totals_and_state(self, tmp_path):
        manager = RunStateManager(tmp_path / "state.json", "sig", "basic", total_chunks=2)
        tracker = RunProgressTracker(2, manager)
        bus = EventBus()
        bus.subscribe(tracker)

        bus.emit(_event(ProgressEventType.START, tokens=40))
        assert tracker.in_flight == 1
        bus.emit(_event(ProgressEventType.WRITE, cases=2, hints="mocks"))
        bus.emit(_event(ProgressEventType.EXISTS, file="src/b.ts", chunk_id="src/b.ts#module"))

        assert tracker.in_flight == 0
        assert (tracker.written, tracker.exists, tracker.completed_chunks) == (1, 1, 2)
        assert tracker.is_complete
        assert tracker.per_file["src/a.ts"].status == "wrote"
        assert tracker.per_file["src/a.ts"].cases == 2
        assert tracker.per_file["src/a.ts"].tokens == 40
        snapshot = manager.snapshot()
        assert snapshot.totals.completed_chunks == 2
        assert "src/b.ts::src/b.ts#module" in snapshot.per_file["src/b.ts"].chunks

    def test_file_level_skip_does_not_count_as_chunk(self, tmp_path):
        tracker = RunProgressTracker(1)

        tracker.on_event(_event(ProgressEventType.SKIP, chunk_id=None, message="Types-only file"))

        assert tracker.skipped == 1
        assert tracker.completed_chunks == 0
        assert tracker.per_file["src/a.ts"].reason == "Types-only file"

    def test_errors_are_not_terminal(self):
        tracker = RunProgressTracker(1)

        tracker.on_event(_event(ProgressEventType.START))
        tracker.on_event(_event(ProgressEventType.ERROR, message="boom"))

        assert tracker.errors == 1
        assert tracker.completed_chunks == 0
        assert not tracker.is_complete

    def test_repeated_terminal_event_counts_once(self):
        tracker = RunProgressTracker(3)

        tracker.on_event(_event(ProgressEventType.WRITE))
        tracker.on_event(_event(ProgressEventType.WRITE))

        assert tracker.completed_chunks == 1

    def test_broken_observer_does_not_stop_others(self):
        class Broken:
            def on_event(self, event):
                raise RuntimeError("display gone")

        tracker = RunProgressTracker(1)
        bus = EventBus()
        bus.subscribe(Broken())
        bus.subscribe(tracker)

        bus.emit(_event(ProgressEventType.WRITE))

        assert tracker.written == 1


class TestFlushUnderSignals:
    """Flushing from a signal handler on the thread that may already be writing."""

    def test_non_blocking_flush_reports_busy_lock(self, tmp_path):
        path = tmp_path / "state.json"
        manager = RunStateManager(path, "sig", "basic", total_chunks=1, debounce_ms=10_000)
        manager._lock.acquire()
        try:
            manager._dirty = True

            assert manager.flush(blocking=False) is False
            assert manager.dirty
            assert not path.exists()
        finally:
            manager._lock.release()

        assert manager.flush() is True
        assert not manager.dirty
        assert path.exists()

    def test_signal_handler_returns_while_a_write_holds_the_lock(self, tmp_path):
        manager = RunStateManager(tmp_path / "state.json", "sig", "basic", total_chunks=1)
        manager._dirty = True
        restore = _install_signal_flush(manager)
        handler = signal.getsignal(signal.SIGINT)

        # Releasing from another thread unblocks a handler that waits on the lock
        manager._lock.acquire()
        watchdog = threading.Timer(3, manager._lock.release)
        watchdog.start()
        started = time.monotonic()
        try:
            with pytest.raises(KeyboardInterrupt):
                handler(signal.SIGINT, None)
            elapsed = time.monotonic() - started
        finally:
            restore()
            watchdog.cancel()
            watchdog.join()
            if manager._lock.locked():
                manager._lock.release()

        assert elapsed < 1
        assert manager.dirty

    def test_interrupted_write_keeps_state_dirty(self, tmp_path, monkeypatch):
        path = tmp_path / "state.json"
        manager = RunStateManager(path, "sig", "basic", total_chunks=1, debounce_ms=10_000)
        manager._dirty = True

        def interrupted(*args, **kwargs):
            raise KeyboardInterrupt

        monkeypatch.setattr(state_json.json, "dump", interrupted)

        with pytest.raises(KeyboardInterrupt):
            manager.flush()

        assert manager.dirty
        assert not path.exists()
        assert list(tmp_path.iterdir()) == []
        monkeypatch.undo()
        assert manager.flush() is True
        assert load_run_state(path) is not None
