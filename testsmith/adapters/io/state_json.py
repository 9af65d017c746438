"""
JSON run-state persistence.

The run state records which (file, chunk) units reached a terminal status
for one plan, so an interrupted run can resume without calling the backend
again for finished chunks. Writes are coalesced: every mutation marks the
state dirty and arms a single debounce timer; ``flush`` writes immediately
and is safe to call from signal handlers and ``finally`` blocks.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Literal

from pydantic import ValidationError

from ...domain.models import (
    ChunkRunRecord,
    FileRunState,
    FileSummary,
    RunMode,
    RunState,
    RunTotals,
)

logger = logging.getLogger(__name__)

STATE_VERSION = 1


class RunStateError(Exception):
    """Raised when the run-state file cannot be written or removed."""

    pass


def now_ms() -> int:
    return int(time.time() * 1000)


def chunk_key(file: str, chunk_id: str | None = None) -> str:
    """Key of a chunk record; file-level skips use ``"<file>::0"``."""
    return f"{file}::{chunk_id if chunk_id is not None else '0'}"


def load_run_state(state_path: str | Path) -> RunState | None:
    """Read a persisted run state.

    A missing file yields ``None``. A corrupt or foreign file is logged and
    also yields ``None`` so the caller starts fresh.
    """
    path = Path(state_path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable run state %s: %s", path, e)
        return None

    if not isinstance(data, dict) or data.get("version") != STATE_VERSION:
        logger.warning("Ignoring run state %s with unsupported version", path)
        return None

    try:
        return RunState.model_validate(data)
    except ValidationError as e:
        logger.warning("Ignoring malformed run state %s: %s", path, e)
        return None


def is_state_compatible(
    state: RunState | None, signature: str, mode: RunMode, total_chunks: int
) -> bool:
    """Whether ``state`` was produced by the same plan in the same mode."""
    if state is None or state.version != STATE_VERSION:
        return False
    if state.plan_signature != signature:
        return False
    if state.mode != mode:
        return False
    return state.totals.total_chunks == total_chunks


class RunStateManager:
    """Owns the in-memory run state and its debounced on-disk copy."""

    def __init__(
        self,
        state_path: str | Path,
        plan_signature: str,
        mode: RunMode,
        total_chunks: int,
        existing: RunState | None = None,
        debounce_ms: int = 200,
    ) -> None:
        self.state_path = Path(state_path)
        self.debounce_seconds = debounce_ms / 1000
        self._dirty = False
        self._timer: asyncio.TimerHandle | None = None
        self._lock = threading.Lock()

        if existing is not None:
            totals = existing.totals.model_copy(update={"total_chunks": total_chunks})
            self._state = existing.model_copy(
                update={"plan_signature": plan_signature, "mode": mode, "totals": totals},
                deep=True,
            )
        else:
            now = now_ms()
            self._state = RunState(
                plan_signature=plan_signature,
                mode=mode,
                totals=RunTotals(total_chunks=total_chunks),
                created_at=now,
                updated_at=now,
            )

    @property
    def dirty(self) -> bool:
        return self._dirty

    def completed_chunk_keys(self) -> set[str]:
        keys: set[str] = set()
        for entry in self._state.per_file.values():
            keys.update(entry.chunks)
        return keys

    def snapshot(self) -> RunState:
        return self._state.model_copy(deep=True)

    def set_totals(self, written: int, skipped: int, exists: int, completed_chunks: int) -> None:
        prev = self._state.totals
        if (
            prev.written == written
            and prev.skipped == skipped
            and prev.exists == exists
            and prev.completed_chunks == completed_chunks
        ):
            return
        self._state.totals = prev.model_copy(
            update={
                "written": written,
                "skipped": skipped,
                "exists": exists,
                "completed_chunks": completed_chunks,
            }
        )
        self._mark_dirty()

    def record_file_summary(self, file: str, summary: FileSummary) -> None:
        entry = self._state.per_file.get(file)
        chunks = entry.chunks if entry is not None else {}
        self._state.per_file[file] = FileRunState(summary=summary.model_copy(), chunks=chunks)
        self._mark_dirty()

    def record_chunk_result(
        self,
        file: str,
        chunk_id: str | None,
        status: Literal["write", "skip", "exists"],
        message: str | None = None,
        tokens: int | None = None,
        duration_ms: int | None = None,
    ) -> None:
        entry = self._state.per_file.setdefault(file, FileRunState())
        entry.chunks[chunk_key(file, chunk_id)] = ChunkRunRecord(
            status=status,
            message=message,
            tokens=tokens,
            duration_ms=duration_ms,
            updated_at=now_ms(),
        )
        self._mark_dirty()

    def _mark_dirty(self) -> None:
        self._state.updated_at = now_ms()
        self._dirty = True
        self._schedule_flush()

    def _schedule_flush(self) -> None:
        if self._timer is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop: nothing can fire the timer later
            self.flush()
            return
        self._timer = loop.call_later(self.debounce_seconds, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        if self._dirty:
            self.flush()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def flush(self, blocking: bool = True) -> bool:
        """Write the state now if it changed since the last write.

        Args:
            blocking: Wait for a write already in progress. Signal handlers
                pass ``False``: the handler runs on the thread that may be
                inside ``flush`` already, so waiting would never return.

        Returns:
            ``False`` when ``blocking`` is off and another write holds the
            lock; the state stays dirty for the next flush.
        """
        if not self._lock.acquire(blocking=blocking):
            return False
        try:
            if self._dirty:
                self._write()
            return True
        finally:
            self._lock.release()

    def _write(self) -> None:
        self._dirty = False
        self._cancel_timer()
        payload = self._state.model_dump(by_alias=True, exclude_none=True, mode="json")

        temp_path: Path | None = None
        try:
            self.state_path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="w",
                suffix=".json",
                dir=self.state_path.parent,
                delete=False,
                encoding="utf-8",
            ) as temp_file:
                temp_path = Path(temp_file.name)
                json.dump(payload, temp_file, indent=2, ensure_ascii=False)
                temp_file.flush()
                os.fsync(temp_file.fileno())
            temp_path.replace(self.state_path)
            temp_path = None
        except OSError as e:
            self._dirty = True
            raise RunStateError(f"Failed to write run state {self.state_path}: {e}") from e
        except BaseException:
            # Interrupted mid-write (KeyboardInterrupt from a signal handler)
            self._dirty = True
            raise
        finally:
            if temp_path is not None and temp_path.exists():
                temp_path.unlink()

    def reset(self) -> None:
        """Forget pending writes and delete the state file."""
        self._cancel_timer()
        self._dirty = False
        self._remove_file()

    def complete(self) -> None:
        """Flush, then delete the state file: the plan finished."""
        self.flush()
        self._remove_file()
        logger.debug("Run complete, removed %s", self.state_path)

    def _remove_file(self) -> None:
        try:
            self.state_path.unlink(missing_ok=True)
        except OSError as e:
            raise RunStateError(f"Failed to remove run state {self.state_path}: {e}") from e
