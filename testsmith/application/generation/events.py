"""
Progress event stream.

The orchestrator emits one immutable ``ProgressEvent`` per state transition.
Observers subscribe to the ``EventBus``; persistence, terminal display and
logging are independent observers and the orchestrator knows none of them.
"""

from __future__ import annotations

import logging
import time
from typing import Protocol, runtime_checkable

from ...adapters.io.state_json import RunStateManager, chunk_key
from ...domain.models import FileSummary, ProgressEvent, ProgressEventType

logger = logging.getLogger(__name__)


@runtime_checkable
class EventObserver(Protocol):
    """Anything that wants to see progress events."""

    def on_event(self, event: ProgressEvent) -> None: ...


class EventBus:
    """Fan-out of progress events to subscribed observers, in subscription order."""

    def __init__(self) -> None:
        self._observers: list[EventObserver] = []

    def subscribe(self, observer: EventObserver) -> None:
        self._observers.append(observer)

    def unsubscribe(self, observer: EventObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def emit(self, event: ProgressEvent) -> None:
        for observer in list(self._observers):
            try:
                observer.on_event(event)
            except Exception:
                # A broken display must not abort generation
                logger.exception(
                    "Progress observer %s failed on %s event", type(observer).__name__, event.type.value
                )


class RunProgressTracker:
    """Aggregates events into run totals and per-file summaries.

    When a ``RunStateManager`` is attached every terminal event is recorded
    there, which is what makes a run resumable.
    """

    def __init__(
        self,
        total_chunks: int,
        state: RunStateManager | None = None,
        written: int = 0,
        skipped: int = 0,
        exists: int = 0,
        completed_chunks: int = 0,
        per_file: dict[str, FileSummary] | None = None,
        finished_keys: set[str] | None = None,
    ) -> None:
        self.total_chunks = total_chunks
        self.state = state
        self.written = written
        self.skipped = skipped
        self.exists = exists
        self.errors = 0
        self.completed_chunks = completed_chunks
        self.per_file: dict[str, FileSummary] = dict(per_file or {})
        self._finished = set(finished_keys or ())
        self._file_started: dict[str, float] = {}
        self._in_flight: set[str] = set()
        self._started_at = time.monotonic()
        self._sync_totals()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self._started_at) * 1000)

    @property
    def is_complete(self) -> bool:
        return self.completed_chunks >= self.total_chunks

    def on_event(self, event: ProgressEvent) -> None:
        key = chunk_key(event.file, event.chunk_id)

        if event.type is ProgressEventType.START:
            self._file_started.setdefault(event.file, time.monotonic())
            summary = self.per_file.setdefault(event.file, FileSummary())
            if event.tokens is not None:
                summary.tokens = (summary.tokens or 0) + event.tokens
            self._in_flight.add(key)
            return

        if event.type is ProgressEventType.TOOL:
            return

        self._in_flight.discard(key)

        if event.type is ProgressEventType.ERROR:
            self.errors += 1
            return

        summary = self.per_file.setdefault(event.file, FileSummary())
        summary.duration_ms = self._file_duration(event)

        if event.type is ProgressEventType.WRITE:
            self.written += 1
            summary.status = "wrote"
            summary.cases = event.cases
            summary.hints = event.hints
            status = "write"
        elif event.type is ProgressEventType.EXISTS:
            self.exists += 1
            if summary.status != "wrote":
                summary.status = "exists"
            status = "exists"
        else:
            self.skipped += 1
            if summary.status == "skip":
                summary.reason = event.message
            status = "skip"

        if event.chunk_id is not None and key not in self._finished:
            self._finished.add(key)
            self.completed_chunks = min(self.completed_chunks + 1, self.total_chunks)

        if self.state is not None:
            self.state.record_file_summary(event.file, summary)
            self.state.record_chunk_result(
                event.file,
                event.chunk_id,
                status,
                message=event.message,
                tokens=event.tokens,
                duration_ms=event.duration_ms,
            )
            self._sync_totals()

    def _file_duration(self, event: ProgressEvent) -> int | None:
        started = self._file_started.get(event.file)
        if started is None:
            return event.duration_ms
        return int((time.monotonic() - started) * 1000)

    def _sync_totals(self) -> None:
        if self.state is not None:
            self.state.set_totals(self.written, self.skipped, self.exists, self.completed_chunks)


class LoggingObserver:
    """Writes each event to the module logger; tool chatter only at DEBUG."""

    def on_event(self, event: ProgressEvent) -> None:
        label = f"{event.file} [{event.chunk_id}]" if event.chunk_id else event.file
        if event.type is ProgressEventType.TOOL:
            logger.debug("%s tool %s", label, event.message or "")
        elif event.type is ProgressEventType.ERROR:
            logger.warning("%s error: %s", label, event.message or "unknown error")
        elif event.type is ProgressEventType.START:
            logger.debug("%s start (~%s tokens)", label, event.tokens)
        else:
            logger.debug(
                "%s %s%s", label, event.type.value, f" ({event.message})" if event.message else ""
            )
