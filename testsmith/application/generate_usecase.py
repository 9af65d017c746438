"""
Generate use case.

Wires one generation run together: context lookup, test-setup detection,
project scan, planning, resume decision, the worker pool over the
orchestrator, and the observers (run state, terminal display, logging) that
consume its events. The run state is always flushed on the way out and
deleted once every chunk reached a terminal status.
"""

from __future__ import annotations

import logging
import signal
from collections.abc import Callable
from pathlib import Path
from typing import Any

from ..adapters.io.file_discovery import FileDiscoveryService
from ..adapters.io.paths import display_path
from ..adapters.io.state_json import (
    RunStateError,
    RunStateManager,
    chunk_key,
    is_state_compatible,
    load_run_state,
)
from ..adapters.io.test_setup import detect_test_setup
from ..adapters.io.ui_rich import RichProgressObserver, RichUIAdapter
from ..config.models import TestSmithConfig
from ..domain.models import Chunk, RunState, TestSmithError, WorkItem
from ..ports.executor_port import TestExecutorPort
from ..ports.llm_error import LLMError
from ..ports.llm_port import LLMPort
from .generation.batch_executor import BatchExecutor
from .generation.events import EventBus, LoggingObserver, RunProgressTracker
from .generation.orchestrator import GenerationOrchestrator
from .generation.planner import compute_plan_signature, plan_work

logger = logging.getLogger(__name__)

ResumeDecider = Callable[[RunState], bool]


class GenerateUseCaseError(TestSmithError):
    """Raised when a run cannot start or had to stop."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class GenerateUseCase:
    """
    Runs test generation for one project.

    The backend adapter is owned by the caller, which is also responsible
    for closing it.
    """

    def __init__(
        self,
        llm: LLMPort,
        config: TestSmithConfig | None = None,
        executor: TestExecutorPort | None = None,
        ui: RichUIAdapter | None = None,
        file_discovery: FileDiscoveryService | None = None,
        confirm_resume: ResumeDecider | None = None,
        dry_run: bool = False,
    ):
        """
        Initialize the use case.

        Args:
            llm: Generative backend
            config: Full configuration; defaults apply when omitted
            executor: Test runner, only used when ``generation.run_tests`` is set
            ui: Terminal output; runs silently when omitted
            file_discovery: Project scanner (created from config if None)
            confirm_resume: Asked whether to continue an unfinished run;
                continuing is the default when omitted
            dry_run: Plan only, no writes and no backend generation calls
        """
        self._llm = llm
        self._config = config or TestSmithConfig()
        self._executor = executor
        self._ui = ui
        self._file_discovery = file_discovery or FileDiscoveryService(self._config.discovery)
        self._confirm_resume = confirm_resume
        self._dry_run = dry_run

    def _step(self, message: str) -> None:
        logger.debug(message)
        if self._ui is not None:
            self._ui.display_step(message)

    async def generate_tests(
        self,
        project_path: str | Path,
        out_dir: str | None = None,
        resume: bool | None = None,
    ) -> dict[str, Any]:
        """
        Generate tests for every planned chunk of the project.

        Args:
            project_path: Project root
            out_dir: Output directory override, relative to the project root
            resume: ``True`` continues an unfinished run without asking,
                ``False`` discards it, ``None`` asks ``confirm_resume``

        Returns:
            Run summary; for dry runs the serialized plan instead

        Raises:
            GenerateUseCaseError: If the project cannot be scanned or the
                output directory cannot be created
            LLMError: If the backend rejects the credentials
        """
        root = Path(project_path).resolve()
        try:
            context_info = await self._llm.get_context_info()
            self._step(f"Context size: {context_info.context_size}")

            setup = detect_test_setup(root, out_dir, create=not self._dry_run)
            self._step(f"Using {setup.framework} with {setup.renderer}")

            scan = self._file_discovery.scan_project(root)
            self._step(f"Found {len(scan.files)} candidate files")
        except LLMError:
            raise
        except Exception as e:
            raise GenerateUseCaseError(f"Failed to prepare run: {e}", cause=e) from e

        plan = plan_work(scan, setup, context_info, self._config.budget)
        total_chunks = plan.total_chunks
        self._step(f"Planned {total_chunks} chunks ({len(plan.skipped_items)} skipped)")

        if self._dry_run:
            return {
                "dry_run": True,
                "context_info": context_info.model_dump(),
                "test_setup": setup.model_dump(),
                "plan": plan.model_dump(mode="json"),
            }

        signature = compute_plan_signature(plan)
        mode = "agent" if self._config.agent.enabled else "basic"
        state_path = Path(setup.output_dir) / self._config.generation.state_file
        resume_state = self._resolve_resume(state_path, signature, mode, total_chunks, resume)

        state = RunStateManager(
            state_path,
            signature,
            mode,
            total_chunks,
            existing=resume_state,
            debounce_ms=self._config.generation.state_debounce_ms,
        )
        completed_keys = state.completed_chunk_keys()
        tracker = self._build_tracker(total_chunks, state, resume_state, completed_keys)

        bus = EventBus()
        bus.subscribe(tracker)
        bus.subscribe(LoggingObserver())
        progress: RichProgressObserver | None = None
        if self._ui is not None:
            label = "Agent mode: planning & generating" if mode == "agent" else "Generating tests"
            if resume_state is not None:
                label += " (resuming)"
            progress = RichProgressObserver(tracker, self._ui.console, label)
            bus.subscribe(progress)

        orchestrator = GenerationOrchestrator(
            self._llm,
            plan,
            setup,
            root,
            scan,
            bus,
            executor=self._executor,
            generation=self._config.generation,
            agent=self._config.agent,
            budget=self._config.budget,
        )

        jobs: list[tuple[WorkItem, Chunk]] = []
        for item in plan.items:
            if item.is_skipped:
                if chunk_key(item.rel) not in completed_keys:
                    orchestrator.skip_item(item)
                continue
            for chunk in item.chunks:
                if chunk_key(item.rel, chunk.id) not in completed_keys:
                    jobs.append((item, chunk))

        restore_signals = _install_signal_flush(state)
        if progress is not None:
            progress.start()
        try:
            results = await BatchExecutor(self._config.generation.concurrency).run_all(
                jobs, lambda job: orchestrator.generate_chunk(*job)
            )
        finally:
            if progress is not None:
                progress.stop()
            try:
                if tracker.is_complete:
                    state.complete()
                else:
                    state.flush()
            finally:
                restore_signals()

        for result in results:
            if isinstance(result, LLMError) and result.is_auth_error:
                raise result
            if isinstance(result, BaseException):
                logger.error("Chunk job failed unexpectedly: %s", result)

        if self._ui is not None:
            self._ui.display_summary(tracker, display_path(setup.output_dir, root))

        return {
            "written": tracker.written,
            "skipped": tracker.skipped,
            "exists": tracker.exists,
            "errors": tracker.errors,
            "completed_chunks": tracker.completed_chunks,
            "total_chunks": total_chunks,
            "output_dir": setup.output_dir,
            "complete": tracker.is_complete,
        }

    def _resolve_resume(
        self,
        state_path: Path,
        signature: str,
        mode: str,
        total_chunks: int,
        resume: bool | None,
    ) -> RunState | None:
        existing = load_run_state(state_path)
        if existing is None:
            return None

        if not is_state_compatible(existing, signature, mode, total_chunks):
            logger.info("Previous run state does not match this plan, starting fresh")
            _remove_state(state_path)
            return None

        if existing.totals.completed_chunks >= total_chunks:
            _remove_state(state_path)
            return None

        if resume is None:
            if self._ui is not None:
                self._ui.display_resume_notice(existing)
            resume = self._confirm_resume(existing) if self._confirm_resume else True

        if not resume:
            _remove_state(state_path)
            return None
        return existing

    @staticmethod
    def _build_tracker(
        total_chunks: int,
        state: RunStateManager,
        resume_state: RunState | None,
        completed_keys: set[str],
    ) -> RunProgressTracker:
        if resume_state is None:
            return RunProgressTracker(total_chunks, state)
        totals = resume_state.totals
        return RunProgressTracker(
            total_chunks,
            state,
            written=totals.written,
            skipped=totals.skipped,
            exists=totals.exists,
            completed_chunks=totals.completed_chunks,
            per_file={rel: entry.summary for rel, entry in resume_state.per_file.items()},
            finished_keys=completed_keys,
        )


def _remove_state(state_path: Path) -> None:
    try:
        state_path.unlink(missing_ok=True)
    except OSError as e:
        raise GenerateUseCaseError(f"Cannot remove run state {state_path}: {e}", cause=e) from e


def _install_signal_flush(state: RunStateManager) -> Callable[[], None]:
    """Flush the run state on SIGINT/SIGTERM before the default handling runs."""
    previous: dict[int, Any] = {}

    def handler(signum: int, frame: Any) -> None:
        try:
            if not state.flush(blocking=False):
                logger.warning("Run state write in progress; keeping the last saved state")
        except RunStateError as e:
            logger.error("Could not save run state: %s", e)
        prior = previous.get(signum)
        if callable(prior):
            prior(signum, frame)
        elif signum == signal.SIGINT:
            raise KeyboardInterrupt
        else:
            raise SystemExit(128 + signum)

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[sig] = signal.signal(sig, handler)
        except ValueError:
            # Not on the main thread
            logger.debug("Cannot install handler for %s", sig)

    def restore() -> None:
        for sig, prior in previous.items():
            signal.signal(sig, prior)

    return restore
