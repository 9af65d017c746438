"""
Per-chunk generation state machine.

For every chunk the orchestrator walks build-prompt → generate → extract →
verify → (review) → (execute) → accept, retrying with feedback until the
attempt budget is spent and abandoning after that. Each transition of
interest is published as a ``ProgressEvent``; the orchestrator does not know
who listens.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from pathlib import Path
from typing import Any

from ...adapters.io.paths import display_path, resolve_test_path
from ...adapters.llm.common import extract_code_block
from ...config.models import AgentConfig, BudgetConfig, GenerationConfig
from ...domain.models import (
    Chunk,
    ChunkOutcome,
    ProgressEvent,
    ProgressEventType,
    RunMode,
    ScanResult,
    TestPlanCase,
    TestSetup,
    WorkItem,
    WorkPlan,
)
from ...ports.executor_port import TestExecutorPort
from ...ports.llm_error import LLMError
from ...ports.llm_port import LLMPort
from ...prompts.builder import build_plan_prompt, build_prompt, slim_code
from .agent import PlanningAgent
from .agent_tools import AgentError, tool_detail
from .chunker import estimate_tokens
from .events import EventBus
from .reviewer import review_generated_test
from .verifier import count_tests, detect_hints, verify_generated_test

logger = logging.getLogger(__name__)

NO_CODE = "Model returned no code"
NO_CODE_BLOCK = "Model returned no code block"
NO_TESTS = "No tests detected after verification"
EMPTY_PLAN = "Empty plan"
RUNNER_NOT_FOUND_PREFIX = "Test runner not available"
FAILURE_SUMMARY_LINES = 3
FAILURE_SUMMARY_CHARS = 240


def summarize_failure(message: str) -> str:
    """First few non-empty lines of ``message``, joined and length-capped."""
    lines = [line.strip() for line in message.splitlines() if line.strip()]
    return " ".join(lines[:FAILURE_SUMMARY_LINES])[:FAILURE_SUMMARY_CHARS]


class GenerationOrchestrator:
    """
    Turns one planned chunk into one verified test file on disk.

    Per-chunk failures never escape ``generate_chunk``: they become ``skip``
    or ``error`` outcomes. The only exception that propagates is an
    authentication ``LLMError``, because no later chunk can succeed either.
    """

    def __init__(
        self,
        llm: LLMPort,
        plan: WorkPlan,
        setup: TestSetup,
        project_root: str | Path,
        scan: ScanResult,
        events: EventBus,
        executor: TestExecutorPort | None = None,
        generation: GenerationConfig | None = None,
        agent: AgentConfig | None = None,
        budget: BudgetConfig | None = None,
    ):
        self.llm = llm
        self.plan = plan
        self.setup = setup
        self.project_root = str(Path(project_root).resolve())
        self.scan = scan
        self.events = events
        self.executor = executor
        self.generation = generation or GenerationConfig()
        self.agent = agent or AgentConfig()
        self.budget = budget or BudgetConfig()
        self._path_locks: dict[str, asyncio.Lock] = {}

    @property
    def mode(self) -> RunMode:
        return "agent" if self.agent.enabled else "basic"

    @property
    def answer_tokens(self) -> int:
        return min(
            math.floor(self.plan.ctx_budget * self.budget.answer_fraction),
            self.budget.max_answer_tokens,
        )

    def _emit(self, event_type: ProgressEventType, item: WorkItem, chunk: Chunk | None, **fields: Any) -> None:
        self.events.emit(
            ProgressEvent(
                type=event_type,
                file=item.rel,
                chunk_id=chunk.id if chunk is not None else None,
                **fields,
            )
        )

    def skip_item(self, item: WorkItem) -> None:
        """Report a file the planner produced no chunks for."""
        self._emit(ProgressEventType.SKIP, item, None, message=item.skip_reason or "No viable chunks")

    async def generate_chunk(self, item: WorkItem, chunk: Chunk) -> ChunkOutcome:
        """Run the full state machine for one chunk and publish its terminal event."""
        started = time.monotonic()
        self._emit(ProgressEventType.START, item, chunk, tokens=chunk.approx_tokens)

        try:
            outcome = await self._generate(item, chunk)
        except LLMError as e:
            if e.is_auth_error:
                raise
            outcome = ChunkOutcome(status="error", message=str(e))
        except AgentError as e:
            outcome = ChunkOutcome(status="error", message=f"Planning failed: {e}")
        except Exception as e:
            logger.debug("Chunk %s failed", chunk.id, exc_info=True)
            outcome = ChunkOutcome(status="error", message=str(e) or type(e).__name__)

        event_type = {
            "write": ProgressEventType.WRITE,
            "skip": ProgressEventType.SKIP,
            "exists": ProgressEventType.EXISTS,
            "error": ProgressEventType.ERROR,
        }[outcome.status]
        self._emit(
            event_type,
            item,
            chunk,
            message=outcome.message,
            tokens=chunk.approx_tokens,
            cases=outcome.cases if outcome.status == "write" else None,
            hints=outcome.hints or None,
            attempts=outcome.attempts or None,
            duration_ms=int((time.monotonic() - started) * 1000),
            test_path=outcome.test_path,
        )
        return outcome

    async def _generate(self, item: WorkItem, chunk: Chunk) -> ChunkOutcome:
        dest = resolve_test_path(self.setup.output_dir, item.rel)
        lock = self._path_locks.setdefault(str(dest), asyncio.Lock())
        async with lock:
            if dest.exists() and not self.generation.force:
                logger.debug("Exists, not overwriting: %s", dest)
                return ChunkOutcome(status="exists", test_path=str(dest))

            plan_cases: list[TestPlanCase] | None = None
            if self.agent.enabled:
                plan_cases = await self._plan(item, chunk)
                if not plan_cases:
                    return ChunkOutcome(status="skip", message=EMPTY_PLAN)

            return await self._attempt_loop(item, chunk, dest, plan_cases)

    async def _plan(self, item: WorkItem, chunk: Chunk) -> list[TestPlanCase]:
        def on_tool(step: int, tool: str, args: dict[str, Any]) -> None:
            message = f"{tool} {tool_detail(args)}".strip()
            self._emit(ProgressEventType.TOOL, item, chunk, message=message)

        agent = PlanningAgent(
            self.llm,
            self.project_root,
            self.scan,
            max_steps=self.agent.max_tool_calls,
            on_tool=on_tool,
        )
        prompt = build_plan_prompt(self.plan.framework, self.plan.renderer, item.rel, chunk.code)
        result = await agent.run(prompt, {"file": item.rel, "chunk_id": chunk.id})
        return result.plan

    def _build_prompt(
        self,
        item: WorkItem,
        chunk: Chunk,
        attempt: int,
        previous_test: str | None,
        failure: str | None,
        plan_json: str | None,
    ) -> str:
        def render(code: str) -> str:
            return build_prompt(
                self.plan.framework,
                self.plan.renderer,
                item.rel,
                code,
                attempt=attempt,
                previous_test=previous_test,
                failure_message=failure,
                plan_json=plan_json,
                skip_sentinel=self.generation.skip_sentinel,
            )

        prompt = render(chunk.code)
        limit = self.plan.ctx_budget - self.budget.prompt_headroom
        if estimate_tokens(prompt) > limit:
            target = max(self.budget.prompt_headroom, math.floor(limit * 0.8))
            logger.debug("Prompt for %s over budget, slimming source to ~%d tokens", chunk.id, target)
            prompt = render(slim_code(chunk.code, target))
        return prompt

    async def _attempt_loop(
        self,
        item: WorkItem,
        chunk: Chunk,
        dest: Path,
        plan_cases: list[TestPlanCase] | None,
    ) -> ChunkOutcome:
        plan_json = (
            json.dumps([case.model_dump(by_alias=True) for case in plan_cases])
            if plan_cases is not None
            else None
        )
        max_attempts = self.generation.max_attempts
        sentinel = self.generation.skip_sentinel
        previous_test: str | None = None
        failure: str | None = None
        wrote = False
        # --force overwrites in place; an abandoned chunk puts the old file back
        original = dest.read_bytes() if dest.is_file() else None

        for attempt in range(1, max_attempts + 1):
            prompt = self._build_prompt(item, chunk, attempt, previous_test, failure, plan_json)
            raw = await self.llm.complete(
                prompt,
                max_tokens=self.answer_tokens,
                temperature=0.1,
                stop=[sentinel],
            )

            code = extract_code_block(raw, sentinel)
            if code is None:
                if not raw.strip() or sentinel in raw:
                    self._discard(dest, wrote, original)
                    return ChunkOutcome(status="skip", attempts=attempt, message=NO_CODE)
                failure = NO_CODE_BLOCK
                continue
            previous_test = code

            verification = verify_generated_test(code, str(dest))
            if verification.diagnostics:
                failure = "TypeScript diagnostics:\n" + "\n".join(verification.diagnostics)
                continue
            if verification.test_count == 0:
                failure = NO_TESTS
                continue
            candidate = verification.code
            previous_test = candidate

            if self.agent.enabled and self.agent.review:
                candidate = await self._review(item, chunk, dest, candidate, plan_json)

            if self.generation.run_tests and self.executor is not None:
                self._write(dest, candidate)
                wrote = True
                result = await self.executor.run(self.project_root, str(dest), self.plan.framework)
                if not result.ok:
                    output = result.output or "Test run failed without output"
                    failure = output if result.runner_found else f"{RUNNER_NOT_FOUND_PREFIX}: {output}"
                    logger.debug("Attempt %d for %s failed at runtime", attempt, chunk.id)
                    continue
            else:
                self._write(dest, candidate)
                wrote = True

            return ChunkOutcome(
                status="write",
                attempts=attempt,
                test_path=str(dest),
                cases=count_tests(candidate),
                hints=", ".join(detect_hints(candidate)),
            )

        self._discard(dest, wrote, original)
        message = f"Failed after {max_attempts} attempts: {summarize_failure(failure or '')}"
        status = "error" if self.generation.run_tests and self.executor is not None else "skip"
        return ChunkOutcome(status=status, attempts=max_attempts, message=message)

    async def _review(
        self, item: WorkItem, chunk: Chunk, dest: Path, candidate: str, plan_json: str | None
    ) -> str:
        def on_tool(step: int, tool: str, args: dict[str, Any]) -> None:
            message = f"review:{tool} {tool_detail(args)}".strip()
            self._emit(ProgressEventType.TOOL, item, chunk, message=message)

        review = await review_generated_test(
            self.llm,
            self.project_root,
            self.scan,
            source_rel_path=item.rel,
            original_source=chunk.code,
            generated_test=candidate,
            test_rel_path=display_path(dest, self.project_root),
            plan_json=plan_json,
            max_steps=self.agent.review_max_tool_calls,
            on_tool=on_tool,
        )
        if not review.ok or not review.code:
            logger.debug("Review skipped for %s: %s", chunk.id, review.reason or "unknown error")
            return candidate
        if not review.changed:
            return candidate

        reviewed = verify_generated_test(review.code, str(dest))
        if reviewed.diagnostics:
            logger.debug("Review output for %s failed verification: %s", chunk.id, " | ".join(reviewed.diagnostics))
            return candidate
        if reviewed.test_count == 0:
            logger.debug("Review output for %s removed all tests", chunk.id)
            return candidate
        return reviewed.code

    @staticmethod
    def _write(dest: Path, code: str) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        text = code if code.endswith("\n") else code + "\n"
        dest.write_text(text, encoding="utf-8")

    @staticmethod
    def _discard(dest: Path, wrote: bool, original: bytes | None) -> None:
        """Undo this chunk's writes: restore the file it replaced, else remove it."""
        if not wrote:
            return
        if original is not None:
            dest.write_bytes(original)
        else:
            dest.unlink(missing_ok=True)
