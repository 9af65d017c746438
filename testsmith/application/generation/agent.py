"""
Tool-calling planning agent.

The agent drives ``LLMPort.chat`` one turn at a time. Each turn either asks
for tools, which are dispatched through a ``ToolSession`` and answered with
their JSON payloads, or carries the final answer. For planning the final
answer must be ``{"final": {"plan": [...]}}``; an explicit empty plan is a
valid result meaning "nothing worth testing".
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from ...adapters.llm.common import extract_json_object, parse_tool_arguments
from ...domain.models import AgentResult, ScanResult, TestPlanCase
from ...ports.llm_port import LLMPort
from .agent_tools import (
    TOOL_SPECS,
    AgentError,
    AgentProtocolError,
    AgentStepLimitError,
    AgentToolbox,
    ToolSession,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 40
AGENT_MAX_TOKENS = 900
AGENT_TEMPERATURE = 0.1

PLANNER_SYSTEM_PROMPT = "\n".join(
    [
        "You are a planning agent for unit tests.",
        "You can call tools via function calling. Use them to gather facts, then return ONLY JSON as:",
        '{"final":{"plan":[{"title":"...","kind":"unit|component","arrange":"...","act":"...",'
        '"assert":"...","mocks":["..."]}]}}',
        'If nothing meaningful to test: {"final":{"plan":[]}}',
    ]
)

__all__ = [
    "AgentError",
    "AgentProtocolError",
    "AgentStepLimitError",
    "PlanningAgent",
    "run_tool_loop",
]


async def run_tool_loop(
    llm: LLMPort,
    messages: list[dict[str, Any]],
    session: ToolSession,
    trace: list[dict[str, Any]],
    max_tokens: int = AGENT_MAX_TOKENS,
    temperature: float = AGENT_TEMPERATURE,
) -> str:
    """Converse until the backend answers without requesting tools.

    ``messages`` and ``trace`` are extended in place. Returns the text of the
    final turn.

    Raises:
        AgentStepLimitError: When the session's step budget runs out.
        AgentProtocolError: When an unknown tool is requested.
    """
    while True:
        turn = await llm.chat(
            messages, tools=TOOL_SPECS, max_tokens=max_tokens, temperature=temperature
        )
        if not turn.wants_tools:
            trace.append({"final": turn.content})
            return turn.content

        messages.append(
            {
                "role": "assistant",
                "content": turn.content,
                "tool_calls": [
                    {"id": call.id, "name": call.name, "arguments": call.arguments}
                    for call in turn.tool_calls
                ],
            }
        )
        for call in turn.tool_calls:
            args = parse_tool_arguments(call.arguments)
            try:
                result = session.call(call.name, args)
            except AgentProtocolError as e:
                e.trace = trace + e.trace
                raise
            trace.append(
                {"step": session.steps, "tool": call.name, "args": args, "ok": result.get("ok")}
            )
            messages.append(
                {
                    "role": "tool",
                    "tool_call_id": call.id,
                    "name": call.name,
                    "content": json.dumps(result, default=str),
                }
            )


class PlanningAgent:
    """Produces a structured test plan for one chunk."""

    def __init__(
        self,
        llm: LLMPort,
        project_root: str,
        scan: ScanResult,
        max_steps: int = DEFAULT_MAX_STEPS,
        on_tool: Callable[[int, str, dict[str, Any]], None] | None = None,
    ) -> None:
        self.llm = llm
        self.toolbox = AgentToolbox(project_root, scan)
        self.max_steps = max_steps
        self.on_tool = on_tool

    async def run(
        self, user_prompt: str, chunk_context: dict[str, Any] | None = None
    ) -> AgentResult:
        """Plan tests for the task described by ``user_prompt``.

        Args:
            user_prompt: Planning task including the chunk source.
            chunk_context: Identifies the chunk (``file``, ``chunk_id``) in the trace.

        Raises:
            AgentStepLimitError: If the tool budget is exhausted.
            AgentProtocolError: On an unknown tool or an unparseable final answer.
        """
        session = ToolSession(self.toolbox, self.max_steps, self.on_tool)
        trace: list[dict[str, Any]] = [{"context": dict(chunk_context or {})}]
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": PLANNER_SYSTEM_PROMPT},
            {"role": "user", "content": f"User task:\n{user_prompt}"},
        ]

        final_text = await run_tool_loop(self.llm, messages, session, trace)

        payload = extract_json_object(final_text)
        final = payload.get("final") if payload else None
        raw_plan = final.get("plan") if isinstance(final, dict) else None
        if not isinstance(raw_plan, list):
            raise AgentProtocolError("Agent returned no parseable plan", trace=trace)

        try:
            plan = [TestPlanCase.model_validate(case) for case in raw_plan if isinstance(case, dict)]
        except ValidationError as e:
            raise AgentProtocolError(f"Agent plan is malformed: {e}", trace=trace) from e

        reason = final.get("reason")
        logger.debug(
            "Agent planned %d case(s) in %d tool call(s)%s",
            len(plan),
            session.steps,
            f" for {chunk_context.get('chunk_id')}" if chunk_context else "",
        )
        return AgentResult(
            ok=True,
            plan=plan,
            reason=str(reason) if reason else None,
            trace=trace,
            steps=session.steps,
        )
