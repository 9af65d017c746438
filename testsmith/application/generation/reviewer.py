"""Second-opinion pass over an accepted test candidate."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel

from ...adapters.llm.common import extract_code_block
from ...domain.models import ScanResult
from ...ports.llm_error import LLMError
from ...ports.llm_port import LLMPort
from ...prompts.builder import REVIEW_SYSTEM_PROMPT, build_review_prompt
from .agent import run_tool_loop
from .agent_tools import AgentError, AgentToolbox, ToolSession

logger = logging.getLogger(__name__)

DEFAULT_REVIEW_STEPS = 30


class ReviewResult(BaseModel):
    """Outcome of a review pass."""

    ok: bool
    code: str | None = None
    changed: bool = False
    reason: str | None = None


async def review_generated_test(
    llm: LLMPort,
    project_root: str,
    scan: ScanResult,
    source_rel_path: str,
    original_source: str,
    generated_test: str,
    test_rel_path: str,
    plan_json: str | None = None,
    max_steps: int = DEFAULT_REVIEW_STEPS,
    on_tool: Callable[[int, str, dict[str, Any]], None] | None = None,
) -> ReviewResult:
    """Ask the backend to review and correct ``generated_test``.

    Failures never propagate except authentication errors: a review that
    cannot run leaves the candidate as it was.
    """
    session = ToolSession(AgentToolbox(project_root, scan), max_steps, on_tool)
    messages: list[dict[str, Any]] = [
        {"role": "system", "content": REVIEW_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": build_review_prompt(
                source_rel_path, original_source, generated_test, test_rel_path, plan_json
            ),
        },
    ]
    try:
        raw = await run_tool_loop(llm, messages, session, trace=[])
    except LLMError as e:
        if e.is_auth_error:
            raise
        return ReviewResult(ok=False, reason=str(e))
    except AgentError as e:
        return ReviewResult(ok=False, reason=str(e))

    code = extract_code_block(raw, loose=True)
    if not code:
        return ReviewResult(ok=False, reason="no_code_block")
    return ReviewResult(ok=True, code=code, changed=code.strip() != generated_test.strip())
