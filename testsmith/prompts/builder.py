"""
Prompt construction for test generation.

Prompts are plain strings assembled from fixed instruction blocks, two short
examples, the source path and the source code. Retry prompts carry the
previous candidate and the failure feedback, both truncated head and tail so
a long runner log cannot crowd out the source.
"""

from __future__ import annotations

import math
import re

from ..application.generation.chunker import estimate_tokens
from ..config.models import DEFAULT_SKIP_SENTINEL

TRUNCATE_MAX_CHARS = 2000
TRUNCATION_MARKER = "…"

_BLOCK_COMMENT = re.compile(r"/\*[\s\S]*?\*/")
_LINE_COMMENT = re.compile(r"(^|\s)//.*$", re.MULTILINE)
_WHITESPACE = re.compile(r"\s+")

_COMPONENT_EXAMPLE = """import { render, screen } from '@testing-library/react';
import { SaveButton } from '../SaveButton';

it('shows the provided label', () => {
  render(<SaveButton label="Save" />);
  expect(screen.getByRole('button', { name: /save/i })).toBeInTheDocument();
});"""

_LOGIC_EXAMPLE = """import { formatName } from '../formatName';

it('joins first and last name with a space', () => {
  expect(formatName('Ada', 'Lovelace')).toBe('Ada Lovelace');
});"""

REVIEW_SYSTEM_PROMPT = "\n".join(
    [
        "You are a senior engineer reviewing automatically generated TypeScript unit tests.",
        "You will receive the source snippet under test and the generated test file.",
        "Carefully inspect for logical issues, missing coverage, incorrect assertions, or TypeScript mistakes.",
        "You may call tools to inspect additional project files. Use them when you need more context.",
        "Respond with ONLY a Markdown code fence labelled ts that contains the COMPLETE, corrected test file.",
        "If the provided test file is already correct, return it unchanged inside the code fence.",
        "Do not include explanations outside the code fence.",
    ]
)


def truncate(text: str, max_chars: int = TRUNCATE_MAX_CHARS) -> str:
    """Keep the head and tail of ``text`` around a marker line when it is too long."""
    if len(text) <= max_chars:
        return text
    half = max_chars // 2
    return f"{text[:half]}\n{TRUNCATION_MARKER}\n{text[-half:]}"


def slim_code(src: str, max_tokens: int) -> str:
    """Shrink source for a tight prompt.

    Strips comments and collapses whitespace; if the estimate is still above
    ``max_tokens`` the text is cut proportionally, never below 200 characters.
    """
    slim = _BLOCK_COMMENT.sub("", src)
    slim = _LINE_COMMENT.sub(r"\1", slim)
    slim = _WHITESPACE.sub(" ", slim)
    tokens = estimate_tokens(slim)
    if tokens > max_tokens:
        ratio = max_tokens / tokens
        keep = max(200, math.floor(len(slim) * ratio))
        slim = slim[:keep]
    return slim.strip()


def _runner_name(framework: str) -> str:
    return "vitest" if framework == "vitest" else "jest"


def build_prompt(
    framework: str,
    renderer: str,
    rel_path: str,
    code_chunk: str,
    attempt: int | None = None,
    previous_test: str | None = None,
    failure_message: str | None = None,
    plan_json: str | None = None,
    skip_sentinel: str = DEFAULT_SKIP_SENTINEL,
) -> str:
    """Build the generation prompt for one chunk.

    Args:
        framework: ``jest`` or ``vitest``.
        renderer: UI renderer hint (``rtl-web``, ``rtl-native`` or ``none``).
        rel_path: Project-relative path of the source under test.
        code_chunk: Source text to test.
        attempt: 1-based attempt number; feedback is only included after the first.
        previous_test: Candidate produced by the previous attempt.
        failure_message: Why the previous candidate was rejected.
        plan_json: Structured test plan from the planning agent, as JSON.
        skip_sentinel: Reply the model gives when there is nothing to test;
            must match the stop sequence sent with the completion.
    """
    runner = _runner_name(framework)
    lines = ["You write high-quality, minimal unit tests."]
    if plan_json is not None:
        lines += [
            "- Aim for one or two high-level assertions that match the plan.",
            f"- Use {runner} (ESM). For UI, use Testing Library ({renderer}).",
            "- Mock external IO (network, timers, storage) if listed in plan.mocks.",
            "- Focus on public behavior. Name tests clearly.",
            "- Keep examples short and deterministic.",
            f"- If the plan is empty, reply {skip_sentinel} only.",
        ]
    else:
        lines += [
            "- Aim for one or two high-level assertions that cover the most important behavior.",
            f"- Use {runner} (ESM).",
            f"- Prefer Testing Library ({renderer}) for UI.",
            "- Test behavior via public API only.",
            "- Mock external IO.",
            "- Keep examples short and deterministic.",
            f"- If not testable (types-only/barrel/autogen), reply {skip_sentinel} only.",
        ]
    lines.append("- Return exactly one TypeScript code block containing the whole test file.")

    sections = ["\n".join(lines)]

    if attempt is not None and attempt > 1:
        feedback = ["Previous attempt's tests failed. Use the feedback below to adjust the new version."]
        if previous_test:
            feedback.append(f"PREVIOUS TEST IMPLEMENTATION:\n{truncate(previous_test)}")
        if failure_message:
            feedback.append(f"TEST RUN FEEDBACK:\n{truncate(failure_message)}")
        sections.append("\n\n".join(feedback))

    sections.append(f"Example - component test (condensed):\n```ts\n{_COMPONENT_EXAMPLE}\n```")
    sections.append(f"Example - logic test (condensed):\n```ts\n{_LOGIC_EXAMPLE}\n```")

    header = f"FILE: {rel_path}"
    if plan_json is not None:
        header += f"\nPLAN(JSON): {plan_json}"
    sections.append(f"{header}\nSOURCE:\n\n{code_chunk}")

    sections.append(
        "---\nReturn exactly one TypeScript code block with the tests. "
        f"If there is nothing to test, return {skip_sentinel}."
    )
    return "\n\n".join(sections)


def build_plan_prompt(framework: str, renderer: str, rel_path: str, code_chunk: str) -> str:
    """User task for the planning agent."""
    return "\n".join(
        [
            f"Plan unit tests for the file: {rel_path}.",
            f"Testing stack: {framework} + {renderer}.",
            'Produce a compact plan as JSON only: {"final":{"plan":[{"title":"...",'
            '"kind":"unit|component","arrange":"...","act":"...","assert":"...","mocks":["..."]}]}}',
            "Prefer public API & user behavior. Keep 2-6 cases.",
            'If nothing meaningful to test, return {"final":{"plan":[]}}.',
            "Source:",
            code_chunk,
        ]
    )


def build_review_prompt(
    source_rel_path: str,
    original_source: str,
    generated_test: str,
    test_rel_path: str,
    plan_json: str | None = None,
) -> str:
    """User task for the review pass over an accepted candidate."""
    parts = [
        f"Source snippet ({source_rel_path}):",
        "```ts",
        original_source.strip(),
        "```",
        f"Generated test file ({test_rel_path}):",
        "```ts",
        generated_test.strip(),
        "```",
    ]
    if plan_json:
        parts.append(f"Planned scenarios (JSON):\n{plan_json}")
    parts.append(
        "Review the test file. Fix any issues and ensure imports and mocks are correct. "
        "Return the full revised test file."
    )
    return "\n".join(parts)
