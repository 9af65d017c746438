"""Global fixtures and fake backends for the testsmith test suite."""

from collections.abc import Iterable
from pathlib import Path
from typing import Any

import pytest

from testsmith.adapters.io.enhanced_logging import LoggerManager
from testsmith.domain.models import (
    ContextInfo,
    RunTestResult,
    ScanResult,
    SourceFile,
    TestSetup,
)
from testsmith.ports.llm_port import ChatTurn, ToolCall, ToolSpec

GOOD_TEST = """```ts
import { add } from '../math';

describe('add', () => {
  it('adds two numbers', () => {
    expect(add(1, 2)).toBe(3);
  });
});
```"""

MATH_SOURCE = """export function add(a: number, b: number): number {
  // keep it simple
  const total = a + b;
  return total;
}

export function subtract(a: number, b: number): number {
  const diff = a - b;
  return diff;
}

export const multiply = (a: number, b: number) => a * b;
"""


TYPES_SOURCE = "\n".join(
    [
        "export type Id = string;",
        "export interface User {",
        "  id: Id;",
        "  name: string;",
        "  email: string;",
        "  createdAt: Date;",
        "  updatedAt: Date;",
        "  roles: string[];",
        "  active: boolean;",
        "}",
        "export type Users = User[];",
        "export type UserMap = Record<Id, User>;",
        "export interface Session {",
        "  user: User;",
        "  token: string;",
        "  expiresAt: Date;",
        "}",
    ]
) + "\n"


class FakeLLM:
    """Scripted ``LLMPort`` implementation.

    ``completions`` are returned in order by ``complete``; ``turns`` in order
    by ``chat``. Every call is recorded for assertions.
    """

    def __init__(
        self,
        completions: Iterable[str | Exception] = (),
        turns: Iterable[ChatTurn | Exception] = (),
        context_size: int = 8192,
    ) -> None:
        self.completions = list(completions)
        self.turns = list(turns)
        self.context_size = context_size
        self.prompts: list[str] = []
        self.complete_kwargs: list[dict[str, Any]] = []
        self.chat_messages: list[list[dict[str, Any]]] = []
        self.chat_tools: list[list[ToolSpec] | None] = []
        self.closed = False

    async def complete(self, prompt, *, max_tokens=None, temperature=None, stop=None) -> str:
        self.prompts.append(prompt)
        self.complete_kwargs.append(
            {"max_tokens": max_tokens, "temperature": temperature, "stop": stop}
        )
        if not self.completions:
            raise AssertionError("Unexpected complete() call")
        value = self.completions.pop(0)
        if isinstance(value, Exception):
            raise value
        return value

    async def chat(self, messages, *, tools=None, max_tokens=None, temperature=None) -> ChatTurn:
        self.chat_messages.append([dict(m) for m in messages])
        self.chat_tools.append(tools)
        if not self.turns:
            raise AssertionError("Unexpected chat() call")
        value = self.turns.pop(0)
        if isinstance(value, Exception):
            raise value
        return value

    async def get_context_info(self) -> ContextInfo:
        return ContextInfo(context_size=self.context_size)

    async def aclose(self) -> None:
        self.closed = True


class FakeRunner:
    """Scripted ``TestExecutorPort``."""

    def __init__(self, results: Iterable[RunTestResult]) -> None:
        self.results = list(results)
        self.calls: list[tuple[str, str, str]] = []

    async def run(self, project_root, test_file_path, framework) -> RunTestResult:
        self.calls.append((str(project_root), str(test_file_path), framework))
        return self.results.pop(0)


def tool_turn(name: str, arguments: str = "{}", call_id: str = "call_1") -> ChatTurn:
    """A chat turn requesting a single tool call."""
    return ChatTurn(tool_calls=[ToolCall(id=call_id, name=name, arguments=arguments)])


def final_turn(content: str) -> ChatTurn:
    return ChatTurn(content=content)


def make_source(rel: str, text: str, root: str = "/project") -> SourceFile:
    return SourceFile(
        path=f"{root}/{rel}",
        rel=rel,
        ext=Path(rel).suffix,
        text=text,
        lines=len(text.splitlines()),
    )


@pytest.fixture(autouse=True)
def reset_logging():
    """Keep the global Rich handler from leaking between tests."""
    yield
    LoggerManager.reset()


@pytest.fixture
def js_project(tmp_path):
    """A small TypeScript project on disk."""
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / "package.json").write_text(
        '{"name": "demo", "devDependencies": {"jest": "^29.0.0"}}', encoding="utf-8"
    )
    (root / "src" / "math.ts").write_text(MATH_SOURCE, encoding="utf-8")
    (root / "src" / "types.ts").write_text(TYPES_SOURCE, encoding="utf-8")
    return root


@pytest.fixture
def scan_result():
    return ScanResult(root="/project", files=[make_source("src/math.ts", MATH_SOURCE)])


@pytest.fixture
def jest_setup(tmp_path):
    out = tmp_path / "out"
    out.mkdir()
    return TestSetup(framework="jest", renderer="none", output_dir=str(out))
