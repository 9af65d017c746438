"""Tests for the planning agent, its tools and the review pass."""

import json

import pytest
from conftest import GOOD_TEST, MATH_SOURCE, FakeLLM, final_turn, make_source, tool_turn

from testsmith.application.generation.agent import (
    PLANNER_SYSTEM_PROMPT,
    AgentProtocolError,
    AgentStepLimitError,
    PlanningAgent,
)
from testsmith.application.generation.agent_tools import (
    AgentToolbox,
    ToolName,
    ToolSession,
    tool_detail,
)
from testsmith.application.generation.reviewer import review_generated_test
from testsmith.domain.models import ScanResult
from testsmith.ports.llm_error import LLMError

BUTTON_SOURCE = """import React, { useEffect } from 'react';

export function Button({ label, onPress }: Props) {
  useEffect(() => {
    const id = setTimeout(() => fetch('/ping'), 10);
    return () => clearTimeout(id);
  }, []);
  return (<button onClick={onPress}>{label}</button>);
}

export const useToggle = () => false;
"""

SCREEN_SOURCE = """import { Button } from './Button';

export const Screen = () => (
  <div>
    <Button label="Save" onPress={save} />
    <Button label="Cancel" disabled={true} />
  </div>
);
"""


@pytest.fixture
def toolbox(js_project):
    scan = ScanResult(
        root=str(js_project),
        files=[
            make_source("src/math.ts", MATH_SOURCE, root=str(js_project)),
            make_source("src/Button.tsx", BUTTON_SOURCE, root=str(js_project)),
            make_source("src/Screen.tsx", SCREEN_SOURCE, root=str(js_project)),
        ],
    )
    return AgentToolbox(str(js_project), scan)


class TestAgentToolbox:
    """Individual tool behavior."""

    def test_project_info(self, toolbox):
        result = toolbox.dispatch(ToolName.PROJECT_INFO, {})

        assert result["ok"]
        assert result["data"]["name"] == "demo"
        assert "jest" in result["data"]["deps"]

    def test_project_info_without_package_json(self, tmp_path):
        toolbox = AgentToolbox(str(tmp_path), ScanResult(root=str(tmp_path)))

        assert toolbox.dispatch(ToolName.PROJECT_INFO, {}) == {
            "ok": False,
            "error": "package.json not found",
        }

    def test_read_file_respects_limits(self, toolbox):
        result = toolbox.dispatch(ToolName.READ_FILE, {"relPath": "src/math.ts", "maxChars": 10})

        assert result == {"ok": True, "data": MATH_SOURCE[:10]}

    def test_read_file_not_found(self, toolbox):
        assert toolbox.dispatch(ToolName.READ_FILE, {"relPath": "src/nope.ts"}) == {
            "ok": False,
            "error": "not_found",
        }

    def test_list_exports(self, toolbox):
        result = toolbox.dispatch(ToolName.LIST_EXPORTS, {"relPath": "src/math.ts"})

        names = [e["name"] for e in result["data"]]
        assert names == ["add", "subtract", "multiply"]

    def test_find_usages(self, toolbox):
        result = toolbox.dispatch(ToolName.FIND_USAGES, {"identifier": "Button"})

        rels = {m["rel"]: m["lines"] for m in result["data"]}
        assert rels["src/Button.tsx"] == [3]
        assert rels["src/Screen.tsx"] == [1, 5, 6]

    def test_find_usages_requires_identifier(self, toolbox):
        assert toolbox.dispatch(ToolName.FIND_USAGES, {})["error"] == "missing_identifier"

    def test_ast_digest(self, toolbox):
        result = toolbox.dispatch(ToolName.GET_AST_DIGEST, {"relPath": "src/Button.tsx"})

        data = result["data"]
        exports = {e["name"]: e for e in data["exports"]}
        assert exports["Button"]["isComponent"]
        assert exports["useToggle"]["isHook"]
        assert data["hasFetch"]
        assert data["hasTimers"]
        assert data["usesEffect"]
        assert not data["usesNavigation"]

    def test_grep_rejects_unknown_flags(self, toolbox):
        result = toolbox.dispatch(ToolName.GREP_TEXT, {"pattern": "add", "flags": "rn"})

        assert result == {"ok": False, "error": "invalid_flags"}

    def test_grep_with_valid_flags(self, toolbox):
        result = toolbox.dispatch(ToolName.GREP_TEXT, {"pattern": "^export FUNCTION", "flags": "im"})

        assert result["ok"]
        assert [(h["rel"], h["line"]) for h in result["data"]] == [
            ("src/math.ts", 1),
            ("src/math.ts", 7),
            ("src/Button.tsx", 3),
        ]

    def test_grep_invalid_pattern(self, toolbox):
        result = toolbox.dispatch(ToolName.GREP_TEXT, {"pattern": "(unclosed"})

        assert not result["ok"]
        assert result["error"].startswith("invalid_pattern:")

    def test_grep_limit(self, toolbox):
        result = toolbox.dispatch(ToolName.GREP_TEXT, {"pattern": "const", "limit": 2})

        assert len(result["data"]) == 2

    def test_infer_props_from_usage(self, toolbox):
        result = toolbox.dispatch(ToolName.INFER_PROPS_FROM_USAGE, {"component": "Button"})

        props = {p["name"]: p["count"] for p in result["data"]}
        assert props == {"label": 2, "onPress": 1, "disabled": 1}

    def test_tool_detail(self):
        assert tool_detail({"relPath": "src/a.ts"}) == "src/a.ts"
        assert tool_detail({"pattern": "foo"}) == "foo"
        assert tool_detail({}) == ""


class TestToolSession:
    def test_step_budget_enforced(self, toolbox):
        session = ToolSession(toolbox, max_steps=1)

        session.call("project_info", {})

        with pytest.raises(AgentStepLimitError) as exc_info:
            session.call("read_file", {"relPath": "src/math.ts"})
        assert exc_info.value.limit == 1
        assert session.steps == 1

    def test_unknown_tool(self, toolbox):
        session = ToolSession(toolbox, max_steps=5)

        with pytest.raises(AgentProtocolError, match="delete_file"):
            session.call("delete_file", {})
        assert session.steps == 0


class TestPlanningAgent:
    """End-to-end agent runs against a scripted backend."""

    @pytest.mark.asyncio
    async def test_plan_after_tool_calls(self, toolbox):
        plan = {
            "final": {
                "plan": [
                    {
                        "title": "adds numbers",
                        "kind": "unit",
                        "arrange": "",
                        "act": "add(1, 2)",
                        "assert": "returns 3",
                        "mocks": "none",
                    }
                ]
            }
        }
        llm = FakeLLM(
            turns=[
                tool_turn("read_file", json.dumps({"relPath": "src/math.ts"})),
                final_turn(f"```json\n{json.dumps(plan)}\n```"),
            ]
        )
        agent = PlanningAgent(llm, toolbox.project_root, toolbox.scan)

        result = await agent.run("Plan unit tests for src/math.ts")

        assert result.ok
        assert result.steps == 1
        assert result.plan[0].title == "adds numbers"
        assert result.plan[0].assert_ == "returns 3"
        assert result.plan[0].mocks == ["none"]

        first = llm.chat_messages[0]
        assert first[0] == {"role": "system", "content": PLANNER_SYSTEM_PROMPT}
        assert first[1]["content"] == "User task:\nPlan unit tests for src/math.ts"
        second = llm.chat_messages[1]
        assert second[2]["role"] == "assistant"
        assert second[3]["role"] == "tool"
        assert second[3]["tool_call_id"] == "call_1"
        assert json.loads(second[3]["content"]) == {"ok": True, "data": MATH_SOURCE}
        assert [t.name for t in llm.chat_tools[0]] == [t.value for t in ToolName]

    @pytest.mark.asyncio
    async def test_max_steps_exceeded(self, toolbox):
        """The third tool call over a budget of two aborts the run."""
        seen: list[int] = []
        llm = FakeLLM(turns=[tool_turn("project_info") for _ in range(3)])
        agent = PlanningAgent(
            llm,
            toolbox.project_root,
            toolbox.scan,
            max_steps=2,
            on_tool=lambda step, name, args: seen.append(step),
        )

        with pytest.raises(AgentStepLimitError) as exc_info:
            await agent.run("task")

        message = str(exc_info.value)
        assert "limit" in message
        assert "project_info" in message
        assert seen == [1, 2]

    @pytest.mark.asyncio
    async def test_tool_failure_is_returned_to_model(self, toolbox):
        """A failed tool is fed back; the model can still answer with an empty plan."""
        llm = FakeLLM(
            turns=[
                tool_turn("read_file", json.dumps({"relPath": "src/missing.ts"})),
                final_turn('{"final": {"plan": [], "reason": "Source chunk missing"}}'),
            ]
        )
        agent = PlanningAgent(llm, toolbox.project_root, toolbox.scan)

        result = await agent.run("task")

        assert result.ok
        assert result.plan == []
        assert result.reason == "Source chunk missing"
        tool_message = llm.chat_messages[1][-1]
        assert json.loads(tool_message["content"]) == {"ok": False, "error": "not_found"}

    @pytest.mark.asyncio
    async def test_unknown_tool_aborts(self, toolbox):
        llm = FakeLLM(turns=[tool_turn("write_file")])
        agent = PlanningAgent(llm, toolbox.project_root, toolbox.scan)

        with pytest.raises(AgentProtocolError) as exc_info:
            await agent.run("task")
        assert exc_info.value.trace[-1]["tool"] == "write_file"

    @pytest.mark.asyncio
    async def test_unparseable_final_answer(self, toolbox):
        llm = FakeLLM(turns=[final_turn("I would test add and subtract.")])
        agent = PlanningAgent(llm, toolbox.project_root, toolbox.scan)

        with pytest.raises(AgentProtocolError, match="no parseable plan"):
            await agent.run("task")

    @pytest.mark.asyncio
    async def test_malformed_arguments_become_empty(self, toolbox):
        llm = FakeLLM(
            turns=[
                tool_turn("find_usages", "{not json"),
                final_turn('{"final": {"plan": []}}'),
            ]
        )
        agent = PlanningAgent(llm, toolbox.project_root, toolbox.scan)

        result = await agent.run("task")

        assert result.ok
        assert json.loads(llm.chat_messages[1][-1]["content"])["error"] == "missing_identifier"


class TestReview:
    """The optional review pass over an accepted test."""

    @pytest.mark.asyncio
    async def test_review_returns_revised_code(self, toolbox):
        revised = GOOD_TEST.replace("adds two numbers", "adds two positive numbers")
        llm = FakeLLM(turns=[final_turn(revised)])

        result = await review_generated_test(
            llm,
            toolbox.project_root,
            toolbox.scan,
            "src/math.ts",
            MATH_SOURCE,
            GOOD_TEST,
            "src/__tests__/math.test.ts",
        )

        assert result.ok
        assert result.changed
        assert "adds two positive numbers" in result.code

    @pytest.mark.asyncio
    async def test_review_without_code_block(self, toolbox):
        llm = FakeLLM(turns=[final_turn("Looks good to me.")])

        result = await review_generated_test(
            llm, toolbox.project_root, toolbox.scan, "src/math.ts", MATH_SOURCE, GOOD_TEST, "t.test.ts"
        )

        assert not result.ok
        assert result.reason == "no_code_block"

    @pytest.mark.asyncio
    async def test_review_backend_failure_is_not_fatal(self, toolbox):
        llm = FakeLLM(turns=[LLMError("overloaded", provider="openai", status_code=529)])

        result = await review_generated_test(
            llm, toolbox.project_root, toolbox.scan, "src/math.ts", MATH_SOURCE, GOOD_TEST, "t.test.ts"
        )

        assert not result.ok

    @pytest.mark.asyncio
    async def test_review_auth_failure_propagates(self, toolbox):
        llm = FakeLLM(turns=[LLMError("bad key", provider="openai", status_code=401)])

        with pytest.raises(LLMError):
            await review_generated_test(
                llm, toolbox.project_root, toolbox.scan, "src/math.ts", MATH_SOURCE, GOOD_TEST, "t.test.ts"
            )
