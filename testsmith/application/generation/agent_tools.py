"""
Read-only tools offered to the planning agent.

Every tool works on the in-memory scan (plus ``package.json`` for
``project_info``) and returns a JSON-serialisable payload: ``{"ok": True,
"data": ...}`` on success, ``{"ok": False, "error": "..."}`` on failure. A
failed tool never aborts the agent; the payload is handed back to the model.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Callable
from enum import Enum
from typing import Any

from ...adapters.io.test_setup import project_dependencies, read_package_json
from ...adapters.parsing.typescript import exported_names, parse_source
from ...domain.models import ScanResult, TestSmithError
from ...ports.llm_port import ToolSpec

logger = logging.getLogger(__name__)

READ_FILE_DEFAULT_CHARS = 4000
READ_FILE_MAX_CHARS = 8000
USAGE_LINES_PER_FILE = 5
USAGE_MAX_FILES = 30
GREP_DEFAULT_LIMIT = 40
GREP_MAX_LIMIT = 100
GREP_EXCERPT_CHARS = 200
MAX_INFERRED_PROPS = 20

_GREP_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}
_LINE_SPLIT = re.compile(r"\r?\n")
_JSX_ATTRIBUTE = re.compile(r"([A-Za-z_][A-Za-z0-9_]*)\s*=")
_HAS_FETCH = re.compile(r"fetch\(|axios\.")
_HAS_TIMERS = re.compile(r"\bsetTimeout\(|\bsetInterval\(")
_USES_EFFECT = re.compile(r"useEffect\(")
_USES_NAVIGATION = re.compile(r"useNavigation\(|@react-navigation/")
_COMPONENT_NAME = re.compile(r"^[A-Z]")
_HOOK_NAME = re.compile(r"^use[A-Z]")

ToolResult = dict[str, Any]


class ToolName(str, Enum):
    """The closed set of agent tools."""

    PROJECT_INFO = "project_info"
    READ_FILE = "read_file"
    LIST_EXPORTS = "list_exports"
    FIND_USAGES = "find_usages"
    GET_AST_DIGEST = "get_ast_digest"
    GREP_TEXT = "grep_text"
    INFER_PROPS_FROM_USAGE = "infer_props_from_usage"


class AgentError(TestSmithError):
    """Base exception for planning agent failures."""

    pass


class AgentStepLimitError(AgentError):
    """Raised when a tool call would exceed the step budget."""

    def __init__(self, limit: int, tool: str) -> None:
        super().__init__(f"Agent exceeded tool call limit of {limit} (while calling {tool})")
        self.limit = limit
        self.tool = tool


class AgentProtocolError(AgentError):
    """Raised when the backend breaks the tool protocol or returns no usable plan."""

    def __init__(self, message: str, trace: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.trace = trace or []


def _ok(data: Any) -> ToolResult:
    return {"ok": True, "data": data}


def _fail(error: str) -> ToolResult:
    return {"ok": False, "error": error}


def _int_arg(args: dict[str, Any], key: str, default: int) -> int:
    try:
        return int(args.get(key) or default)
    except (TypeError, ValueError):
        return default


class AgentToolbox:
    """Executes agent tools against one project scan."""

    def __init__(self, project_root: str, scan: ScanResult) -> None:
        self.project_root = project_root
        self.scan = scan
        self._handlers: dict[ToolName, Callable[[dict[str, Any]], ToolResult]] = {
            ToolName.PROJECT_INFO: self.project_info,
            ToolName.READ_FILE: self.read_file,
            ToolName.LIST_EXPORTS: self.list_exports,
            ToolName.FIND_USAGES: self.find_usages,
            ToolName.GET_AST_DIGEST: self.get_ast_digest,
            ToolName.GREP_TEXT: self.grep_text,
            ToolName.INFER_PROPS_FROM_USAGE: self.infer_props_from_usage,
        }

    def dispatch(self, tool: ToolName, args: dict[str, Any]) -> ToolResult:
        """Run ``tool``; unexpected exceptions become failure payloads."""
        try:
            return self._handlers[tool](args)
        except Exception as e:
            logger.debug("Tool %s failed: %s", tool.value, e)
            return _fail(str(e))

    def project_info(self, args: dict[str, Any]) -> ToolResult:
        package_json = read_package_json(self.project_root)
        if not package_json:
            return _fail("package.json not found")
        return _ok({"name": package_json.get("name"), "deps": project_dependencies(package_json)})

    def read_file(self, args: dict[str, Any]) -> ToolResult:
        entry = self.scan.find(str(args.get("relPath") or ""))
        if entry is None:
            return _fail("not_found")
        limit = min(READ_FILE_MAX_CHARS, _int_arg(args, "maxChars", READ_FILE_DEFAULT_CHARS))
        return _ok(entry.text[: max(0, limit)])

    def list_exports(self, args: dict[str, Any]) -> ToolResult:
        entry = self.scan.find(str(args.get("relPath") or ""))
        if entry is None:
            return _fail("not_found")
        tree = parse_source(entry.text, entry.rel)
        return _ok([{"name": name, "kind": kind} for name, kind in exported_names(tree)])

    def find_usages(self, args: dict[str, Any]) -> ToolResult:
        identifier = str(args.get("identifier") or "").strip()
        if not identifier:
            return _fail("missing_identifier")
        pattern = re.compile(rf"\b{re.escape(identifier)}\b")
        matches: list[dict[str, Any]] = []
        for entry in self.scan.files:
            lines = [
                i
                for i, line in enumerate(_LINE_SPLIT.split(entry.text), start=1)
                if pattern.search(line)
            ]
            if lines:
                matches.append({"rel": entry.rel, "lines": lines[:USAGE_LINES_PER_FILE]})
            if len(matches) >= USAGE_MAX_FILES:
                break
        return _ok(matches)

    def get_ast_digest(self, args: dict[str, Any]) -> ToolResult:
        entry = self.scan.find(str(args.get("relPath") or ""))
        if entry is None:
            return _fail("not_found")
        tree = parse_source(entry.text, entry.rel)
        exports = [
            {
                "name": name,
                "kind": kind,
                "isComponent": bool(_COMPONENT_NAME.match(name)),
                "isHook": bool(_HOOK_NAME.match(name)),
            }
            for name, kind in exported_names(tree)
        ]
        text = entry.text
        return _ok(
            {
                "exports": exports,
                "hasFetch": bool(_HAS_FETCH.search(text)),
                "hasTimers": bool(_HAS_TIMERS.search(text)),
                "usesEffect": bool(_USES_EFFECT.search(text)),
                "usesNavigation": bool(_USES_NAVIGATION.search(text)),
            }
        )

    def grep_text(self, args: dict[str, Any]) -> ToolResult:
        source = str(args.get("pattern") or "").strip()
        if not source:
            return _fail("missing_pattern")
        flag_letters = str(args.get("flags") or "i")
        if any(letter not in _GREP_FLAGS for letter in flag_letters):
            return _fail("invalid_flags")
        flags = 0
        for letter in flag_letters:
            flags |= _GREP_FLAGS[letter]
        try:
            pattern = re.compile(source, flags)
        except re.error as e:
            return _fail(f"invalid_pattern: {e}")

        limit = min(GREP_MAX_LIMIT, max(1, _int_arg(args, "limit", GREP_DEFAULT_LIMIT)))
        hits: list[dict[str, Any]] = []
        for entry in self.scan.files:
            for i, line in enumerate(_LINE_SPLIT.split(entry.text), start=1):
                if pattern.search(line):
                    hits.append(
                        {"rel": entry.rel, "line": i, "excerpt": line.strip()[:GREP_EXCERPT_CHARS]}
                    )
                    if len(hits) >= limit:
                        return _ok(hits)
        return _ok(hits)

    def infer_props_from_usage(self, args: dict[str, Any]) -> ToolResult:
        component = str(args.get("component") or "").strip()
        if not component:
            return _fail("missing_component")
        name = re.escape(component)
        opening = re.compile(rf"<{name}([^>/]*)/?>(?:</{name}>)?")
        counts: Counter[str] = Counter()
        for entry in self.scan.files:
            for match in opening.finditer(entry.text):
                counts.update(_JSX_ATTRIBUTE.findall(match.group(1) or ""))
        return _ok(
            [{"name": prop, "count": count} for prop, count in counts.most_common(MAX_INFERRED_PROPS)]
        )


_REL_PATH_SCHEMA = {
    "type": "object",
    "properties": {"relPath": {"type": "string", "description": "Project-relative path"}},
    "required": ["relPath"],
}

TOOL_SPECS: list[ToolSpec] = [
    ToolSpec(
        name=ToolName.PROJECT_INFO.value,
        description="Package name and declared dependencies of the project.",
    ),
    ToolSpec(
        name=ToolName.READ_FILE.value,
        description="Read the beginning of a scanned project file.",
        parameters={
            "type": "object",
            "properties": {
                "relPath": {"type": "string", "description": "Project-relative path"},
                "maxChars": {"type": "number", "description": "Characters to return (max 8000)"},
            },
            "required": ["relPath"],
        },
    ),
    ToolSpec(
        name=ToolName.LIST_EXPORTS.value,
        description="List the exported declarations of a file with their kind.",
        parameters=_REL_PATH_SCHEMA,
    ),
    ToolSpec(
        name=ToolName.FIND_USAGES.value,
        description="Find files and line numbers where an identifier is used.",
        parameters={
            "type": "object",
            "properties": {"identifier": {"type": "string"}},
            "required": ["identifier"],
        },
    ),
    ToolSpec(
        name=ToolName.GET_AST_DIGEST.value,
        description="Summarize a file: exports plus fetch, timer, effect and navigation usage.",
        parameters=_REL_PATH_SCHEMA,
    ),
    ToolSpec(
        name=ToolName.GREP_TEXT.value,
        description="Search all scanned files line by line with a regular expression.",
        parameters={
            "type": "object",
            "properties": {
                "pattern": {"type": "string"},
                "flags": {"type": "string", "description": "Any of i, m, s (default i)"},
                "limit": {"type": "number", "description": "Maximum hits (max 100)"},
            },
            "required": ["pattern"],
        },
    ),
    ToolSpec(
        name=ToolName.INFER_PROPS_FROM_USAGE.value,
        description="Infer the props of a component from its JSX usages across the project.",
        parameters={
            "type": "object",
            "properties": {"component": {"type": "string"}},
            "required": ["component"],
        },
    ),
]


def tool_detail(args: dict[str, Any]) -> str:
    """Short human-readable argument summary for progress display."""
    for key in ("relPath", "identifier", "component", "pattern"):
        value = args.get(key)
        if value:
            return str(value)
    return ""


class ToolSession:
    """Dispatches tool calls for one agent run and enforces its step budget."""

    def __init__(
        self,
        toolbox: AgentToolbox,
        max_steps: int,
        on_tool: Callable[[int, str, dict[str, Any]], None] | None = None,
    ) -> None:
        self.toolbox = toolbox
        self.max_steps = max_steps
        self.on_tool = on_tool
        self.steps = 0

    def call(self, name: str, args: dict[str, Any]) -> ToolResult:
        """Invoke the named tool.

        Raises:
            AgentProtocolError: If ``name`` is not a known tool.
            AgentStepLimitError: If this call would exceed the step budget.
        """
        try:
            tool = ToolName(name)
        except ValueError:
            raise AgentProtocolError(
                f"Unknown tool requested: {name}",
                trace=[{"step": self.steps + 1, "tool": name, "args": args}],
            ) from None
        if self.steps >= self.max_steps:
            raise AgentStepLimitError(self.max_steps, name)
        self.steps += 1
        if self.on_tool is not None:
            self.on_tool(self.steps, name, args)
        return self.toolbox.dispatch(tool, args)
