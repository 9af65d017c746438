"""
Static verification of generated test files.

A candidate is parsed in memory with tree-sitter; nothing is written to disk
and no module specifier is ever resolved. Verification reports:

- syntax errors (``ERROR`` and missing nodes),
- calls to identifiers that are neither declared in the file, imported, nor
  part of the ambient environment,
- duplicate top-level block-scoped declarations.

When the candidate parses cleanly the import block is tidied: unused import
bindings are dropped, imports left empty are removed (side-effect imports
are kept) and the leading import block is sorted by module specifier.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

from ...adapters.parsing.typescript import (
    CLASS_DECLARATION_TYPES,
    FUNCTION_DECLARATION_TYPES,
    iter_nodes,
    node_text,
    parse_source,
    syntax_errors,
    unwrap_export,
)
from ...domain.models import VerificationResult

if TYPE_CHECKING:
    from tree_sitter import Node, Tree

logger = logging.getLogger(__name__)

# Diagnostic codes, numbered like the TypeScript compiler's
SYNTAX_ERROR = 1005
CANNOT_FIND_NAME = 2304
CANNOT_FIND_MODULE = 2307
CANNOT_REDECLARE = 2451

IGNORED_DIAGNOSTIC_CODES = frozenset({CANNOT_FIND_MODULE})

_TEST_CALL = re.compile(r"\bit\s*\(|\btest\s*\(")
_MSW = re.compile(r"msw\b|\bsetupServer\b")
_MOCKS = re.compile(r"jest\.|vi\.")

_REFERENCE_TYPES = frozenset(
    {"identifier", "type_identifier", "shorthand_property_identifier"}
)


@dataclass(frozen=True)
class AmbientEnvironment:
    """Names a generated test may use without declaring or importing them."""

    version: str
    test_globals: frozenset[str]
    runtime_globals: frozenset[str]

    @property
    def names(self) -> frozenset[str]:
        return self.test_globals | self.runtime_globals


DEFAULT_AMBIENT = AmbientEnvironment(
    version="2024.1",
    test_globals=frozenset(
        {
            "describe",
            "it",
            "test",
            "expect",
            "beforeEach",
            "afterEach",
            "beforeAll",
            "afterAll",
            "vi",
            "jest",
        }
    ),
    runtime_globals=frozenset(
        {
            # language
            "Array", "ArrayBuffer", "BigInt", "Boolean", "DataView", "Date", "Error",
            "EvalError", "Function", "Intl", "JSON", "Map", "Math", "Number", "Object",
            "Promise", "Proxy", "RangeError", "ReferenceError", "Reflect", "RegExp",
            "Set", "String", "Symbol", "SyntaxError", "TypeError", "URIError",
            "Uint8Array", "WeakMap", "WeakSet", "arguments", "decodeURI",
            "decodeURIComponent", "encodeURI", "encodeURIComponent", "eval",
            "globalThis", "isFinite", "isNaN", "parseFloat", "parseInt",
            # host
            "AbortController", "Blob", "Buffer", "CustomEvent", "Event", "FormData",
            "Headers", "ReadableStream", "Request", "Response", "TextDecoder",
            "TextEncoder", "URL", "URLSearchParams", "alert", "atob", "btoa",
            "cancelAnimationFrame", "clearInterval", "clearTimeout", "console",
            "document", "fetch", "localStorage", "navigator", "process",
            "queueMicrotask", "require", "requestAnimationFrame", "sessionStorage",
            "setImmediate", "setInterval", "setTimeout", "structuredClone", "window",
        }
    ),
)


@dataclass(frozen=True)
class Diagnostic:
    code: int
    line: int
    column: int
    message: str

    def format(self, base_name: str) -> str:
        return f"{base_name}:{self.line}:{self.column} {self.message}"


def count_tests(code: str) -> int:
    """Number of ``it(`` / ``test(`` calls in ``code``."""
    return len(_TEST_CALL.findall(code))


def detect_hints(code: str) -> list[str]:
    """Short labels describing the libraries a test relies on."""
    hints: list[str] = []
    if "@testing-library/react-native" in code:
        hints.append("RTL native")
    elif "@testing-library/react" in code:
        hints.append("RTL web")
    if _MSW.search(code):
        hints.append("MSW")
    if _MOCKS.search(code):
        hints.append("mocks")
    return hints


def verify_generated_test(
    source: str,
    file_path: str,
    environment: AmbientEnvironment = DEFAULT_AMBIENT,
    ignored_codes: frozenset[int] = IGNORED_DIAGNOSTIC_CODES,
) -> VerificationResult:
    """Verify and tidy a candidate test file.

    Args:
        source: Candidate test source.
        file_path: Destination path; picks the grammar and labels diagnostics.
        environment: Ambient names available to the test.
        ignored_codes: Diagnostic codes that are never reported.

    Returns:
        The (possibly tidied) code, formatted diagnostics and the test count.
    """
    base_name = PurePosixPath(file_path.replace("\\", "/")).name or "generated-test.ts"
    tree = parse_source(source, file_path)

    errors = syntax_errors(tree)
    if errors:
        diagnostics = [Diagnostic(SYNTAX_ERROR, line, col, msg) for line, col, msg in errors]
        code = source
    else:
        code = organize_imports(source, file_path)
        tree = parse_source(code, file_path)
        diagnostics = _undeclared_calls(tree, environment) + _redeclarations(tree)

    reported = [d.format(base_name) for d in diagnostics if d.code not in ignored_codes]
    if reported:
        logger.debug("Verification of %s found %d diagnostic(s)", base_name, len(reported))
    return VerificationResult(code=code, diagnostics=reported, test_count=count_tests(code))


def organize_imports(source: str, file_path: str) -> str:
    """Drop unused import bindings, then sort the leading import block."""
    pruned = _prune_unused_imports(source, file_path)
    return _sort_leading_imports(pruned, file_path)


def _apply_edits(data: bytes, edits: list[tuple[int, int, bytes]]) -> bytes:
    for start, end, replacement in sorted(edits, key=lambda e: e[0], reverse=True):
        data = data[:start] + replacement + data[end:]
    return data


def _import_statements(tree: Tree) -> list[Node]:
    return [n for n in tree.root_node.named_children if n.type == "import_statement"]


def _used_names(tree: Tree) -> set[str]:
    used: set[str] = set()
    stack = [tree.root_node]
    while stack:
        node = stack.pop()
        if node.type == "import_statement":
            continue
        if node.type in _REFERENCE_TYPES:
            used.add(node_text(node))
        stack.extend(node.children)
    return used


def _has_jsx(tree: Tree) -> bool:
    return any(
        n.type in ("jsx_element", "jsx_self_closing_element", "jsx_fragment")
        for n in iter_nodes(tree.root_node)
    )


def _module_specifier(stmt: Node) -> str:
    source = stmt.child_by_field_name("source")
    return node_text(source).strip("'\"`")


def _prune_unused_imports(source: str, file_path: str) -> str:
    tree = parse_source(source, file_path)
    used = _used_names(tree)
    if _has_jsx(tree):
        # Classic JSX runtime references React implicitly
        used.add("React")

    data = source.encode("utf-8")
    edits: list[tuple[int, int, bytes]] = []
    for stmt in _import_statements(tree):
        clause = next((c for c in stmt.named_children if c.type == "import_clause"), None)
        if clause is None:
            continue  # side-effect import or import-require

        default_name: str | None = None
        namespace: str | None = None
        specifiers: list[tuple[str, str]] = []
        for part in clause.named_children:
            if part.type == "identifier":
                default_name = node_text(part)
            elif part.type == "namespace_import":
                ident = next((c for c in part.named_children if c.type == "identifier"), None)
                namespace = node_text(ident) if ident is not None else None
            elif part.type == "named_imports":
                for spec in part.named_children:
                    if spec.type != "import_specifier":
                        continue
                    local = spec.child_by_field_name("alias") or spec.child_by_field_name("name")
                    specifiers.append((node_text(local), node_text(spec)))

        keep_default = default_name if default_name in used else None
        keep_namespace = namespace if namespace in used else None
        keep_specs = [text for local, text in specifiers if local in used]

        unchanged = (
            keep_default == default_name
            and keep_namespace == namespace
            and len(keep_specs) == len(specifiers)
        )
        if unchanged:
            continue

        end = stmt.end_byte
        if not (keep_default or keep_namespace or keep_specs):
            if data[end : end + 1] == b"\n":
                end += 1
            edits.append((stmt.start_byte, end, b""))
            continue

        bindings: list[str] = []
        if keep_default:
            bindings.append(keep_default)
        if keep_namespace:
            bindings.append(f"* as {keep_namespace}")
        if keep_specs:
            bindings.append("{ " + ", ".join(keep_specs) + " }")
        keyword = "import type" if any(c.type == "type" for c in stmt.children) else "import"
        quoted = node_text(stmt.child_by_field_name("source"))
        rebuilt = f"{keyword} {', '.join(bindings)} from {quoted};"
        edits.append((stmt.start_byte, end, rebuilt.encode("utf-8")))

    if not edits:
        return source
    return _apply_edits(data, edits).decode("utf-8")


def _sort_leading_imports(source: str, file_path: str) -> str:
    tree = parse_source(source, file_path)
    leading: list[Node] = []
    for stmt in tree.root_node.named_children:
        if stmt.type == "import_statement":
            leading.append(stmt)
        elif stmt.type == "comment" and not leading:
            continue
        else:
            break
    if len(leading) < 2:
        return source

    data = source.encode("utf-8")
    for prev, nxt in zip(leading, leading[1:]):
        if data[prev.end_byte : nxt.start_byte].strip():
            # Comments between imports would be lost by reordering
            return source

    ordered = sorted(leading, key=lambda s: _module_specifier(s).lower())
    if ordered == leading:
        return source
    block = "\n".join(node_text(s) for s in ordered).encode("utf-8")
    return _apply_edits(data, [(leading[0].start_byte, leading[-1].end_byte, block)]).decode(
        "utf-8"
    )


def _pattern_names(node: Node) -> set[str]:
    if node.type in ("identifier", "shorthand_property_identifier_pattern"):
        return {node_text(node)}
    names: set[str] = set()
    for child in iter_nodes(node):
        if child.type in ("identifier", "shorthand_property_identifier_pattern"):
            names.add(node_text(child))
    return names


def _declared_names(tree: Tree) -> set[str]:
    declared: set[str] = set()
    for node in iter_nodes(tree.root_node):
        kind = node.type
        if kind == "variable_declarator":
            name = node.child_by_field_name("name")
            if name is not None:
                declared |= _pattern_names(name)
        elif kind in FUNCTION_DECLARATION_TYPES or kind in CLASS_DECLARATION_TYPES or kind in (
            "function_expression",
            "function",
            "class",
            "enum_declaration",
        ):
            name = node.child_by_field_name("name")
            if name is not None:
                declared.add(node_text(name))
        elif kind in ("required_parameter", "optional_parameter"):
            pattern = node.child_by_field_name("pattern")
            if pattern is not None:
                declared |= _pattern_names(pattern)
        elif kind == "formal_parameters":
            # Plain JS parameters are bare identifiers or patterns
            for child in node.named_children:
                if child.type in ("identifier", "object_pattern", "array_pattern", "rest_pattern"):
                    declared |= _pattern_names(child)
        elif kind == "arrow_function":
            param = node.child_by_field_name("parameter")
            if param is not None:
                declared.add(node_text(param))
        elif kind == "catch_clause":
            param = node.child_by_field_name("parameter")
            if param is not None:
                declared |= _pattern_names(param)
        elif kind in ("for_in_statement",):
            left = node.child_by_field_name("left")
            if left is not None:
                declared |= _pattern_names(left)
        elif kind == "import_clause":
            for child in iter_nodes(node):
                if child.type == "identifier":
                    declared.add(node_text(child))
        elif kind == "import_require_clause":
            ident = next((c for c in node.named_children if c.type == "identifier"), None)
            if ident is not None:
                declared.add(node_text(ident))
    return declared


def _undeclared_calls(tree: Tree, environment: AmbientEnvironment) -> list[Diagnostic]:
    known = _declared_names(tree) | environment.names
    diagnostics: list[Diagnostic] = []
    reported: set[str] = set()
    for node in iter_nodes(tree.root_node):
        if node.type != "call_expression":
            continue
        callee = node.child_by_field_name("function")
        if callee is None or callee.type != "identifier":
            continue
        name = node_text(callee)
        if name in known or name in reported:
            continue
        reported.add(name)
        row, col = callee.start_point[0], callee.start_point[1]
        diagnostics.append(
            Diagnostic(CANNOT_FIND_NAME, row + 1, col + 1, f"Cannot find name '{name}'.")
        )
    return diagnostics


def _redeclarations(tree: Tree) -> list[Diagnostic]:
    occurrences: list[tuple[str, bool, Node]] = []
    for stmt in tree.root_node.named_children:
        decl = unwrap_export(stmt)
        if decl.type == "lexical_declaration":
            for declarator in decl.named_children:
                if declarator.type != "variable_declarator":
                    continue
                name = declarator.child_by_field_name("name")
                if name is not None:
                    for ident in _pattern_names(name):
                        occurrences.append((ident, True, name))
        elif decl.type in CLASS_DECLARATION_TYPES:
            name = decl.child_by_field_name("name")
            if name is not None:
                occurrences.append((node_text(name), True, name))
        elif decl.type in FUNCTION_DECLARATION_TYPES or decl.type == "variable_declaration":
            targets = (
                [decl.child_by_field_name("name")]
                if decl.type in FUNCTION_DECLARATION_TYPES
                else [d.child_by_field_name("name") for d in decl.named_children]
            )
            for name in targets:
                if name is not None:
                    for ident in _pattern_names(name):
                        occurrences.append((ident, False, name))

    counts = Counter(name for name, _, _ in occurrences)
    block_scoped = {name for name, scoped, _ in occurrences if scoped}
    diagnostics: list[Diagnostic] = []
    for name, _, node in occurrences:
        if counts[name] > 1 and name in block_scoped:
            row, col = node.start_point[0], node.start_point[1]
            diagnostics.append(
                Diagnostic(
                    CANNOT_REDECLARE,
                    row + 1,
                    col + 1,
                    f"Cannot redeclare block-scoped variable '{name}'.",
                )
            )
    return diagnostics
