"""
TypeScript / JavaScript syntax access built on tree-sitter.

Grammars come from ``tree_sitter_language_pack``. Parsers are created lazily
and cached per grammar name. Every helper here is read-only: nodes are
inspected, never edited; callers that rewrite text work on byte offsets.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from functools import lru_cache
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tree_sitter import Node, Parser, Tree

logger = logging.getLogger(__name__)

FUNCTION_VALUE_TYPES = frozenset(
    {"arrow_function", "function_expression", "function", "generator_function"}
)
FUNCTION_DECLARATION_TYPES = frozenset(
    {"function_declaration", "generator_function_declaration"}
)
VARIABLE_STATEMENT_TYPES = frozenset({"lexical_declaration", "variable_declaration"})
CLASS_DECLARATION_TYPES = frozenset({"class_declaration", "abstract_class_declaration"})
TYPE_DECLARATION_TYPES = frozenset(
    {"interface_declaration", "type_alias_declaration", "enum_declaration"}
)


def grammar_for_path(path: str) -> str:
    """Pick the grammar for a file path.

    Only ``.ts``/``.mts``/``.cts`` use the plain TypeScript grammar, where
    ``<T>x`` is a cast. Everything else, ``.js`` included, parses as TSX so
    JSX in plain JavaScript files is understood.
    """
    suffix = PurePosixPath(path.replace("\\", "/")).suffix.lower()
    if suffix in (".ts", ".mts", ".cts"):
        return "typescript"
    return "tsx"


@lru_cache(maxsize=None)
def get_ts_parser(grammar: str) -> Parser:
    """Return a cached parser for ``typescript`` or ``tsx``."""
    from tree_sitter_language_pack import get_parser

    logger.debug("Loading tree-sitter grammar %s", grammar)
    return get_parser(grammar)


def parse_source(code: str, path: str = "index.tsx") -> Tree:
    """Parse ``code`` in memory with the grammar matching ``path``."""
    parser = get_ts_parser(grammar_for_path(path))
    return parser.parse(code.encode("utf-8"))


def node_text(node: Node | None) -> str:
    if node is None or node.text is None:
        return ""
    return node.text.decode("utf-8", errors="replace")


def iter_nodes(node: Node) -> Iterator[Node]:
    """Depth-first, pre-order walk over ``node`` and all its descendants."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def unwrap_export(stmt: Node) -> Node:
    """Return the declaration wrapped by ``export`` / ``export default``, or ``stmt`` itself."""
    if stmt.type != "export_statement":
        return stmt
    declaration = stmt.child_by_field_name("declaration")
    if declaration is not None:
        return declaration
    value = stmt.child_by_field_name("value")
    if value is not None:
        return value
    return stmt


@dataclass(frozen=True)
class DeclaredBinding:
    """A top-level binding found in a module."""

    name: str
    kind: str
    exported: bool
    statement: Node
    value: Node | None = None


def top_level_bindings(tree: Tree) -> list[DeclaredBinding]:
    """List named top-level declarations (functions, variables, classes, types)."""
    bindings: list[DeclaredBinding] = []
    for stmt in tree.root_node.named_children:
        exported = stmt.type == "export_statement"
        decl = unwrap_export(stmt)
        if decl.type in FUNCTION_DECLARATION_TYPES or decl.type in CLASS_DECLARATION_TYPES:
            name = node_text(decl.child_by_field_name("name"))
            if name:
                kind = "function" if decl.type in FUNCTION_DECLARATION_TYPES else "class"
                bindings.append(DeclaredBinding(name, kind, exported, stmt, decl))
        elif decl.type in TYPE_DECLARATION_TYPES:
            name = node_text(decl.child_by_field_name("name"))
            if name:
                kind = decl.type.replace("_declaration", "").replace("_alias", "")
                bindings.append(DeclaredBinding(name, kind, exported, stmt, decl))
        elif decl.type in VARIABLE_STATEMENT_TYPES:
            for declarator in decl.named_children:
                if declarator.type != "variable_declarator":
                    continue
                name_node = declarator.child_by_field_name("name")
                if name_node is None or name_node.type != "identifier":
                    continue
                bindings.append(
                    DeclaredBinding(
                        node_text(name_node),
                        "variable",
                        exported,
                        stmt,
                        declarator.child_by_field_name("value"),
                    )
                )
    return bindings


def exported_names(tree: Tree) -> list[tuple[str, str]]:
    """Return ``(name, kind)`` for every export of the module, in source order."""
    exports: list[tuple[str, str]] = []
    seen: set[str] = set()

    def add(name: str, kind: str) -> None:
        if name and name not in seen:
            seen.add(name)
            exports.append((name, kind))

    for binding in top_level_bindings(tree):
        if binding.exported:
            kind = binding.kind
            if kind == "variable" and binding.value is not None:
                if binding.value.type in FUNCTION_VALUE_TYPES:
                    kind = "function"
            add(binding.name, kind)

    for stmt in tree.root_node.named_children:
        if stmt.type != "export_statement":
            continue
        is_default = any(child.type == "default" for child in stmt.children)
        if is_default and stmt.child_by_field_name("declaration") is None:
            add("default", "expression")
            continue
        for clause in stmt.named_children:
            if clause.type != "export_clause":
                continue
            for spec in clause.named_children:
                if spec.type != "export_specifier":
                    continue
                alias = spec.child_by_field_name("alias")
                name = spec.child_by_field_name("name")
                add(node_text(alias or name), "reexport")
    return exports


def syntax_errors(tree: Tree) -> list[tuple[int, int, str]]:
    """Return ``(line, column, message)`` triples for parse errors, 1-based."""
    errors: list[tuple[int, int, str]] = []
    if not tree.root_node.has_error:
        return errors
    for node in iter_nodes(tree.root_node):
        if node.type == "ERROR":
            row, col = node.start_point[0], node.start_point[1]
            snippet = node_text(node).strip().splitlines()
            near = snippet[0][:40] if snippet else ""
            errors.append((row + 1, col + 1, f"Syntax error near '{near}'."))
        elif node.is_missing:
            row, col = node.start_point[0], node.start_point[1]
            errors.append((row + 1, col + 1, f"'{node.type}' expected."))
    return errors
