"""
Source chunker.

Splits a source unit that does not fit the token budget into pieces bounded
by top-level declarations, falling back to fixed-size character slices when
the unit has no named declarations.
"""

from __future__ import annotations

import logging
import math
import re

from ...adapters.parsing.typescript import (
    FUNCTION_DECLARATION_TYPES,
    FUNCTION_VALUE_TYPES,
    VARIABLE_STATEMENT_TYPES,
    node_text,
    parse_source,
    unwrap_export,
)
from ...domain.models import Chunk, ChunkKind

logger = logging.getLogger(__name__)

MAX_SLICES = 12
CHARS_PER_TOKEN = 4

_HOOK_NAME = re.compile(r"^use[A-Z]")
_COMPONENT_NAME = re.compile(r"^[A-Z]")
_RETURNS_MARKUP = re.compile(r"return\s*\(|<\w")


def estimate_tokens(text: str) -> int:
    """Cheap, deterministic token estimate (one token per four characters)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def infer_kind_from_name(name: str) -> ChunkKind:
    if _HOOK_NAME.match(name):
        return ChunkKind.HOOK
    if _COMPONENT_NAME.match(name):
        return ChunkKind.COMPONENT
    return ChunkKind.FUNCTION


def looks_like_component(text: str, name: str) -> bool:
    return bool(_RETURNS_MARKUP.search(text)) and bool(_COMPONENT_NAME.match(name))


def chunk_source(rel_path: str, code: str, max_tokens: int) -> list[Chunk]:
    """Split ``code`` into chunks of at most ``max_tokens`` estimated tokens.

    Args:
        rel_path: Project-relative path; prefixes every chunk id.
        code: Full source text.
        max_tokens: Budget per chunk.

    Returns:
        Chunks in source order. Chunks still over budget are dropped, so the
        result may be empty.
    """
    tokens = estimate_tokens(code)
    if tokens <= max_tokens:
        return [
            Chunk(id=f"{rel_path}#module", code=code, kind=ChunkKind.MODULE, approx_tokens=tokens)
        ]

    chunks = _declaration_chunks(rel_path, code)
    if not chunks:
        chunks = _slice_chunks(rel_path, code, max_tokens)

    kept = [c for c in chunks if c.approx_tokens <= max_tokens]
    if len(kept) < len(chunks):
        logger.debug(
            "Dropped %d over-budget chunk(s) from %s", len(chunks) - len(kept), rel_path
        )
    return kept


def _declaration_chunks(rel_path: str, code: str) -> list[Chunk]:
    tree = parse_source(code, rel_path)
    chunks: list[Chunk] = []
    seen: set[str] = set()

    def add(name: str, text: str) -> None:
        chunk_id = f"{rel_path}#{name}"
        if chunk_id in seen:
            return
        seen.add(chunk_id)
        chunks.append(
            Chunk(
                id=chunk_id,
                code=text,
                kind=infer_kind_from_name(name),
                approx_tokens=estimate_tokens(text),
            )
        )

    for stmt in tree.root_node.named_children:
        decl = unwrap_export(stmt)
        if decl.type in FUNCTION_DECLARATION_TYPES:
            name = node_text(decl.child_by_field_name("name"))
            if name:
                add(name, node_text(stmt))
        elif decl.type in VARIABLE_STATEMENT_TYPES:
            text = node_text(stmt)
            for declarator in decl.named_children:
                if declarator.type != "variable_declarator":
                    continue
                name_node = declarator.child_by_field_name("name")
                init = declarator.child_by_field_name("value")
                if name_node is None or init is None or name_node.type != "identifier":
                    continue
                name = node_text(name_node)
                if init.type in FUNCTION_VALUE_TYPES or looks_like_component(
                    node_text(init), name
                ):
                    add(name, text)
    return chunks


def _slice_chunks(rel_path: str, code: str, max_tokens: int) -> list[Chunk]:
    approx_size = max(512, max_tokens - 512) * CHARS_PER_TOKEN
    chunks: list[Chunk] = []
    for offset in range(0, len(code), approx_size):
        piece = code[offset : offset + approx_size]
        chunks.append(
            Chunk(
                id=f"{rel_path}#slice{offset}",
                code=piece,
                kind=ChunkKind.MODULE,
                approx_tokens=estimate_tokens(piece),
            )
        )
        if len(chunks) >= MAX_SLICES:
            break
    return chunks
