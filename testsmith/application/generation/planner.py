"""
Budget planner.

Turns a project scan into an immutable ``WorkPlan``: derives the usable
token budget from the backend context window, skips files that cannot or
need not be tested, and chunks the rest under the per-chunk budget.
"""

from __future__ import annotations

import hashlib
import logging
import math
import re

from ...config.models import BudgetConfig
from ...domain.models import ContextInfo, ScanResult, TestSetup, WorkItem, WorkPlan
from .chunker import chunk_source, estimate_tokens

logger = logging.getLogger(__name__)

SKIP_TYPES_ONLY = "Types-only file"
SKIP_TOO_LARGE = "Too large to chunk under budget"
SKIP_TOO_SMALL = "Below minimum size"

_TYPE_DECLARATION_LINE = re.compile(r"^(export\s+type|type\s+|interface\s+)", re.MULTILINE)
_RUNTIME_CODE = re.compile(r"\bfunction\b|=>|return\s*\(")


def usable_budget(context_info: ContextInfo, budget: BudgetConfig | None = None) -> int:
    """Tokens usable per prompt for a backend with the given context window."""
    budget = budget or BudgetConfig()
    return max(budget.min_budget, math.floor(context_info.context_size * budget.context_fraction))


def is_types_only(text: str) -> bool:
    """A unit declaring types but containing no function, arrow or ``return (``."""
    return bool(_TYPE_DECLARATION_LINE.search(text)) and not _RUNTIME_CODE.search(text)


def plan_work(
    scan: ScanResult,
    setup: TestSetup,
    context_info: ContextInfo,
    budget: BudgetConfig | None = None,
) -> WorkPlan:
    """Build the work plan for ``scan``.

    Args:
        scan: Candidate source files.
        setup: Detected framework and renderer, copied into the plan.
        context_info: Backend context window.
        budget: Budget tuning; defaults are used when omitted.

    Returns:
        A plan with one item per scanned file, in scan order.
    """
    budget = budget or BudgetConfig()
    usable = usable_budget(context_info, budget)
    chunk_budget = usable - budget.prompt_reserve

    items: list[WorkItem] = []
    for source in scan.files:
        tokens = estimate_tokens(source.text)
        if tokens < budget.min_file_tokens:
            items.append(
                WorkItem(rel=source.rel, original_tokens=tokens, skip_reason=SKIP_TOO_SMALL)
            )
            continue

        if is_types_only(source.text):
            items.append(
                WorkItem(rel=source.rel, original_tokens=tokens, skip_reason=SKIP_TYPES_ONLY)
            )
            continue

        chunks = chunk_source(source.rel, source.text, chunk_budget)
        if not chunks:
            items.append(
                WorkItem(rel=source.rel, original_tokens=tokens, skip_reason=SKIP_TOO_LARGE)
            )
            continue

        items.append(WorkItem(rel=source.rel, original_tokens=tokens, chunks=chunks))

    plan = WorkPlan(
        ctx_budget=usable,
        framework=setup.framework,
        renderer=setup.renderer,
        items=items,
    )
    logger.debug(
        "Planned %d file(s), %d chunk(s), budget %d tokens",
        len(plan.items),
        plan.total_chunks,
        usable,
    )
    return plan


def compute_plan_signature(plan: WorkPlan) -> str:
    """SHA-1 fingerprint of everything in ``plan`` that affects which chunks exist."""
    parts = [f"{plan.framework}|{plan.renderer}|{plan.ctx_budget}"]
    for item in sorted(plan.items, key=lambda i: i.rel):
        parts.append(
            f"{item.rel}|{item.original_tokens}|{item.skip_reason or ''}|{len(item.chunks)}"
        )
        for chunk in sorted(item.chunks, key=lambda c: c.id):
            parts.append(f"{chunk.id}|{chunk.kind.value}|{chunk.approx_tokens}")
    return hashlib.sha1("\n".join(parts).encode("utf-8")).hexdigest()
