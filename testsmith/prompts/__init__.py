"""Prompt builders for generation, planning and review."""

from .builder import (
    REVIEW_SYSTEM_PROMPT,
    build_plan_prompt,
    build_prompt,
    build_review_prompt,
    slim_code,
    truncate,
)

__all__ = [
    "REVIEW_SYSTEM_PROMPT",
    "build_plan_prompt",
    "build_prompt",
    "build_review_prompt",
    "slim_code",
    "truncate",
]
