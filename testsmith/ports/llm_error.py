"""Unified error type for generative backend failures.

``LLMError`` is the provider-agnostic exception every backend adapter raises
at its public boundary. The original provider exception is preserved through
exception chaining (``from e``) and the normalized context is kept for
logging and for deciding whether a failure is fatal to the run.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping


@dataclass
class LLMError(Exception):
    """Provider-agnostic backend error with normalized context.

    Attributes:
        message: Human-friendly error summary.
        provider: Provider key ("openai" or "anthropic").
        operation: Backend operation ("complete", "chat", "init").
        model: The model identifier used for the request.
        status_code: Optional HTTP status code if available.
        metadata: Additional structured details (request ids, base url, ...).
    """

    message: str
    provider: str | None = None
    operation: str | None = None
    model: str | None = None
    status_code: int | None = None
    metadata: Mapping[str, Any] | None = None

    @property
    def is_auth_error(self) -> bool:
        """Whether retrying with the same credentials cannot succeed."""
        return self.status_code in (401, 403)

    def __str__(self) -> str:  # pragma: no cover - trivial
        parts: list[str] = []
        if self.provider:
            parts.append(f"provider={self.provider}")
        if self.operation:
            parts.append(f"op={self.operation}")
        if self.model:
            parts.append(f"model={self.model}")
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        ctx = (" ".join(parts)) if parts else ""
        if ctx:
            return f"LLMError({ctx}): {self.message}"
        return f"LLMError: {self.message}"
