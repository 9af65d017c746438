"""Port interface for the generative text backend."""

from __future__ import annotations

from abc import abstractmethod
from typing import Any, Protocol

from pydantic import BaseModel, Field

from ..domain.models import ContextInfo


class ToolSpec(BaseModel):
    """A function the backend may request, described as a JSON schema."""

    name: str
    description: str
    parameters: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})


class ToolCall(BaseModel):
    """One tool invocation requested by the backend."""

    id: str
    name: str
    arguments: str = "{}"


class ChatTurn(BaseModel):
    """One assistant turn: either final text or a batch of tool calls."""

    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)


class LLMPort(Protocol):
    """
    Contract every backend adapter implements.

    Messages passed to ``chat`` use the provider-neutral shape
    ``{"role": "system" | "user" | "assistant" | "tool", "content": str}``;
    assistant turns may carry ``tool_calls`` and tool turns carry
    ``tool_call_id`` and ``name``.
    """

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
        stop: list[str] | None = None,
    ) -> str:
        """Return the completion text for a single prompt.

        When generation ends on one of ``stop``, the text is cut there and
        ends with the matched sequence.
        """
        ...

    @abstractmethod
    async def chat(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: list[ToolSpec] | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> ChatTurn:
        """Run one assistant turn, optionally offering tools."""
        ...

    @abstractmethod
    async def get_context_info(self) -> ContextInfo:
        """Report the usable context window."""
        ...

    @abstractmethod
    async def aclose(self) -> None:
        """Release network resources."""
        ...
