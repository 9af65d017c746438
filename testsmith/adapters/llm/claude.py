"""Anthropic Claude adapter built on the async SDK."""

from __future__ import annotations

import json
import logging
from typing import Any

import anthropic
from anthropic import AsyncAnthropic

from ...config.credentials import CredentialError, CredentialManager
from ...domain.models import ContextInfo
from ...ports.llm_error import LLMError
from ...ports.llm_port import ChatTurn, ToolCall, ToolSpec
from .common import parse_tool_arguments

logger = logging.getLogger(__name__)

# Messages API requires an explicit ceiling
DEFAULT_MAX_TOKENS = 1024


class ClaudeAdapter:
    """
    Backend adapter for the Anthropic Messages API.

    Provider-neutral chat messages are translated to content blocks: system
    messages become the ``system`` parameter, tool requests become
    ``tool_use`` blocks and consecutive tool results are merged into one user
    turn of ``tool_result`` blocks.
    """

    provider = "anthropic"

    def __init__(
        self,
        model: str = "claude-sonnet-4-5",
        timeout: float = 180.0,
        temperature: float = 0.1,
        max_retries: int = 3,
        context_size: int = 8192,
        credential_manager: CredentialManager | None = None,
        client: AsyncAnthropic | None = None,
    ):
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self.max_retries = max_retries
        self.context_size = context_size
        self.credential_manager = credential_manager or CredentialManager()

        self._client: AsyncAnthropic | None = client
        if self._client is None:
            self._initialize_client()

    def _initialize_client(self) -> None:
        """Initialize the Anthropic client with credentials."""
        try:
            credentials = self.credential_manager.get_provider_credentials("anthropic")
        except CredentialError as e:
            logger.error("Anthropic credentials not available: %s", e)
            raise LLMError(
                str(e), provider=self.provider, operation="init", model=self.model, status_code=401
            ) from e

        self._client = AsyncAnthropic(
            timeout=self.timeout,
            max_retries=self.max_retries,
            **credentials.client_kwargs(),
        )
        logger.info("Anthropic client initialized with model: %s", self.model)

    @property
    def client(self) -> AsyncAnthropic:
        if self._client is None:
            self._initialize_client()
        return self._client

    def _wrap_error(self, operation: str, e: Exception) -> LLMError:
        status = getattr(e, "status_code", None)
        logger.error("Anthropic API error during %s: %s", operation, e)
        return LLMError(
            f"Anthropic API error: {e}",
            provider=self.provider,
            operation=operation,
            model=self.model,
            status_code=status,
        )

    async def complete(
        self,
        prompt: str,
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
        stop: list[str] | None = None,
    ) -> str:
        request: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens or DEFAULT_MAX_TOKENS,
            "temperature": self.temperature if temperature is None else temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if stop:
            request["stop_sequences"] = stop

        try:
            response = await self.client.messages.create(**request)
        except anthropic.APIError as e:
            raise self._wrap_error("complete", e) from e

        text = "\n".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        matched = getattr(response, "stop_sequence", None)
        if getattr(response, "stop_reason", None) == "stop_sequence" and matched:
            # The API leaves the matched sequence out of the content
            text += matched
        return text

    async def chat(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: list[ToolSpec] | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> ChatTurn:
        system, converted = self._to_anthropic_messages(messages)
        request: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens or DEFAULT_MAX_TOKENS,
            "temperature": self.temperature if temperature is None else temperature,
            "messages": converted,
        }
        if system:
            request["system"] = system
        if tools:
            request["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.parameters}
                for t in tools
            ]

        try:
            response = await self.client.messages.create(**request)
        except anthropic.APIError as e:
            raise self._wrap_error("chat", e) from e

        texts: list[str] = []
        calls: list[ToolCall] = []
        for block in response.content:
            kind = getattr(block, "type", None)
            if kind == "text":
                texts.append(block.text)
            elif kind == "tool_use":
                calls.append(
                    ToolCall(id=block.id, name=block.name, arguments=json.dumps(block.input))
                )
        return ChatTurn(content="\n".join(texts), tool_calls=calls)

    @staticmethod
    def _to_anthropic_messages(
        messages: list[dict[str, Any]],
    ) -> tuple[str, list[dict[str, Any]]]:
        system_parts: list[str] = []
        converted: list[dict[str, Any]] = []
        for message in messages:
            role = message["role"]
            if role == "system":
                system_parts.append(message.get("content", ""))
            elif role == "tool":
                block = {
                    "type": "tool_result",
                    "tool_use_id": message["tool_call_id"],
                    "content": message.get("content", ""),
                }
                if converted and converted[-1]["role"] == "user" and isinstance(
                    converted[-1]["content"], list
                ):
                    converted[-1]["content"].append(block)
                else:
                    converted.append({"role": "user", "content": [block]})
            elif role == "assistant" and message.get("tool_calls"):
                blocks: list[dict[str, Any]] = []
                if message.get("content"):
                    blocks.append({"type": "text", "text": message["content"]})
                for call in message["tool_calls"]:
                    blocks.append(
                        {
                            "type": "tool_use",
                            "id": call["id"],
                            "name": call["name"],
                            "input": parse_tool_arguments(call["arguments"]),
                        }
                    )
                converted.append({"role": "assistant", "content": blocks})
            else:
                converted.append({"role": role, "content": message.get("content", "")})
        return "\n\n".join(p for p in system_parts if p), converted

    async def get_context_info(self) -> ContextInfo:
        return ContextInfo(context_size=self.context_size)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
