"""OpenAI (and OpenAI-compatible endpoint) adapter built on the async v1 SDK."""

from __future__ import annotations

import json
import logging
from typing import Any

import openai
from openai import AsyncOpenAI

from ...config.credentials import CredentialError, CredentialManager
from ...domain.models import ContextInfo
from ...ports.llm_error import LLMError
from ...ports.llm_port import ChatTurn, ToolCall, ToolSpec
from .common import cut_at_stop

logger = logging.getLogger(__name__)


class OpenAIAdapter:
    """
    Backend adapter for OpenAI chat completions.

    Works against api.openai.com or any endpoint speaking the same protocol
    (``base_url``). The context window is not discoverable through the API,
    so the configured size is reported.
    """

    provider = "openai"

    def __init__(
        self,
        model: str = "gpt-4.1-mini",
        timeout: float = 180.0,
        temperature: float = 0.1,
        max_retries: int = 3,
        base_url: str | None = None,
        context_size: int = 8192,
        credential_manager: CredentialManager | None = None,
        client: AsyncOpenAI | None = None,
    ):
        """Initialize OpenAI adapter.

        Args:
            model: Model name
            timeout: Request timeout in seconds
            temperature: Default sampling temperature
            max_retries: SDK-level retry attempts
            base_url: Custom API base URL (optional)
            context_size: Context window reported to the planner
            credential_manager: Custom credential manager (optional)
            client: Pre-built client, mainly for tests

        Raises:
            LLMError: If no credentials are available.
        """
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self.max_retries = max_retries
        self.context_size = context_size
        self.credential_manager = credential_manager or CredentialManager()

        self._client: AsyncOpenAI | None = client
        if self._client is None:
            self._initialize_client(base_url)

    def _initialize_client(self, base_url: str | None = None) -> None:
        """Initialize the OpenAI client with credentials."""
        try:
            credentials = self.credential_manager.get_provider_credentials("openai")
        except CredentialError as e:
            raise LLMError(
                str(e), provider=self.provider, operation="init", model=self.model, status_code=401
            ) from e

        client_kwargs = credentials.client_kwargs()
        if base_url:
            client_kwargs["base_url"] = base_url

        self._client = AsyncOpenAI(timeout=self.timeout, max_retries=self.max_retries, **client_kwargs)
        logger.info("OpenAI client initialized with model: %s", self.model)

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._initialize_client()
        return self._client

    def _debug_log_request(self, endpoint: str, payload: dict[str, Any]) -> None:
        if not logger.isEnabledFor(logging.DEBUG):
            return
        try:
            pretty = json.dumps(payload, indent=2, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            pretty = str(payload)
        logger.debug(
            "\n===== LLM REQUEST (%s) =====\n%s\n===== END REQUEST =====", endpoint, pretty
        )

    def _wrap_error(self, operation: str, e: Exception) -> LLMError:
        status = getattr(e, "status_code", None)
        logger.error("OpenAI API error during %s: %s", operation, e)
        return LLMError(
            f"OpenAI API error: {e}",
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
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.temperature if temperature is None else temperature,
        }
        if max_tokens is not None:
            request["max_tokens"] = max_tokens
        self._debug_log_request("chat.completions (complete)", request)

        try:
            response = await self.client.chat.completions.create(**request)
        except openai.APIError as e:
            raise self._wrap_error("complete", e) from e

        if not response.choices:
            return ""
        # Stop sequences are applied here: the API strips a matched sequence
        # from the text and does not report which one fired
        return cut_at_stop(response.choices[0].message.content or "", stop)

    async def chat(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: list[ToolSpec] | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> ChatTurn:
        request: dict[str, Any] = {
            "model": self.model,
            "messages": [self._to_openai_message(m) for m in messages],
            "temperature": self.temperature if temperature is None else temperature,
        }
        if max_tokens is not None:
            request["max_tokens"] = max_tokens
        if tools:
            request["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.parameters,
                    },
                }
                for t in tools
            ]
        self._debug_log_request("chat.completions (chat)", request)

        try:
            response = await self.client.chat.completions.create(**request)
        except openai.APIError as e:
            raise self._wrap_error("chat", e) from e

        if not response.choices:
            return ChatTurn()
        message = response.choices[0].message
        calls = [
            ToolCall(id=c.id, name=c.function.name, arguments=c.function.arguments or "{}")
            for c in (message.tool_calls or [])
            if getattr(c, "function", None) is not None
        ]
        return ChatTurn(content=message.content or "", tool_calls=calls)

    @staticmethod
    def _to_openai_message(message: dict[str, Any]) -> dict[str, Any]:
        role = message["role"]
        if role == "assistant" and message.get("tool_calls"):
            return {
                "role": "assistant",
                "content": message.get("content") or None,
                "tool_calls": [
                    {
                        "id": call["id"],
                        "type": "function",
                        "function": {"name": call["name"], "arguments": call["arguments"]},
                    }
                    for call in message["tool_calls"]
                ],
            }
        if role == "tool":
            return {
                "role": "tool",
                "tool_call_id": message["tool_call_id"],
                "content": message.get("content", ""),
            }
        return {"role": role, "content": message.get("content", "")}

    async def get_context_info(self) -> ContextInfo:
        return ContextInfo(context_size=self.context_size)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
