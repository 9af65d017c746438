"""Backend selection."""

from __future__ import annotations

import logging

from ...config.credentials import CredentialManager
from ...config.models import LLMProviderConfig
from ...ports.llm_port import LLMPort
from .claude import ClaudeAdapter
from .openai import OpenAIAdapter

logger = logging.getLogger(__name__)


def create_llm_adapter(
    config: LLMProviderConfig, credential_manager: CredentialManager | None = None
) -> LLMPort:
    """Build the adapter named by ``config.provider``.

    Raises:
        LLMError: If the backend cannot be initialised (missing credentials).
        ValueError: For an unknown provider.
    """
    credentials = credential_manager or CredentialManager()
    if config.provider == "openai":
        adapter: LLMPort = OpenAIAdapter(
            model=config.model,
            timeout=config.timeout,
            temperature=config.temperature,
            max_retries=config.max_retries,
            base_url=config.base_url,
            context_size=config.context_size,
            credential_manager=credentials,
        )
    elif config.provider == "anthropic":
        adapter = ClaudeAdapter(
            model=config.model,
            timeout=config.timeout,
            temperature=config.temperature,
            max_retries=config.max_retries,
            context_size=config.context_size,
            credential_manager=credentials,
        )
    else:
        raise ValueError(f"Unknown provider: {config.provider}")

    logger.debug("Using %s backend with model %s", config.provider, config.model)
    return adapter
