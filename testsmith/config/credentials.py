"""
API keys and endpoints for the generative backends.

Every provider reads an ordered list of environment variables and the first
non-empty one wins. Overrides passed to ``CredentialManager`` (keys such as
``anthropic_api_key`` or ``openai_base_url``) only fill what the environment
leaves unset. Keys stay wrapped in ``SecretStr`` until a client is built.
"""

import logging
import os
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, SecretStr

logger = logging.getLogger(__name__)


class CredentialError(Exception):
    """Raised when a backend has no usable credentials."""

    pass


class ProviderEnv(BaseModel):
    """Environment variables a provider reads, in priority order."""

    model_config = ConfigDict(frozen=True)

    key_vars: tuple[str, ...]
    base_url_vars: tuple[str, ...] = ()


# TESTSMITH_* names come first so a tool-specific key can shadow a shared one
PROVIDER_ENV: dict[str, ProviderEnv] = {
    "openai": ProviderEnv(
        key_vars=("TESTSMITH_API_KEY", "OPENAI_API_KEY"),
        base_url_vars=("TESTSMITH_API_BASE", "OPENAI_BASE_URL"),
    ),
    "anthropic": ProviderEnv(
        key_vars=("ANTHROPIC_API_KEY",),
        base_url_vars=("ANTHROPIC_BASE_URL",),
    ),
}


class ProviderCredentials(BaseModel):
    """Resolved credentials for one backend."""

    model_config = ConfigDict(frozen=True)

    provider: str
    api_key: SecretStr
    base_url: str | None = None
    source: str

    def client_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for the provider's SDK client."""
        kwargs: dict[str, Any] = {"api_key": self.api_key.get_secret_value()}
        if self.base_url:
            kwargs["base_url"] = self.base_url
        return kwargs


class CredentialManager:
    """Resolves and caches credentials per provider."""

    def __init__(
        self,
        config_overrides: dict[str, Any] | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        """
        Args:
            config_overrides: ``<provider>_api_key`` / ``<provider>_base_url``
                values used when the environment has none.
            environ: Variables to read instead of ``os.environ``.
        """
        self.config_overrides = config_overrides or {}
        self._environ = environ
        self._cache: dict[str, ProviderCredentials] = {}

    def _from_env(self, names: tuple[str, ...]) -> tuple[str, str] | None:
        environ = os.environ if self._environ is None else self._environ
        for name in names:
            value = (environ.get(name) or "").strip()
            if value:
                return name, value
        return None

    def _from_overrides(self, provider: str, field: str) -> str | None:
        value = self.config_overrides.get(f"{provider}_{field}")
        text = str(value).strip() if value is not None else ""
        return text or None

    def has_key(self, provider: str) -> bool:
        spec = PROVIDER_ENV.get(provider)
        if spec is None:
            return False
        return bool(self._from_env(spec.key_vars) or self._from_overrides(provider, "api_key"))

    def available_providers(self) -> list[str]:
        """Providers that have a key configured, in table order."""
        return [provider for provider in PROVIDER_ENV if self.has_key(provider)]

    def get_provider_credentials(self, provider: str) -> ProviderCredentials:
        """Resolve the key and endpoint for ``provider``.

        Raises:
            CredentialError: For an unknown provider or a missing key. The
                message names the variables to set and any provider that
                does have a key.
        """
        cached = self._cache.get(provider)
        if cached is not None:
            return cached

        spec = PROVIDER_ENV.get(provider)
        if spec is None:
            raise CredentialError(f"Unknown provider: {provider}")

        key = self._from_env(spec.key_vars)
        if key is None:
            override = self._from_overrides(provider, "api_key")
            if override is None:
                message = f"No API key for {provider}. Set {' or '.join(spec.key_vars)}."
                others = [p for p in self.available_providers() if p != provider]
                if others:
                    message += f" Keys are configured for: {', '.join(others)} (select with --provider)."
                raise CredentialError(message)
            key = ("config", override)

        base_url = self._from_env(spec.base_url_vars)
        credentials = ProviderCredentials(
            provider=provider,
            api_key=SecretStr(key[1]),
            base_url=base_url[1] if base_url else self._from_overrides(provider, "base_url"),
            source=key[0],
        )
        logger.debug("Using %s API key from %s", provider, credentials.source)
        self._cache[provider] = credentials
        return credentials
