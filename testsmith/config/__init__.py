"""Configuration management for testsmith."""

from .credentials import CredentialError, CredentialManager, ProviderCredentials
from .loader import ConfigLoader, ConfigurationError
from .models import (
    AgentConfig,
    BudgetConfig,
    DiscoveryConfig,
    GenerationConfig,
    LLMProviderConfig,
    LoggingConfig,
    TestSmithConfig,
)

__all__ = [
    "AgentConfig",
    "BudgetConfig",
    "ConfigLoader",
    "ConfigurationError",
    "CredentialError",
    "CredentialManager",
    "DiscoveryConfig",
    "GenerationConfig",
    "LLMProviderConfig",
    "LoggingConfig",
    "ProviderCredentials",
    "TestSmithConfig",
]
