"""Generative backend adapters."""

from .claude import ClaudeAdapter
from .openai import OpenAIAdapter
from .router import create_llm_adapter

__all__ = ["ClaudeAdapter", "OpenAIAdapter", "create_llm_adapter"]
