"""
Port interfaces for the testsmith system.

This module contains the interface definitions using Python Protocols
to define contracts between the application layer and adapters.
"""

from .executor_port import TestExecutorPort
from .llm_error import LLMError
from .llm_port import ChatTurn, LLMPort, ToolCall, ToolSpec

__all__ = [
    "LLMPort",
    "LLMError",
    "ChatTurn",
    "ToolCall",
    "ToolSpec",
    "TestExecutorPort",
]
