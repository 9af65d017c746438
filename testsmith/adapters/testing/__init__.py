"""
Testing adapters for executing generated tests.

This module contains the adapter that runs a generated JS/TS test file with
the project's own Jest or Vitest installation.
"""

from .js_runner import JsTestRunner

__all__ = ["JsTestRunner"]
