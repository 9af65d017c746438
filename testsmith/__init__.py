"""
testsmith - budgeted, verified unit-test generation for JS/TS projects.

The package follows a ports-and-adapters layout:

- ``domain``: pydantic models shared by every layer
- ``ports``: protocols for the generative backend and the test executor
- ``adapters``: backend clients, file IO, run-state persistence, parsing
- ``application``: chunking, planning, verification and orchestration
- ``cli``: the click entry point
"""

__version__ = "0.1.0"
