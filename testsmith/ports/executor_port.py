from abc import abstractmethod
from typing import Protocol

from ..domain.models import RunTestResult, TestFramework


class TestExecutorPort(Protocol):
    """Runs a single generated test file with the project's own runner."""

    @abstractmethod
    async def run(
        self, project_root: str, test_file_path: str, framework: TestFramework
    ) -> RunTestResult:
        """Run exactly one test file non-interactively."""
        ...
