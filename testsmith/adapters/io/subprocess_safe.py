"""
Safe subprocess execution utilities.

Commands run in their own session so a timeout can take the whole process
group down, and a child is always reaped before the call returns. Output
is captured as one stream with stderr folded into stdout.
"""

import contextlib
import logging
import os
import signal
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)


class SubprocessError(Exception):
    """Base exception for subprocess-related errors."""

    pass


class SubprocessTimeoutError(SubprocessError):
    """Raised when a subprocess operation times out."""

    def __init__(self, message: str, output: str = ""):
        super().__init__(message)
        self.output = output


def _kill_group(proc: subprocess.Popen) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError, AttributeError, OSError):
        with contextlib.suppress(ProcessLookupError):
            proc.kill()


def run_subprocess_combined(
    cmd: list[str],
    timeout: int = 30,
    cwd: str | Path | None = None,
    env: dict[str, str] | None = None,
) -> tuple[str, int]:
    """Run ``cmd`` and return ``(combined output, return code)``.

    Raises:
        SubprocessTimeoutError: If the command exceeds ``timeout`` seconds.
        OSError: If the command cannot be started (e.g. binary not found).
    """
    proc = subprocess.Popen(
        cmd,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        stdin=subprocess.DEVNULL,
        text=True,
        errors="replace",
        cwd=cwd,
        env=env,
        start_new_session=True,  # Create new process group for better isolation
    )

    try:
        output, _ = proc.communicate(timeout=timeout)
        return output or "", proc.returncode

    except subprocess.TimeoutExpired:
        logger.warning("Command %s timed out after %s seconds", cmd, timeout)
        _kill_group(proc)
        output, _ = proc.communicate()  # Clean up zombie process
        raise SubprocessTimeoutError(
            f"Command {cmd} timed out after {timeout} seconds", output=output or ""
        ) from None

    finally:
        if proc.poll() is None:  # Process still running
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()
            try:
                proc.wait(timeout=5)
            except subprocess.TimeoutExpired:
                logger.warning("Force killing stubborn process: %s", cmd)
                _kill_group(proc)
                proc.wait()
