"""
Async subprocess execution.

Wraps the synchronous helpers of ``subprocess_safe`` in a worker thread so
test runs do not block the event loop.
"""

import asyncio
import logging
from concurrent.futures import BrokenExecutor, ThreadPoolExecutor
from pathlib import Path

from .subprocess_safe import run_subprocess_combined

logger = logging.getLogger(__name__)

# Seconds the worker thread gets beyond the subprocess timeout
EXECUTOR_GRACE_SECONDS = 5


async def run_subprocess_async(
    cmd: list[str],
    timeout: int = 30,
    cwd: str | Path | None = None,
    env: dict | None = None,
) -> tuple[str, int]:
    """Async wrapper around ``run_subprocess_combined``.

    Returns:
        tuple: (combined output, return_code)

    Raises:
        SubprocessTimeoutError: If the command exceeds ``timeout``
        asyncio.TimeoutError: If the worker thread does not come back in time
        OSError: If the subprocess cannot be executed
    """
    loop = asyncio.get_running_loop()
    executor_timeout = timeout + EXECUTOR_GRACE_SECONDS
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="testsmith-run")

    try:
        return await asyncio.wait_for(
            loop.run_in_executor(executor, run_subprocess_combined, cmd, timeout, cwd, env),
            timeout=executor_timeout,
        )
    except TimeoutError:
        logger.warning("Subprocess execution timed out after %s seconds", executor_timeout)
        raise
    except BrokenExecutor as e:
        logger.error("Executor failed during subprocess execution: %s", e)
        raise RuntimeError(f"ThreadPoolExecutor is broken: {e}") from e
    finally:
        # A hung worker is left to finish on its own; waiting here would stall the loop
        executor.shutdown(wait=False, cancel_futures=True)
