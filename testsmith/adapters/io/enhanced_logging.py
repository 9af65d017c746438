"""
Logging setup with Rich integration.

A single ``RichHandler`` is installed on the root logger; module loggers
created with ``logging.getLogger(__name__)`` propagate to it. Setup is
idempotent and thread safe so the CLI, tests and library callers can all
call it.
"""

import logging
import threading

from rich.console import Console
from rich.logging import RichHandler

from .ui_rich import TESTSMITH_THEME


class LoggerManager:
    """Owns the root logging configuration for the process."""

    _console: Console | None = None
    _handler: RichHandler | None = None
    _setup_complete: bool = False
    _setup_lock: threading.Lock = threading.Lock()

    @classmethod
    def setup_global_logging(
        cls, console: Console | None = None, level: int = logging.INFO
    ) -> RichHandler:
        """Install the Rich handler on the root logger (once) and set the level."""
        with cls._setup_lock:
            root_logger = logging.getLogger()

            if cls._setup_complete and cls._handler in root_logger.handlers:
                root_logger.setLevel(level)
                return cls._handler

            cls._console = console or Console(theme=TESTSMITH_THEME, stderr=True)

            # Remove any RichHandlers that aren't ours, keep other handlers
            for handler in list(root_logger.handlers):
                if isinstance(handler, RichHandler):
                    root_logger.removeHandler(handler)

            rich_handler = RichHandler(
                console=cls._console,
                show_time=True,
                show_path=False,
                markup=False,
                rich_tracebacks=True,
            )
            rich_handler.setFormatter(logging.Formatter(fmt="%(message)s"))

            root_logger.addHandler(rich_handler)
            root_logger.setLevel(level)

            # Backend SDKs are chatty at INFO
            for noisy in ("httpx", "httpcore", "openai", "anthropic"):
                logging.getLogger(noisy).setLevel(max(level, logging.WARNING))

            cls._handler = rich_handler
            cls._setup_complete = True
            return rich_handler

    @classmethod
    def reset(cls) -> None:
        """Detach the handler; used by tests."""
        with cls._setup_lock:
            if cls._handler is not None:
                logging.getLogger().removeHandler(cls._handler)
            cls._handler = None
            cls._console = None
            cls._setup_complete = False


def setup_logging(
    verbose: bool = False,
    quiet: bool = False,
    console: Console | None = None,
    level: str | None = None,
) -> RichHandler:
    """Configure process-wide logging.

    ``verbose`` wins over ``quiet``; an explicit ``level`` name is used when
    neither flag is set.
    """
    if verbose:
        resolved = logging.DEBUG
    elif quiet:
        resolved = logging.WARNING
    elif level:
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            resolved = logging.INFO
    else:
        resolved = logging.INFO
    return LoggerManager.setup_global_logging(console, resolved)
