"""Main CLI entry point for testsmith."""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import click
from rich.console import Console

from ..adapters.io.enhanced_logging import setup_logging
from ..adapters.io.ui_rich import TESTSMITH_THEME, RichUIAdapter
from ..adapters.llm.router import create_llm_adapter
from ..adapters.testing.js_runner import JsTestRunner
from ..application.generate_usecase import GenerateUseCase, GenerateUseCaseError
from ..config.loader import ConfigLoader, ConfigurationError
from ..domain.models import RunState
from ..ports.llm_error import LLMError

logger = logging.getLogger(__name__)


class ClickContext:
    """Context object for Click commands."""

    def __init__(self) -> None:
        self.config_path: Path | None = None
        self.ui: RichUIAdapter | None = None
        self.verbose: bool = False
        self.quiet: bool = False


# Plain flags can only switch a setting on; leaving them out keeps the config value
ENABLE_ONLY_FLAGS = frozenset({"force", "agent", "review"})


def build_cli_overrides(**options: Any) -> dict[str, Any]:
    """Translate CLI options into a nested config dict, skipping unset ones."""
    sections = {
        "provider": ("llm", "provider"),
        "context": ("llm", "context_size"),
        "include": ("discovery", "include"),
        "exclude": ("discovery", "exclude"),
        "max_files": ("discovery", "max_files"),
        "min_lines": ("discovery", "min_lines"),
        "force": ("generation", "force"),
        "max_fix_attempts": ("generation", "max_attempts"),
        "run_tests": ("generation", "run_tests"),
        "concurrency": ("generation", "concurrency"),
        "agent": ("agent", "enabled"),
        "max_tool_calls": ("agent", "max_tool_calls"),
        "review": ("agent", "review"),
    }
    overrides: dict[str, Any] = {}
    for name, value in options.items():
        if value is None or value == () or name not in sections:
            continue
        if value is False and name in ENABLE_ONLY_FLAGS:
            continue
        section, key = sections[name]
        if isinstance(value, tuple):
            value = list(value)
        overrides.setdefault(section, {})[key] = value
    return overrides


def confirm_resume(state: RunState) -> bool:
    """Ask whether to continue an unfinished run; non-interactive sessions continue."""
    if not sys.stdin.isatty():
        click.echo("No interactive terminal detected, continuing previous run by default.")
        return True
    return click.confirm("Continue previous run?", default=True)


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option(
    "--quiet",
    "-q",
    is_flag=True,
    help="Reduce output: set log level to WARNING and hide INFO",
)
@click.version_option(package_name="testsmith")
@click.pass_context
def app(ctx: click.Context, config: Path | None, verbose: bool, quiet: bool) -> None:
    """testsmith - generate Jest/Vitest unit tests for JS/TS projects with an LLM."""
    ctx.ensure_object(ClickContext)
    ctx.obj.config_path = config
    ctx.obj.verbose = verbose
    ctx.obj.quiet = quiet

    console = Console(theme=TESTSMITH_THEME, quiet=quiet)
    setup_logging(verbose=verbose, quiet=quiet)
    ctx.obj.ui = RichUIAdapter(console)


@app.command()
@click.argument("model")
@click.argument("project_path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--out", "-o", help="Output directory (default: __tests__ if present, else __generated-tests__)")
@click.option("--include", multiple=True, help="Only include files matching these globs")
@click.option("--exclude", multiple=True, help="Exclude files matching these globs")
@click.option("--max-files", type=click.IntRange(min=1), help="Limit number of files to process")
@click.option("--min-lines", type=click.IntRange(min=0), help="Skip files with fewer lines (default 10)")
@click.option("--force", is_flag=True, help="Overwrite existing test files")
@click.option("--dry-run", is_flag=True, help="Plan only, do not write files")
@click.option("--context", type=click.IntRange(min=1024), help="Context size of the model in tokens")
@click.option(
    "--provider",
    type=click.Choice(["openai", "anthropic"], case_sensitive=False),
    help="Backend provider",
)
@click.option("--agent", is_flag=True, help="Plan with tool calls before generating")
@click.option("--max-tool-calls", type=click.IntRange(min=1), help="Tool calls per chunk in agent mode (default 40)")
@click.option("--max-fix-attempts", type=click.IntRange(min=1, max=10), help="Generation attempts per chunk (default 3)")
@click.option("--run-tests/--no-run-tests", default=None, help="Run each candidate with jest/vitest")
@click.option("--review", is_flag=True, help="Review accepted tests (agent mode)")
@click.option("--concurrency", type=click.IntRange(min=1, max=16), help="Chunks processed in parallel (default 1)")
@click.option("--resume/--reset", default=None, help="Continue or discard an unfinished run without asking")
@click.option("--verbose", "-v", "verbose_flag", is_flag=True, help="Enable verbose output")
@click.option(
    "--config",
    "-c",
    "config_flag",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
@click.pass_context
def generate(
    ctx: click.Context,
    model: str,
    project_path: Path,
    out: str | None,
    dry_run: bool,
    resume: bool | None,
    verbose_flag: bool,
    config_flag: Path | None,
    **options: Any,
) -> None:
    """Generate tests for MODEL over the project at PROJECT_PATH."""
    ui: RichUIAdapter = ctx.obj.ui
    if verbose_flag and not ctx.obj.verbose:
        setup_logging(verbose=True)

    try:
        loader = ConfigLoader(config_flag or ctx.obj.config_path, search_dir=project_path)
        overrides = build_cli_overrides(**options)
        overrides.setdefault("llm", {})["model"] = model
        config = loader.load_config(cli_overrides=overrides)
    except ConfigurationError as e:
        ui.display_error(str(e), "Configuration error")
        sys.exit(1)

    if not (ctx.obj.verbose or verbose_flag or ctx.obj.quiet):
        setup_logging(level=config.logging.level)

    try:
        llm = create_llm_adapter(config.llm)
    except LLMError as e:
        ui.display_error(e.message, "Backend initialization failed")
        sys.exit(1)
    ui.display_step(f"Using {config.llm.provider} model {config.llm.model}")

    usecase = GenerateUseCase(
        llm,
        config,
        executor=JsTestRunner(timeout=config.generation.test_timeout),
        ui=ui,
        confirm_resume=confirm_resume,
        dry_run=dry_run,
    )

    async def run() -> dict[str, Any]:
        try:
            return await usecase.generate_tests(project_path, out_dir=out, resume=resume)
        finally:
            await llm.aclose()

    try:
        results = asyncio.run(run())
    except LLMError as e:
        ui.display_error(e.message, "Backend rejected the request")
        sys.exit(1)
    except GenerateUseCaseError as e:
        ui.display_error(str(e))
        logger.debug("Run aborted", exc_info=True)
        sys.exit(1)
    except KeyboardInterrupt:
        ui.display_warning("Interrupted; progress saved, rerun to resume.")
        sys.exit(130)

    if dry_run:
        click.echo(json.dumps(results, indent=2))


if __name__ == "__main__":
    app()
