"""
Configuration loading for testsmith.

Settings are layered, later layers winning: a project config file (TOML or
YAML), the environment, then CLI overrides. Any setting can be set from the
environment as ``TESTSMITH_<SECTION>__<KEY>``; a few frequently changed
ones also have a flat shorthand such as ``TESTSMITH_PROVIDER``.
"""

import logging
import os
import tomllib
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .models import TestSmithConfig, deep_merge

logger = logging.getLogger(__name__)

# Searched in order in the project directory; TOML first
CONFIG_FILE_NAMES = (
    ".testsmith.toml",
    ".testsmith.yml",
    ".testsmith.yaml",
    "testsmith.toml",
    "testsmith.yml",
    "testsmith.yaml",
)

ENV_PREFIX = "TESTSMITH_"

# A nested TESTSMITH_<SECTION>__<KEY> variable beats its shorthand
ENV_SHORTHANDS: dict[str, tuple[str, str]] = {
    "TESTSMITH_PROVIDER": ("llm", "provider"),
    "TESTSMITH_CONTEXT": ("llm", "context_size"),
    "TESTSMITH_CONCURRENCY": ("generation", "concurrency"),
}


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


def find_config_file(search_dir: str | Path) -> Path | None:
    """First of ``CONFIG_FILE_NAMES`` present in ``search_dir``."""
    base = Path(search_dir)
    for name in CONFIG_FILE_NAMES:
        path = base / name
        if path.is_file():
            return path
    return None


def _read_toml(path: Path) -> Any:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def _read_yaml(path: Path) -> Any:
    try:
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e


_READERS: dict[str, Callable[[Path], Any]] = {
    ".toml": _read_toml,
    ".yml": _read_yaml,
    ".yaml": _read_yaml,
}


def read_config_file(path: Path) -> dict[str, Any]:
    """Parse a config file into a settings dict; an empty file gives ``{}``.

    Raises:
        ConfigurationError: If the file cannot be read or parsed, has an
            unsupported suffix, or does not hold a mapping at the top level.
    """
    reader = _READERS.get(path.suffix.lower())
    if reader is None:
        raise ConfigurationError(
            f"Unsupported configuration file {path}; use one of {', '.join(sorted(_READERS))}"
        )
    try:
        content = reader(path)
    except OSError as e:
        raise ConfigurationError(f"Failed to read {path}: {e}") from e

    if not content:
        logger.warning("Configuration file %s is empty", path)
        return {}
    if not isinstance(content, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping of sections")
    return content


def parse_env_value(value: str) -> Any:
    """Turn an environment string into a bool, number, list or string."""
    lowered = value.strip().lower()
    if lowered in ("true", "yes", "on"):
        return True
    if lowered in ("false", "no", "off"):
        return False

    try:
        return float(value) if "." in value else int(value)
    except ValueError:
        pass

    if "," in value:
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


def env_config(environ: Mapping[str, str]) -> dict[str, Any]:
    """Collect settings from ``TESTSMITH_*`` variables.

    ``TESTSMITH_GENERATION__MAX_ATTEMPTS=5`` maps to ``generation.max_attempts``.
    Flat names other than the shorthands (credentials such as
    ``TESTSMITH_API_KEY``) are ignored here.
    """
    config: dict[str, dict[str, Any]] = {}

    for name, (section, key) in ENV_SHORTHANDS.items():
        value = environ.get(name, "").strip()
        if value:
            config.setdefault(section, {})[key] = value

    for name, value in environ.items():
        if not name.startswith(ENV_PREFIX):
            continue
        section, sep, key = name[len(ENV_PREFIX) :].lower().partition("__")
        if not sep or not section or not key:
            continue
        config.setdefault(section, {})[key] = parse_env_value(value)

    return config


class ConfigLoader:
    """Builds a validated ``TestSmithConfig`` from file, environment and CLI layers."""

    def __init__(
        self,
        config_file: str | Path | None = None,
        search_dir: str | Path | None = None,
        environ: Mapping[str, str] | None = None,
    ):
        """
        Args:
            config_file: Explicit config file; otherwise ``CONFIG_FILE_NAMES``
                are searched for in ``search_dir``.
            search_dir: Project directory to search (defaults to the CWD).
            environ: Variables to read instead of ``os.environ``.
        """
        self.config_file = Path(config_file) if config_file else None
        self.search_dir = Path(search_dir) if search_dir else None
        self._environ = environ
        self._config_cache: TestSmithConfig | None = None

    @property
    def config_path(self) -> Path | None:
        if self.config_file is not None:
            return self.config_file
        return find_config_file(self.search_dir or Path.cwd())

    def load_config(
        self,
        env_overrides: dict[str, Any] | None = None,
        cli_overrides: dict[str, Any] | None = None,
        reload: bool = False,
    ) -> TestSmithConfig:
        """Load and validate the merged configuration.

        Args:
            env_overrides: Used instead of reading the environment.
            cli_overrides: Highest-priority settings from the command line.
            reload: Ignore the cached result.

        Raises:
            ConfigurationError: If a file is unreadable or the merged settings
                fail validation.
        """
        if self._config_cache is not None and not reload:
            return self._config_cache

        path = self.config_path
        if path is not None and not path.is_file():
            raise ConfigurationError(f"Configuration file not found: {path}")

        if env_overrides is None:
            env_overrides = env_config(os.environ if self._environ is None else self._environ)
        layers = (
            ("file", read_config_file(path) if path is not None else {}),
            ("environment", env_overrides),
            ("command line", cli_overrides or {}),
        )

        merged: dict[str, Any] = {}
        for label, layer in layers:
            if layer:
                merged = deep_merge(merged, layer)
                logger.debug("Applied %s settings: %s", label, ", ".join(sorted(layer)))
        if path is None:
            logger.debug("No configuration file found, using defaults")

        try:
            self._config_cache = TestSmithConfig(**merged)
        except ValidationError as e:
            error_msg = f"Configuration validation failed: {e}"
            logger.error(error_msg)
            raise ConfigurationError(error_msg) from e
        return self._config_cache
