"""
Project scanning.

Discovers candidate JS/TS source files below a project root: include globs
select files, the default exclusions drop build output, declaration files,
tests, stories and snapshots, and the root ``.gitignore`` is honored. Each
accepted file is read once into an immutable ``SourceFile``.
"""

import logging
import os
import re
from functools import lru_cache
from pathlib import Path

from ...config.models import DiscoveryConfig
from ...domain.models import ScanResult, SourceFile

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDE = [
    "node_modules/**",
    "dist/**",
    "build/**",
    "**/*.d.ts",
    "**/*.{test,spec}.{ts,tsx,js,jsx}",
    "**/*.stories.{ts,tsx,js,jsx}",
    "**/__snapshots__/**",
]

# Never descended into, whatever the patterns say
PRUNED_DIRS = frozenset({"node_modules", ".git"})


class FileDiscoveryError(Exception):
    """Exception raised when file discovery fails."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause


def _expand_braces(pattern: str) -> list[str]:
    match = re.search(r"\{([^{}]*)\}", pattern)
    if not match:
        return [pattern]
    head, tail = pattern[: match.start()], pattern[match.end() :]
    expanded: list[str] = []
    for option in match.group(1).split(","):
        expanded.extend(_expand_braces(head + option + tail))
    return expanded


def _translate(pattern: str) -> str:
    out: list[str] = []
    i = 0
    while i < len(pattern):
        c = pattern[i]
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif c == "*":
            out.append("[^/]*")
            i += 1
        elif c == "?":
            out.append("[^/]")
            i += 1
        else:
            out.append(re.escape(c))
            i += 1
    return "".join(out)


@lru_cache(maxsize=256)
def compile_glob(pattern: str) -> re.Pattern[str]:
    """Compile a glob with ``**``, ``*``, ``?`` and ``{a,b}`` into a full-match regex."""
    alternatives = [_translate(p) for p in _expand_braces(pattern)]
    return re.compile(r"\A(?:" + "|".join(alternatives) + r")\Z")


def matches_any(rel_path: str, patterns: list[str]) -> bool:
    return any(compile_glob(p).match(rel_path) for p in patterns)


class GitIgnore:
    """The subset of ``.gitignore`` semantics needed for a root-level file."""

    def __init__(self, lines: list[str]) -> None:
        self._rules: list[tuple[re.Pattern[str], bool, bool]] = []
        for raw in lines:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            negate = line.startswith("!")
            if negate:
                line = line[1:]
            dir_only = line.endswith("/")
            line = line.strip("/") if dir_only else line
            anchored = line.startswith("/") or "/" in line
            line = line.lstrip("/")
            glob = line if anchored else f"**/{line}"
            self._rules.append((compile_glob(glob), negate, dir_only))

    @classmethod
    def from_root(cls, root: Path) -> "GitIgnore":
        path = root / ".gitignore"
        try:
            return cls(path.read_text(encoding="utf-8").splitlines())
        except FileNotFoundError:
            return cls([])
        except OSError as e:
            logger.warning("Could not read %s: %s", path, e)
            return cls([])

    def ignores(self, rel_path: str) -> bool:
        parts = rel_path.split("/")
        ignored = False
        for regex, negate, dir_only in self._rules:
            # A rule hits the path itself or any of its parent directories
            candidates = ["/".join(parts[:i]) for i in range(1, len(parts))]
            if not dir_only:
                candidates.append(rel_path)
            if any(regex.match(c) for c in candidates):
                ignored = not negate
        return ignored


class FileDiscoveryService:
    """Finds candidate source files for test generation."""

    def __init__(self, config: DiscoveryConfig | None = None) -> None:
        self.config = config or DiscoveryConfig()

    def scan_project(self, root: str | Path) -> ScanResult:
        """Scan ``root`` and return the accepted files sorted by relative path.

        Raises:
            FileDiscoveryError: If ``root`` is not a readable directory.
        """
        root_path = Path(root).resolve()
        if not root_path.is_dir():
            raise FileDiscoveryError(f"Project path is not a directory: {root_path}")

        gitignore = GitIgnore.from_root(root_path)
        include = list(self.config.include)
        exclude = DEFAULT_EXCLUDE + list(self.config.exclude)

        files: list[SourceFile] = []
        try:
            candidates = sorted(self._walk(root_path))
        except OSError as e:
            raise FileDiscoveryError(f"Failed to walk {root_path}: {e}", cause=e) from e

        for rel in candidates:
            if not matches_any(rel, include) or matches_any(rel, exclude):
                continue
            if gitignore.ignores(rel):
                continue
            source = self._read(root_path, rel)
            if source is None or source.lines < self.config.min_lines:
                continue
            files.append(source)
            if self.config.max_files and len(files) >= self.config.max_files:
                break

        logger.debug("Scanned %d candidate file(s) under %s", len(files), root_path)
        return ScanResult(root=str(root_path), files=files)

    def _walk(self, root: Path):
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = [d for d in dirnames if d not in PRUNED_DIRS and not d.startswith(".")]
            rel_dir = Path(dirpath).relative_to(root).as_posix()
            for name in filenames:
                if name.startswith("."):
                    continue
                yield name if rel_dir == "." else f"{rel_dir}/{name}"

    def _read(self, root: Path, rel: str) -> SourceFile | None:
        path = root / rel
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Skipping unreadable file %s: %s", rel, e)
            return None
        return SourceFile(
            path=str(path),
            rel=rel,
            ext=path.suffix,
            text=text,
            lines=len(re.split(r"\r?\n", text)),
        )
