"""Destination paths for generated test files."""

from pathlib import Path, PurePosixPath

TEST_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx")


def resolve_test_path(out_dir: str | Path, rel: str) -> Path:
    """``<out>/<rel dir>/__tests__/<basename>.test<ext>`` for the source at ``rel``.

    The name comes from the originating file, never from a chunk id, so every
    chunk of one file targets the same destination.
    """
    rel_path = PurePosixPath(rel.replace("\\", "/"))
    ext = rel_path.suffix if rel_path.suffix.lower() in TEST_EXTENSIONS else ".ts"
    stem = rel_path.stem if rel_path.suffix else rel_path.name
    dest = Path(out_dir)
    if str(rel_path.parent) not in ("", "."):
        dest = dest.joinpath(*rel_path.parent.parts)
    return dest / "__tests__" / f"{stem}.test{ext}"


def display_path(path: str | Path, root: str | Path) -> str:
    """``path`` relative to ``root`` when below it, else unchanged."""
    try:
        return Path(path).resolve().relative_to(Path(root).resolve()).as_posix()
    except ValueError:
        return str(path)
