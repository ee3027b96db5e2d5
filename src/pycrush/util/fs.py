from __future__ import annotations
from pathlib import Path

from ..errors import ToolError

# Directories never worth walking into.
IGNORED_DIRS = {".git", "node_modules", "__pycache__", ".venv", "venv", ".mypy_cache", ".pytest_cache", "dist", "build"}


class FsError(ToolError):
    pass


def resolve_path(cwd: Path, path_str: str, *, allow_outside: bool = False) -> Path:
    """Resolve ``path_str`` against ``cwd``.

    Paths outside ``cwd`` are rejected unless ``allow_outside`` is set. Edit
    tools set it; their calls are gated before they run.
    """
    p = Path(path_str).expanduser()
    p = (cwd / p).resolve() if not p.is_absolute() else p.resolve()
    if allow_outside:
        return p
    try:
        p.relative_to(cwd.resolve())
    except ValueError:
        raise FsError(f"Path escapes working directory: {path_str}")
    return p


def rel(cwd: Path, p: Path) -> str:
    try:
        return str(p.resolve().relative_to(cwd.resolve()))
    except ValueError:
        return str(p)


def is_ignored(p: Path) -> bool:
    return any(part in IGNORED_DIRS for part in p.parts)


def read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")
