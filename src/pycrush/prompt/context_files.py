from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContextDoc:
    path: Path
    content: str


def _read_text(p: Path) -> str | None:
    try:
        if p.exists() and p.is_file():
            return p.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning("cannot read context file %s: %s", p, e)
    return None


def _expand(cwd: Path, entry: str) -> list[Path]:
    p = Path(entry).expanduser()
    if not p.is_absolute():
        p = cwd / p
    # A trailing slash names a directory whose markdown files are all included.
    if entry.endswith("/") or p.is_dir():
        if not p.is_dir():
            return []
        return sorted(x for x in p.iterdir() if x.is_file() and x.suffix in {".md", ".mdc", ".txt"})
    return [p]


def load_context_files(cwd: Path, paths: Iterable[str]) -> list[ContextDoc]:
    """Read every existing context file, deduplicated by resolved path.

    Case-insensitive filesystems may resolve e.g. CRUSH.md and crush.md to the
    same file, hence the dedup on the real path.
    """
    docs: list[ContextDoc] = []
    seen: set[Path] = set()
    for entry in paths:
        for p in _expand(cwd, entry):
            try:
                real = p.resolve()
            except OSError:
                continue
            if real in seen:
                continue
            txt = _read_text(p)
            if txt and txt.strip():
                seen.add(real)
                docs.append(ContextDoc(path=p, content=txt))
    return docs


def combine_context(docs: Iterable[ContextDoc]) -> str:
    parts: list[str] = []
    for d in docs:
        parts.append(f'<file path="{d.path}">')
        parts.append(d.content.strip())
        parts.append("</file>")
    return "\n".join(parts).strip()
