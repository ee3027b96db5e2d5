from __future__ import annotations
from dataclasses import dataclass
from fnmatch import fnmatch
from pathlib import Path
from typing import Any

from ..base import ToolSpec, ToolResult, ToolContext
from ...util.fs import IGNORED_DIRS, resolve_path

MAX_FILES = 1000

@dataclass
class LsTool:
    spec: ToolSpec = ToolSpec(
        name="ls",
        description="Show a tree of files and directories under a path (relative to cwd). Hidden files and common build folders are skipped.",
        permission_key="read",
        path_arg="path",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Directory path relative to cwd. Default '.'"},
                "ignore": {"type": "array", "items": {"type": "string"}, "description": "Glob patterns to skip."},
            },
            "required": [],
        },
    )

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        cwd = Path(ctx.cwd).expanduser().resolve()
        path = args.get("path") or "."
        ignore = [str(x) for x in (args.get("ignore") or [])]
        root = resolve_path(cwd, path)
        if not root.exists():
            return ToolResult(f"Path not found: {path}", is_error=True)
        if not root.is_dir():
            return ToolResult(f"Not a directory: {path}", is_error=True)

        lines = [f"- {root}/"]
        count = 0

        def skip(p: Path) -> bool:
            if p.name.startswith(".") or p.name in IGNORED_DIRS:
                return True
            return any(fnmatch(p.name, pat) for pat in ignore)

        def walk(d: Path, depth: int) -> bool:
            nonlocal count
            try:
                children = sorted(d.iterdir(), key=lambda x: (not x.is_dir(), x.name.lower()))
            except OSError:
                return True
            for child in children:
                if skip(child):
                    continue
                if count >= MAX_FILES:
                    return False
                count += 1
                indent = "  " * depth
                if child.is_dir():
                    lines.append(f"{indent}- {child.name}/")
                    if not walk(child, depth + 1):
                        return False
                else:
                    lines.append(f"{indent}- {child.name}")
            return True

        complete = walk(root, 1)
        out = "\n".join(lines)
        if not complete:
            out = f"There are more than {MAX_FILES} files in the directory. Use a more specific path or the glob tool. The first {MAX_FILES} are included below:\n\n" + out
        return ToolResult(out)
