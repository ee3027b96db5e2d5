from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..base import ToolSpec, ToolResult, ToolContext
from ...util.fs import is_ignored, rel, resolve_path

@dataclass
class GlobTool:
    spec: ToolSpec = ToolSpec(
        name="glob",
        description="Find files matching a glob pattern, newest first.",
        permission_key="read",
        path_arg="path",
        parameters={
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "Glob pattern, e.g. '**/*.py'."},
                "path": {"type": "string", "description": "Directory to search in (relative to cwd). Default '.'"},
                "max_results": {"type": "integer", "default": 100},
            },
            "required": ["pattern"],
        },
    )

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        cwd = Path(ctx.cwd).expanduser().resolve()
        pattern = str(args.get("pattern") or "")
        if not pattern:
            return ToolResult("pattern is required", is_error=True)
        root = resolve_path(cwd, args.get("path") or ".")
        max_results = int(args.get("max_results", 100))

        files = [p for p in root.glob(pattern) if p.is_file() and not is_ignored(p.relative_to(root))]
        files.sort(key=lambda p: p.stat().st_mtime, reverse=True)
        truncated = len(files) > max_results
        out = [rel(cwd, p) for p in files[:max_results]]
        if not out:
            return ToolResult("No files found")
        if truncated:
            out.append("\n(Results are truncated. Consider using a more specific path or pattern.)")
        return ToolResult("\n".join(out))
