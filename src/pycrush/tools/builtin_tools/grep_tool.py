from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any
import re

from ..base import ToolSpec, ToolResult, ToolContext
from ...util.fs import is_ignored, read_text, rel, resolve_path

@dataclass
class GrepTool:
    spec: ToolSpec = ToolSpec(
        name="grep",
        description="Search file contents for a regex (or literal text). Results are grouped by file.",
        permission_key="read",
        path_arg="path",
        parameters={
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "Regex to search for."},
                "path": {"type": "string", "description": "File or directory to search (relative to cwd). Default '.'"},
                "include": {"type": "string", "description": "Optional glob filter like '*.py'."},
                "literal_text": {"type": "boolean", "default": False, "description": "Treat pattern as literal text."},
                "max_matches": {"type": "integer", "default": 100},
            },
            "required": ["pattern"],
        },
    )

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        cwd = Path(ctx.cwd).expanduser().resolve()
        pattern = str(args.get("pattern") or "")
        if not pattern:
            return ToolResult("pattern is required", is_error=True)
        target = resolve_path(cwd, args.get("path") or ".")
        include = args.get("include")
        max_matches = int(args.get("max_matches", 100))
        if not target.exists():
            return ToolResult(f"Path not found: {args.get('path')}", is_error=True)

        try:
            rx = re.compile(re.escape(pattern) if args.get("literal_text") else pattern)
        except re.error as e:
            return ToolResult(f"Invalid regex: {e}", is_error=True)

        if target.is_file():
            files = [target]
        else:
            files = sorted(
                p for p in target.rglob("*")
                if p.is_file() and not is_ignored(p.relative_to(target)) and (not include or p.match(include))
            )

        grouped: dict[str, list[str]] = {}
        count = 0
        for f in files:
            try:
                text = read_text(f)
            except OSError:
                continue
            for i, line in enumerate(text.splitlines(), start=1):
                if rx.search(line):
                    grouped.setdefault(rel(cwd, f), []).append(f"  Line {i}: {line.strip()}")
                    count += 1
                    if count >= max_matches:
                        break
            if count >= max_matches:
                break

        if not grouped:
            return ToolResult("No files found")
        out = [f"Found {count} matches"]
        for path, hits in grouped.items():
            out.append(f"{path}:")
            out.extend(hits)
            out.append("")
        if count >= max_matches:
            out.append("(Results are truncated. Consider using a more specific path or pattern.)")
        return ToolResult("\n".join(out).rstrip())
