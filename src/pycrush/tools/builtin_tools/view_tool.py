from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..base import ToolSpec, ToolResult, ToolContext
from ...util.fs import read_text, resolve_path

MAX_LINE_CHARS = 2000

@dataclass
class ViewTool:
    spec: ToolSpec = ToolSpec(
        name="view",
        description="Read a text file with line numbers. Use offset/limit for large files.",
        permission_key="read",
        path_arg="file_path",
        parameters={
            "type": "object",
            "properties": {
                "file_path": {"type": "string", "description": "File path relative to cwd."},
                "offset": {"type": "integer", "description": "0-based line to start reading from."},
                "limit": {"type": "integer", "description": "Number of lines to read.", "default": 2000},
            },
            "required": ["file_path"],
        },
    )

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        cwd = Path(ctx.cwd).expanduser().resolve()
        path = str(args.get("file_path") or "")
        if not path:
            return ToolResult("file_path is required", is_error=True)
        p = resolve_path(cwd, path)
        if not p.is_file():
            return ToolResult(f"File not found: {path}", is_error=True)

        lines = read_text(p).splitlines()
        offset = max(0, int(args.get("offset") or 0))
        limit = max(1, int(args.get("limit") or 2000))
        excerpt = lines[offset:offset + limit]

        body = []
        for n, line in enumerate(excerpt, start=offset + 1):
            if len(line) > MAX_LINE_CHARS:
                line = line[:MAX_LINE_CHARS] + "..."
            body.append(f"{n:6d}|{line}")
        out = "<file>\n" + "\n".join(body) + "\n"
        if offset + limit < len(lines):
            out += f"\n(File has more lines. Use 'offset' to read beyond line {offset + limit})\n"
        out += "</file>"
        return ToolResult(out)
