from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..base import ToolSpec, ToolResult, ToolContext
from ...util.fs import read_text, rel, resolve_path

@dataclass
class WriteTool:
    spec: ToolSpec = ToolSpec(
        name="write",
        description="Create or overwrite a file with the given content.",
        permission_key="edit",
        path_arg="file_path",
        parameters={
            "type": "object",
            "properties": {
                "file_path": {"type": "string", "description": "File path relative to cwd."},
                "content": {"type": "string", "description": "Full file content."},
            },
            "required": ["file_path", "content"],
        },
    )

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        cwd = Path(ctx.cwd).expanduser().resolve()
        path = str(args.get("file_path") or "")
        if not path:
            return ToolResult("file_path is required", is_error=True)
        content = str(args.get("content") or "")
        p = resolve_path(cwd, path, allow_outside=True)
        if p.is_dir():
            return ToolResult(f"Path is a directory, not a file: {path}", is_error=True)
        if p.exists() and read_text(p) == content:
            return ToolResult(f"File {rel(cwd, p)} already contains the exact content. No changes made.")
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(content, encoding="utf-8")
        return ToolResult(f"File successfully written: {rel(cwd, p)} ({len(content)} chars)")
