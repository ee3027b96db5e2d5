from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from ..base import ToolSpec, ToolResult, ToolContext
from ...util.fs import read_text, rel, resolve_path

DEFAULT_JOURNAL = "JOURNAL.md"


def format_entry(title: str, content: str, when: datetime) -> str:
    return f"# {when.strftime('%Y-%m-%d %H:%M')}: {title.strip()}\n\n{content.strip()}\n\n---\n\n"


@dataclass
class JournalTool:
    """Prepends timestamped research entries, newest first."""

    spec: ToolSpec = ToolSpec(
        name="journal",
        description="Add a timestamped research entry to JOURNAL.md (newest entries first).",
        permission_key="edit",
        path_arg="file_path",
        parameters={
            "type": "object",
            "properties": {
                "title": {"type": "string", "description": "One-line title of the research."},
                "content": {"type": "string", "description": "The research content to add."},
                "file_path": {"type": "string", "description": "Journal file (default JOURNAL.md)."},
            },
            "required": ["title", "content"],
        },
    )
    clock: Callable[[], datetime] = field(default=datetime.now, repr=False)

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        cwd = Path(ctx.cwd).expanduser().resolve()
        title = str(args.get("title") or "").strip()
        if not title:
            return ToolResult("title is required", is_error=True)
        p = resolve_path(cwd, args.get("file_path") or DEFAULT_JOURNAL, allow_outside=True)
        existing = read_text(p) if p.exists() else ""

        when = self.clock()
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(format_entry(title, str(args.get("content") or ""), when) + existing, encoding="utf-8")

        out = (
            f"Added journal entry to {rel(cwd, p)}\n\n"
            f"Timestamp: {when.strftime('%Y-%m-%d %H:%M')}\nTitle: {title}\n\n"
            "Entry has been prepended to the journal file."
        )
        if not existing:
            out += "\n\nNote: Created new journal file."
        return ToolResult(out)
