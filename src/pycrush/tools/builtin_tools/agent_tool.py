from __future__ import annotations
from dataclasses import dataclass
from typing import Any

from ..base import ToolSpec, ToolResult, ToolContext
from ...errors import ToolError

@dataclass
class AgentTool:
    spec: ToolSpec = ToolSpec(
        name="agent",
        description=(
            "Launch a read-only sub-agent that can search and read files (glob, grep, ls, view). "
            "Use it for open-ended searches. It cannot edit files or run commands; "
            "give it a detailed, self-contained task and it returns one final report."
        ),
        permission_key="agent",
        parameters={
            "type": "object",
            "properties": {
                "prompt": {"type": "string", "description": "The task for the sub-agent."},
            },
            "required": ["prompt"],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        prompt = str(args.get("prompt") or "").strip()
        if not prompt:
            raise ToolError("prompt is required")
        if ctx.delegate is None:
            raise ToolError("Sub-agents are not available in this session.")
        text = await ctx.delegate(prompt)
        return ToolResult(text or "(sub-agent returned no text)")
