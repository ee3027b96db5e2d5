from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..tools.permissions import PermissionRule

DEFAULT_CONTEXT_PATHS: tuple[str, ...] = (
    ".github/copilot-instructions.md",
    ".cursorrules",
    ".cursor/rules/",
    "CLAUDE.md",
    "CLAUDE.local.md",
    "GEMINI.md",
    "crush.md",
    "crush.local.md",
    "CRUSH.md",
    "CRUSH.local.md",
    "AGENTS.md",
)


def _str_list(v: Any) -> list[str] | None:
    if not isinstance(v, list):
        return None
    return [str(x) for x in v if isinstance(x, str)]


@dataclass
class AgentConfig:
    id: str
    name: str = ""
    description: str = ""
    model: str | None = None
    disabled: bool = False
    allowed_tools: list[str] | None = None
    allowed_mcp: dict[str, list[str]] | None = None
    context_paths: list[str] | None = None
    system_prompt: str = ""
    max_steps: int | None = None
    permission_overrides: dict[str, str] = field(default_factory=dict)

    @staticmethod
    def from_obj(agent_id: str, obj: Any) -> "AgentConfig | None":
        if not isinstance(obj, dict):
            return None
        name = obj.get("name", "")
        desc = obj.get("description", "")
        sp = obj.get("system_prompt", "")
        ms = obj.get("max_steps")
        model = obj.get("model")
        perms = obj.get("permission_overrides", {})
        if not isinstance(name, str) or not isinstance(desc, str) or not isinstance(sp, str):
            return None
        if ms is not None and not isinstance(ms, int):
            return None
        if model is not None and model not in {"large", "small"}:
            return None
        if not isinstance(perms, dict):
            perms = {}
        mcp = obj.get("allowed_mcp")
        allowed_mcp = None
        if isinstance(mcp, dict):
            allowed_mcp = {str(k): (_str_list(v) or []) for k, v in mcp.items()}
        return AgentConfig(
            id=agent_id,
            name=name,
            description=desc,
            model=model,
            disabled=bool(obj.get("disabled", False)),
            allowed_tools=_str_list(obj.get("allowed_tools")),
            allowed_mcp=allowed_mcp,
            context_paths=_str_list(obj.get("context_paths")),
            system_prompt=sp,
            max_steps=ms,
            permission_overrides={str(k): str(v) for k, v in perms.items()},
        )


@dataclass
class RetryConfig:
    attempts: int = 3
    backoff: float = 0.5

    def delay(self, attempt: int) -> float:
        return self.backoff * (2 ** attempt)


@dataclass
class BehaviorConfig:
    """Behavior config loaded from JSON."""

    mode: str = "coder"
    # Which tool surface the research mode starts from: "coder" or "task".
    research_tools: str = "task"
    auto_approve: bool = False
    allowed_tools: list[str] = field(default_factory=list)
    disabled_tools: list[str] = field(default_factory=list)
    permissions: list[PermissionRule] = field(default_factory=list)
    agents: dict[str, AgentConfig] = field(default_factory=dict)
    context_paths: list[str] = field(default_factory=lambda: list(DEFAULT_CONTEXT_PATHS))
    max_queue_depth: int | None = None
    event_buffer: int = 256
    max_steps: int = 25
    retry: RetryConfig = field(default_factory=RetryConfig)

    loaded_from: Path | None = None
