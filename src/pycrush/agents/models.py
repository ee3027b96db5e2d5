from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

Decision = Literal["allow", "ask", "deny"]
ModelTier = Literal["large", "small"]


@dataclass(frozen=True)
class AgentProfile:
    id: str
    name: str
    description: str = ""
    model: ModelTier = "large"
    # None means every registered tool.
    allowed_tools: tuple[str, ...] | None = None
    # External capability server -> allowed scopes. None means unrestricted.
    allowed_mcp: dict[str, tuple[str, ...]] | None = None
    context_paths: tuple[str, ...] = ()
    prompt: str = "coder"
    system_prompt: str = ""
    disabled: bool = False
    max_steps: int | None = None
    permission_overrides: dict[str, Decision] = field(default_factory=dict)

    @property
    def restricted(self) -> bool:
        return self.allowed_tools is not None
