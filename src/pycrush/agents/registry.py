from __future__ import annotations

import dataclasses
from dataclasses import dataclass

from ..config.models import BehaviorConfig
from ..errors import ConfigError
from .models import AgentProfile, Decision

CODER = "coder"
TASK = "task"
RESEARCH = "research"

TASK_TOOLS: tuple[str, ...] = ("glob", "grep", "ls", "view")
JOURNAL_TOOL = "journal"


def _as_decision(v: str) -> Decision | None:
    v = v.lower().strip()
    if v in {"allow", "ask", "deny"}:
        return v  # type: ignore
    return None


def _default_agents(behavior: BehaviorConfig) -> list[AgentProfile]:
    context_paths = tuple(behavior.context_paths)
    if behavior.research_tools == TASK:
        research_tools: tuple[str, ...] | None = TASK_TOOLS + (JOURNAL_TOOL,)
    else:
        # Inherits the coder surface, which already holds every tool.
        research_tools = None

    return [
        AgentProfile(
            id=CODER,
            name="Coder",
            description="Primary agent: reads, edits and runs code.",
            model="large",
            allowed_tools=None,
            context_paths=context_paths,
            prompt=CODER,
        ),
        AgentProfile(
            id=TASK,
            name="Task",
            description="Read-only sub-agent used for delegated searches.",
            model="large",
            allowed_tools=TASK_TOOLS,
            allowed_mcp={},
            context_paths=context_paths,
            prompt=TASK,
            permission_overrides={"edit": "deny", "bash": "deny"},
        ),
        AgentProfile(
            id=RESEARCH,
            name="Research",
            description="Investigates a topic and records findings in a journal.",
            model="large",
            allowed_tools=research_tools,
            context_paths=context_paths,
            prompt=RESEARCH,
        ),
    ]


@dataclass
class AgentRegistry:
    _agents: dict[str, AgentProfile]
    mode: str = CODER

    @staticmethod
    def from_behavior(behavior: BehaviorConfig | None = None) -> "AgentRegistry":
        behavior = behavior or BehaviorConfig()
        agents = {a.id: a for a in _default_agents(behavior)}

        for agent_id, ac in behavior.agents.items():
            overrides: dict[str, Decision] = {}
            for k, v in ac.permission_overrides.items():
                dv = _as_decision(v)
                if dv is not None:
                    overrides[k] = dv
            base = agents.get(agent_id)
            if base is None:
                base = AgentProfile(
                    id=agent_id,
                    name=ac.name or agent_id,
                    description=f"Custom agent: {agent_id}",
                    context_paths=tuple(behavior.context_paths),
                    prompt=CODER,
                )
            changes: dict = {"disabled": ac.disabled}
            if ac.name:
                changes["name"] = ac.name
            if ac.description:
                changes["description"] = ac.description
            if ac.model:
                changes["model"] = ac.model
            if ac.allowed_tools is not None:
                changes["allowed_tools"] = tuple(ac.allowed_tools)
            if ac.allowed_mcp is not None:
                changes["allowed_mcp"] = {k: tuple(v) for k, v in ac.allowed_mcp.items()}
            if ac.context_paths is not None:
                changes["context_paths"] = tuple(ac.context_paths)
            if ac.system_prompt:
                changes["system_prompt"] = ac.system_prompt
            if ac.max_steps is not None:
                changes["max_steps"] = ac.max_steps
            if overrides:
                changes["permission_overrides"] = {**base.permission_overrides, **overrides}
            agents[agent_id] = dataclasses.replace(base, **changes)

        return AgentRegistry(_agents=agents, mode=behavior.mode)

    def names(self) -> list[str]:
        return sorted(self._agents.keys())

    def all(self) -> list[AgentProfile]:
        return [self._agents[n] for n in self.names()]

    def get(self, agent_id: str) -> AgentProfile:
        """Resolve an enabled profile or raise ConfigError."""
        profile = self._agents.get(agent_id)
        if profile is None:
            raise ConfigError(f"Unknown agent profile '{agent_id}'. Known: {', '.join(self.names())}")
        if profile.disabled:
            raise ConfigError(f"Agent profile '{agent_id}' is disabled")
        return profile

    def for_mode(self, mode: str | None = None) -> AgentProfile:
        return self.get(mode or self.mode)
