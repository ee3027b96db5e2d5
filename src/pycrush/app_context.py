from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .agents.registry import AgentRegistry
from .config.loader import load_behavior_config
from .config.models import BehaviorConfig
from .coordinator import Coordinator
from .events.bus import EventBus
from .events.store import EventStore
from .llm.factory import resolve_providers
from .session.store import JsonlMessageStore
from .tools.builtin import register_builtin_tools
from .tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    cwd: Path
    behavior: BehaviorConfig
    coordinator: Coordinator
    store: JsonlMessageStore
    events: EventStore
    provider_name: str
    config_path: Optional[Path] = None

    @property
    def bus(self) -> EventBus:
        return self.coordinator.bus

    @staticmethod
    def from_env(
        cwd: Path,
        provider: str | None,
        *,
        config_path: Optional[Path] = None,
        model: str | None = None,
        auto_approve: bool = False,
        research: bool = False,
        behavior_config: Path | None = None,
    ) -> "AppContext":
        """Wire config, providers, tools, stores and the coordinator for one CLI process."""
        if config_path:
            config_path = config_path.expanduser().resolve()

        behavior = load_behavior_config(cwd=cwd, explicit_path=behavior_config, research=research)
        if auto_approve:
            behavior = dataclasses.replace(behavior, auto_approve=True)
        logger.info("behavior config: %s (mode=%s)", behavior.loaded_from or "(defaults)", behavior.mode)

        providers = resolve_providers(provider, yaml_path=config_path, model=model)
        tools = register_builtin_tools(ToolRegistry())
        store = JsonlMessageStore()

        coordinator = Coordinator(
            behavior,
            providers,
            tools,
            store,
            cwd=cwd,
            agents=AgentRegistry.from_behavior(behavior),
        )
        return AppContext(
            cwd=cwd,
            behavior=behavior,
            coordinator=coordinator,
            store=store,
            events=EventStore.open(),
            provider_name=provider or "",
            config_path=config_path,
        )
