from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Generator

from .agents.models import AgentProfile
from .agents.registry import TASK, AgentRegistry
from .config.models import BehaviorConfig
from .errors import ConfigError, ToolResolutionError, TurnCancelled
from .events.bus import EventBus
from .events.models import EventType
from .llm.provider import ModelProviderClient
from .prompt.builder import build_system_prompt
from .prompt.policy import ContextPolicy
from .runner import TurnEngine, TurnResult, TurnSetup
from .session.queue import Admission, SessionRunQueue
from .session.store import MessageStore
from .tools.permissions import PermissionConfig, PermissionGate
from .tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class RunOptions:
    max_steps: int | None = None
    # Run under this profile instead of the coordinator's mode profile.
    profile_id: str | None = None


class TurnHandle:
    """Awaitable handle for one scheduled turn."""

    def __init__(self, session_id: str, turn_id: str, admission: Admission, task: "asyncio.Task[TurnResult]") -> None:
        self.session_id = session_id
        self.turn_id = turn_id
        self.admission = admission
        self._task = task

    @property
    def queued(self) -> bool:
        """Whether the turn had to wait behind another turn of the same session."""
        return self.admission.queued

    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> bool:
        return self._task.cancel()

    def add_done_callback(self, fn: Callable[["TurnHandle"], None]) -> None:
        self._task.add_done_callback(lambda _: fn(self))

    async def result(self) -> TurnResult:
        try:
            return await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if self._task.cancelled():
                raise TurnCancelled(
                    f"Turn {self.turn_id} was canceled",
                    session_id=self.session_id,
                    turn_id=self.turn_id,
                ) from None
            # The awaiting task itself was cancelled.
            raise

    def __await__(self) -> Generator[Any, None, TurnResult]:
        return self.result().__await__()


class Coordinator:
    """Entry point: picks the agent profile for the mode, runs and delegates turns."""

    def __init__(
        self,
        config: BehaviorConfig,
        providers: dict[str, ModelProviderClient],
        tools: ToolRegistry,
        store: MessageStore,
        *,
        bus: EventBus | None = None,
        gate: PermissionGate | None = None,
        queue: SessionRunQueue | None = None,
        cwd: Path | None = None,
        agents: AgentRegistry | None = None,
        policy: ContextPolicy | None = None,
    ) -> None:
        self.config = config
        self.providers = providers
        self.tools = tools
        self.store = store
        self.cwd = (cwd or Path.cwd()).resolve()
        self.bus = bus or EventBus(default_buffer=config.event_buffer)
        self.gate = gate or PermissionGate(
            PermissionConfig(rules=list(config.permissions), allowed_tools=list(config.allowed_tools)),
            bus=self.bus,
            bypass=config.auto_approve,
        )
        self.queue = queue or SessionRunQueue(max_depth=config.max_queue_depth)
        self.agents = agents or AgentRegistry.from_behavior(config)
        self.engine = TurnEngine(store=store, gate=self.gate, bus=self.bus, retry=config.retry, policy=policy)
        self._handles: dict[str, list[TurnHandle]] = {}

        self._profile, self._surface = self._resolve(config.mode)

    # ---- profile & surface ----

    def _resolve(self, profile_id: str) -> tuple[AgentProfile, ToolRegistry]:
        profile = self.agents.get(profile_id)
        if profile.model not in self.providers:
            raise ConfigError(f"No provider configured for model tier '{profile.model}' (agent {profile.id})")
        return profile, self.build_surface(profile)

    def build_surface(self, profile: AgentProfile) -> ToolRegistry:
        """Tools the profile may use: its allow-list, minus disabled tools, all registered."""
        disabled = set(self.config.disabled_tools)
        if profile.allowed_tools is None:
            names = [n for n in self.tools.names() if n not in disabled]
        else:
            missing = [n for n in profile.allowed_tools if n not in self.tools]
            if missing:
                raise ToolResolutionError(
                    f"Agent {profile.id} declares unregistered tool(s): {', '.join(missing)}",
                    tool_name=missing[0],
                )
            names = [n for n in profile.allowed_tools if n not in disabled]
        return self.tools.subset(names)

    @property
    def profile(self) -> AgentProfile:
        return self._profile

    @property
    def tool_names(self) -> list[str]:
        return self._surface.names()

    def use_mode(self, mode: str) -> AgentProfile:
        self._profile, self._surface = self._resolve(mode)
        logger.info("mode switched to %s (%d tools)", mode, len(self._surface.names()))
        return self._profile

    # ---- turns ----

    def run(self, session_id: str, prompt: str, options: RunOptions | None = None) -> TurnHandle:
        """Schedule a turn. Raises Backpressure right away when the session queue is full."""
        loop = asyncio.get_running_loop()
        options = options or RunOptions()
        if options.profile_id and options.profile_id != self._profile.id:
            profile, surface = self._resolve(options.profile_id)
        else:
            profile, surface = self._profile, self._surface

        setup = TurnSetup(
            session_id=session_id,
            profile=profile,
            provider=self.providers[profile.model],
            tools=surface,
            cwd=self.cwd,
            system_prompt=build_system_prompt(profile, cwd=self.cwd),
            max_steps=profile.max_steps or options.max_steps or self.config.max_steps,
        )
        setup.delegate = lambda p: self.delegate(session_id, p)

        admission = self.queue.admit_or_queue(session_id)
        if admission.queued:
            self.bus.emit(EventType.TURN_QUEUED, session_id, setup.turn_id, depth=self.queue.depth(session_id))

        task = loop.create_task(
            self._drive(admission, setup, prompt),
            name=f"pycrush-turn-{setup.turn_id}",
        )
        handle = TurnHandle(session_id, setup.turn_id, admission, task)
        self._handles.setdefault(session_id, []).append(handle)
        task.add_done_callback(lambda t: self._on_done(handle))
        return handle

    async def _drive(self, admission: Admission, setup: TurnSetup, prompt: str) -> TurnResult:
        try:
            try:
                await admission.wait()
            except asyncio.CancelledError:
                self.bus.emit(EventType.TURN_FAILED, setup.session_id, setup.turn_id, kind="canceled", error="canceled while queued", step=0)
                raise
            result = await self.engine.run(setup, prompt)
            session = self.queue.session(setup.session_id)
            session.usage = session.usage + result.usage
            return result
        finally:
            admission.release()

    def _on_done(self, handle: TurnHandle) -> None:
        # Covers a task cancelled before it ever started running.
        handle.admission.abandon()
        handles = self._handles.get(handle.session_id)
        if handles is not None:
            if handle in handles:
                handles.remove(handle)
            if not handles:
                del self._handles[handle.session_id]
        task = handle._task
        if not task.cancelled() and task.exception() is not None:
            logger.debug("turn %s ended with %r", handle.turn_id, task.exception())

    async def delegate(self, parent_session_id: str, prompt: str, *, profile_id: str | None = None) -> str:
        """Run ``prompt`` in a throwaway child session restricted to the delegate profile.

        The profile must declare an explicit tool allow-list; profiles that get
        every registered tool are refused with ConfigError.
        """
        profile = self.agents.get(profile_id or TASK)
        if profile.allowed_tools is None:
            raise ConfigError(f"Agent {profile.id} has no tool restriction and cannot run delegated tasks")
        child_id = f"{parent_session_id}$${profile.id}-{uuid.uuid4().hex[:8]}"
        self.queue.session(child_id, parent_id=parent_session_id)
        if self.gate.is_session_auto_approved(parent_session_id):
            self.gate.auto_approve_session(child_id)

        logger.debug("delegating to %s as %s", profile.id, child_id)
        try:
            handle = self.run(child_id, prompt, RunOptions(profile_id=profile.id))
        except Exception:
            self.gate.forget_session(child_id)
            self.queue.discard(child_id)
            raise
        try:
            result = await handle
        except asyncio.CancelledError:
            handle.cancel()
            raise
        finally:
            self.gate.forget_session(child_id)
            if handle.done():
                self.queue.discard(child_id)
            else:
                # Still unwinding after cancel(); its slot is released before the task completes.
                handle.add_done_callback(lambda _: self.queue.discard(child_id))

        parent = self.queue.session(parent_session_id)
        parent.usage = parent.usage + result.usage
        return result.text

    def cancel(self, session_id: str, *, clear_queue: bool = False) -> int:
        """Cancel the running turn of a session, and its queued turns too if asked."""
        n = 0
        for h in list(self._handles.get(session_id, [])):
            if h.done():
                continue
            if h.admission.waiting and not clear_queue:
                continue
            if h.cancel():
                n += 1
        return n

    def queued(self, session_id: str) -> int:
        return self.queue.depth(session_id)

    def is_busy(self, session_id: str) -> bool:
        return self.queue.is_busy(session_id)
