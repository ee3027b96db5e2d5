from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from pycrush.config.models import BehaviorConfig, RetryConfig
from pycrush.coordinator import Coordinator
from pycrush.errors import FatalToolError, ToolError
from pycrush.events.bus import EventBus
from pycrush.llm.provider import ProviderRequest, StreamEnd, TextDelta, ToolUseRequest
from pycrush.session.models import Usage
from pycrush.session.store import MemoryMessageStore
from pycrush.tools.base import ToolContext, ToolResult, ToolSpec
from pycrush.tools.builtin import register_builtin_tools
from pycrush.tools.registry import ToolRegistry


def text(*chunks: str) -> list:
    return [TextDelta(c) for c in chunks]


def tool_use(call_id: str, name: str, **args: Any) -> ToolUseRequest:
    return ToolUseRequest(id=call_id, name=name, args_json=json.dumps(args))


def end(inp: int = 10, out: int = 5) -> StreamEnd:
    return StreamEnd(usage=Usage(input_tokens=inp, output_tokens=out))


class ScriptedProvider:
    """Plays back one script per stream() call.

    Script items are stream events, exceptions (raised at that point) or
    ``asyncio.Event`` objects (the stream waits on them).
    """

    model = "scripted"

    def __init__(self, *scripts: list) -> None:
        self.scripts = list(scripts)
        self.requests: list[ProviderRequest] = []
        self.closed = 0

    async def stream(self, request: ProviderRequest):
        self.requests.append(request)
        script = self.scripts.pop(0) if self.scripts else text("ok") + [end()]
        try:
            for item in script:
                if isinstance(item, BaseException):
                    raise item
                if isinstance(item, asyncio.Event):
                    await item.wait()
                    continue
                yield item
                await asyncio.sleep(0)
        finally:
            self.closed += 1


def _spec(name: str, key: str, path_arg: str | None = None) -> ToolSpec:
    return ToolSpec(
        name=name,
        description=f"fake {name}",
        permission_key=key,
        path_arg=path_arg,
        parameters={"type": "object", "properties": {}, "required": []},
    )


@dataclass
class RecordingTool:
    spec: ToolSpec
    result: str = "done"
    calls: list[dict] = field(default_factory=list)

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        self.calls.append(args)
        return ToolResult(f"{self.result}:{json.dumps(args, sort_keys=True)}")


@dataclass
class BlockingTool:
    """Async tool that waits until ``release`` is set."""

    spec: ToolSpec
    started: asyncio.Event = field(default_factory=asyncio.Event)
    release: asyncio.Event = field(default_factory=asyncio.Event)

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        self.started.set()
        await self.release.wait()
        return ToolResult("released")


@dataclass
class RaisingTool:
    spec: ToolSpec
    exc: BaseException

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        raise self.exc


@pytest.fixture
def store() -> MemoryMessageStore:
    return MemoryMessageStore()


@pytest.fixture
def bus() -> EventBus:
    return EventBus(default_buffer=1024)


@pytest.fixture
def fakes() -> dict[str, Any]:
    return {
        "peek": RecordingTool(_spec("peek", "read", path_arg="path")),
        "scribble": RecordingTool(_spec("scribble", "edit", path_arg="path")),
        "slow": BlockingTool(_spec("slow", "read")),
        "boom": RaisingTool(_spec("boom", "read"), FatalToolError("disk on fire")),
        "oops": RaisingTool(_spec("oops", "read"), ToolError("bad input")),
        "crash": RaisingTool(_spec("crash", "read"), RuntimeError("unexpected")),
    }


@pytest.fixture
def tools(fakes) -> ToolRegistry:
    reg = register_builtin_tools(ToolRegistry())
    for t in fakes.values():
        reg.register(t)
    return reg


@pytest.fixture
def make_coordinator(tmp_path: Path, store, bus, tools):
    def _make(provider, *, config: BehaviorConfig | None = None, registry: ToolRegistry | None = None, **kw) -> Coordinator:
        config = config or BehaviorConfig(retry=RetryConfig(attempts=3, backoff=0.0))
        return Coordinator(
            config,
            {"large": provider, "small": provider},
            registry if registry is not None else tools,
            store,
            bus=bus,
            cwd=tmp_path,
            **kw,
        )

    return _make


async def wait_for(predicate, timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)
