from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol, Union

@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    parameters: dict[str, Any]   # JSONSchema
    permission_key: str          # "read" | "edit" | "bash" | "agent"
    # Argument holding the filesystem path the call touches, if any.
    path_arg: str | None = None

class Tool(Protocol):
    spec: ToolSpec
    def execute(self, ctx: "ToolContext", args: dict[str, Any]) -> Union["ToolResult", Awaitable["ToolResult"]]: ...

@dataclass
class ToolResult:
    content: str
    is_error: bool = False

@dataclass
class ToolContext:
    cwd: str
    session_id: str
    call_id: str = ""
    turn_id: str | None = None
    # Set by the coordinator; runs a restricted child session and returns its text.
    delegate: Callable[[str], Awaitable[str]] | None = None
