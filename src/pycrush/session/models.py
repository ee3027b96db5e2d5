from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Union

from ..errors import InvalidTransition, PermissionDenied

Role = Literal["system", "user", "assistant", "tool"]
FinishReason = Literal["end_turn", "tool_use", "error", "canceled", "permission_denied"]


@dataclass
class Message:
    role: Role
    # content can be null when tool_calls are present
    content: str | None
    name: str | None = None
    tool_call_id: str | None = None
    # Assistant-only: OpenAI-compatible tool call representation
    tool_calls: list[dict[str, Any]] | None = None
    finish_reason: FinishReason | None = None
    turn_id: str | None = None

    def to_openai(self) -> dict[str, Any]:
        d: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.name and self.role != "tool":
            d["name"] = self.name
        if self.tool_call_id:
            d["tool_call_id"] = self.tool_call_id
        if self.role == "assistant" and self.tool_calls is not None:
            d["tool_calls"] = self.tool_calls
        return d


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: str  # raw JSON text as emitted by the model

    def to_openai(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments or "{}"},
        }


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class SessionStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    QUEUED = "queued"


@dataclass
class Session:
    id: str
    parent_id: str | None = None
    status: SessionStatus = SessionStatus.IDLE
    created_at: float = field(default_factory=time.time)
    usage: Usage = field(default_factory=Usage)

    @property
    def is_child(self) -> bool:
        return self.parent_id is not None


class ToolInvocationStatus(str, Enum):
    PENDING_PERMISSION = "pending_permission"
    APPROVED = "approved"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    DENIED = "denied"


_TRANSITIONS: dict[ToolInvocationStatus, frozenset[ToolInvocationStatus]] = {
    ToolInvocationStatus.PENDING_PERMISSION: frozenset({ToolInvocationStatus.APPROVED, ToolInvocationStatus.DENIED}),
    ToolInvocationStatus.APPROVED: frozenset({ToolInvocationStatus.EXECUTING}),
    ToolInvocationStatus.EXECUTING: frozenset({ToolInvocationStatus.COMPLETED, ToolInvocationStatus.FAILED}),
    ToolInvocationStatus.COMPLETED: frozenset(),
    ToolInvocationStatus.FAILED: frozenset(),
    ToolInvocationStatus.DENIED: frozenset(),
}


@dataclass
class TextDelta:
    text: str
    kind: Literal["text_delta"] = "text_delta"


@dataclass
class ToolInvocation:
    call_id: str
    tool_name: str
    args: str
    status: ToolInvocationStatus = ToolInvocationStatus.PENDING_PERMISSION
    result: str | None = None
    is_error: bool = False
    # Set when the call was refused instead of run.
    denial: PermissionDenied | None = None
    kind: Literal["tool_invocation"] = "tool_invocation"

    @property
    def terminal(self) -> bool:
        return not _TRANSITIONS[self.status]

    def advance(self, status: ToolInvocationStatus) -> None:
        if status not in _TRANSITIONS[self.status]:
            raise InvalidTransition(f"{self.tool_name} ({self.call_id}): {self.status.value} -> {status.value}")
        self.status = status


@dataclass
class Completion:
    text: str
    usage: Usage
    kind: Literal["completion"] = "completion"


Step = Union[TextDelta, ToolInvocation, Completion]


@dataclass
class Turn:
    id: str
    session_id: str
    steps: list[Step] = field(default_factory=list)

    def invocations(self) -> list[ToolInvocation]:
        return [s for s in self.steps if isinstance(s, ToolInvocation)]

    @property
    def text(self) -> str:
        return "".join(s.text for s in self.steps if isinstance(s, TextDelta))
