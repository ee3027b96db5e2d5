from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Protocol, Union

from ..session.models import Usage


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolUseRequest:
    id: str
    name: str
    args_json: str


@dataclass(frozen=True)
class StreamEnd:
    usage: Usage = field(default_factory=Usage)


StreamEvent = Union[TextDelta, ToolUseRequest, StreamEnd]


@dataclass
class ProviderRequest:
    messages: list[dict[str, Any]]
    tools: list[dict[str, Any]]
    session_id: str = ""
    max_tokens: int | None = None


class ModelProviderClient(Protocol):
    """Streams one model response.

    Implementations raise :class:`pycrush.errors.ProviderError` and must stop
    promptly when the consuming task is cancelled.
    """

    model: str

    def stream(self, request: ProviderRequest) -> AsyncIterator[StreamEvent]: ...
