from __future__ import annotations

from typing import Any


class PycrushError(Exception):
    """Base error. Carries optional session/turn/step context for diagnostics."""

    def __init__(
        self,
        message: str = "",
        *,
        session_id: str | None = None,
        turn_id: str | None = None,
        step: int | None = None,
    ) -> None:
        super().__init__(message)
        self.session_id = session_id
        self.turn_id = turn_id
        self.step = step

    def with_context(self, *, session_id: str | None, turn_id: str | None, step: int | None) -> "PycrushError":
        if self.session_id is None:
            self.session_id = session_id
        if self.turn_id is None:
            self.turn_id = turn_id
        if self.step is None:
            self.step = step
        return self


class ConfigError(PycrushError):
    pass


class ToolResolutionError(PycrushError):
    def __init__(self, message: str, *, tool_name: str | None = None, **kw: Any) -> None:
        super().__init__(message, **kw)
        self.tool_name = tool_name


class ProviderError(PycrushError):
    def __init__(
        self,
        message: str,
        *,
        transient: bool = False,
        status_code: int | None = None,
        **kw: Any,
    ) -> None:
        super().__init__(message, **kw)
        self.transient = transient
        self.status_code = status_code


class ToolError(PycrushError):
    """Tool failure the model gets to see and react to."""


class FatalToolError(PycrushError):
    """Tool failure that aborts the whole turn."""


class PermissionDenied(PycrushError):
    def __init__(self, message: str = "", *, tool_name: str | None = None, reason: str = "denied", **kw: Any) -> None:
        super().__init__(message or f"Permission denied for tool {tool_name}", **kw)
        self.tool_name = tool_name
        self.reason = reason


class RequestAlreadyResolved(PycrushError):
    def __init__(self, request_id: str, outcome: str) -> None:
        super().__init__(f"Permission request {request_id} already resolved ({outcome})")
        self.request_id = request_id
        self.outcome = outcome


class UnknownPermissionRequest(PycrushError):
    def __init__(self, request_id: str) -> None:
        super().__init__(f"Unknown permission request: {request_id}")
        self.request_id = request_id


class Backpressure(PycrushError):
    def __init__(self, session_id: str, depth: int) -> None:
        super().__init__(f"Session {session_id} queue is full ({depth} waiting)", session_id=session_id)
        self.depth = depth


class TurnCancelled(PycrushError):
    pass


class InvalidTransition(PycrushError):
    pass
