from __future__ import annotations

import asyncio
import dataclasses
import inspect
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable

from .agents.models import AgentProfile
from .config.models import RetryConfig
from .errors import FatalToolError, InvalidTransition, PermissionDenied, ProviderError, PycrushError, ToolError
from .events.bus import EventBus
from .events.models import EventType
from .llm.provider import ModelProviderClient, ProviderRequest, StreamEnd, TextDelta, ToolUseRequest
from .prompt.builder import build_prompt_messages
from .prompt.policy import ContextPolicy, truncate_middle
from .session.models import (
    Completion,
    Message,
    ToolCall,
    ToolInvocation,
    ToolInvocationStatus,
    Turn,
    Usage,
)
from .session.models import TextDelta as TextStep
from .session.store import MessageStore
from .tools.base import ToolContext, ToolResult
from .tools.permissions import Outcome, PermissionGate, PermissionRequest
from .tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

CANCELED_TOOL_RESULT = "Tool execution canceled by user"


class TurnState(str, Enum):
    STARTING = "starting"
    STREAMING = "streaming"
    TOOL_PENDING = "tool_pending"
    TOOL_EXECUTING = "tool_executing"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


_ABORT = {TurnState.FAILED, TurnState.CANCELLED}
_NEXT: dict[TurnState, set[TurnState]] = {
    TurnState.STARTING: {TurnState.STREAMING} | _ABORT,
    TurnState.STREAMING: {TurnState.TOOL_PENDING, TurnState.FINALIZING} | _ABORT,
    TurnState.TOOL_PENDING: {TurnState.TOOL_PENDING, TurnState.TOOL_EXECUTING, TurnState.STREAMING, TurnState.FINALIZING} | _ABORT,
    TurnState.TOOL_EXECUTING: {TurnState.TOOL_PENDING, TurnState.STREAMING, TurnState.FINALIZING} | _ABORT,
    TurnState.FINALIZING: {TurnState.DONE} | _ABORT,
    TurnState.DONE: set(),
    TurnState.FAILED: set(),
    TurnState.CANCELLED: set(),
}


@dataclass
class TurnSetup:
    """Everything one turn needs; built by the coordinator per run."""

    session_id: str
    profile: AgentProfile
    provider: ModelProviderClient
    tools: ToolRegistry
    cwd: Path
    system_prompt: str
    max_steps: int = 25
    turn_id: str = field(default_factory=lambda: f"turn_{uuid.uuid4().hex[:12]}")
    delegate: Callable[[str], Awaitable[str]] | None = None


@dataclass
class TurnResult:
    turn_id: str
    session_id: str
    text: str
    usage: Usage
    turn: Turn
    state: TurnState = TurnState.DONE
    max_steps_reached: bool = False


def _tool_specs_to_openai(tools: ToolRegistry) -> list[dict]:
    out = []
    for spec in tools.list_specs():
        out.append({
            "type": "function",
            "function": {
                "name": spec.name,
                "description": spec.description,
                "parameters": spec.parameters,
            },
        })
    return out


def _args_preview(args: dict) -> str:
    try:
        s = json.dumps(args, ensure_ascii=False)
    except (TypeError, ValueError):
        s = str(args)
    if len(s) > 300:
        s = s[:300] + "..."
    return s


class TurnEngine:
    """Drives one turn: stream, gate and run tools in order, loop, finalize."""

    def __init__(
        self,
        *,
        store: MessageStore,
        gate: PermissionGate,
        bus: EventBus,
        retry: RetryConfig | None = None,
        policy: ContextPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.gate = gate
        self.bus = bus
        self.retry = retry or RetryConfig()
        self.policy = policy or ContextPolicy()
        self.sleep = sleep

    async def run(self, setup: TurnSetup, prompt: str) -> TurnResult:
        return await _TurnRun(self, setup, prompt).execute()


class _TurnRun:
    def __init__(self, engine: TurnEngine, setup: TurnSetup, prompt: str) -> None:
        self.engine = engine
        self.setup = setup
        self.prompt = prompt
        self.turn = Turn(id=setup.turn_id, session_id=setup.session_id)
        self.state = TurnState.STARTING
        self.step = 0
        self.usage = Usage()
        self.history: list[Message] = []
        self._partial: list[str] = []
        self._open_calls: list[ToolCall] = []

    # ---- bookkeeping ----

    def _goto(self, new: TurnState) -> None:
        if new not in _NEXT[self.state]:
            raise InvalidTransition(f"turn {self.turn.id}: {self.state.value} -> {new.value}")
        logger.debug("turn %s [%s]: %s -> %s", self.turn.id, self.setup.session_id, self.state.value, new.value)
        self.state = new

    def _emit(self, type: EventType, **data: Any) -> None:
        self.engine.bus.emit(type, self.setup.session_id, self.turn.id, **data)

    def _persist(self, msg: Message) -> None:
        msg.turn_id = self.turn.id
        self.engine.store.append_message(self.setup.session_id, msg)
        self.history.append(msg)

    def _emit_invocation(self, inv: ToolInvocation) -> None:
        self._emit(
            EventType.TOOL_INVOCATION,
            call_id=inv.call_id,
            tool=inv.tool_name,
            status=inv.status.value,
            is_error=inv.is_error,
            result=(inv.result or "")[:2000] if inv.terminal else None,
            error_type=type(inv.denial).__name__ if inv.denial else None,
            reason=inv.denial.reason if inv.denial else None,
        )

    # ---- main loop ----

    async def execute(self) -> TurnResult:
        s = self.setup
        self._emit(EventType.TURN_STARTED, agent=s.profile.id, prompt=self.prompt)
        try:
            self.history = self.engine.store.load_history(s.session_id)
            self._persist(Message(role="user", content=self.prompt))
            tools_param = _tool_specs_to_openai(s.tools)

            text = ""
            while self.step < s.max_steps:
                self._goto(TurnState.STREAMING)
                text, calls = await self._stream(tools_param)
                self.step += 1
                if not calls:
                    return self._finalize(text)

                self._open_calls = [
                    ToolCall(id=c.id or f"call_{uuid.uuid4().hex[:12]}", name=c.name, arguments=c.args_json)
                    for c in calls
                ]
                self._persist(Message(
                    role="assistant",
                    content=text or None,
                    tool_calls=[c.to_openai() for c in self._open_calls],
                    finish_reason="tool_use",
                ))
                self._partial = []
                # Strictly one at a time, in emission order.
                while self._open_calls:
                    call = self._open_calls[0]
                    result = await self._run_tool(call)
                    self._persist(result)
                    self._open_calls.pop(0)

            logger.warning("turn %s reached max steps (%d)", self.turn.id, s.max_steps)
            return self._finalize(text, max_steps_reached=True)
        except asyncio.CancelledError:
            self._abort(TurnState.CANCELLED, "canceled", None)
            raise
        except PycrushError as e:
            self._abort(TurnState.FAILED, "error", e)
            raise e.with_context(session_id=s.session_id, turn_id=self.turn.id, step=self.step)
        except Exception as e:
            self._abort(TurnState.FAILED, "error", e)
            raise

    async def _stream(self, tools_param: list[dict]) -> tuple[str, list[ToolUseRequest]]:
        s = self.setup
        request = ProviderRequest(
            messages=build_prompt_messages(system_prompt=s.system_prompt, history=self.history, policy=self.engine.policy),
            tools=tools_param,
            session_id=s.session_id,
        )
        retry = self.engine.retry
        attempt = 0
        while True:
            self._partial = []
            calls: list[ToolUseRequest] = []
            consumed = False
            stream = s.provider.stream(request)
            try:
                async for ev in stream:
                    consumed = True
                    if isinstance(ev, TextDelta):
                        if ev.text:
                            self._partial.append(ev.text)
                            self.turn.steps.append(TextStep(ev.text))
                            self._emit(EventType.TEXT_DELTA, text=ev.text)
                    elif isinstance(ev, ToolUseRequest):
                        calls.append(ev)
                    elif isinstance(ev, StreamEnd):
                        self.usage = self.usage + ev.usage
                return "".join(self._partial), calls
            except ProviderError as e:
                # Retrying after output was shown would duplicate it.
                if e.transient and not consumed and attempt + 1 < retry.attempts:
                    delay = retry.delay(attempt)
                    attempt += 1
                    logger.warning(
                        "turn %s: transient provider error (attempt %d/%d), retrying in %.2fs: %s",
                        self.turn.id, attempt, retry.attempts, delay, e,
                    )
                    await self.engine.sleep(delay)
                    continue
                raise
            finally:
                aclose = getattr(stream, "aclose", None)
                if aclose is not None:
                    await aclose()

    async def _run_tool(self, call: ToolCall) -> Message:
        s = self.setup
        self._goto(TurnState.TOOL_PENDING)
        inv = ToolInvocation(call_id=call.id, tool_name=call.name, args=call.arguments)
        self.turn.steps.append(inv)
        self._emit_invocation(inv)

        tool = s.tools.get_optional(call.name)
        if tool is None:
            # Outside this session's surface: never executed.
            return self._deny(
                inv,
                PermissionDenied(
                    f"Permission denied: tool '{call.name}' is not available to the {s.profile.id} agent.",
                    tool_name=call.name,
                    reason="unavailable",
                ),
            )

        try:
            args = json.loads(call.arguments or "{}")
            if not isinstance(args, dict):
                raise ValueError("arguments must be a JSON object")
        except ValueError as e:
            raise FatalToolError(f"Unparseable arguments for tool {call.name}: {e}") from e

        spec = tool.spec
        req = PermissionRequest(
            session_id=s.session_id,
            tool_name=spec.name,
            action=spec.permission_key,
            description=f"{spec.name} {_args_preview(args)}",
            call_id=call.id,
            turn_id=self.turn.id,
            path=str(args.get(spec.path_arg)) if spec.path_arg and args.get(spec.path_arg) else None,
            params=args,
        )
        outcome = await self.engine.gate.request(req, s.profile.permission_overrides)
        if not outcome.granted:
            canceled = outcome is Outcome.CANCELED
            return self._deny(
                inv,
                PermissionDenied(
                    f"Permission denied: {spec.name} was {'canceled' if canceled else 'rejected by user or policy'}.",
                    tool_name=spec.name,
                    reason="canceled" if canceled else "denied",
                ),
            )

        inv.advance(ToolInvocationStatus.APPROVED)
        self._emit_invocation(inv)
        self._goto(TurnState.TOOL_EXECUTING)
        inv.advance(ToolInvocationStatus.EXECUTING)
        self._emit_invocation(inv)

        ctx = ToolContext(cwd=str(s.cwd), session_id=s.session_id, call_id=call.id, turn_id=self.turn.id, delegate=s.delegate)
        t0 = time.perf_counter()
        try:
            if inspect.iscoroutinefunction(tool.execute):
                res: ToolResult = await tool.execute(ctx, args)
            else:
                res = await asyncio.to_thread(tool.execute, ctx, args)
        except FatalToolError:
            inv.is_error = True
            inv.advance(ToolInvocationStatus.FAILED)
            self._emit_invocation(inv)
            raise
        except ToolError as e:
            res = ToolResult(content=str(e), is_error=True)
        except Exception as e:
            logger.debug("tool %s raised", spec.name, exc_info=True)
            res = ToolResult(content=f"Tool {spec.name} exception: {e}", is_error=True)
        logger.debug("tool %s finished in %dms", spec.name, int((time.perf_counter() - t0) * 1000))

        content = truncate_middle(res.content or "", self.engine.policy.max_tool_result_chars)
        inv.result = content
        inv.is_error = res.is_error
        inv.advance(ToolInvocationStatus.FAILED if res.is_error else ToolInvocationStatus.COMPLETED)
        self._emit_invocation(inv)
        return Message(role="tool", content=content, tool_call_id=call.id)

    def _deny(self, inv: ToolInvocation, denial: PermissionDenied) -> Message:
        content = str(denial)
        inv.denial = denial
        inv.result = content
        inv.is_error = True
        inv.advance(ToolInvocationStatus.DENIED)
        self._emit_invocation(inv)
        return Message(role="tool", content=content, tool_call_id=inv.call_id, finish_reason="permission_denied")

    def _finalize(self, text: str, *, max_steps_reached: bool = False) -> TurnResult:
        self._goto(TurnState.FINALIZING)
        self._persist(Message(role="assistant", content=text, finish_reason="end_turn"))
        self.turn.steps.append(Completion(text=text, usage=self.usage))
        self._emit(
            EventType.TURN_COMPLETED,
            text=text,
            usage=dataclasses.asdict(self.usage),
            max_steps_reached=max_steps_reached,
        )
        self._goto(TurnState.DONE)
        return TurnResult(
            turn_id=self.turn.id,
            session_id=self.setup.session_id,
            text=text,
            usage=self.usage,
            turn=self.turn,
            max_steps_reached=max_steps_reached,
        )

    def _abort(self, state: TurnState, reason: str, error: BaseException | None) -> None:
        """Leave history protocol-valid and observers informed. Must not await."""
        s = self.setup
        try:
            self._goto(state)
        except InvalidTransition:
            # Failure while finalizing; keep the terminal state we reached.
            logger.debug("turn %s aborted from %s", self.turn.id, self.state.value)
            self.state = state

        if reason == "canceled":
            self.engine.gate.cancel_session(s.session_id)

        for inv in self.turn.invocations():
            if inv.status is ToolInvocationStatus.PENDING_PERMISSION:
                inv.denial = PermissionDenied(CANCELED_TOOL_RESULT, tool_name=inv.tool_name, reason="canceled")
                inv.is_error = True
                inv.advance(ToolInvocationStatus.DENIED)
                self._emit_invocation(inv)
            elif inv.status is ToolInvocationStatus.EXECUTING:
                inv.is_error = True
                inv.advance(ToolInvocationStatus.FAILED)
                self._emit_invocation(inv)

        try:
            tool_text = CANCELED_TOOL_RESULT if reason == "canceled" else f"Tool execution aborted: {error}"
            for call in self._open_calls:
                self._persist(Message(role="tool", content=tool_text, tool_call_id=call.id, finish_reason=reason))
            self._open_calls = []
            self._persist(Message(role="assistant", content="".join(self._partial), finish_reason=reason))
        except Exception:
            logger.exception("turn %s: could not persist partial message", self.turn.id)

        if error is not None:
            logger.error("turn %s [%s] failed: %s", self.turn.id, s.session_id, error)
        else:
            logger.info("turn %s [%s] canceled", self.turn.id, s.session_id)
        self._emit(
            EventType.TURN_FAILED,
            kind=reason,
            error=str(error) if error is not None else "canceled",
            error_type=type(error).__name__ if error is not None else "TurnCancelled",
            step=self.step,
        )
