from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from enum import Enum
from fnmatch import fnmatch
from typing import Any, Literal

from ..errors import RequestAlreadyResolved, UnknownPermissionRequest
from ..events.bus import EventBus
from ..events.models import EventType

Decision = Literal["allow", "ask", "deny"]

logger = logging.getLogger(__name__)


@dataclass
class PermissionRule:
    """A single permission rule.

    match supports:
    - "tool:<name_or_pattern>"  -> matches tool name only
    - otherwise: fnmatch against both permission_key and tool_name
    """

    match: str
    decision: Decision

    @staticmethod
    def from_obj(obj: Any) -> "PermissionRule | None":
        if not isinstance(obj, dict):
            return None
        m = obj.get("match")
        d = obj.get("decision")
        if not isinstance(m, str) or d not in {"allow", "ask", "deny"}:
            return None
        return PermissionRule(match=m, decision=d)


@dataclass
class PermissionConfig:
    """Static permission policy.

    Precedence: rules (later wins) > agent profile overrides > per-key defaults.
    ``allowed_tools`` entries are either ``tool`` or ``tool:action`` and are
    always pre-approved.
    """

    defaults: dict[str, Decision] = field(
        default_factory=lambda: {"read": "allow", "edit": "ask", "bash": "ask", "agent": "allow"}
    )
    rules: list[PermissionRule] = field(default_factory=list)
    allowed_tools: list[str] = field(default_factory=list)

    def set(self, key: str, decision: Decision) -> None:
        self.defaults[key] = decision

    def apply_behavior(self, rules: list[PermissionRule]) -> None:
        self.rules.extend(rules)

    def _match_rules(self, permission_key: str, tool_name: str) -> Decision | None:
        decision: Decision | None = None
        for rule in self.rules:
            m = rule.match
            if m.startswith("tool:"):
                pat = m[len("tool:") :]
                if fnmatch(tool_name, pat):
                    decision = rule.decision
            else:
                if fnmatch(permission_key, m) or fnmatch(tool_name, m):
                    decision = rule.decision
        return decision

    def is_allowed_tool(self, tool_name: str, action: str) -> bool:
        return tool_name in self.allowed_tools or f"{tool_name}:{action}" in self.allowed_tools

    def decide(self, permission_key: str, tool_name: str, overrides: dict[str, Decision] | None = None) -> Decision:
        r = self._match_rules(permission_key, tool_name)
        if r is not None:
            return r
        if overrides:
            if tool_name in overrides:
                return overrides[tool_name]
            if permission_key in overrides:
                return overrides[permission_key]
        return self.defaults.get(permission_key, self.defaults.get(tool_name, "ask"))


@dataclass(frozen=True)
class PermissionRequest:
    session_id: str
    tool_name: str
    action: str
    description: str
    call_id: str = ""
    turn_id: str | None = None
    path: str | None = None
    params: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"perm_{uuid.uuid4().hex[:12]}")

    def grant_key(self) -> tuple[str, str, str, str | None]:
        return (self.session_id, self.tool_name, self.action, self.path)


class Outcome(str, Enum):
    AUTO_APPROVED = "auto_approved"
    APPROVED = "approved"
    APPROVED_SESSION = "approved_session"
    DENIED = "denied"
    CANCELED = "canceled"

    @property
    def granted(self) -> bool:
        return self in (Outcome.AUTO_APPROVED, Outcome.APPROVED, Outcome.APPROVED_SESSION)


@dataclass
class _Pending:
    request: PermissionRequest
    future: asyncio.Future
    loop: asyncio.AbstractEventLoop


class PermissionGate:
    """Decides whether a tool call may run.

    1. global bypass -> approve
    2. session auto-approval, persistent grant, allowed_tools, or an ``allow``
       policy decision -> approve (``deny`` policy -> deny)
    3. otherwise publish a request and wait for exactly one approve/deny

    Outcomes of the last ``remember`` resolved requests are kept so a repeat
    approve/deny raises RequestAlreadyResolved. Once an id falls out of that
    window it is reported as UnknownPermissionRequest instead.
    """

    def __init__(
        self,
        config: PermissionConfig | None = None,
        *,
        bus: EventBus | None = None,
        bypass: bool = False,
        remember: int = 4096,
    ) -> None:
        self.config = config or PermissionConfig()
        self.bus = bus
        self.bypass = bypass
        self._remember = remember
        self._pending: dict[str, _Pending] = {}
        self._resolved: OrderedDict[str, Outcome] = OrderedDict()
        self._grants: set[tuple[str, str, str, str | None]] = set()
        self._auto_sessions: set[str] = set()
        self._lock = threading.Lock()

    # ---- policy ----

    def auto_approve_session(self, session_id: str) -> None:
        with self._lock:
            self._auto_sessions.add(session_id)

    def is_session_auto_approved(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._auto_sessions

    def forget_session(self, session_id: str) -> None:
        """Drop auto-approval and persistent grants held by a finished session."""
        with self._lock:
            self._auto_sessions.discard(session_id)
            self._grants = {g for g in self._grants if g[0] != session_id}

    def evaluate(self, req: PermissionRequest, overrides: dict[str, Decision] | None = None) -> Outcome | None:
        """Resolve without human involvement, or return None if someone must be asked."""
        if self.bypass:
            return Outcome.AUTO_APPROVED
        with self._lock:
            if req.session_id in self._auto_sessions or req.grant_key() in self._grants:
                return Outcome.AUTO_APPROVED
        if self.config.is_allowed_tool(req.tool_name, req.action):
            return Outcome.AUTO_APPROVED
        decision = self.config.decide(req.action, req.tool_name, overrides)
        if decision == "allow":
            return Outcome.AUTO_APPROVED
        if decision == "deny":
            return Outcome.DENIED
        return None

    # ---- requests ----

    async def request(self, req: PermissionRequest, overrides: dict[str, Decision] | None = None) -> Outcome:
        outcome = self.evaluate(req, overrides)
        if outcome is not None:
            logger.debug("permission %s for %s resolved by policy: %s", req.id, req.tool_name, outcome.value)
            return outcome

        loop = asyncio.get_running_loop()
        pending = _Pending(request=req, future=loop.create_future(), loop=loop)
        with self._lock:
            self._pending[req.id] = pending
        logger.debug("permission %s for %s awaiting approval", req.id, req.tool_name)
        if self.bus is not None:
            self.bus.emit(EventType.PERMISSION_REQUESTED, req.session_id, req.turn_id, request=asdict(req))

        try:
            return await asyncio.shield(pending.future)
        except asyncio.CancelledError:
            self._resolve(req.id, Outcome.CANCELED, strict=False)
            raise

    def approve(self, request_id: str, *, persistent: bool = False) -> None:
        self._resolve(request_id, Outcome.APPROVED_SESSION if persistent else Outcome.APPROVED)

    def deny(self, request_id: str) -> None:
        self._resolve(request_id, Outcome.DENIED)

    def cancel_session(self, session_id: str) -> int:
        with self._lock:
            ids = [rid for rid, p in self._pending.items() if p.request.session_id == session_id]
        for rid in ids:
            self._resolve(rid, Outcome.CANCELED, strict=False)
        return len(ids)

    def pending(self, session_id: str | None = None) -> list[PermissionRequest]:
        with self._lock:
            return [
                p.request for p in self._pending.values() if session_id is None or p.request.session_id == session_id
            ]

    def outcome(self, request_id: str) -> Outcome | None:
        with self._lock:
            return self._resolved.get(request_id)

    def _resolve(self, request_id: str, outcome: Outcome, *, strict: bool = True) -> None:
        with self._lock:
            if request_id in self._resolved:
                if strict:
                    raise RequestAlreadyResolved(request_id, self._resolved[request_id].value)
                return
            pending = self._pending.pop(request_id, None)
            if pending is None:
                if strict:
                    raise UnknownPermissionRequest(request_id)
                return
            self._resolved[request_id] = outcome
            while len(self._resolved) > self._remember:
                self._resolved.popitem(last=False)
            if outcome is Outcome.APPROVED_SESSION:
                self._grants.add(pending.request.grant_key())

        logger.debug("permission %s resolved: %s", request_id, outcome.value)

        def _settle() -> None:
            if not pending.future.done():
                pending.future.set_result(outcome)
            if self.bus is not None:
                req = pending.request
                self.bus.emit(
                    EventType.PERMISSION_RESOLVED,
                    req.session_id,
                    req.turn_id,
                    request_id=req.id,
                    call_id=req.call_id,
                    tool=req.tool_name,
                    outcome=outcome.value,
                )

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is pending.loop:
            _settle()
        else:
            pending.loop.call_soon_threadsafe(_settle)
