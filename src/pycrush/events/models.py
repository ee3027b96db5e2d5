from __future__ import annotations

import itertools
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    TURN_QUEUED = "turn.queued"
    TURN_STARTED = "turn.started"
    TEXT_DELTA = "text.delta"
    TOOL_INVOCATION = "tool.invocation"
    PERMISSION_REQUESTED = "permission.requested"
    PERMISSION_RESOLVED = "permission.resolved"
    TURN_COMPLETED = "turn.completed"
    TURN_FAILED = "turn.failed"


_seq = itertools.count(1)


@dataclass(frozen=True)
class Event:
    type: EventType
    session_id: str
    turn_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    ts: float = field(default_factory=time.time)
    seq: int = field(default_factory=lambda: next(_seq))

    def to_dict(self) -> dict[str, Any]:
        return {
            "seq": self.seq,
            "ts": self.ts,
            "type": self.type.value,
            "session_id": self.session_id,
            "turn_id": self.turn_id,
            "data": self.data,
        }
