from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Literal

from ..errors import Backpressure
from .models import Session, SessionStatus

logger = logging.getLogger(__name__)

AdmissionState = Literal["run", "queued"]


@dataclass
class _SessionSlot:
    session: Session
    lock: threading.Lock = field(default_factory=threading.Lock)
    running: bool = False
    waiters: deque["Admission"] = field(default_factory=deque)


class Admission:
    """Ticket returned by :meth:`SessionRunQueue.admit_or_queue`.

    ``state`` is fixed at submission time. ``wait()`` returns once the ticket
    holds the session's slot; ``release()`` hands the slot on. Both ``release``
    and ``abandon`` are idempotent.
    """

    def __init__(self, queue: "SessionRunQueue", session_id: str, state: AdmissionState, future: asyncio.Future | None):
        self.queue = queue
        self.session_id = session_id
        self.state = state
        self._future = future
        self._released = False

    @property
    def queued(self) -> bool:
        return self.state == "queued"

    @property
    def admitted(self) -> bool:
        if self._future is None:
            return True
        return self._future.done() and not self._future.cancelled()

    @property
    def waiting(self) -> bool:
        return self._future is not None and not self._future.done()

    async def wait(self) -> None:
        if self._future is not None:
            try:
                await asyncio.shield(self._future)
            except asyncio.CancelledError:
                self.abandon()
                raise
        self.queue._mark_running(self.session_id)

    def release(self) -> None:
        if self._released or not self.admitted:
            return
        self._released = True
        self.queue.release(self.session_id)

    def abandon(self) -> None:
        """Give up the ticket whether it is still waiting or already admitted."""
        if self.waiting:
            self.queue._remove_waiter(self)
            if self._future is not None and not self._future.done():
                self._future.cancel()
            return
        self.release()


class SessionRunQueue:
    """Serializes turns per session id.

    Slots for distinct sessions are independent; the registry lock is only held
    while looking up or creating a slot.
    """

    def __init__(self, max_depth: int | None = None) -> None:
        self.max_depth = max_depth
        self._slots: dict[str, _SessionSlot] = {}
        self._registry_lock = threading.Lock()

    def _slot(self, session_id: str, parent_id: str | None = None) -> _SessionSlot:
        with self._registry_lock:
            slot = self._slots.get(session_id)
            if slot is None:
                slot = _SessionSlot(session=Session(id=session_id, parent_id=parent_id))
                self._slots[session_id] = slot
            return slot

    def session(self, session_id: str, parent_id: str | None = None) -> Session:
        return self._slot(session_id, parent_id).session

    def sessions(self) -> list[Session]:
        with self._registry_lock:
            return [s.session for s in self._slots.values()]

    def admit_or_queue(self, session_id: str) -> Admission:
        slot = self._slot(session_id)
        with slot.lock:
            if not slot.running:
                slot.running = True
                slot.session.status = SessionStatus.RUNNING
                logger.debug("session %s: admitted", session_id)
                return Admission(self, session_id, "run", None)
            if self.max_depth is not None and len(slot.waiters) >= self.max_depth:
                raise Backpressure(session_id, len(slot.waiters))
            fut = asyncio.get_running_loop().create_future()
            adm = Admission(self, session_id, "queued", fut)
            slot.waiters.append(adm)
            logger.debug("session %s: queued (depth=%d)", session_id, len(slot.waiters))
            return adm

    def release(self, session_id: str) -> None:
        slot = self._slot(session_id)
        with slot.lock:
            while slot.waiters:
                nxt = slot.waiters.popleft()
                if nxt._future is None or nxt._future.done():
                    continue
                nxt._future.set_result(None)
                # Admitted but not resumed yet.
                slot.session.status = SessionStatus.QUEUED
                logger.debug("session %s: handed to next waiter (depth=%d)", session_id, len(slot.waiters))
                return
            slot.running = False
            slot.session.status = SessionStatus.IDLE
            logger.debug("session %s: idle", session_id)

    def _mark_running(self, session_id: str) -> None:
        slot = self._slot(session_id)
        with slot.lock:
            slot.session.status = SessionStatus.RUNNING

    def _remove_waiter(self, adm: Admission) -> None:
        slot = self._slot(adm.session_id)
        with slot.lock:
            try:
                slot.waiters.remove(adm)
            except ValueError:
                pass

    def depth(self, session_id: str) -> int:
        slot = self._slot(session_id)
        with slot.lock:
            return sum(1 for w in slot.waiters if w.waiting)

    def is_busy(self, session_id: str) -> bool:
        slot = self._slot(session_id)
        with slot.lock:
            return slot.running

    def status(self, session_id: str) -> SessionStatus:
        return self._slot(session_id).session.status

    def discard(self, session_id: str) -> bool:
        """Forget an idle session (used for finished child sessions)."""
        with self._registry_lock:
            slot = self._slots.get(session_id)
            if slot is None:
                return False
            with slot.lock:
                if slot.running or slot.waiters:
                    return False
            del self._slots[session_id]
            return True
