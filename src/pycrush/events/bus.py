from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from collections import deque
from typing import Any, Awaitable, Callable, Iterable, Union

from .models import Event, EventType

logger = logging.getLogger(__name__)

SubscriberSink = Callable[[Event], Union[None, Awaitable[None]]]

DEFAULT_BUFFER = 256


class Subscription:
    """Bounded, drop-oldest buffer of events for one subscriber."""

    def __init__(
        self,
        bus: "EventBus",
        *,
        session_id: str | None,
        types: frozenset[EventType] | None,
        buffer: int,
    ) -> None:
        if buffer < 1:
            raise ValueError("buffer must be >= 1")
        self.bus = bus
        self.session_id = session_id
        self.types = types
        self.buffer = buffer
        self.dropped = 0
        self.closed = False
        self._items: deque[Event] = deque()
        self._lock = threading.Lock()
        self._wakeup = asyncio.Event()

    def matches(self, event: Event) -> bool:
        if self.session_id is not None and event.session_id != self.session_id:
            return False
        if self.types is not None and event.type not in self.types:
            return False
        return True

    def _offer(self, event: Event) -> bool:
        """Buffer ``event``. Returns True if an older event was dropped."""
        dropped = False
        with self._lock:
            if len(self._items) >= self.buffer:
                self._items.popleft()
                self.dropped += 1
                dropped = True
            self._items.append(event)
        self._wakeup.set()
        return dropped

    def pending(self) -> int:
        with self._lock:
            return len(self._items)

    def get_nowait(self) -> Event | None:
        with self._lock:
            if not self._items:
                return None
            return self._items.popleft()

    def drain(self) -> list[Event]:
        with self._lock:
            out = list(self._items)
            self._items.clear()
        return out

    async def get(self) -> Event:
        while True:
            ev = self.get_nowait()
            if ev is not None:
                return ev
            if self.closed:
                raise StopAsyncIteration
            self._wakeup.clear()
            # Re-check after clearing to avoid missing a concurrent offer.
            if self.pending():
                continue
            await self._wakeup.wait()

    def close(self) -> None:
        self.closed = True
        self.bus._unsubscribe(self)
        self._wakeup.set()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Event:
        return await self.get()


class EventBus:
    """Fans events out to subscribers without ever blocking the producer."""

    def __init__(self, default_buffer: int = DEFAULT_BUFFER) -> None:
        self.default_buffer = default_buffer
        self.dropped = 0
        self.published = 0
        self._subs: list[Subscription] = []
        self._lock = threading.Lock()
        self._pumps: set[asyncio.Task] = set()

    def subscribe(
        self,
        session_id: str | None = None,
        types: Iterable[EventType] | None = None,
        buffer: int | None = None,
    ) -> Subscription:
        sub = Subscription(
            self,
            session_id=session_id,
            types=frozenset(types) if types is not None else None,
            buffer=buffer or self.default_buffer,
        )
        with self._lock:
            self._subs.append(sub)
        return sub

    def _unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            try:
                self._subs.remove(sub)
            except ValueError:
                pass

    def publish(self, event: Event) -> None:
        with self._lock:
            subs = list(self._subs)
            self.published += 1
        for sub in subs:
            if sub.closed or not sub.matches(event):
                continue
            if sub._offer(event):
                with self._lock:
                    self.dropped += 1

    def emit(self, type: EventType, session_id: str, turn_id: str | None = None, **data: Any) -> Event:
        ev = Event(type=type, session_id=session_id, turn_id=turn_id, data=data)
        self.publish(ev)
        return ev

    def attach(
        self,
        sink: SubscriberSink,
        *,
        session_id: str | None = None,
        types: Iterable[EventType] | None = None,
        buffer: int | None = None,
    ) -> Subscription:
        """Deliver matching events to ``sink`` from a background task.

        Needs a running event loop. Sink errors are logged and swallowed so one
        bad observer cannot stall the others.
        """
        sub = self.subscribe(session_id=session_id, types=types, buffer=buffer)

        async def _pump() -> None:
            async for ev in sub:
                try:
                    res = sink(ev)
                    if inspect.isawaitable(res):
                        await res
                except Exception:
                    logger.exception("event sink %r failed on %s", sink, ev.type.value)

        task = asyncio.get_running_loop().create_task(_pump())
        self._pumps.add(task)
        task.add_done_callback(self._pumps.discard)
        return sub

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subs)

    async def aclose(self) -> None:
        with self._lock:
            subs = list(self._subs)
        for sub in subs:
            sub.close()
        if self._pumps:
            await asyncio.gather(*self._pumps, return_exceptions=True)
