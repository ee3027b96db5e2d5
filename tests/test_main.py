from __future__ import annotations

import asyncio
import threading
from dataclasses import asdict

import pytest
from rich.prompt import Prompt

from conftest import wait_for
from pycrush.events.models import Event, EventType
from pycrush.main import _make_approver
from pycrush.tools.permissions import Outcome, PermissionGate, PermissionRequest


@pytest.mark.asyncio
async def test_terminal_approver_keeps_the_loop_running(monkeypatch):
    asked = threading.Event()
    answer = threading.Event()

    def fake_ask(*args, **kwargs):
        asked.set()
        answer.wait(5)
        return "a"

    monkeypatch.setattr(Prompt, "ask", fake_ask)
    gate = PermissionGate()
    req = PermissionRequest(session_id="s", tool_name="write", action="edit", description="write x", path="x")
    waiter = asyncio.create_task(gate.request(req))
    await wait_for(lambda: gate.pending("s"))

    ev = Event(type=EventType.PERMISSION_REQUESTED, session_id="s", data={"request": asdict(req)})
    approving = asyncio.create_task(_make_approver(gate)(ev))
    await wait_for(asked.is_set)

    # Other work still gets scheduled while the user is being asked.
    await asyncio.sleep(0.01)
    assert not approving.done()
    assert not waiter.done()

    answer.set()
    await approving
    assert await waiter is Outcome.APPROVED
