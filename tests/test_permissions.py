from __future__ import annotations

import asyncio

import pytest

from conftest import wait_for
from pycrush.errors import RequestAlreadyResolved, UnknownPermissionRequest
from pycrush.events.bus import EventBus
from pycrush.events.models import EventType
from pycrush.tools.permissions import (
    Outcome,
    PermissionConfig,
    PermissionGate,
    PermissionRequest,
    PermissionRule,
)


def _req(tool="write", action="edit", session="s", path="a.txt") -> PermissionRequest:
    return PermissionRequest(session_id=session, tool_name=tool, action=action, description=f"{tool} {path}", path=path)


def test_rules_beat_overrides_beat_defaults():
    cfg = PermissionConfig()
    assert cfg.decide("edit", "write") == "ask"
    assert cfg.decide("edit", "write", {"edit": "deny"}) == "deny"
    cfg.apply_behavior([PermissionRule(match="tool:wri*", decision="allow")])
    assert cfg.decide("edit", "write", {"edit": "deny"}) == "allow"
    cfg.apply_behavior([PermissionRule(match="edit", decision="deny")])
    assert cfg.decide("edit", "write") == "deny"


def test_allowed_tools_accepts_tool_or_tool_action():
    cfg = PermissionConfig(allowed_tools=["bash", "write:edit"])
    assert cfg.is_allowed_tool("bash", "bash")
    assert cfg.is_allowed_tool("write", "edit")
    assert not cfg.is_allowed_tool("write", "create")


def test_rule_from_obj_rejects_bad_entries():
    assert PermissionRule.from_obj({"match": "bash", "decision": "deny"}) == PermissionRule("bash", "deny")
    assert PermissionRule.from_obj({"match": "bash", "decision": "maybe"}) is None
    assert PermissionRule.from_obj("bash") is None


@pytest.mark.asyncio
async def test_bypass_approves_without_publishing():
    bus = EventBus()
    sub = bus.subscribe()
    gate = PermissionGate(bus=bus, bypass=True)
    assert await gate.request(_req()) is Outcome.AUTO_APPROVED
    assert sub.pending() == 0


@pytest.mark.asyncio
async def test_policy_allow_and_deny_do_not_publish():
    bus = EventBus()
    sub = bus.subscribe()
    gate = PermissionGate(PermissionConfig(rules=[PermissionRule("bash", "deny")]), bus=bus)
    assert await gate.request(_req(tool="view", action="read")) is Outcome.AUTO_APPROVED
    assert await gate.request(_req(tool="bash", action="bash")) is Outcome.DENIED
    assert sub.pending() == 0


@pytest.mark.asyncio
async def test_ask_publishes_and_resolves_exactly_once():
    bus = EventBus()
    sub = bus.subscribe(types=[EventType.PERMISSION_REQUESTED, EventType.PERMISSION_RESOLVED])
    gate = PermissionGate(bus=bus)
    req = _req()

    waiter = asyncio.create_task(gate.request(req))
    await wait_for(lambda: gate.pending("s"))
    gate.approve(req.id)

    assert await waiter is Outcome.APPROVED
    with pytest.raises(RequestAlreadyResolved):
        gate.deny(req.id)
    assert gate.outcome(req.id) is Outcome.APPROVED
    with pytest.raises(UnknownPermissionRequest):
        gate.approve("perm_missing")

    types = [e.type for e in sub.drain()]
    assert types == [EventType.PERMISSION_REQUESTED, EventType.PERMISSION_RESOLVED]


@pytest.mark.asyncio
async def test_persistent_grant_is_scoped_to_path():
    gate = PermissionGate()
    first = _req(path="a.txt")
    t = asyncio.create_task(gate.request(first))
    await wait_for(lambda: gate.pending())
    gate.approve(first.id, persistent=True)
    assert await t is Outcome.APPROVED_SESSION

    assert await gate.request(_req(path="a.txt")) is Outcome.AUTO_APPROVED
    other = asyncio.create_task(gate.request(_req(path="b.txt")))
    await wait_for(lambda: gate.pending())
    assert not other.done()
    gate.cancel_session("s")
    assert await other is Outcome.CANCELED


@pytest.mark.asyncio
async def test_cancelled_waiter_resolves_as_canceled():
    gate = PermissionGate()
    req = _req()
    t = asyncio.create_task(gate.request(req))
    await wait_for(lambda: gate.pending())
    t.cancel()
    with pytest.raises(asyncio.CancelledError):
        await t
    assert gate.outcome(req.id) is Outcome.CANCELED
    assert gate.pending() == []


@pytest.mark.asyncio
async def test_approve_from_another_thread():
    gate = PermissionGate()
    req = _req()
    t = asyncio.create_task(gate.request(req))
    await wait_for(lambda: gate.pending())
    await asyncio.to_thread(gate.approve, req.id)
    assert await asyncio.wait_for(t, 1) is Outcome.APPROVED


@pytest.mark.asyncio
async def test_session_auto_approval():
    gate = PermissionGate()
    gate.auto_approve_session("s")
    assert await gate.request(_req()) is Outcome.AUTO_APPROVED
    assert gate.is_session_auto_approved("s")
    gate.forget_session("s")
    assert not gate.is_session_auto_approved("s")


@pytest.mark.asyncio
async def test_repeat_resolution_outside_remembered_window():
    gate = PermissionGate(remember=1)
    first, second = _req(path="a.txt"), _req(path="b.txt")
    waiters = [asyncio.create_task(gate.request(r)) for r in (first, second)]
    await wait_for(lambda: len(gate.pending("s")) == 2)

    gate.deny(first.id)
    gate.approve(second.id)
    assert [await w for w in waiters] == [Outcome.DENIED, Outcome.APPROVED]

    with pytest.raises(RequestAlreadyResolved):
        gate.deny(second.id)
    assert gate.outcome(second.id) is Outcome.APPROVED
    # Evicted from the window: no longer distinguishable from an id never issued.
    assert gate.outcome(first.id) is None
    with pytest.raises(UnknownPermissionRequest):
        gate.approve(first.id)
