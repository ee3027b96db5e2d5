from __future__ import annotations

from pycrush.events.models import Event, EventType
from pycrush.events.store import EventStore
from pycrush.session.models import Message
from pycrush.session.store import JsonlMessageStore


def test_jsonl_store_round_trips_and_skips_corrupt_lines(tmp_path):
    store = JsonlMessageStore(root=tmp_path)
    sid = "p$$task-1"
    store.append_message(sid, Message(role="user", content="hi", turn_id="t1"))
    store.append_message(sid, Message(role="assistant", content=None, tool_calls=[{"id": "c1"}], finish_reason="tool_use"))
    with store.path_for(sid).open("a", encoding="utf-8") as f:
        f.write('{"role": "tool", "cont')

    history = store.load_history(sid)

    assert "$" not in store.path_for(sid).name
    assert [m.role for m in history] == ["user", "assistant"]
    assert history[0].turn_id == "t1"
    assert history[1].tool_calls == [{"id": "c1"}]
    assert store.load_history("unknown") == []


def test_event_store_sink_skips_text_deltas(tmp_path):
    es = EventStore.open(tmp_path)
    es(Event(type=EventType.TURN_STARTED, session_id="s", turn_id="t"))
    es(Event(type=EventType.TEXT_DELTA, session_id="s", turn_id="t", data={"text": "x"}))
    es(Event(type=EventType.TURN_COMPLETED, session_id="s", turn_id="t", data={"text": "done"}))

    types = [e["type"] for e in es.iter_events("s")]
    assert types == ["turn.started", "turn.completed"]
