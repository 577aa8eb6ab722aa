# tests/test_session_store.py — Bounded assistant conversation history
from session_store import ConversationStore


class Tick:
    def __init__(self):
        self.t = 0.0

    def __call__(self):
        return self.t


def _msg(i):
    return {"role": "user" if i % 2 == 0 else "assistant", "content": f"m{i}"}


def test_keeps_last_four_messages():
    store = ConversationStore()
    for i in range(6):
        store.append("u1", _msg(i))
    assert [m["content"] for m in store.get("u1")] == ["m2", "m3", "m4", "m5"]


def test_sessions_are_isolated_per_user():
    store = ConversationStore()
    store.append("u1", _msg(0))
    assert store.get("u2") == []


def test_idle_session_expires():
    tick = Tick()
    store = ConversationStore(ttl_seconds=60, clock=tick)
    store.append("u1", _msg(0))
    tick.t = 59
    assert len(store.get("u1")) == 1
    tick.t = 200
    assert store.get("u1") == []


def test_least_recently_used_session_is_evicted():
    store = ConversationStore(max_sessions=2)
    store.append("a", _msg(0))
    store.append("b", _msg(0))
    store.append("a", _msg(1))
    store.append("c", _msg(0))
    assert len(store) == 2
    assert store.get("b") == []
    assert len(store.get("a")) == 2


def test_clear():
    store = ConversationStore()
    store.append("u1", _msg(0))
    assert store.clear("u1") is True
    assert store.clear("u1") is False
    assert store.get("u1") == []


def test_get_returns_a_copy():
    store = ConversationStore()
    store.append("u1", _msg(0))
    store.get("u1").append(_msg(1))
    assert len(store.get("u1")) == 1
