from __future__ import annotations

import threading
import time

from babycheck_server.memory import ConversationStore, create_from_config
from babycheck_server.models import ASSISTANT_ROLE, SYSTEM_ROLE, USER_ROLE, Message


def _turn(store: ConversationStore, cid: str, i: int) -> None:
    store.append(cid, Message(role=USER_ROLE, content=f"u{i}"))
    store.append(cid, Message(role=ASSISTANT_ROLE, content=f"a{i}"))
    store.trim(cid)


def test_new_conversation_starts_with_system_message(store: ConversationStore):
    history = store.get_or_create("fresh")
    assert len(history) == 1
    assert history[0].role == SYSTEM_ROLE
    assert history[0].content == "SYSTEM"


def test_get_or_create_returns_live_list(store: ConversationStore):
    first = store.get_or_create("c1")
    first.append(Message(role=USER_ROLE, content="hi"))
    assert store.get_or_create("c1") is first
    assert [m.content for m in store.history("c1")] == ["SYSTEM", "hi"]


def test_trim_keeps_system_message_and_cap(store: ConversationStore):
    for i in range(30):
        _turn(store, "c", i)
        history = store.history("c")
        assert len(history) <= 21
        assert history[0].role == SYSTEM_ROLE

    history = store.history("c")
    assert len(history) == 21
    # Oldest surviving pair is turn 20; the latest turn is at the tail
    assert history[1].content == "u20"
    assert history[-1].content == "a29"


def test_trim_removes_exactly_one_pair(store: ConversationStore):
    for i in range(10):
        _turn(store, "c", i)
    assert len(store.history("c")) == 21

    store.append("c", Message(role=USER_ROLE, content="u10"))
    store.append("c", Message(role=ASSISTANT_ROLE, content="a10"))
    assert store.trim("c") == 2
    history = store.history("c")
    assert [m.content for m in history[1:3]] == ["u1", "a1"]


def test_trim_recovers_after_unanswered_user_message(store: ConversationStore):
    for i in range(10):
        _turn(store, "c", i)
    # A failed turn leaves only the user message behind
    store.append("c", Message(role=USER_ROLE, content="lost"))
    _turn(store, "c", 99)
    assert len(store.history("c")) <= 21
    assert store.history("c")[0].role == SYSTEM_ROLE


def test_trim_unknown_conversation_is_noop(store: ConversationStore):
    assert store.trim("nope") == 0
    assert "nope" not in store


def test_clear_unknown_id_does_not_touch_others(store: ConversationStore):
    _turn(store, "keep", 0)
    assert store.clear("never-seen") is False
    assert store.conversation_ids() == ["keep"]
    assert len(store.history("keep")) == 3


def test_clear_then_restart_fresh(store: ConversationStore):
    _turn(store, "c", 0)
    assert store.clear("c") is True
    assert "c" not in store
    assert len(store.get_or_create("c")) == 1


def test_lru_eviction_drops_least_recent():
    store = ConversationStore("SYSTEM", max_conversations=2)
    store.get_or_create("a")
    store.get_or_create("b")
    store.get_or_create("a")  # touch a so b is oldest
    store.get_or_create("c")
    assert set(store.conversation_ids()) == {"a", "c"}
    assert len(store) == 2


def test_lock_serialises_same_conversation(store: ConversationStore):
    order = []

    def worker(tag: str) -> None:
        with store.lock("shared"):
            order.append(f"{tag}-start")
            time.sleep(0.05)
            order.append(f"{tag}-end")

    threads = [threading.Thread(target=worker, args=(t,)) for t in ("x", "y")]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    # No interleaving: each start is immediately followed by its own end
    assert order[0].split("-")[0] == order[1].split("-")[0]
    assert order[2].split("-")[0] == order[3].split("-")[0]


def test_create_from_config_reads_conversation_section():
    cfg = {"conversation": {"max_messages": 5, "trim_count": 2, "max_conversations": 3}}
    store = create_from_config(cfg, "PROMPT")
    assert store.policy.max_messages == 5
    assert store.policy.max_conversations == 3
    assert store.get_or_create("x")[0].content == "PROMPT"


def test_turn_locks_are_released_after_use(store: ConversationStore):
    for i in range(50):
        with store.lock(f"c{i}"):
            assert store.active_locks() == 1
    assert store.active_locks() == 0


def test_nested_lock_entry_survives_until_outer_exit(store: ConversationStore):
    with store.lock("c"):
        with store.lock("c"):
            pass
        assert store.active_locks() == 1
    assert store.active_locks() == 0


def test_lock_entry_released_after_clear_and_eviction():
    store = ConversationStore("SYSTEM", max_conversations=1)
    for cid in ("a", "b", "c"):
        with store.lock(cid):
            _turn(store, cid, 0)
    store.clear("c")
    assert store.active_locks() == 0
    assert len(store) == 0
