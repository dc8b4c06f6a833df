"""Tests for the in-memory session store."""
from __future__ import annotations

import pytest

from chatsync.engine.session_store import SessionStore
from chatsync.shared.models.message import FeedbackMark, Message, MessageRole
from chatsync.shared.models.session import Session


def _session(session_id: str = "s1", *messages: Message) -> Session:
    return Session(session_id=session_id, members=["alice"], messages=list(messages))


def test_append_local_requires_active_session() -> None:
    store = SessionStore()
    with pytest.raises(RuntimeError):
        store.append_local(Message(role=MessageRole.USER, content="hi"))


def test_rollback_last_removes_most_recent_optimistic_append() -> None:
    store = SessionStore()
    store.replace_active(_session())
    first = Message(role=MessageRole.USER, content="one")
    second = Message(role=MessageRole.MODEL, content="two")
    store.append_local(first)
    store.append_local(second)

    removed = store.rollback_last()

    assert removed is second
    assert store.get_active().message_ids() == [first.id]


def test_rollback_by_id_leaves_later_remote_messages() -> None:
    store = SessionStore()
    store.replace_active(_session())
    mine = Message(role=MessageRole.USER, content="mine")
    store.append_local(mine)
    theirs = Message(role=MessageRole.USER, content="theirs")
    store.replace_active(store.get_active().with_messages([mine, theirs]))

    store.rollback_last(mine.id)

    assert store.get_active().message_ids() == [theirs.id]


def test_rollback_with_nothing_pending_is_noop() -> None:
    store = SessionStore()
    assert store.rollback_last() is None
    store.replace_active(_session("s1", Message(role=MessageRole.USER, content="x")))
    assert store.rollback_last() is None
    assert store.get_active().message_count == 1


def test_switching_session_forgets_optimistic_appends() -> None:
    store = SessionStore()
    store.replace_active(_session("s1"))
    store.append_local(Message(role=MessageRole.USER, content="one"))
    store.replace_active(_session("s2", Message(role=MessageRole.USER, content="other")))

    assert store.rollback_last() is None
    assert store.active_id == "s2"


def test_confirmed_appends_are_no_longer_rolled_back() -> None:
    store = SessionStore()
    store.replace_active(_session())
    first = Message(role=MessageRole.USER, content="one")
    second = Message(role=MessageRole.USER, content="two")
    store.append_local(first)
    store.append_local(second)

    store.confirm_appends({first.id, second.id})

    assert store._local_appends == []
    assert store.rollback_last() is None
    assert store.get_active().message_ids() == [first.id, second.id]


def test_truncate_returns_removed_suffix() -> None:
    messages = [Message(role=MessageRole.USER, content=str(i)) for i in range(4)]
    store = SessionStore()
    store.replace_active(_session("s1", *messages))

    removed = store.truncate(1)

    assert [m.content for m in removed] == ["1", "2", "3"]
    assert [m.content for m in store.get_active().messages] == ["0"]


def test_set_feedback_marks_single_message() -> None:
    answer = Message(role=MessageRole.MODEL, content="a")
    store = SessionStore()
    store.replace_active(_session("s1", answer))

    assert store.set_feedback(answer.id, FeedbackMark.GOOD) is True
    assert store.get_active().messages[0].feedback is FeedbackMark.GOOD
    assert store.set_feedback("missing", FeedbackMark.BAD) is False


def test_listeners_see_every_change_until_removed() -> None:
    store = SessionStore()
    seen: list = []
    remove = store.add_listener(lambda s: seen.append(s.session_id if s else None))

    store.replace_active(_session("s1"))
    store.append_local(Message(role=MessageRole.USER, content="hi"))
    store.replace_active(None)
    remove()
    store.replace_active(_session("s2"))

    assert seen == ["s1", "s1", None]


def test_failing_listener_does_not_break_store() -> None:
    store = SessionStore()

    def _boom(_session) -> None:
        raise RuntimeError("render failed")

    store.add_listener(_boom)
    store.replace_active(_session("s1"))
    assert store.active_id == "s1"
