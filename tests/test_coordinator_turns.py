"""Tests for the per-turn protocol: creation, optimistic append, cancel, failures."""
from __future__ import annotations

import asyncio

import pytest

from chatsync.adapters.events import Notice, SessionUnavailable, TurnStateChanged
from chatsync.engine.errors import (
    AccessDenied,
    InferenceFailure,
    TransientIO,
    ValidationError,
)
from chatsync.engine.lifecycle import TurnState
from chatsync.engine.providers.base import InferenceResult
from chatsync.shared.models.message import MessageRole, Source


def _contents(actor) -> list[str]:
    return [m.content for m in actor.session.messages]


def _notices(actor) -> list[Notice]:
    return [e for e in actor.bus.drain() if isinstance(e, Notice)]


@pytest.mark.asyncio
async def test_first_turn_creates_titled_session(make_actor, inference, doc_store, settle) -> None:
    inference.replies = ["Hi there"]
    actor = make_actor()

    outcome = await actor.send_turn("Hello")
    await settle()

    assert outcome.completed
    session = actor.session
    assert session is not None
    assert session.title == "Hello"
    assert [(m.role, m.content) for m in session.messages] == [
        (MessageRole.USER, "Hello"),
        (MessageRole.MODEL, "Hi there"),
    ]
    assert session.members == ["alice"]
    stored = doc_store.documents("chats")[session.session_id]
    assert [m["content"] for m in stored["messages"]] == ["Hello", "Hi there"]
    assert actor.state is TurnState.IDLE
    assert not actor.is_sending
    await actor.close()


@pytest.mark.asyncio
async def test_title_is_first_thirty_characters(make_actor, settle) -> None:
    actor = make_actor()
    await actor.send_turn("Explain the difference between TCP and UDP in detail")
    await settle()

    assert actor.session.title == "Explain the difference between"
    assert len(actor.session.title) == 30
    await actor.close()


@pytest.mark.asyncio
async def test_empty_content_is_rejected_before_any_write(make_actor, doc_store) -> None:
    actor = make_actor()

    with pytest.raises(ValidationError):
        await actor.send_turn("   ")

    assert doc_store.calls == []
    assert actor.session is None
    assert actor.state is TurnState.IDLE


@pytest.mark.asyncio
async def test_racing_first_turns_create_one_session(make_actor, doc_store, settle) -> None:
    actor = make_actor()

    first, second = await asyncio.gather(
        actor.send_turn("first"),
        actor.send_turn("second"),
    )
    await settle()

    assert sorted([first.status, second.status]) == ["completed", "ignored"]
    assert len(doc_store.documents("chats")) == 1
    assert doc_store.calls.count("create") == 1
    await actor.close()


@pytest.mark.asyncio
async def test_cancel_during_inference_leaves_only_user_message(make_actor, inference, settle) -> None:
    inference.hold()
    actor = make_actor()

    task = asyncio.create_task(actor.send_turn("Write a poem"))
    await inference.started.wait()
    assert actor.state is TurnState.AWAITING_INFERENCE

    assert actor.cancel_turn() is True
    assert actor.state is TurnState.IDLE
    outcome = await task
    await settle()

    assert outcome.status == "cancelled"
    assert outcome.model_message is None
    assert _contents(actor) == ["Write a poem"]
    assert inference.cancelled_calls == 1
    assert any(n.title == "Generation cancelled" for n in _notices(actor))
    await actor.close()


@pytest.mark.asyncio
async def test_cancel_during_creation_keeps_user_message(make_actor, inference, doc_store, settle) -> None:
    doc_store.hold("create")
    actor = make_actor()

    task = asyncio.create_task(actor.send_turn("X"))
    await settle()
    assert "create" in doc_store.calls
    assert actor.cancel_turn() is True
    doc_store.release("create")
    outcome = await task
    await settle()

    assert outcome.status == "cancelled"
    assert outcome.model_message is None
    assert _contents(actor) == ["X"]
    stored = doc_store.documents("chats")[actor.session.session_id]
    assert [m["content"] for m in stored["messages"]] == ["X"]
    assert inference.requests == []
    assert actor.state is TurnState.IDLE
    await actor.close()


@pytest.mark.asyncio
async def test_cancel_while_persisting_keeps_user_message(make_actor, inference, doc_store, settle) -> None:
    doc_store.hold("array_union")
    actor = make_actor()

    task = asyncio.create_task(actor.send_turn("X"))
    await settle()
    assert actor.state is TurnState.SENDING
    assert _contents(actor) == ["X"]

    assert actor.cancel_turn() is True
    outcome = await task
    doc_store.release("array_union")
    await settle()

    assert outcome.status == "cancelled"
    assert _contents(actor) == ["X"]
    stored = doc_store.documents("chats")[actor.session.session_id]
    assert [m["content"] for m in stored["messages"]] == ["X"]
    assert inference.requests == []
    assert actor.state is TurnState.IDLE
    assert actor.ledger.caught_up
    await actor.close()


@pytest.mark.asyncio
async def test_cancel_when_idle_is_a_noop(make_actor) -> None:
    actor = make_actor()
    assert actor.cancel_turn() is False
    assert actor.cancel_turn() is False
    assert actor.state is TurnState.IDLE


@pytest.mark.asyncio
async def test_turn_after_cancel_runs_normally(make_actor, inference, settle) -> None:
    gate = inference.hold()
    actor = make_actor()
    task = asyncio.create_task(actor.send_turn("one"))
    await inference.started.wait()
    actor.cancel_turn()
    await task

    gate.set()
    inference.replies = ["two answered"]
    outcome = await actor.send_turn("two")
    await settle()

    assert outcome.completed
    assert _contents(actor) == ["one", "two", "two answered"]
    await actor.close()


@pytest.mark.asyncio
async def test_send_while_in_flight_is_ignored(make_actor, inference, settle) -> None:
    gate = inference.hold()
    actor = make_actor()
    task = asyncio.create_task(actor.send_turn("one"))
    await inference.started.wait()

    ignored = await actor.send_turn("two")
    assert ignored.status == "ignored"

    gate.set()
    await task
    await settle()
    assert _contents(actor) == ["one", "ok"]
    await actor.close()


@pytest.mark.asyncio
async def test_error_result_becomes_error_message(make_actor, inference, settle) -> None:
    inference.replies = [InferenceResult(error="quota exceeded")]
    actor = make_actor()

    outcome = await actor.send_turn("Hello")
    await settle()

    assert outcome.status == "failed"
    assert outcome.model_message.role is MessageRole.MODEL
    assert outcome.model_message.content == "Error: quota exceeded"
    assert _contents(actor) == ["Hello", "Error: quota exceeded"]
    assert any(n.level == "error" for n in _notices(actor))
    await actor.close()


@pytest.mark.asyncio
async def test_provider_failure_becomes_error_message(make_actor, inference, settle) -> None:
    inference.replies = [InferenceFailure("scripted", "model overloaded")]
    actor = make_actor()

    await actor.send_turn("Hello")
    await settle()

    assert _contents(actor)[-1] == "Error: model overloaded"
    await actor.close()


@pytest.mark.asyncio
async def test_unexpected_exception_becomes_generic_error(make_actor, inference, settle) -> None:
    inference.replies = [RuntimeError("boom")]
    actor = make_actor()

    outcome = await actor.send_turn("Hello")
    await settle()

    assert outcome.status == "failed"
    assert _contents(actor)[-1] == (
        "Error: An error occurred while generating the response."
    )
    assert actor.state is TurnState.IDLE
    await actor.close()


@pytest.mark.asyncio
async def test_model_result_fields_are_kept(make_actor, inference, settle) -> None:
    inference.replies = [InferenceResult(
        text="See sources",
        sources=[Source(title="Docs", url="https://example.com")],
    )]
    actor = make_actor()

    await actor.send_turn("Where is it documented?")
    await settle()

    answer = actor.session.messages[-1]
    assert answer.sources[0].url == "https://example.com"
    await actor.close()


@pytest.mark.asyncio
async def test_append_failure_rolls_back_and_skips_inference(
    make_actor, inference, doc_store, settle,
) -> None:
    actor = make_actor()
    await actor.new_session()
    await settle()
    actor.bus.drain()

    doc_store.fail_next("array_union", TransientIO("chats/x", "update", "offline"))
    outcome = await actor.send_turn("Hello")
    await settle()

    assert outcome.status == "failed"
    assert isinstance(outcome.error, TransientIO)
    assert actor.session is not None
    assert actor.session.messages == []
    assert inference.requests == []
    assert actor.state is TurnState.IDLE
    assert any(n.title == "Message not sent" for n in _notices(actor))
    await actor.close()


@pytest.mark.asyncio
async def test_connection_errors_are_reported_as_transient(make_actor, doc_store, settle) -> None:
    actor = make_actor()
    await actor.new_session()
    await settle()

    doc_store.fail_next("array_union", ConnectionError("reset by peer"))
    outcome = await actor.send_turn("Hello")
    await settle()

    assert isinstance(outcome.error, TransientIO)
    assert actor.session.messages == []
    await actor.close()


@pytest.mark.asyncio
async def test_access_denied_on_append_clears_session(make_actor, doc_store, settle) -> None:
    actor = make_actor()
    await actor.new_session()
    await settle()
    actor.bus.drain()

    doc_store.fail_next("array_union", AccessDenied("chats/x", "update"))
    outcome = await actor.send_turn("Hello")
    await settle()

    assert outcome.status == "failed"
    assert actor.session is None
    events = actor.bus.drain()
    unavailable = [e for e in events if isinstance(e, SessionUnavailable)]
    assert unavailable and unavailable[0].reason == "access_lost"
    await actor.close()


@pytest.mark.asyncio
async def test_failed_creation_leaves_no_optimistic_state(make_actor, inference, doc_store, settle) -> None:
    doc_store.fail_next("create", TransientIO("chats", "create", "offline"))
    actor = make_actor()

    outcome = await actor.send_turn("Hello")
    await settle()

    assert outcome.status == "failed"
    assert actor.session is None
    assert inference.requests == []
    assert actor.state is TurnState.IDLE


@pytest.mark.asyncio
async def test_optimistic_message_survives_lagging_snapshot(make_actor, doc_store, settle) -> None:
    actor = make_actor()
    await actor.new_session()
    await settle()

    doc_store.hold("array_union")
    task = asyncio.create_task(actor.send_turn("Hi"))
    await settle()

    # The store has not applied the append; the subscription keeps
    # delivering the empty log, but the optimistic message stays.
    await actor.rename("Greetings")
    await settle()
    assert _contents(actor) == ["Hi"]
    assert actor.ledger.caught_up is False

    doc_store.release("array_union")
    await task
    await settle()
    assert _contents(actor) == ["Hi", "ok"]
    assert actor.ledger.caught_up is True
    await actor.close()


@pytest.mark.asyncio
async def test_state_changes_are_published(make_actor, settle) -> None:
    actor = make_actor()
    await actor.send_turn("Hello")
    await settle()

    changes = [
        (e.old_state, e.new_state) for e in actor.bus.drain()
        if isinstance(e, TurnStateChanged)
    ]
    assert changes == [
        ("idle", "sending"),
        ("sending", "awaiting_inference"),
        ("awaiting_inference", "idle"),
    ]
    await actor.close()


@pytest.mark.asyncio
async def test_history_and_attachment_reach_inference(make_actor, inference, settle) -> None:
    from chatsync.shared.models.message import MediaAttachment

    actor = make_actor()
    await actor.send_turn("first")
    await actor.send_turn(
        "summarise this",
        MediaAttachment(document_content="Quarterly report text"),
    )
    await settle()

    request = inference.requests[-1]
    assert [(h.role, h.content) for h in request.history] == [
        ("user", "first"), ("model", "ok"), ("user", "summarise this"),
    ]
    assert request.prompt_text() == "Quarterly report text\n\n---\n\nsummarise this"
    await actor.close()
