"""Tests for session-level operations and multi-view synchronization."""
from __future__ import annotations

import pytest

from chatsync.adapters.events import SessionUnavailable, SessionUpdated
from chatsync.engine.errors import AccessDenied, NotFound, TransientIO
from chatsync.shared.models.session import AgentProfile


def _unavailable(actor) -> list[SessionUnavailable]:
    return [e for e in actor.bus.drain() if isinstance(e, SessionUnavailable)]


@pytest.mark.asyncio
async def test_new_session_has_default_title(make_actor, doc_store, settle) -> None:
    actor = make_actor(project_id="proj-1")
    session = await actor.new_session()
    await settle()

    assert session.title == "New conversation"
    assert actor.session.session_id == session.session_id
    stored = doc_store.documents("chats")[session.session_id]
    assert stored["members"] == ["alice"]
    assert stored["userId"] == "alice"
    assert stored["projectId"] == "proj-1"
    await actor.close()


@pytest.mark.asyncio
async def test_new_session_for_agent_carries_instruction(make_actor, inference, settle) -> None:
    agent = AgentProfile(name="Travel Planner", system_instruction="Plan trips.")
    actor = make_actor()
    await actor.new_session(agent)
    await actor.send_turn("Lisbon in spring?")
    await settle()

    assert actor.session.title == "Conversation: Travel Planner"
    assert actor.session.system_instruction == "Plan trips."
    assert inference.requests[0].system_instruction == "Plan trips."
    await actor.close()


@pytest.mark.asyncio
async def test_first_message_renames_default_titled_session(make_actor, doc_store, settle) -> None:
    actor = make_actor()
    session = await actor.new_session()
    await actor.send_turn("Plan a three day trip to Lisbon in April")
    await actor.coordinator.wait_background()
    await settle()

    assert actor.session.title == "Plan a three day trip to Lisbo"
    assert doc_store.documents("chats")[session.session_id]["title"] == actor.session.title
    await actor.close()


@pytest.mark.asyncio
async def test_rename_archive_and_share_patch_document(make_actor, doc_store, settle) -> None:
    actor = make_actor()
    session = await actor.new_session()

    assert await actor.rename("  Weekly sync notes ")
    assert await actor.set_archived(True)
    assert await actor.share("bob")
    await settle()

    stored = doc_store.documents("chats")[session.session_id]
    assert stored["title"] == "Weekly sync notes"
    assert stored["isArchived"] is True
    assert stored["members"] == ["alice", "bob"]
    assert actor.session.members == ["alice", "bob"]
    await actor.close()


@pytest.mark.asyncio
async def test_failed_rename_reverts_local_title(make_actor, doc_store, settle) -> None:
    actor = make_actor()
    await actor.new_session()
    await settle()

    doc_store.fail_next("update", TransientIO("chats/x", "update", "offline"))
    assert await actor.rename("Something else") is False

    assert actor.session.title == "New conversation"
    await actor.close()


@pytest.mark.asyncio
async def test_list_sessions_filters_and_orders(make_actor, doc_store, settle) -> None:
    alice = make_actor("alice")
    bob = make_actor("bob")
    await alice.send_turn("Budget review")
    await alice.send_turn("more on the budget")
    await alice.new_session()
    await alice.rename("Archived idea")
    await alice.set_archived(True)
    await alice.new_session()
    await alice.rename("Recipe ideas")
    await bob.send_turn("Bob private notes")
    await settle()

    titles = [s.title for s in await alice.list_sessions()]
    assert titles == ["Recipe ideas", "Budget review"]

    with_archived = await alice.list_sessions(include_archived=True)
    assert {s.title for s in with_archived} == {"Recipe ideas", "Archived idea", "Budget review"}

    found = await alice.list_sessions(search="BUDGET")
    assert [s.title for s in found] == ["Budget review"]
    await alice.close()
    await bob.close()


@pytest.mark.asyncio
async def test_delete_removes_document_and_clears_view(make_actor, doc_store, settle) -> None:
    actor = make_actor()
    session = await actor.new_session()
    await settle()
    actor.bus.drain()

    assert await actor.delete() is True
    await settle()

    assert session.session_id not in doc_store.documents("chats")
    assert actor.session is None
    assert [e.reason for e in _unavailable(actor)] == ["deleted"]
    await actor.close()


@pytest.mark.asyncio
async def test_second_view_sees_turns_from_first(make_actor, inference, settle) -> None:
    first = make_actor("alice")
    await first.send_turn("Hello")
    await settle()
    second = make_actor("alice")
    await second.open(first.session.session_id)

    inference.replies = ["Sure"]
    await first.send_turn("Can you help?")
    await settle()

    assert [m.content for m in second.session.messages] == [
        "Hello", "ok", "Can you help?", "Sure",
    ]
    assert second.session.message_ids() == first.session.message_ids()
    await first.close()
    await second.close()


@pytest.mark.asyncio
async def test_shared_member_can_open_and_reply(make_actor, settle) -> None:
    alice = make_actor("alice")
    await alice.send_turn("Hello team")
    await alice.share("bob")
    await settle()

    bob = make_actor("bob")
    await bob.open(alice.session.session_id)
    await bob.send_turn("Hi Alice")
    await settle()

    assert [m.content for m in alice.session.messages] == [
        "Hello team", "ok", "Hi Alice", "ok",
    ]
    await alice.close()
    await bob.close()


@pytest.mark.asyncio
async def test_removed_member_loses_session(make_actor, doc_store, settle) -> None:
    alice = make_actor("alice")
    await alice.send_turn("Hello")
    await alice.share("bob")
    await settle()
    session_id = alice.session.session_id
    alice.bus.drain()

    await doc_store.update("chats", session_id, {"members": ["bob"]}, principal="bob")
    await settle()

    assert alice.session is None
    assert [e.reason for e in _unavailable(alice)] == ["access_lost"]
    await alice.close()


@pytest.mark.asyncio
async def test_remote_deletion_reports_not_found(make_actor, doc_store, settle) -> None:
    alice = make_actor("alice")
    await alice.send_turn("Hello")
    await settle()
    session_id = alice.session.session_id
    alice.bus.drain()

    await doc_store.delete("chats", session_id, principal="alice")
    await settle()

    assert alice.session is None
    assert [e.reason for e in _unavailable(alice)] == ["not_found"]
    await alice.close()


@pytest.mark.asyncio
async def test_malformed_document_drops_view(make_actor, doc_store, settle) -> None:
    alice = make_actor("alice")
    await alice.send_turn("Hello")
    await settle()
    session_id = alice.session.session_id
    alice.bus.drain()

    await doc_store.update("chats", session_id, {"messages": "garbage"}, principal="alice")
    await settle()

    assert alice.session is None
    assert [e.reason for e in _unavailable(alice)] == ["malformed"]
    await alice.close()


@pytest.mark.asyncio
async def test_open_checks_membership_and_existence(make_actor, settle) -> None:
    alice = make_actor("alice")
    await alice.send_turn("private")
    await settle()
    mallory = make_actor("mallory")

    with pytest.raises(AccessDenied):
        await mallory.open(alice.session.session_id)
    with pytest.raises(NotFound):
        await mallory.open("does-not-exist")
    assert mallory.session is None
    await alice.close()


@pytest.mark.asyncio
async def test_close_releases_subscription(make_actor, doc_store, settle) -> None:
    actor = make_actor()
    session = await actor.new_session()
    assert doc_store.listener_count("chats", session.session_id) == 1

    await actor.close()

    assert doc_store.listener_count("chats", session.session_id) == 0
    assert actor.session is None


@pytest.mark.asyncio
async def test_store_changes_are_published(make_actor, settle) -> None:
    actor = make_actor()
    await actor.send_turn("Hello")
    await settle()

    updates = [e for e in actor.bus.drain() if isinstance(e, SessionUpdated)]
    assert updates
    assert updates[-1].message_count == 2
    assert updates[-1].title == "Hello"
    await actor.close()
