"""Tests for the session document codec and title derivation."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from chatsync.shared.models.message import (
    CodeBlock,
    FeedbackMark,
    MediaAttachment,
    Message,
    MessageRole,
    Source,
)
from chatsync.shared.models.session import AgentProfile, CorrectionRecord, Session
from chatsync.shared.services.serialization import (
    correction_to_document,
    dict_to_message,
    document_to_session,
    message_to_dict,
    parse_timestamp,
    session_fields_to_document,
    session_to_document,
)
from chatsync.shared.services.session_naming import (
    agent_session_title,
    derive_session_title,
    normalize_title,
)


def test_message_uses_camel_case_keys() -> None:
    msg = Message(
        role=MessageRole.MODEL,
        content="Here you go",
        id="m1",
        attachment=MediaAttachment(image_url="https://img.example/cat.png"),
        code=CodeBlock(language="python", content="print(1)"),
        sources=[Source(title="Docs", url="https://example.com", snippet="s")],
        feedback=FeedbackMark.BAD,
    )

    data = message_to_dict(msg)

    assert data["imageUrl"] == "https://img.example/cat.png"
    assert data["code"] == {"language": "python", "content": "print(1)"}
    assert data["sources"] == [{"title": "Docs", "url": "https://example.com", "snippet": "s"}]
    assert data["feedback"] == "bad"
    assert "videoUrl" not in data
    assert "isLoading" not in data

    decoded = dict_to_message(data)
    assert decoded.id == "m1"
    assert decoded.attachment.image_url == "https://img.example/cat.png"
    assert decoded.code.language == "python"
    assert decoded.feedback is FeedbackMark.BAD


def test_document_to_session_reads_stored_fields() -> None:
    session = document_to_session("s1", {
        "title": "Trip",
        "userId": "alice",
        "members": ["alice", "bob"],
        "messages": [{"id": "u1", "role": "user", "content": "hi"}],
        "systemPrompt": "Be brief.",
        "isArchived": True,
        "projectId": "p1",
        "createdAt": "2026-01-02T03:04:05+00:00",
        "updatedAt": 1767323045000,
    })

    assert session.session_id == "s1"
    assert session.owner_id == "alice"
    assert session.is_member("bob")
    assert session.messages[0].is_user
    assert session.system_instruction == "Be brief."
    assert session.archived is True
    assert session.project_id == "p1"
    assert session.created_at == datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert session.updated_at.tzinfo is not None


def test_missing_title_falls_back_to_default() -> None:
    session = document_to_session("s1", {"members": ["alice"]})
    assert session.title == "New conversation"
    assert session.messages == []


@pytest.mark.parametrize("data", [
    {"members": "alice"},
    {"members": ["alice"], "messages": "garbage"},
    {"members": ["alice"], "messages": [{"role": "user"}]},
    {"members": ["alice"], "messages": [{"id": "x", "role": "robot"}]},
    {"members": ["alice"], "createdAt": True},
])
def test_malformed_documents_raise(data) -> None:
    with pytest.raises((KeyError, TypeError, ValueError)):
        document_to_session("s1", data)


def test_session_document_omits_empty_optionals() -> None:
    data = session_to_document(Session(session_id="s1", members=["alice"], owner_id="alice"))
    assert "systemPrompt" not in data
    assert "projectId" not in data
    assert data["isArchived"] is False


def test_patch_fields_map_to_document_keys() -> None:
    assert session_fields_to_document({"archived": True, "title": "x"}) == {
        "isArchived": True, "title": "x",
    }
    with pytest.raises(ValueError):
        session_fields_to_document({"messages": []})


def test_correction_record_document() -> None:
    record = CorrectionRecord("s1", "alice", "Q", "A")
    data = correction_to_document(record)
    assert data["chatId"] == "s1"
    assert data["userQuery"] == "Q"
    assert data["modelResponse"] == "A"
    assert data["status"] == "pending"


def test_parse_timestamp_accepts_naive_iso() -> None:
    parsed = parse_timestamp("2026-05-01T10:00:00")
    assert parsed.tzinfo is not None
    assert parse_timestamp(None) is None


def test_derive_title_collapses_whitespace_and_truncates() -> None:
    assert derive_session_title("  Hello \n  world  ") == "Hello world"
    assert derive_session_title("x" * 50) == "x" * 30
    assert derive_session_title("abcdef", max_chars=3) == "abc"
    assert derive_session_title("   ") == "New conversation"


def test_agent_title() -> None:
    assert agent_session_title(None) == "New conversation"
    assert agent_session_title(AgentProfile(name="Tutor")) == "Conversation: Tutor"


def test_normalize_title() -> None:
    assert normalize_title('  "Quarterly  plan" ') == "Quarterly plan"
    assert normalize_title("") == "New conversation"
    assert len(normalize_title("y" * 300)) == 120
