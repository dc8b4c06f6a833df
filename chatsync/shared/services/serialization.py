"""Document codec - convert sessions and messages to and from store documents.

Document layout (``chats/<id>``):
    title, userId, members, messages[], systemPrompt, isArchived,
    projectId, createdAt, updatedAt

Keys are camelCase because the documents are shared with non-Python
clients. Timestamps are ISO-8601 strings; epoch milliseconds written by
older clients are accepted on read.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from chatsync.shared.models.message import (
    CodeBlock,
    FeedbackMark,
    MediaAttachment,
    Message,
    MessageRole,
    Source,
)
from chatsync.shared.models.session import (
    DEFAULT_SESSION_TITLE,
    CorrectionRecord,
    Session,
)


def _ensure_aware(dt: datetime) -> datetime:
    """Ensure a datetime is timezone-aware (assume UTC if naive)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO string or epoch-milliseconds number."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _ensure_aware(value)
    if isinstance(value, bool):
        raise TypeError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    if isinstance(value, str):
        return _ensure_aware(datetime.fromisoformat(value))
    raise TypeError(f"Invalid timestamp: {value!r}")


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return _ensure_aware(value).isoformat()


def message_to_dict(msg: Message) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": msg.id,
        "role": msg.role.value,
        "content": msg.content,
        "createdAt": format_timestamp(msg.created_at),
    }
    if msg.attachment is not None:
        if msg.attachment.image_url:
            data["imageUrl"] = msg.attachment.image_url
        if msg.attachment.video_url:
            data["videoUrl"] = msg.attachment.video_url
        if msg.attachment.document_content:
            data["documentContent"] = msg.attachment.document_content
    if msg.code is not None:
        data["code"] = {"language": msg.code.language, "content": msg.code.content}
    if msg.sources:
        data["sources"] = [
            {"title": s.title, "url": s.url, "snippet": s.snippet}
            for s in msg.sources
        ]
    if msg.feedback is not None:
        data["feedback"] = msg.feedback.value
    if msg.in_flight:
        data["isLoading"] = True
    return data


def dict_to_message(data: dict[str, Any]) -> Message:
    if not isinstance(data, dict):
        raise TypeError(f"Message must be an object, got {type(data).__name__}")
    attachment = MediaAttachment(
        image_url=data.get("imageUrl"),
        video_url=data.get("videoUrl"),
        document_content=data.get("documentContent"),
    )
    code_data = data.get("code")
    feedback = data.get("feedback")
    created_at = parse_timestamp(data.get("createdAt"))
    msg = Message(
        role=MessageRole(data["role"]),
        content=str(data.get("content") or ""),
        id=str(data["id"]),
        attachment=None if attachment.is_empty else attachment,
        code=(
            CodeBlock(language=code_data["language"], content=code_data["content"])
            if code_data else None
        ),
        sources=[
            Source(title=s["title"], url=s["url"], snippet=s.get("snippet", ""))
            for s in data.get("sources") or []
        ],
        feedback=FeedbackMark(feedback) if feedback else None,
        in_flight=bool(data.get("isLoading", False)),
    )
    if created_at is not None:
        msg.created_at = created_at
    return msg


def session_to_document(session: Session) -> dict[str, Any]:
    """Full document body for *session* (used on create)."""
    data: dict[str, Any] = {
        "title": session.title,
        "userId": session.owner_id,
        "members": list(session.members),
        "messages": [message_to_dict(m) for m in session.messages],
        "isArchived": session.archived,
        "createdAt": format_timestamp(session.created_at),
        "updatedAt": format_timestamp(session.updated_at),
    }
    if session.system_instruction:
        data["systemPrompt"] = session.system_instruction
    if session.project_id:
        data["projectId"] = session.project_id
    return data


def document_to_session(doc_id: str, data: dict[str, Any]) -> Session:
    """Decode a stored document. Raises KeyError/TypeError/ValueError if malformed."""
    if not isinstance(data, dict):
        raise TypeError(f"Session document must be an object, got {type(data).__name__}")
    members = data.get("members", [])
    if not isinstance(members, list):
        raise TypeError("members must be a list")
    raw_messages = data.get("messages", [])
    if not isinstance(raw_messages, list):
        raise TypeError("messages must be a list")
    return Session(
        session_id=doc_id,
        title=str(data.get("title") or DEFAULT_SESSION_TITLE),
        messages=[dict_to_message(m) for m in raw_messages],
        owner_id=data.get("userId"),
        members=[str(m) for m in members],
        system_instruction=data.get("systemPrompt") or None,
        archived=bool(data.get("isArchived", False)),
        project_id=data.get("projectId") or None,
        created_at=parse_timestamp(data.get("createdAt")),
        updated_at=parse_timestamp(data.get("updatedAt")),
    )


def correction_to_document(record: CorrectionRecord) -> dict[str, Any]:
    return {
        "userId": record.user_id,
        "chatId": record.session_id,
        "userQuery": record.user_query,
        "modelResponse": record.model_response,
        "status": record.status,
        "createdAt": format_timestamp(record.created_at),
    }


# Patchable session fields -> document keys.
SESSION_FIELD_KEYS = {
    "title": "title",
    "archived": "isArchived",
    "members": "members",
    "system_instruction": "systemPrompt",
    "project_id": "projectId",
}


def session_fields_to_document(fields: dict[str, Any]) -> dict[str, Any]:
    """Translate a ``patch_session`` field mapping into document keys."""
    out: dict[str, Any] = {}
    for name, value in fields.items():
        key = SESSION_FIELD_KEYS.get(name)
        if key is None:
            raise ValueError(f"Field '{name}' cannot be patched")
        out[key] = list(value) if name == "members" else value
    return out
