"""Session state: one conversation thread with an ordered message log."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone

from chatsync.shared.models.message import Message

DEFAULT_SESSION_TITLE = "New conversation"
AGENT_TITLE_PREFIX = "Conversation: "


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_default_session_title(title: str | None) -> bool:
    if not title:
        return True
    return title.strip() == DEFAULT_SESSION_TITLE


@dataclass
class AgentProfile:
    """A preset persona a new session can be started with."""
    name: str
    description: str = ""
    system_instruction: str | None = None


@dataclass
class Session:
    """Holds the full record of one conversation.

    The message log is append-mostly: entries are only ever appended or
    truncated from a given position, never reordered.
    """

    session_id: str
    title: str = DEFAULT_SESSION_TITLE
    messages: list[Message] = field(default_factory=list)
    owner_id: str | None = None
    members: list[str] = field(default_factory=list)
    system_instruction: str | None = None
    archived: bool = False
    project_id: str | None = None
    created_at: datetime | None = field(default_factory=_utcnow)
    updated_at: datetime | None = field(default_factory=_utcnow)

    def is_member(self, principal_id: str) -> bool:
        return principal_id in self.members

    def message_ids(self) -> list[str]:
        return [m.id for m in self.messages]

    def find_index(self, message_id: str) -> int:
        """Return the log position of *message_id*, or -1."""
        for i, msg in enumerate(self.messages):
            if msg.id == message_id:
                return i
        return -1

    def get_message(self, message_id: str) -> Message | None:
        idx = self.find_index(message_id)
        return self.messages[idx] if idx >= 0 else None

    def with_messages(self, messages: list[Message]) -> Session:
        """Copy of this session carrying a different log."""
        return dataclasses.replace(self, messages=list(messages))

    @property
    def message_count(self) -> int:
        return len(self.messages)


@dataclass
class CorrectionRecord:
    """A negatively rated answer queued for human review."""
    session_id: str
    user_id: str
    user_query: str
    model_response: str
    status: str = "pending"  # "pending", "corrected", "ignored"
    created_at: datetime = field(default_factory=_utcnow)
