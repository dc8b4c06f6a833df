"""Message and attachment models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import uuid


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _gen_id() -> str:
    return str(uuid.uuid4())


class MessageRole(Enum):
    USER = "user"
    MODEL = "model"


class FeedbackMark(Enum):
    GOOD = "good"
    BAD = "bad"


@dataclass
class MediaAttachment:
    """Media carried alongside a message (URL or inline document text)."""
    image_url: str | None = None
    video_url: str | None = None
    document_content: str | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.image_url or self.video_url or self.document_content)


@dataclass
class CodeBlock:
    language: str
    content: str


@dataclass
class Source:
    title: str
    url: str
    snippet: str = ""


@dataclass
class Message:
    role: MessageRole
    content: str
    id: str = field(default_factory=_gen_id)
    created_at: datetime = field(default_factory=_utcnow)
    attachment: MediaAttachment | None = None
    code: CodeBlock | None = None
    sources: list[Source] = field(default_factory=list)
    feedback: FeedbackMark | None = None
    # Placeholder awaiting a result; flips to False exactly once.
    in_flight: bool = False

    @property
    def is_user(self) -> bool:
        return self.role is MessageRole.USER

    @property
    def is_model(self) -> bool:
        return self.role is MessageRole.MODEL
