"""Abstract base for inference services.

Each provider wraps one generative backend. The coordinator treats a
call as a single opaque async request: no streaming contract, a
cooperative cancellation token, and a structured result.
"""
from __future__ import annotations

import abc
import logging
import os
from dataclasses import dataclass, field
from typing import Any

from chatsync.shared.models.message import CodeBlock, MediaAttachment, Source

from ..cancellation import CancellationToken

logger = logging.getLogger(__name__)

DOCUMENT_SEPARATOR = "\n\n---\n\n"


@dataclass
class HistoryEntry:
    role: str  # "user" or "model"
    content: str


@dataclass
class InferenceRequest:
    """Everything a provider needs to answer one user turn.

    ``history`` is the full ordered log including the turn being answered;
    ``message`` repeats that turn's text for providers that only take a
    single question.
    """
    history: list[HistoryEntry]
    message: str
    system_instruction: str | None = None
    attachment: MediaAttachment | None = None
    model_id: str | None = None

    def prompt_text(self) -> str:
        """User message with any attached document prepended."""
        if self.attachment is not None and self.attachment.document_content:
            return f"{self.attachment.document_content}{DOCUMENT_SEPARATOR}{self.message}"
        return self.message


@dataclass
class InferenceResult:
    """Result from a provider invocation."""
    text: str = ""
    code: CodeBlock | None = None
    image_url: str | None = None
    video_url: str | None = None
    sources: list[Source] = field(default_factory=list)
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.error is None


class InferenceService(abc.ABC):
    """Abstract inference interface."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short provider name (e.g. 'openrouter', 'cygnis')."""

    @abc.abstractmethod
    async def complete(
        self,
        request: InferenceRequest,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> InferenceResult:
        """Answer one turn.

        Provider-reported failures may come back as ``InferenceResult.error``
        or be raised as InferenceFailure; the coordinator handles both.
        """

    def is_available(self) -> bool:
        """Whether credentials/config needed for a call are present."""
        return True

    async def shutdown(self) -> None:
        """Release pooled resources. Default no-op."""
        return None


class HttpProvider(InferenceService):
    """Shared plumbing for providers reached over HTTP with a bearer key."""

    def __init__(
        self,
        api_url: str,
        api_key_env: str,
        *,
        timeout: float = 120.0,
    ) -> None:
        self._api_url = api_url
        self._api_key_env = api_key_env
        self._timeout = timeout

    @property
    def api_url(self) -> str:
        return self._api_url

    def _api_key(self) -> str | None:
        key = os.environ.get(self._api_key_env, "").strip()
        return key or None

    def is_available(self) -> bool:
        return self._api_key() is not None
