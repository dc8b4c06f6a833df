"""Derive session titles from the first user message or a starting agent.

Titles are deterministic: the leading characters of the prompt with
whitespace collapsed, so every tab derives the same title for the same turn.
"""
from __future__ import annotations

import logging

from chatsync.shared.models.session import (
    AGENT_TITLE_PREFIX,
    DEFAULT_SESSION_TITLE,
    AgentProfile,
)

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 30


def derive_session_title(user_message: str, max_chars: int = TITLE_MAX_CHARS) -> str:
    """Generate a session title from the user's first message."""
    text = " ".join((user_message or "").split())
    if not text:
        return DEFAULT_SESSION_TITLE
    if max_chars <= 0:
        return text
    return text[:max_chars]


def agent_session_title(agent: AgentProfile | None) -> str:
    """Title for an empty session started with (or without) an agent."""
    if agent is None or not agent.name.strip():
        return DEFAULT_SESSION_TITLE
    return f"{AGENT_TITLE_PREFIX}{agent.name.strip()}"


def normalize_title(raw: str | None) -> str:
    """Clean a user-supplied title; blank input falls back to the default."""
    cleaned = " ".join((raw or "").split()).strip().strip('"\'').strip()
    if not cleaned:
        logger.debug("Blank title supplied; using default")
        return DEFAULT_SESSION_TITLE
    if len(cleaned) > 120:
        cleaned = cleaned[:117].rstrip() + "..."
    return cleaned
