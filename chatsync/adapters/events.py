"""Event types published by a session actor.

Each event is a typed dataclass the UI layer consumes from the EventBus.
"""
from __future__ import annotations

from dataclasses import dataclass


@dataclass
class SessionEvent:
    """Base event from a session actor."""
    event_type: str = ""
    session_id: str | None = None


@dataclass
class SessionUpdated(SessionEvent):
    """The UI-visible session changed (or was cleared)."""
    event_type: str = "session_updated"
    message_count: int = 0
    title: str = ""


@dataclass
class TurnStateChanged(SessionEvent):
    event_type: str = "turn_state_changed"
    old_state: str = ""
    new_state: str = ""


@dataclass
class SessionUnavailable(SessionEvent):
    """The open session can no longer be shown.

    reason: "access_lost", "not_found", "malformed" or "deleted".
    """
    event_type: str = "session_unavailable"
    reason: str = ""
    detail: str = ""


@dataclass
class Notice(SessionEvent):
    """User-facing toast."""
    event_type: str = "notice"
    level: str = "info"  # "info" or "error"
    title: str = ""
    description: str = ""
