"""Adapters package - bridge between the session engine and UI front ends."""
from __future__ import annotations

__all__ = [
    "EventBus",
    "Notice",
    "SessionEvent",
    "SessionUnavailable",
    "SessionUpdated",
    "TurnStateChanged",
]

from chatsync.adapters.event_bus import EventBus
from chatsync.adapters.events import (
    Notice,
    SessionEvent,
    SessionUnavailable,
    SessionUpdated,
    TurnStateChanged,
)
