"""In-memory holder of the active session - the single source of truth for the UI.

No validation happens here. Only the coordinator and the reconciler
mutate it; the UI reads and registers change listeners.
"""
from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable

from chatsync.shared.models.message import FeedbackMark, Message
from chatsync.shared.models.session import Session

logger = logging.getLogger(__name__)

StoreListener = Callable[[Session | None], None]


class SessionStore:
    """Holds the UI-visible copy of the active session."""

    def __init__(self) -> None:
        self._active: Session | None = None
        # Ids of optimistic appends, most recent last.
        self._local_appends: list[str] = []
        self._listeners: list[StoreListener] = []

    def get_active(self) -> Session | None:
        return self._active

    @property
    def active_id(self) -> str | None:
        return self._active.session_id if self._active is not None else None

    def replace_active(self, session: Session | None) -> None:
        """Swap in a whole session (or clear it)."""
        if session is None or (
            self._active is not None
            and session.session_id != self._active.session_id
        ):
            self._local_appends.clear()
        self._active = session
        self._notify()

    def append_local(self, message: Message) -> None:
        """Optimistically append *message* to the active log."""
        if self._active is None:
            raise RuntimeError("No active session to append to")
        self._active = self._active.with_messages(
            [*self._active.messages, message]
        )
        self._local_appends.append(message.id)
        self._notify()

    def confirm_appends(self, message_ids: set[str]) -> None:
        """Forget optimistic appends that a snapshot has reflected."""
        if self._local_appends:
            self._local_appends = [
                i for i in self._local_appends if i not in message_ids
            ]

    def rollback_last(self, message_id: str | None = None) -> Message | None:
        """Remove the most recent optimistic append still in the log.

        With *message_id*, removes that specific optimistic append instead;
        a later snapshot may have appended other writers' messages after it.
        """
        if self._active is None:
            return None
        candidates = (
            [message_id] if message_id is not None
            else list(reversed(self._local_appends))
        )
        for mid in candidates:
            idx = self._active.find_index(mid)
            if mid in self._local_appends:
                self._local_appends.remove(mid)
            if idx < 0:
                continue
            removed = self._active.messages[idx]
            remaining = [m for i, m in enumerate(self._active.messages) if i != idx]
            self._active = self._active.with_messages(remaining)
            logger.debug("Rolled back optimistic message %s", mid)
            self._notify()
            return removed
        return None

    def truncate(self, keep: int) -> list[Message]:
        """Cut the active log down to its first *keep* messages; return the rest."""
        if self._active is None:
            return []
        removed = self._active.messages[keep:]
        self._active = self._active.with_messages(self._active.messages[:keep])
        dropped = {m.id for m in removed}
        self._local_appends = [i for i in self._local_appends if i not in dropped]
        self._notify()
        return removed

    def set_feedback(self, message_id: str, mark: FeedbackMark | None) -> bool:
        """Set the feedback mark of one message in place."""
        if self._active is None:
            return False
        idx = self._active.find_index(message_id)
        if idx < 0:
            return False
        messages = list(self._active.messages)
        messages[idx] = dataclasses.replace(messages[idx], feedback=mark)
        self._active = self._active.with_messages(messages)
        self._notify()
        return True

    def add_listener(self, listener: StoreListener) -> Callable[[], None]:
        """Register a change listener. Returns a function that removes it."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._active)
            except Exception:
                logger.warning("Session store listener failed", exc_info=True)
