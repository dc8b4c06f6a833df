"""History rewrites: edit a user message, regenerate a model answer, rate an answer.

Edit and regenerate cancel any in-flight turn, truncate the log through
the coordinator and then run a fresh turn. Feedback marks are final once
set; a negative mark also queues a correction record.
"""
from __future__ import annotations

import logging
from collections.abc import Callable

from chatsync.shared.models.message import FeedbackMark, MediaAttachment, Message
from chatsync.shared.models.session import CorrectionRecord, Session

from .coordinator import Coordinator, TurnOutcome
from .errors import ChatSyncError, ValidationError
from .session_store import SessionStore
from .sync_channel import CorrectionQueue

logger = logging.getLogger(__name__)

NO_USER_QUERY = "N/A"


class HistoryRewriter:
    """Edit / regenerate / feedback on the active session's log."""

    def __init__(
        self,
        coordinator: Coordinator,
        store: SessionStore,
        corrections: CorrectionQueue,
        notify: Callable[[str, str, str], None] | None = None,
    ) -> None:
        self._coordinator = coordinator
        self._store = store
        self._corrections = corrections
        self._notify_cb = notify

    def _notify(self, level: str, title: str, description: str = "") -> None:
        if self._notify_cb is not None:
            self._notify_cb(level, title, description)

    def _locate(self, message_id: str) -> tuple[Session, int]:
        session = self._store.get_active()
        if session is None:
            raise ValidationError("No active session")
        idx = session.find_index(message_id)
        if idx < 0:
            raise ValidationError(f"Message {message_id} is not in the log")
        return session, idx

    async def edit_message(self, message_id: str, new_content: str) -> TurnOutcome:
        """Replace a user message and everything after it with a new turn."""
        if not isinstance(new_content, str) or not new_content.strip():
            raise ValidationError("Message content must not be empty")
        session, idx = self._locate(message_id)
        target = session.messages[idx]
        if not target.is_user:
            raise ValidationError("Only user messages can be edited")

        self._coordinator.cancel_turn()
        if not await self._coordinator.rewrite_log(idx):
            return TurnOutcome("failed", session.session_id)
        logger.info("Editing message %s in %s", message_id, session.session_id)
        attachment: MediaAttachment | None = target.attachment
        return await self._coordinator.send_turn(new_content, attachment)

    async def regenerate(self, message_id: str) -> TurnOutcome:
        """Drop a model answer (and anything after it) and answer again."""
        session, idx = self._locate(message_id)
        if not session.messages[idx].is_model:
            raise ValidationError("Only model messages can be regenerated")
        user_idx = _preceding_user_index(session.messages, idx)
        if user_idx < 0:
            raise ValidationError("No user message precedes this answer")
        prompt = session.messages[user_idx]

        self._coordinator.cancel_turn()
        if not await self._coordinator.rewrite_log(user_idx + 1):
            return TurnOutcome("failed", session.session_id)
        logger.info("Regenerating answer to %s in %s", prompt.id, session.session_id)
        return await self._coordinator.replay_turn(prompt)

    async def record_feedback(self, message_id: str, positive: bool) -> bool:
        """Mark a model answer. Returns False if it was already marked or not saved."""
        session, idx = self._locate(message_id)
        message = session.messages[idx]
        if not message.is_model:
            raise ValidationError("Only model messages can be rated")
        if message.feedback is not None:
            logger.debug("Message %s already rated %s", message_id, message.feedback.value)
            return False

        mark = FeedbackMark.GOOD if positive else FeedbackMark.BAD
        if not await self._coordinator.mark_feedback(message_id, mark):
            self._notify("error", "Feedback not sent", "The rating could not be saved.")
            return False
        if positive:
            return True

        user_idx = _preceding_user_index(session.messages, idx)
        record = CorrectionRecord(
            session_id=session.session_id,
            user_id=self._coordinator.principal_id,
            user_query=session.messages[user_idx].content if user_idx >= 0 else NO_USER_QUERY,
            model_response=message.content,
        )
        try:
            await self._corrections.submit(record)
        except ChatSyncError as exc:
            logger.warning("Correction record not queued: %s", exc)
            self._notify("error", "Feedback not sent", str(exc))
            return True
        self._notify("info", "Thanks for your feedback", "The answer was queued for review.")
        return True


def _preceding_user_index(messages: list[Message], idx: int) -> int:
    for i in range(idx - 1, -1, -1):
        if messages[i].is_user:
            return i
    return -1
