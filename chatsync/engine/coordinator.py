"""Request coordinator - the per-turn protocol for one session view.

    send_turn(content)
      1. create the session if none is active (once, even when calls race)
      2. append the user message locally (optimistic)
      3. append it remotely; on failure roll back and stop
      4-5. ask the inference service, cancellable through the pending request
      6. append the model message locally and remotely
      7. on cancel: no model message
      8. on inference failure: an error-content model message instead

At most one pending request exists at a time. While it is outstanding
further send_turn calls are ignored; edit/regenerate cancel it first.
The coordinator is the only writer of the session store's log and of
the remote session document.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from chatsync.shared.models.message import (
    FeedbackMark,
    MediaAttachment,
    Message,
    MessageRole,
)
from chatsync.shared.models.session import Session, is_default_session_title
from chatsync.shared.services.session_naming import derive_session_title, normalize_title

from .cancellation import CancellationToken
from .config import EngineConfig
from .errors import (
    AccessDenied,
    ChatSyncError,
    InferenceFailure,
    NotFound,
    TurnCancelled,
    ValidationError,
)
from .lifecycle import TurnState, validate_transition
from .providers.base import HistoryEntry, InferenceRequest, InferenceResult, InferenceService
from .reconciler import Reconciler
from .session_store import SessionStore
from .sync_channel import RemoteSyncChannel
from .watermark import WriteLedger

logger = logging.getLogger(__name__)

# (level, title, description)
NoticeCallback = Callable[[str, str, str], None]
# (old_state, new_state)
StateCallback = Callable[[TurnState, TurnState], None]


@dataclass
class PendingRequest:
    """The single in-flight turn of a session view."""
    token: CancellationToken = field(default_factory=CancellationToken)
    session_id: str | None = None
    user_message_id: str | None = None


@dataclass
class TurnOutcome:
    """What a send_turn / replay_turn call ended up doing.

    status: "completed", "cancelled", "failed" or "ignored".
    """
    status: str
    session_id: str | None = None
    user_message: Message | None = None
    model_message: Message | None = None
    error: Exception | None = None

    @property
    def completed(self) -> bool:
        return self.status == "completed"


def _consume_exception(task: asyncio.Future) -> None:
    if not task.cancelled():
        task.exception()


class Coordinator:
    """Drives turns and session-level writes for one open session view."""

    def __init__(
        self,
        channel: RemoteSyncChannel,
        inference: InferenceService,
        store: SessionStore,
        ledger: WriteLedger,
        reconciler: Reconciler,
        *,
        config: EngineConfig | None = None,
        model_id: str | None = None,
        project_id: str | None = None,
        attach: Callable[[Session], None] | None = None,
        detach: Callable[[], None] | None = None,
        notify: NoticeCallback | None = None,
        on_state_change: StateCallback | None = None,
    ) -> None:
        self._channel = channel
        self._inference = inference
        self._store = store
        self._ledger = ledger
        self._reconciler = reconciler
        self._config = config or EngineConfig()
        self.model_id = model_id
        self.project_id = project_id
        self._attach = attach
        self._detach = detach
        self._notify_cb = notify
        self._on_state_change = on_state_change

        self._state = TurnState.IDLE
        self._pending: PendingRequest | None = None
        self._creating: asyncio.Future[Session | None] | None = None
        self._last_create_error: Exception | None = None
        self._background: set[asyncio.Task] = set()

    # ── state ──────────────────────────────────────────────────

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def pending(self) -> PendingRequest | None:
        return self._pending

    @property
    def principal_id(self) -> str:
        return self._channel.principal_id

    def _set_state(self, target: TurnState) -> None:
        if target is self._state:
            return
        validate_transition(self._state, target)
        old, self._state = self._state, target
        logger.debug("Turn state %s -> %s", old.value, target.value)
        if self._on_state_change is not None:
            self._on_state_change(old, target)

    def _advance(self, pending: PendingRequest, target: TurnState) -> None:
        """Transition only if *pending* is still the current request."""
        if self._pending is pending:
            self._set_state(target)

    def _begin_pending(self) -> PendingRequest:
        pending = PendingRequest()
        self._pending = pending
        self._set_state(TurnState.SENDING)
        return pending

    def _finish(self, pending: PendingRequest) -> None:
        if self._pending is pending:
            self._pending = None
            self._set_state(TurnState.IDLE)

    def _notify(self, level: str, title: str, description: str = "") -> None:
        if self._notify_cb is not None:
            self._notify_cb(level, title, description)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        task.add_done_callback(_consume_exception)
        return task

    def _visible(self, session_id: str) -> bool:
        return self._store.active_id == session_id

    # ── turns ──────────────────────────────────────────────────

    async def send_turn(
        self,
        content: str,
        attachment: MediaAttachment | None = None,
    ) -> TurnOutcome:
        """Run one user turn. Raises ValidationError for empty content."""
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Message content must not be empty")
        if self._pending is not None:
            logger.debug("send_turn ignored: a turn is already in flight")
            return TurnOutcome("ignored", session_id=self._store.active_id)

        pending = self._begin_pending()
        try:
            session = self._store.get_active()
            if session is None:
                session = await self._ensure_session(content)
                if session is None:
                    return TurnOutcome("failed", error=self._last_create_error)
                session = self._store.get_active() or session
            session_id = session.session_id
            pending.session_id = session_id

            if attachment is not None and attachment.is_empty:
                attachment = None
            user_msg = Message(role=MessageRole.USER, content=content, attachment=attachment)
            history = [*session.messages, user_msg]
            self._store.append_local(user_msg)
            pending.user_message_id = user_msg.id

            if not session.messages and is_default_session_title(session.title):
                self._rename_from_first_message(session_id, content)

            error = await self._persist_user_message(session_id, user_msg, pending)
            if isinstance(error, TurnCancelled):
                return TurnOutcome("cancelled", session_id, user_msg)
            if error is not None:
                return TurnOutcome("failed", session_id, user_msg, error=error)

            return await self._answer(session, history, user_msg, pending)
        finally:
            self._finish(pending)

    async def replay_turn(self, user_message: Message) -> TurnOutcome:
        """Answer an already-persisted user message again (regenerate)."""
        if self._pending is not None:
            logger.debug("replay_turn ignored: a turn is already in flight")
            return TurnOutcome("ignored", session_id=self._store.active_id)
        session = self._store.get_active()
        if session is None:
            raise ValidationError("No active session")
        idx = session.find_index(user_message.id)
        if idx < 0 or not session.messages[idx].is_user:
            raise ValidationError(f"User message {user_message.id} is not in the log")

        pending = self._begin_pending()
        pending.session_id = session.session_id
        pending.user_message_id = user_message.id
        try:
            history = session.messages[: idx + 1]
            return await self._answer(session, history, session.messages[idx], pending)
        finally:
            self._finish(pending)

    def cancel_turn(self) -> bool:
        """Signal the pending request and return to IDLE. Idempotent."""
        pending = self._pending
        if pending is None:
            return False
        pending.token.cancel("cancelled by user")
        self._pending = None
        self._set_state(TurnState.IDLE)
        logger.info("Turn cancelled (session %s)", pending.session_id)
        return True

    # ── turn steps ─────────────────────────────────────────────

    async def _ensure_session(self, content: str) -> Session | None:
        """Create and attach the session for a first turn, exactly once."""
        if self._creating is None:
            self._last_create_error = None
            self._creating = asyncio.ensure_future(
                self._create_session(derive_session_title(
                    content, self._config.title_max_chars,
                ))
            )
        creating = self._creating
        try:
            return await asyncio.shield(creating)
        finally:
            if creating.done() and self._creating is creating:
                self._creating = None

    async def _create_session(
        self,
        title: str,
        system_instruction: str | None = None,
    ) -> Session | None:
        draft = Session(
            session_id="",
            title=title,
            owner_id=self.principal_id,
            members=[self.principal_id],
            system_instruction=system_instruction,
            project_id=self.project_id,
        )
        try:
            draft.session_id = await self._channel.create_session(draft)
        except ChatSyncError as exc:
            logger.warning("Session creation failed: %s", exc)
            self._last_create_error = exc
            self._notify("error", "Could not create the conversation", str(exc))
            return None
        if self._attach is not None:
            self._attach(draft)
        else:
            self._store.replace_active(draft)
        return draft

    async def _append_tracked(self, session_id: str, message: Message) -> None:
        """Remote append bookkept in the write ledger; failures roll back."""
        seq = self._ledger.begin_append(session_id, message.id)
        try:
            await self._channel.append_message(session_id, message)
        except Exception as exc:
            self._ledger.fail(seq)
            self._handle_write_failure(session_id, message, exc)
            raise
        self._ledger.acknowledge(seq)

    def _handle_write_failure(self, session_id: str, message: Message, exc: Exception) -> None:
        if not self._visible(session_id):
            logger.warning("Write to hidden session %s failed: %s", session_id, exc)
            return
        if isinstance(exc, (AccessDenied, NotFound)):
            self._reconciler.refused(exc)
            return
        self._store.rollback_last(message.id)
        logger.warning("Append of %s failed, rolled back: %s", message.id, exc)
        self._notify("error", "Message not sent", str(exc))
        self._reconciler.refresh()

    async def _persist_user_message(
        self,
        session_id: str,
        message: Message,
        pending: PendingRequest,
    ) -> Exception | None:
        task = self._spawn(self._append_tracked(session_id, message))
        try:
            await pending.token.guard(task, abort_on_cancel=False)
        except TurnCancelled as exc:
            return exc
        except ChatSyncError as exc:
            return exc
        except Exception as exc:
            # Unexpected store failure; already rolled back by _append_tracked.
            logger.warning("Unexpected append failure: %s", exc, exc_info=True)
            return exc
        return None

    async def _answer(
        self,
        session: Session,
        history: list[Message],
        user_msg: Message,
        pending: PendingRequest,
    ) -> TurnOutcome:
        session_id = session.session_id
        self._advance(pending, TurnState.AWAITING_INFERENCE)
        request = InferenceRequest(
            history=[HistoryEntry(m.role.value, m.content) for m in history],
            message=user_msg.content,
            system_instruction=session.system_instruction,
            attachment=user_msg.attachment,
            model_id=self.model_id or self._config.default_model,
        )
        failure: Exception | None = None
        try:
            result = await pending.token.guard(
                self._inference.complete(request, cancel_token=pending.token),
                timeout=self._config.inference_timeout_seconds,
            )
        except TurnCancelled:
            logger.info("Generation cancelled for %s", user_msg.id)
            self._notify("info", "Generation cancelled")
            return TurnOutcome("cancelled", session_id, user_msg)
        except asyncio.TimeoutError as exc:
            failure = exc
            model_msg = self._error_message(
                f"No response within {self._config.inference_timeout_seconds:g}s."
            )
        except InferenceFailure as exc:
            logger.warning("%s", exc)
            failure = exc
            model_msg = self._error_message(exc.reason)
        except Exception as exc:
            logger.warning("Inference raised unexpectedly", exc_info=True)
            failure = exc
            model_msg = self._error_message(self._config.generic_error_text)
        else:
            if not isinstance(result, InferenceResult):
                logger.warning("Malformed inference result: %r", result)
                failure = InferenceFailure(self._inference.name, "malformed result")
                model_msg = self._error_message(self._config.generic_error_text)
            elif result.error:
                failure = InferenceFailure(self._inference.name, result.error)
                model_msg = self._error_message(result.error)
            else:
                model_msg = self._model_message(result)

        if pending.token.cancelled:
            return TurnOutcome("cancelled", session_id, user_msg)
        return await self._deliver(session_id, user_msg, model_msg, failure)

    def _model_message(self, result: InferenceResult) -> Message:
        attachment = MediaAttachment(image_url=result.image_url, video_url=result.video_url)
        return Message(
            role=MessageRole.MODEL,
            content=result.text or "",
            attachment=None if attachment.is_empty else attachment,
            code=result.code,
            sources=list(result.sources),
        )

    def _error_message(self, detail: str) -> Message:
        self._notify("error", "Model error", detail)
        return Message(
            role=MessageRole.MODEL,
            content=f"{self._config.error_prefix}{detail}",
        )

    async def _deliver(
        self,
        session_id: str,
        user_msg: Message,
        model_msg: Message,
        failure: Exception | None = None,
    ) -> TurnOutcome:
        if self._visible(session_id):
            self._store.append_local(model_msg)
        try:
            await self._append_tracked(session_id, model_msg)
        except Exception as exc:
            return TurnOutcome("failed", session_id, user_msg, model_msg, error=exc)
        status = "completed" if failure is None else "failed"
        return TurnOutcome(status, session_id, user_msg, model_msg, error=failure)

    def _rename_from_first_message(self, session_id: str, content: str) -> None:
        title = derive_session_title(content, self._config.title_max_chars)
        session = self._store.get_active()
        if session is not None and session.session_id == session_id:
            self._store.replace_active(dataclasses.replace(session, title=title))
        self._spawn(self._patch_quietly(session_id, title=title))

    async def _patch_quietly(self, session_id: str, **fields) -> None:
        try:
            await self._channel.patch_session(session_id, **fields)
        except ChatSyncError as exc:
            logger.warning("Background patch of %s failed: %s", session_id, exc)

    # ── history rewrite support ────────────────────────────────

    async def rewrite_log(self, keep: int) -> bool:
        """Truncate the log to its first *keep* messages, locally then remotely."""
        session = self._store.get_active()
        if session is None:
            raise ValidationError("No active session")
        session_id = session.session_id
        removed = self._store.truncate(keep)
        if not removed:
            return True
        current = self._store.get_active()
        kept = current.messages if current is not None else []
        seq = self._ledger.begin_replace(session_id, [m.id for m in removed])
        try:
            await self._channel.replace_messages(session_id, kept)
        except ChatSyncError as exc:
            self._ledger.fail(seq)
            if isinstance(exc, (AccessDenied, NotFound)):
                self._reconciler.refused(exc)
                return False
            active = self._store.get_active()
            if active is not None and active.session_id == session_id:
                present = set(active.message_ids())
                restored = active.messages + [m for m in removed if m.id not in present]
                self._store.replace_active(active.with_messages(restored))
            logger.warning("Truncation of %s failed: %s", session_id, exc)
            self._notify("error", "Could not rewrite the conversation", str(exc))
            self._reconciler.refresh()
            return False
        self._ledger.acknowledge(seq)
        logger.info("Log of %s truncated to %d message(s)", session_id, len(kept))
        return True

    async def mark_feedback(self, message_id: str, mark: FeedbackMark | None) -> bool:
        session = self._store.get_active()
        if session is None:
            return False
        previous = session.get_message(message_id)
        if previous is None:
            return False
        self._store.set_feedback(message_id, mark)
        try:
            await self._channel.set_feedback(session.session_id, message_id, mark)
        except ChatSyncError as exc:
            logger.warning("Feedback on %s not saved: %s", message_id, exc)
            if self._visible(session.session_id):
                self._store.set_feedback(message_id, previous.feedback)
            return False
        return True

    # ── session-level writes ───────────────────────────────────

    async def create_session(
        self,
        title: str,
        system_instruction: str | None = None,
    ) -> Session | None:
        """Create and attach an empty session."""
        self.cancel_turn()
        return await self._create_session(title, system_instruction)

    async def rename(self, title: str) -> bool:
        return await self._patch_active(title=normalize_title(title))

    async def set_archived(self, archived: bool) -> bool:
        return await self._patch_active(archived=bool(archived))

    async def share(self, member_id: str) -> bool:
        session = self._store.get_active()
        if session is None:
            raise ValidationError("No active session")
        member_id = (member_id or "").strip()
        if not member_id:
            raise ValidationError("Member id must not be empty")
        if member_id in session.members:
            return True
        return await self._patch_active(members=[*session.members, member_id])

    async def _patch_active(self, **fields) -> bool:
        session = self._store.get_active()
        if session is None:
            raise ValidationError("No active session")
        self._store.replace_active(dataclasses.replace(session, **fields))
        try:
            await self._channel.patch_session(session.session_id, **fields)
        except ChatSyncError as exc:
            if isinstance(exc, (AccessDenied, NotFound)):
                self._reconciler.refused(exc)
                return False
            active = self._store.get_active()
            if active is not None and active.session_id == session.session_id:
                reverted = {name: getattr(session, name) for name in fields}
                self._store.replace_active(dataclasses.replace(active, **reverted))
            self._notify("error", "Could not update the conversation", str(exc))
            return False
        return True

    async def delete(self) -> bool:
        """Delete the active session remotely and close the view."""
        session = self._store.get_active()
        if session is None:
            raise ValidationError("No active session")
        self.cancel_turn()
        try:
            await self._channel.delete_session(session.session_id)
        except NotFound:
            logger.info("Session %s was already deleted", session.session_id)
        except ChatSyncError as exc:
            self._notify("error", "Could not delete the conversation", str(exc))
            return False
        if self._detach is not None:
            self._detach()
        else:
            self._store.replace_active(None)
        self._notify("info", "Conversation deleted")
        return True

    async def wait_background(self) -> None:
        """Wait for detached writes (title patches, abandoned appends)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
