"""Session actor - one addressable object per open session view.

Owns the session store, write ledger, reconciler, coordinator and history
rewriter for a single principal, and publishes what happens to them on an
EventBus. Nothing here is global: construct one per view and close it
when the view goes away.

    async with SessionActor(store, inference, "alice") as actor:
        outcome = await actor.send_turn("Hello")
"""
from __future__ import annotations

import logging
import time
from collections.abc import Callable

from chatsync.adapters.event_bus import EventBus
from chatsync.adapters.events import (
    Notice,
    SessionUnavailable,
    SessionUpdated,
    TurnStateChanged,
)
from chatsync.shared.models.message import MediaAttachment
from chatsync.shared.models.session import AgentProfile, Session
from chatsync.shared.services.session_naming import agent_session_title
from chatsync.stores.base import DocumentStore

from .config import EngineConfig
from .coordinator import Coordinator, TurnOutcome
from .errors import NotFound
from .lifecycle import TurnState
from .providers.base import InferenceService
from .reconciler import Reconciler
from .rewrite import HistoryRewriter
from .session_store import SessionStore
from .sync_channel import CorrectionQueue, RemoteSyncChannel
from .watermark import WriteLedger

logger = logging.getLogger(__name__)


class SessionActor:
    """Per-view facade over the turn protocol and session management."""

    def __init__(
        self,
        store: DocumentStore,
        inference: InferenceService,
        principal_id: str,
        *,
        config: EngineConfig | None = None,
        model_id: str | None = None,
        project_id: str | None = None,
        event_bus: EventBus | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or EngineConfig()
        self.principal_id = principal_id
        self.bus = event_bus or EventBus(maxsize=self.config.event_queue_size)

        self.store = SessionStore()
        self.ledger = WriteLedger(self.config.watermark_stale_seconds, clock)
        self.channel = RemoteSyncChannel(store, principal_id)
        self.corrections = CorrectionQueue(store, principal_id)
        self.reconciler = Reconciler(
            self.store, self.ledger, principal_id,
            on_unavailable=self._on_unavailable,
        )
        self.coordinator = Coordinator(
            self.channel,
            inference,
            self.store,
            self.ledger,
            self.reconciler,
            config=self.config,
            model_id=model_id,
            project_id=project_id,
            attach=self._attach,
            detach=self._detach,
            notify=self._notice,
            on_state_change=self._on_state_change,
        )
        self.rewriter = HistoryRewriter(
            self.coordinator, self.store, self.corrections, notify=self._notice,
        )
        self._unsubscribe: Callable[[], None] | None = None
        self._remove_listener = self.store.add_listener(self._on_store_change)
        self._closed = False

    # ── lifecycle ──────────────────────────────────────────────

    async def __aenter__(self) -> SessionActor:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def open(self, session_id: str) -> Session:
        """Load *session_id* and keep it live. Raises StoreError on failure."""
        self.coordinator.cancel_turn()
        session = await self.channel.get_session(session_id)
        if session is None:
            raise NotFound(f"chats/{session_id}", "get")
        self._attach(session)
        logger.info("Opened session %s (%d messages)", session_id, session.message_count)
        return session

    async def close(self) -> None:
        """Cancel any turn, release the subscription and wait for detached writes."""
        if self._closed:
            return
        self._closed = True
        self.coordinator.cancel_turn()
        self._detach()
        await self.coordinator.wait_background()
        self._remove_listener()
        logger.debug("Session actor for %s closed", self.principal_id)

    def _attach(self, session: Session) -> None:
        self._release_subscription()
        self.reconciler.watch(session.session_id)
        self.store.replace_active(session)
        self._unsubscribe = self.channel.subscribe(
            session.session_id, self.reconciler.apply, self.reconciler.on_error,
        )

    def _detach(self) -> None:
        self._release_subscription()
        self.reconciler.watch(None)
        self.store.replace_active(None)

    def _release_subscription(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # ── callbacks ──────────────────────────────────────────────

    def _notice(self, level: str, title: str, description: str = "") -> None:
        self.bus.publish(Notice(
            session_id=self.store.active_id,
            level=level,
            title=title,
            description=description,
        ))

    def _on_state_change(self, old: TurnState, new: TurnState) -> None:
        self.bus.publish(TurnStateChanged(
            session_id=self.store.active_id,
            old_state=old.value,
            new_state=new.value,
        ))

    def _on_store_change(self, session: Session | None) -> None:
        self.bus.publish(SessionUpdated(
            session_id=session.session_id if session is not None else None,
            message_count=session.message_count if session is not None else 0,
            title=session.title if session is not None else "",
        ))

    def _on_unavailable(self, session_id: str | None, reason: str, detail: str) -> None:
        self.coordinator.cancel_turn()
        self._release_subscription()
        self.reconciler.watch(None)
        self.bus.publish(SessionUnavailable(
            session_id=session_id, reason=reason, detail=detail,
        ))
        self.bus.publish(Notice(
            session_id=session_id,
            level="error",
            title="Conversation unavailable",
            description=detail,
        ))

    # ── read side ──────────────────────────────────────────────

    @property
    def session(self) -> Session | None:
        return self.store.get_active()

    @property
    def state(self) -> TurnState:
        return self.coordinator.state

    @property
    def is_sending(self) -> bool:
        return self.coordinator.state is not TurnState.IDLE

    @property
    def model_id(self) -> str | None:
        return self.coordinator.model_id

    @model_id.setter
    def model_id(self, value: str | None) -> None:
        self.coordinator.model_id = value

    async def list_sessions(self, **filters) -> list[Session]:
        return await self.channel.list_sessions(**filters)

    # ── turns and rewrites ─────────────────────────────────────

    async def send_turn(
        self, content: str, attachment: MediaAttachment | None = None,
    ) -> TurnOutcome:
        return await self.coordinator.send_turn(content, attachment)

    def cancel_turn(self) -> bool:
        return self.coordinator.cancel_turn()

    async def edit_message(self, message_id: str, new_content: str) -> TurnOutcome:
        return await self.rewriter.edit_message(message_id, new_content)

    async def regenerate(self, message_id: str) -> TurnOutcome:
        return await self.rewriter.regenerate(message_id)

    async def record_feedback(self, message_id: str, positive: bool) -> bool:
        return await self.rewriter.record_feedback(message_id, positive)

    # ── session management ─────────────────────────────────────

    async def new_session(self, agent: AgentProfile | None = None) -> Session | None:
        """Create an empty session (optionally for an agent) and open it."""
        return await self.coordinator.create_session(
            agent_session_title(agent),
            agent.system_instruction if agent is not None else None,
        )

    async def rename(self, title: str) -> bool:
        return await self.coordinator.rename(title)

    async def set_archived(self, archived: bool = True) -> bool:
        return await self.coordinator.set_archived(archived)

    async def share(self, member_id: str) -> bool:
        return await self.coordinator.share(member_id)

    async def delete(self) -> bool:
        session_id = self.store.active_id
        deleted = await self.coordinator.delete()
        if deleted:
            self.bus.publish(SessionUnavailable(
                session_id=session_id, reason="deleted", detail="",
            ))
        return deleted
