"""Remote sync channel - session-level view of the shared document store.

Decodes documents into Session objects, maps unexpected I/O failures to
TransientIO, and keeps a live subscription to one session document.
"""
from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from chatsync.shared.models.message import FeedbackMark, Message
from chatsync.shared.models.session import CorrectionRecord, Session
from chatsync.shared.services.serialization import (
    correction_to_document,
    document_to_session,
    message_to_dict,
    session_fields_to_document,
    session_to_document,
)
from chatsync.stores.base import CHATS, FEEDBACK, SERVER_TIMESTAMP, DocumentStore

from .errors import ChatSyncError, MalformedSnapshot, TransientIO

logger = logging.getLogger(__name__)

T = TypeVar("T")

SnapshotCallback = Callable[[Session | None], None]
SnapshotErrorCallback = Callable[[Exception], None]

_TRANSIENT_ERRORS = (OSError, ConnectionError, asyncio.TimeoutError)


async def _call(path: str, operation: str, awaitable: Awaitable[T]) -> T:
    """Await a store call, mapping connectivity failures to TransientIO."""
    try:
        return await awaitable
    except ChatSyncError:
        raise
    except _TRANSIENT_ERRORS as exc:
        raise TransientIO(path, operation, str(exc) or type(exc).__name__) from exc


class RemoteSyncChannel:
    """Subscription plus command surface for session documents of one principal."""

    def __init__(self, store: DocumentStore, principal_id: str) -> None:
        self._store = store
        self._principal = principal_id

    @property
    def principal_id(self) -> str:
        return self._principal

    def subscribe(
        self,
        session_id: str,
        on_snapshot: SnapshotCallback,
        on_error: SnapshotErrorCallback,
    ) -> Callable[[], None]:
        """Deliver the full session on every remote change (None once deleted)."""

        def _on_change(data: dict[str, Any] | None) -> None:
            if data is None:
                on_snapshot(None)
                return
            try:
                session = document_to_session(session_id, data)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Undecodable snapshot for %s: %s", session_id, exc)
                on_error(MalformedSnapshot(session_id, str(exc)))
                return
            on_snapshot(session)

        logger.debug("Subscribing to %s/%s", CHATS, session_id)
        return self._store.listen(
            CHATS, session_id, _on_change, on_error, principal=self._principal,
        )

    async def create_session(self, session: Session) -> str:
        """Create a session document from *session*'s fields; return its id."""
        data = session_to_document(session)
        data["createdAt"] = SERVER_TIMESTAMP
        data["updatedAt"] = SERVER_TIMESTAMP
        session_id = await _call(
            CHATS, "create",
            self._store.create(CHATS, data, principal=self._principal),
        )
        logger.info("Session created: %s (%r)", session_id, session.title)
        return session_id

    async def append_message(self, session_id: str, message: Message) -> None:
        path = f"{CHATS}/{session_id}"
        await _call(path, "update", self._store.array_union(
            CHATS, session_id, "messages", [message_to_dict(message)],
            principal=self._principal,
            extra={"updatedAt": SERVER_TIMESTAMP},
        ))
        logger.debug("Appended %s message %s to %s", message.role.value, message.id, session_id)

    async def replace_messages(self, session_id: str, messages: list[Message]) -> None:
        """Replace the whole log (truncation for edit/regenerate)."""
        path = f"{CHATS}/{session_id}"
        encoded = [message_to_dict(m) for m in messages]

        def _replace(doc: dict[str, Any]) -> dict[str, Any]:
            doc["messages"] = encoded
            doc["updatedAt"] = SERVER_TIMESTAMP
            return doc

        await _call(path, "update", self._store.transact(
            CHATS, session_id, _replace, principal=self._principal,
        ))
        logger.debug("Replaced log of %s with %d message(s)", session_id, len(encoded))

    async def set_feedback(
        self, session_id: str, message_id: str, mark: FeedbackMark | None,
    ) -> None:
        path = f"{CHATS}/{session_id}"

        def _mark(doc: dict[str, Any]) -> dict[str, Any]:
            for item in doc.get("messages", []):
                if isinstance(item, dict) and item.get("id") == message_id:
                    if mark is None:
                        item.pop("feedback", None)
                    else:
                        item["feedback"] = mark.value
            return doc

        await _call(path, "update", self._store.transact(
            CHATS, session_id, _mark, principal=self._principal,
        ))

    async def patch_session(self, session_id: str, **fields: Any) -> None:
        """Patch title, archived, members, system_instruction or project_id."""
        path = f"{CHATS}/{session_id}"
        data = session_fields_to_document(fields)
        data["updatedAt"] = SERVER_TIMESTAMP
        await _call(path, "update", self._store.update(
            CHATS, session_id, data, principal=self._principal,
        ))
        logger.debug("Patched %s: %s", session_id, ", ".join(sorted(fields)))

    async def delete_session(self, session_id: str) -> None:
        await _call(f"{CHATS}/{session_id}", "delete", self._store.delete(
            CHATS, session_id, principal=self._principal,
        ))
        logger.info("Session deleted: %s", session_id)

    async def get_session(self, session_id: str) -> Session | None:
        path = f"{CHATS}/{session_id}"
        data = await _call(path, "get", self._store.get(
            CHATS, session_id, principal=self._principal,
        ))
        if data is None:
            return None
        try:
            return document_to_session(session_id, data)
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedSnapshot(session_id, str(exc)) from exc

    async def list_sessions(
        self,
        *,
        include_archived: bool = False,
        project_id: str | None = None,
        search: str | None = None,
    ) -> list[Session]:
        """Sessions the principal belongs to, most recently updated first."""
        rows = await _call(CHATS, "list", self._store.query(
            CHATS,
            principal=self._principal,
            array_contains=("members", self._principal),
        ))
        needle = (search or "").strip().lower()
        sessions: list[Session] = []
        for doc_id, data in rows:
            try:
                session = document_to_session(doc_id, data)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping undecodable session %s: %s", doc_id, exc)
                continue
            if session.archived and not include_archived:
                continue
            if project_id is not None and session.project_id != project_id:
                continue
            if needle and needle not in session.title.lower():
                continue
            sessions.append(session)
        sessions.sort(key=functools.cmp_to_key(_newest_first))
        return sessions


def _newest_first(a: Session, b: Session) -> int:
    ta, tb = a.updated_at, b.updated_at
    if ta == tb:
        return 0
    if ta is None:
        return 1
    if tb is None:
        return -1
    return -1 if ta > tb else 1


class CorrectionQueue:
    """Append-only queue of negatively rated answers awaiting review."""

    def __init__(self, store: DocumentStore, principal_id: str) -> None:
        self._store = store
        self._principal = principal_id

    async def submit(self, record: CorrectionRecord) -> str:
        data = correction_to_document(record)
        data["createdAt"] = SERVER_TIMESTAMP
        record_id = await _call(FEEDBACK, "create", self._store.create(
            FEEDBACK, data, principal=self._principal,
        ))
        logger.info("Correction queued: %s (session %s)", record_id, record.session_id)
        return record_id
