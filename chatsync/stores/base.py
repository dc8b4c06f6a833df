"""Abstract remote document store.

A keyed collection of JSON-like documents with point subscriptions,
atomic array-append and read-modify-write, and server-side access rules.
Implementations raise AccessDenied / NotFound / TransientIO from
``chatsync.engine.errors``.
"""
from __future__ import annotations

import abc
from collections.abc import Callable
from typing import Any

Document = dict[str, Any]
ChangeCallback = Callable[[Document | None], None]
ErrorCallback = Callable[[Exception], None]
Unsubscribe = Callable[[], None]

CHATS = "chats"
FEEDBACK = "feedback"


class _ServerTimestamp:
    """Placeholder replaced by the store's clock when a write is applied."""

    _instance: _ServerTimestamp | None = None

    def __new__(cls) -> _ServerTimestamp:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"

    def __deepcopy__(self, memo: dict) -> _ServerTimestamp:
        return self


SERVER_TIMESTAMP = _ServerTimestamp()


class AccessRules:
    """Decides whether *principal* may perform *operation* on a document.

    ``operation`` is one of "create", "get", "update", "delete".
    ``existing`` is the stored document (None on create) and ``incoming``
    the document as it would look after the write (None on get/delete).
    """

    def allows(
        self,
        operation: str,
        collection: str,
        principal: str,
        existing: Document | None,
        incoming: Document | None,
    ) -> bool:
        return True


class MembershipRules(AccessRules):
    """Session documents are visible to members; queue records to their author."""

    def allows(
        self,
        operation: str,
        collection: str,
        principal: str,
        existing: Document | None,
        incoming: Document | None,
    ) -> bool:
        if collection == CHATS:
            if operation == "create":
                return principal in (incoming or {}).get("members", [])
            if principal not in (existing or {}).get("members", []):
                return False
            if operation == "update" and incoming is not None:
                # A member cannot remove every member (including itself) in one write
                # and orphan the document.
                return bool(incoming.get("members"))
            return True
        if collection == FEEDBACK:
            doc = incoming if operation == "create" else existing
            return (doc or {}).get("userId") == principal
        return True


class DocumentStore(abc.ABC):
    """Async document store interface consumed by the sync channel."""

    @abc.abstractmethod
    async def create(self, collection: str, data: Document, *, principal: str) -> str:
        """Insert a new document and return its generated id."""

    @abc.abstractmethod
    async def get(self, collection: str, doc_id: str, *, principal: str) -> Document | None:
        """Return a copy of the document, or None if it does not exist."""

    @abc.abstractmethod
    async def update(
        self, collection: str, doc_id: str, fields: Document, *, principal: str,
    ) -> None:
        """Shallow-patch top-level fields."""

    @abc.abstractmethod
    async def array_union(
        self,
        collection: str,
        doc_id: str,
        field: str,
        items: list[Any],
        *,
        principal: str,
        extra: Document | None = None,
    ) -> None:
        """Append *items* not already present to an array field atomically."""

    @abc.abstractmethod
    async def transact(
        self,
        collection: str,
        doc_id: str,
        fn: Callable[[Document], Document],
        *,
        principal: str,
    ) -> Document:
        """Apply *fn* to a copy of the document and store the result atomically."""

    @abc.abstractmethod
    async def delete(self, collection: str, doc_id: str, *, principal: str) -> None:
        """Remove the document."""

    @abc.abstractmethod
    async def query(
        self,
        collection: str,
        *,
        principal: str,
        array_contains: tuple[str, Any] | None = None,
    ) -> list[tuple[str, Document]]:
        """Return ``(doc_id, document)`` pairs visible to *principal*."""

    @abc.abstractmethod
    def listen(
        self,
        collection: str,
        doc_id: str,
        on_change: ChangeCallback,
        on_error: ErrorCallback,
        *,
        principal: str,
    ) -> Unsubscribe:
        """Subscribe to one document. Delivery is asynchronous (push)."""
