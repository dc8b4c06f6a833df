"""In-process document store with push listeners.

Listeners are notified on the running event loop via ``call_soon`` after
each applied write, so a writer never observes its own echo
synchronously. An optional latency simulates the network round trip.
"""
from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from chatsync.engine.errors import AccessDenied, NotFound
from chatsync.stores.base import (
    SERVER_TIMESTAMP,
    AccessRules,
    ChangeCallback,
    Document,
    DocumentStore,
    ErrorCallback,
    MembershipRules,
    Unsubscribe,
)

logger = logging.getLogger(__name__)


def _gen_doc_id() -> str:
    return uuid.uuid4().hex[:20]


class _Listener:
    def __init__(
        self,
        principal: str,
        on_change: ChangeCallback,
        on_error: ErrorCallback,
    ) -> None:
        self.principal = principal
        self.on_change = on_change
        self.on_error = on_error
        self.active = True

    def deliver(self, data: Document | None) -> None:
        if not self.active:
            return
        try:
            self.on_change(data)
        except Exception:
            logger.warning("Document listener raised", exc_info=True)

    def fail(self, exc: Exception) -> None:
        if not self.active:
            return
        try:
            self.on_error(exc)
        except Exception:
            logger.warning("Document listener error handler raised", exc_info=True)


class MemoryDocumentStore(DocumentStore):
    """Dictionary-backed store enforcing AccessRules on every operation."""

    def __init__(
        self,
        rules: AccessRules | None = None,
        *,
        latency: float = 0.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._rules = rules if rules is not None else MembershipRules()
        self._latency = latency
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._docs: dict[str, dict[str, Document]] = {}
        self._listeners: dict[tuple[str, str], list[_Listener]] = {}

    # ── helpers ────────────────────────────────────────────────

    async def _round_trip(self) -> None:
        if self._latency > 0:
            await asyncio.sleep(self._latency)

    def _resolve(self, value: Any) -> Any:
        if value is SERVER_TIMESTAMP:
            return self._clock().isoformat()
        if isinstance(value, dict):
            return {k: self._resolve(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self._resolve(v) for v in value]
        return value

    def _check(
        self,
        operation: str,
        collection: str,
        doc_id: str,
        principal: str,
        existing: Document | None,
        incoming: Document | None,
    ) -> None:
        if not self._rules.allows(operation, collection, principal, existing, incoming):
            raise AccessDenied(f"{collection}/{doc_id}", operation)

    def _existing(self, collection: str, doc_id: str, operation: str) -> Document:
        doc = self._docs.get(collection, {}).get(doc_id)
        if doc is None:
            raise NotFound(f"{collection}/{doc_id}", operation)
        return doc

    def _commit(self, collection: str, doc_id: str, data: Document | None) -> None:
        bucket = self._docs.setdefault(collection, {})
        if data is None:
            bucket.pop(doc_id, None)
        else:
            bucket[doc_id] = data
        self._after_write(collection, doc_id, data)
        self._notify(collection, doc_id)

    def _after_write(self, collection: str, doc_id: str, data: Document | None) -> None:
        """Hook for subclasses that mirror writes elsewhere."""

    def _notify(self, collection: str, doc_id: str) -> None:
        listeners = [l for l in self._listeners.get((collection, doc_id), []) if l.active]
        if not listeners:
            return
        loop = asyncio.get_running_loop()
        current = self._docs.get(collection, {}).get(doc_id)
        for listener in listeners:
            loop.call_soon(listener.deliver, copy.deepcopy(current))

    # ── DocumentStore ──────────────────────────────────────────

    async def create(self, collection: str, data: Document, *, principal: str) -> str:
        await self._round_trip()
        doc_id = _gen_doc_id()
        incoming = self._resolve(copy.deepcopy(data))
        self._check("create", collection, doc_id, principal, None, incoming)
        self._commit(collection, doc_id, incoming)
        logger.debug("Created %s/%s", collection, doc_id)
        return doc_id

    async def get(self, collection: str, doc_id: str, *, principal: str) -> Document | None:
        await self._round_trip()
        doc = self._docs.get(collection, {}).get(doc_id)
        if doc is None:
            return None
        self._check("get", collection, doc_id, principal, doc, None)
        return copy.deepcopy(doc)

    async def update(
        self, collection: str, doc_id: str, fields: Document, *, principal: str,
    ) -> None:
        await self._round_trip()
        existing = self._existing(collection, doc_id, "update")
        incoming = {**copy.deepcopy(existing), **self._resolve(copy.deepcopy(fields))}
        self._check("update", collection, doc_id, principal, existing, incoming)
        self._commit(collection, doc_id, incoming)

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
        await self._round_trip()
        existing = self._existing(collection, doc_id, "update")
        incoming = copy.deepcopy(existing)
        array = incoming.get(field)
        if not isinstance(array, list):
            array = []
        for item in self._resolve(copy.deepcopy(items)):
            if item not in array:
                array.append(item)
        incoming[field] = array
        if extra:
            incoming.update(self._resolve(copy.deepcopy(extra)))
        self._check("update", collection, doc_id, principal, existing, incoming)
        self._commit(collection, doc_id, incoming)

    async def transact(
        self,
        collection: str,
        doc_id: str,
        fn: Callable[[Document], Document],
        *,
        principal: str,
    ) -> Document:
        await self._round_trip()
        existing = self._existing(collection, doc_id, "update")
        self._check("get", collection, doc_id, principal, existing, None)
        incoming = self._resolve(fn(copy.deepcopy(existing)))
        self._check("update", collection, doc_id, principal, existing, incoming)
        self._commit(collection, doc_id, incoming)
        return copy.deepcopy(incoming)

    async def delete(self, collection: str, doc_id: str, *, principal: str) -> None:
        await self._round_trip()
        existing = self._existing(collection, doc_id, "delete")
        self._check("delete", collection, doc_id, principal, existing, None)
        self._commit(collection, doc_id, None)
        logger.debug("Deleted %s/%s", collection, doc_id)

    async def query(
        self,
        collection: str,
        *,
        principal: str,
        array_contains: tuple[str, Any] | None = None,
    ) -> list[tuple[str, Document]]:
        await self._round_trip()
        results: list[tuple[str, Document]] = []
        for doc_id, doc in self._docs.get(collection, {}).items():
            if array_contains is not None:
                field, value = array_contains
                values = doc.get(field)
                if not isinstance(values, list) or value not in values:
                    continue
            if not self._rules.allows("get", collection, principal, doc, None):
                continue
            results.append((doc_id, copy.deepcopy(doc)))
        return results

    def listen(
        self,
        collection: str,
        doc_id: str,
        on_change: ChangeCallback,
        on_error: ErrorCallback,
        *,
        principal: str,
    ) -> Unsubscribe:
        listener = _Listener(principal, on_change, on_error)
        key = (collection, doc_id)
        self._listeners.setdefault(key, []).append(listener)
        loop = asyncio.get_running_loop()

        current = self._docs.get(collection, {}).get(doc_id)
        if current is not None and not self._rules.allows(
            "get", collection, principal, current, None,
        ):
            loop.call_soon(listener.fail, AccessDenied(f"{collection}/{doc_id}", "get"))
        else:
            loop.call_soon(listener.deliver, copy.deepcopy(current))

        def _unsubscribe() -> None:
            listener.active = False
            registered = self._listeners.get(key, [])
            if listener in registered:
                registered.remove(listener)

        return _unsubscribe

    def listener_count(self, collection: str, doc_id: str) -> int:
        return len(self._listeners.get((collection, doc_id), []))
