"""Shared fakes for the session engine tests."""
from __future__ import annotations

import asyncio

import pytest

from chatsync.engine.actor import SessionActor
from chatsync.engine.config import EngineConfig
from chatsync.engine.providers.base import InferenceResult, InferenceService
from chatsync.stores.memory_store import MemoryDocumentStore


class ScriptedInference(InferenceService):
    """Answers from a script; ``gate`` holds every call until set."""

    def __init__(self, replies: list | None = None) -> None:
        self.replies = list(replies or [])
        self.requests: list = []
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()
        self.cancelled_calls = 0

    @property
    def name(self) -> str:
        return "scripted"

    def hold(self) -> asyncio.Event:
        self.gate = asyncio.Event()
        return self.gate

    async def complete(self, request, *, cancel_token=None):
        self.requests.append(request)
        self.started.set()
        try:
            if self.gate is not None:
                await self.gate.wait()
        except asyncio.CancelledError:
            self.cancelled_calls += 1
            raise
        reply = self.replies.pop(0) if self.replies else "ok"
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, InferenceResult):
            return reply
        return InferenceResult(text=reply)


class FaultyStore(MemoryDocumentStore):
    """Memory store with per-operation failure injection and gates."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.failures: dict[str, list[Exception]] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[str] = []

    def fail_next(self, operation: str, exc: Exception) -> None:
        self.failures.setdefault(operation, []).append(exc)

    def hold(self, operation: str) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[operation] = gate
        return gate

    def release(self, operation: str) -> None:
        gate = self.gates.pop(operation, None)
        if gate is not None:
            gate.set()

    async def _before(self, operation: str) -> None:
        self.calls.append(operation)
        gate = self.gates.get(operation)
        if gate is not None:
            await gate.wait()
        pending = self.failures.get(operation)
        if pending:
            raise pending.pop(0)

    async def create(self, collection, data, *, principal):
        await self._before("create")
        return await super().create(collection, data, principal=principal)

    async def update(self, collection, doc_id, fields, *, principal):
        await self._before("update")
        return await super().update(collection, doc_id, fields, principal=principal)

    async def array_union(self, collection, doc_id, field, items, *, principal, extra=None):
        await self._before("array_union")
        return await super().array_union(
            collection, doc_id, field, items, principal=principal, extra=extra,
        )

    async def transact(self, collection, doc_id, fn, *, principal):
        await self._before("transact")
        return await super().transact(collection, doc_id, fn, principal=principal)

    async def delete(self, collection, doc_id, *, principal):
        await self._before("delete")
        return await super().delete(collection, doc_id, principal=principal)

    def documents(self, collection: str) -> dict:
        return self._docs.get(collection, {})


async def _settle(rounds: int = 20) -> None:
    """Let call_soon deliveries and spawned writes run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def settle():
    return _settle


@pytest.fixture
def doc_store() -> FaultyStore:
    return FaultyStore()


@pytest.fixture
def inference() -> ScriptedInference:
    return ScriptedInference()


@pytest.fixture
def make_actor(doc_store, inference):
    def _make(principal: str = "alice", **kwargs) -> SessionActor:
        kwargs.setdefault("config", EngineConfig(inference_timeout_seconds=5.0))
        return SessionActor(
            kwargs.pop("store", doc_store),
            kwargs.pop("inference", inference),
            principal,
            **kwargs,
        )
    return _make
