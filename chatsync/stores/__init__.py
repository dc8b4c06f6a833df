"""Document store backends the sync channel talks to."""
from __future__ import annotations

__all__ = [
    "AccessRules",
    "DocumentStore",
    "JsonFileDocumentStore",
    "MembershipRules",
    "MemoryDocumentStore",
    "SERVER_TIMESTAMP",
]

from chatsync.stores.base import (
    SERVER_TIMESTAMP,
    AccessRules,
    DocumentStore,
    MembershipRules,
)
from chatsync.stores.file_store import JsonFileDocumentStore
from chatsync.stores.memory_store import MemoryDocumentStore
