"""Exception hierarchy for the session engine.

One exception per failure mode. Store and network failures are caught at
the coordinator boundary and turned into rollbacks, in-log error messages
or notices; only ValidationError is raised to callers of send_turn.
"""
from __future__ import annotations


class ChatSyncError(Exception):
    """Base exception for all session engine errors."""


class ValidationError(ChatSyncError):
    """Input rejected before any state was mutated."""


class StoreError(ChatSyncError):
    """A remote document store operation failed."""
    def __init__(self, path: str, operation: str, reason: str = ""):
        self.path = path
        self.operation = operation
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(
            f"{self.describe()} ({operation.upper()} /{path}){detail}"
        )

    def describe(self) -> str:
        return "Store operation failed"


class AccessDenied(StoreError):
    """The principal is not a member, or store policy rejected the write."""
    def describe(self) -> str:
        return "Store access rules denied request"


class NotFound(StoreError):
    """The document no longer exists."""
    def describe(self) -> str:
        return "Document not found"


class TransientIO(StoreError):
    """Connectivity failure; the write may be retried later."""
    def describe(self) -> str:
        return "Store unreachable"


class InferenceFailure(ChatSyncError):
    """The inference provider failed or returned a malformed response."""
    def __init__(self, provider: str, reason: str):
        self.provider = provider
        self.reason = reason
        super().__init__(f"Inference via {provider} failed: {reason}")


class TurnCancelled(ChatSyncError):
    """The in-flight turn was aborted by the user."""
    def __init__(self, reason: str = "cancelled"):
        self.reason = reason
        super().__init__(f"Turn cancelled: {reason}")


class MalformedSnapshot(ChatSyncError):
    """A subscription delivered a document that could not be decoded."""
    def __init__(self, session_id: str, reason: str):
        self.session_id = session_id
        self.reason = reason
        super().__init__(f"Malformed snapshot for session {session_id}: {reason}")
