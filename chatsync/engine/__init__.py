"""chatsync engine - real-time synchronized chat sessions with optimistic turns."""
from .config import EngineConfig
from .errors import (
    AccessDenied,
    ChatSyncError,
    InferenceFailure,
    MalformedSnapshot,
    NotFound,
    StoreError,
    TransientIO,
    TurnCancelled,
    ValidationError,
)
from .lifecycle import TurnState

__all__ = [
    # Session actor (lazy import to avoid circular deps)
    "SessionActor",
    "Coordinator",
    "TurnOutcome",
    "HistoryRewriter",
    "Reconciler",
    "SessionStore",
    "WriteLedger",
    "RemoteSyncChannel",
    "CorrectionQueue",
    "CancellationToken",
    # Config
    "EngineConfig",
    "TurnState",
    # YAML config (lazy import)
    "ChatSyncConfig",
    "load_yaml_config",
    # Providers (lazy import)
    "InferenceService",
    "ProviderRegistry",
    "build_inference_service",
    # Errors
    "AccessDenied",
    "ChatSyncError",
    "InferenceFailure",
    "MalformedSnapshot",
    "NotFound",
    "StoreError",
    "TransientIO",
    "TurnCancelled",
    "ValidationError",
]


def __getattr__(name: str):
    if name == "SessionActor":
        from .actor import SessionActor
        return SessionActor
    if name == "Coordinator":
        from .coordinator import Coordinator
        return Coordinator
    if name == "TurnOutcome":
        from .coordinator import TurnOutcome
        return TurnOutcome
    if name == "HistoryRewriter":
        from .rewrite import HistoryRewriter
        return HistoryRewriter
    if name == "Reconciler":
        from .reconciler import Reconciler
        return Reconciler
    if name == "SessionStore":
        from .session_store import SessionStore
        return SessionStore
    if name == "WriteLedger":
        from .watermark import WriteLedger
        return WriteLedger
    if name == "RemoteSyncChannel":
        from .sync_channel import RemoteSyncChannel
        return RemoteSyncChannel
    if name == "CorrectionQueue":
        from .sync_channel import CorrectionQueue
        return CorrectionQueue
    if name == "CancellationToken":
        from .cancellation import CancellationToken
        return CancellationToken
    if name == "ChatSyncConfig":
        from .yaml_config import ChatSyncConfig
        return ChatSyncConfig
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    if name == "InferenceService":
        from .providers.base import InferenceService
        return InferenceService
    if name == "ProviderRegistry":
        from .providers.registry import ProviderRegistry
        return ProviderRegistry
    if name == "build_inference_service":
        from .providers.registry import build_inference_service
        return build_inference_service
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
