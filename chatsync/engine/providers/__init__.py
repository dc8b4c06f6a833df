"""Inference provider abstraction."""
from .base import (
    HistoryEntry,
    InferenceRequest,
    InferenceResult,
    InferenceService,
)
from .registry import (
    MODEL_OPTIONS,
    ModelOption,
    ProviderRegistry,
    RoutingInferenceService,
    build_inference_service,
)
from .cygnis_provider import CygnisProvider
from .openrouter_provider import OpenRouterProvider

__all__ = [
    "HistoryEntry",
    "InferenceRequest",
    "InferenceResult",
    "InferenceService",
    "MODEL_OPTIONS",
    "ModelOption",
    "ProviderRegistry",
    "RoutingInferenceService",
    "build_inference_service",
    "CygnisProvider",
    "OpenRouterProvider",
]
