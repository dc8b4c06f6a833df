"""Provider registry and model routing.

Maps provider names to InferenceService instances and model ids to
provider names. RoutingInferenceService is what the coordinator talks to.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..cancellation import CancellationToken
from ..errors import InferenceFailure
from .base import InferenceRequest, InferenceResult, InferenceService

if TYPE_CHECKING:
    from ..config import EngineConfig
    from ..yaml_config import ChatSyncConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelOption:
    id: str
    name: str
    description: str
    is_pro: bool = False
    coming_soon: bool = False


MODEL_OPTIONS: tuple[ModelOption, ...] = (
    ModelOption(
        "cygnis-a1", "Cygnis A1",
        "Base model, fast and efficient for general tasks.",
    ),
    ModelOption(
        "google/gemma-2-9b-it:free", "Gemma 2 9B (Google)",
        "Light and fast, suited to simple conversations.",
    ),
    ModelOption(
        "deepseek/deepseek-chat-v3.1:free", "DeepSeek Chat v3.1",
        "Capable general-purpose chat model.",
    ),
    ModelOption(
        "moonshotai/kimi-k2:free", "Kimi K2 (Moonshot AI)",
        "Large context window, good for long documents.",
    ),
    ModelOption(
        "cygnis_a2", "Cygnis A2",
        "Advanced multimodal model for complex discussions.",
        is_pro=True, coming_soon=True,
    ),
    ModelOption(
        "alibaba/tongyi-deepresearch-30b-a3b:free", "Tongyi DeepResearch",
        "Deep research and complex analysis.",
        is_pro=True,
    ),
    ModelOption(
        "qwen/qwen3-coder:free", "Qwen3 Coder",
        "Specialised in code generation and understanding.",
        is_pro=True,
    ),
    ModelOption(
        "openai/gpt-oss-20b:free", "GPT-OSS 20B",
        "Large open model for complex tasks and code.",
        is_pro=True,
    ),
)


def get_model_option(model_id: str) -> ModelOption | None:
    for option in MODEL_OPTIONS:
        if option.id == model_id:
            return option
    return None


class ProviderRegistry:
    """Registry of configured inference providers."""

    def __init__(self) -> None:
        self._providers: dict[str, InferenceService] = {}

    def register(self, name: str, provider: InferenceService) -> None:
        """Register a provider by name."""
        self._providers[name] = provider
        logger.info(
            "Provider registered: %s (available=%s)",
            name,
            provider.is_available(),
        )

    def get(self, name: str) -> InferenceService | None:
        return self._providers.get(name)

    def get_or_raise(self, name: str) -> InferenceService:
        """Get a provider by name, raising KeyError if not found."""
        provider = self._providers.get(name)
        if provider is None:
            available = ", ".join(self._providers.keys())
            raise KeyError(
                f"Provider '{name}' not found. "
                f"Available: {available or 'none'}"
            )
        return provider

    def list_names(self) -> list[str]:
        return list(self._providers.keys())

    def list_available(self) -> list[str]:
        """Return names of providers that have credentials configured."""
        return [
            name for name, p in self._providers.items()
            if p.is_available()
        ]

    async def shutdown_all(self) -> None:
        for name, provider in self._providers.items():
            try:
                await provider.shutdown()
            except Exception as exc:
                logger.error(
                    "Error shutting down provider '%s': %s",
                    name, exc,
                )

    @property
    def count(self) -> int:
        return len(self._providers)


class RoutingInferenceService(InferenceService):
    """Dispatches each request to the provider its model id routes to."""

    def __init__(
        self,
        registry: ProviderRegistry,
        routes: dict[str, str] | None = None,
        *,
        default_provider: str,
        default_model: str,
    ) -> None:
        self._registry = registry
        self._routes = dict(routes or {})
        self._default_provider = default_provider
        self._default_model = default_model

    @property
    def name(self) -> str:
        return "router"

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    def resolve(self, model_id: str | None) -> tuple[str, InferenceService]:
        """Return ``(model_id, provider)`` for a request's model."""
        model = model_id or self._default_model
        provider_name = self._routes.get(model, self._default_provider)
        try:
            return model, self._registry.get_or_raise(provider_name)
        except KeyError as exc:
            raise InferenceFailure(provider_name, str(exc)) from exc

    def is_available(self) -> bool:
        return bool(self._registry.list_available())

    async def complete(
        self,
        request: InferenceRequest,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> InferenceResult:
        model, provider = self.resolve(request.model_id)
        logger.debug("Routing model %s to provider %s", model, provider.name)
        if request.model_id != model:
            request = InferenceRequest(
                history=request.history,
                message=request.message,
                system_instruction=request.system_instruction,
                attachment=request.attachment,
                model_id=model,
            )
        return await provider.complete(request, cancel_token=cancel_token)

    async def shutdown(self) -> None:
        await self._registry.shutdown_all()


def build_inference_service(
    engine: EngineConfig,
    config: ChatSyncConfig | None = None,
) -> RoutingInferenceService:
    """Build the routing service from env config plus optional YAML config.

    Without YAML providers, registers Cygnis (serving ``cygnis-a1``) and
    OpenRouter (everything else).
    """
    from .cygnis_provider import CygnisProvider
    from .openrouter_provider import OpenRouterProvider

    registry = ProviderRegistry()
    timeout = engine.inference_timeout_seconds

    if config is None or not config.providers:
        registry.register("cygnis", CygnisProvider(
            engine.cygnis_api_url, engine.cygnis_api_key_env, timeout=timeout,
        ))
        registry.register("openrouter", OpenRouterProvider(
            engine.openrouter_api_url,
            engine.openrouter_api_key_env,
            site_url=engine.site_url,
            site_name=engine.site_name,
            timeout=timeout,
        ))
        routes = {"cygnis-a1": "cygnis"}
        default_provider = "openrouter"
    else:
        for name, cfg in config.providers.items():
            if cfg.type == "cygnis":
                registry.register(name, CygnisProvider(
                    cfg.api_url or engine.cygnis_api_url,
                    cfg.api_key_env or engine.cygnis_api_key_env,
                    timeout=timeout,
                ))
            elif cfg.type == "openrouter":
                registry.register(name, OpenRouterProvider(
                    cfg.api_url or engine.openrouter_api_url,
                    cfg.api_key_env or engine.openrouter_api_key_env,
                    site_url=engine.site_url,
                    site_name=engine.site_name,
                    timeout=timeout,
                ))
        routes = dict(config.routes)
        default_provider = config.default_provider or next(iter(registry.list_names()))

    if not registry.list_available():
        logger.warning(
            "No inference provider has an API key configured; turns will fail",
        )
    return RoutingInferenceService(
        registry,
        routes,
        default_provider=default_provider,
        default_model=engine.default_model,
    )
