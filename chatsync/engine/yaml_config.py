"""YAML configuration loader.

Loads a single YAML file layered over the env-derived EngineConfig.
When no YAML is provided, env vars work exactly as before.

Example YAML:
    engine:
      default_model: cygnis-a1
      inference_timeout_seconds: 90
      title_max_chars: 30

    providers:
      cygnis:
        type: cygnis
        api_url: https://cygnis-ai-studio.vercel.app/api/ask
        api_key_env: CYGNIS_API_KEY
      openrouter:
        type: openrouter
        api_key_env: OPENROUTER_API_KEY

    routes:
      cygnis-a1: cygnis
    default_provider: openrouter
"""
from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .config import EngineConfig

logger = logging.getLogger(__name__)

PROVIDER_TYPES = ("openrouter", "cygnis")


@dataclass
class ProviderConfig:
    """Configuration for a single inference provider."""
    type: str  # "openrouter" or "cygnis"
    api_url: str | None = None
    api_key_env: str | None = None


@dataclass
class ChatSyncConfig:
    """Complete parsed YAML configuration."""
    engine: EngineConfig
    providers: dict[str, ProviderConfig] = field(default_factory=dict)
    # model id -> provider name
    routes: dict[str, str] = field(default_factory=dict)
    default_provider: str | None = None


def _coerce_engine_value(value: Any, default: Any) -> Any:
    if isinstance(default, bool):
        return bool(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return str(value)


def _parse_engine(raw: dict[str, Any], base: EngineConfig) -> EngineConfig:
    known = {f.name: f for f in dataclasses.fields(EngineConfig)}
    updates: dict[str, Any] = {}
    for key, value in raw.items():
        if key not in known:
            logger.warning("load_yaml_config: unknown engine setting '%s' ignored", key)
            continue
        try:
            updates[key] = _coerce_engine_value(value, getattr(base, key))
        except (TypeError, ValueError):
            logger.warning(
                "load_yaml_config: invalid value for engine.%s: %r", key, value,
            )
    return dataclasses.replace(base, **updates)


def _parse_providers(raw: dict[str, Any]) -> dict[str, ProviderConfig]:
    providers: dict[str, ProviderConfig] = {}
    for name, cfg in raw.items():
        if not isinstance(cfg, dict):
            logger.warning("load_yaml_config: provider '%s' is not a mapping", name)
            continue
        ptype = str(cfg.get("type", name))
        if ptype not in PROVIDER_TYPES:
            logger.warning(
                "Unknown provider type '%s' for '%s' - skipping", ptype, name,
            )
            continue
        providers[name] = ProviderConfig(
            type=ptype,
            api_url=cfg.get("api_url"),
            api_key_env=cfg.get("api_key_env"),
        )
    return providers


def load_yaml_config(
    path: str | Path,
    base: EngineConfig | None = None,
) -> ChatSyncConfig:
    """Load and parse a YAML config file.

    Values in the ``engine`` section override *base* (defaults to
    ``EngineConfig.from_env()``).
    """
    path = Path(path)
    logger.info(
        "load_yaml_config: attempting to load config from %s (exists=%s)",
        path, path.exists(),
    )
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error("load_yaml_config: config file not found at %s", path.absolute())
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise

    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top level must be a mapping")

    engine = _parse_engine(
        raw.get("engine") or {},
        base if base is not None else EngineConfig.from_env(),
    )
    providers = _parse_providers(raw.get("providers") or {})
    routes = {
        str(model): str(provider)
        for model, provider in (raw.get("routes") or {}).items()
    }
    for model, provider in routes.items():
        if provider not in providers:
            logger.warning(
                "Route %s -> %s references an undefined provider", model, provider,
            )
    default_provider = raw.get("default_provider")

    logger.info(
        "Parsed YAML config %s - providers: %s",
        path.name, ", ".join(providers) if providers else "(none)",
    )
    return ChatSyncConfig(
        engine=engine,
        providers=providers,
        routes=routes,
        default_provider=str(default_provider) if default_provider else None,
    )
