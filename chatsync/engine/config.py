"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via CHATSYNC_* env vars.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return default


@dataclass
class EngineConfig:
    """Session engine configuration."""

    # Model used when neither the caller nor preferences pick one.
    default_model: str = "cygnis-a1"
    # Max wall-clock time for a single inference call.
    # Set to 0 (or a negative value) to disable timeout.
    inference_timeout_seconds: float = 120.0
    # Optimistic writes older than this stop shielding the local log from
    # snapshots that do not reflect them.
    watermark_stale_seconds: float = 30.0
    # Leading characters of the first message used as the session title.
    title_max_chars: int = 30
    # Prefix of the model message recorded when inference fails.
    error_prefix: str = "Error: "
    generic_error_text: str = "An error occurred while generating the response."

    # Event bus
    event_queue_size: int = 1000

    # Where the terminal front end keeps its JSON document store.
    store_dir: str = "~/.chatsync/store"

    # Providers
    openrouter_api_url: str = "https://openrouter.ai/api/v1/chat/completions"
    openrouter_api_key_env: str = "OPENROUTER_API_KEY"
    cygnis_api_url: str = "https://cygnis-ai-studio.vercel.app/api/ask"
    cygnis_api_key_env: str = "CYGNIS_API_KEY"
    site_url: str = "http://localhost:3000"
    site_name: str = "chatsync"

    # Logging
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load configuration from CHATSYNC_* environment variables."""
        overrides = {
            k: v for k, v in os.environ.items() if k.startswith("CHATSYNC_")
        }
        if overrides:
            logger.info(
                "EngineConfig.from_env: CHATSYNC_* env overrides: %s",
                ", ".join(sorted(overrides)),
            )
        else:
            logger.debug("EngineConfig.from_env: no CHATSYNC_* env vars set, using defaults")

        config = cls(
            default_model=os.getenv(
                "CHATSYNC_DEFAULT_MODEL", cls.default_model
            ),
            inference_timeout_seconds=_env_float(
                "CHATSYNC_INFERENCE_TIMEOUT", cls.inference_timeout_seconds
            ),
            watermark_stale_seconds=_env_float(
                "CHATSYNC_WATERMARK_STALE", cls.watermark_stale_seconds
            ),
            title_max_chars=_env_int(
                "CHATSYNC_TITLE_MAX_CHARS", cls.title_max_chars
            ),
            event_queue_size=_env_int(
                "CHATSYNC_EVENT_QUEUE_SIZE", cls.event_queue_size
            ),
            store_dir=os.getenv("CHATSYNC_STORE_DIR", cls.store_dir),
            openrouter_api_url=os.getenv(
                "CHATSYNC_OPENROUTER_URL", cls.openrouter_api_url
            ),
            openrouter_api_key_env=os.getenv(
                "CHATSYNC_OPENROUTER_KEY_ENV", cls.openrouter_api_key_env
            ),
            cygnis_api_url=os.getenv("CHATSYNC_CYGNIS_URL", cls.cygnis_api_url),
            cygnis_api_key_env=os.getenv(
                "CHATSYNC_CYGNIS_KEY_ENV", cls.cygnis_api_key_env
            ),
            site_url=os.getenv("CHATSYNC_SITE_URL", cls.site_url),
            site_name=os.getenv("CHATSYNC_SITE_NAME", cls.site_name),
            log_level=os.getenv("CHATSYNC_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "EngineConfig.from_env: model=%s inference_timeout=%s log_level=%s",
            config.default_model, config.inference_timeout_seconds,
            config.log_level,
        )
        return config
