"""OpenRouter chat-completions provider.

Auth:
  - Bearer key read from OPENROUTER_API_KEY (configurable env var name).
"""
from __future__ import annotations

import logging
from typing import Any

from ..cancellation import CancellationToken
from ..errors import InferenceFailure
from .base import HttpProvider, InferenceRequest, InferenceResult
from .http_utils import post_json

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://openrouter.ai/api/v1/chat/completions"
EMPTY_REPLY_TEXT = "The OpenRouter model could not generate a response."

_ROLE_MAP = {"user": "user", "model": "assistant"}


def build_openrouter_messages(request: InferenceRequest) -> list[dict[str, Any]]:
    """Translate a request into chat-completions ``messages``.

    The turn being answered is sent last as content parts so an image
    attachment can ride along; it is not repeated from the history.
    """
    messages: list[dict[str, Any]] = []
    if request.system_instruction:
        messages.append({"role": "system", "content": request.system_instruction})

    history = list(request.history)
    if history and history[-1].role == "user":
        history = history[:-1]
    for entry in history:
        messages.append({
            "role": _ROLE_MAP.get(entry.role, entry.role),
            "content": entry.content,
        })

    parts: list[dict[str, Any]] = [{"type": "text", "text": request.prompt_text()}]
    if request.attachment is not None and request.attachment.image_url:
        parts.append({
            "type": "image_url",
            "image_url": {"url": request.attachment.image_url},
        })
    messages.append({"role": "user", "content": parts})
    return messages


def parse_openrouter_response(data: dict[str, Any]) -> InferenceResult:
    choices = data.get("choices")
    text = ""
    if isinstance(choices, list) and choices:
        first = choices[0] if isinstance(choices[0], dict) else {}
        message = first.get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        if isinstance(content, str):
            text = content
    return InferenceResult(
        text=text or EMPTY_REPLY_TEXT,
        metadata={"model": data.get("model"), "usage": data.get("usage")},
    )


class OpenRouterProvider(HttpProvider):
    """Provider for any model routed through OpenRouter."""

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        api_key_env: str = "OPENROUTER_API_KEY",
        *,
        default_model: str = "google/gemma-2-9b-it:free",
        site_url: str = "http://localhost:3000",
        site_name: str = "chatsync",
        timeout: float = 120.0,
    ) -> None:
        super().__init__(api_url, api_key_env, timeout=timeout)
        self._default_model = default_model
        self._site_url = site_url
        self._site_name = site_name

    @property
    def name(self) -> str:
        return "openrouter"

    async def complete(
        self,
        request: InferenceRequest,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> InferenceResult:
        key = self._api_key()
        if key is None:
            raise InferenceFailure(
                self.name,
                f"API key is missing. Set the {self._api_key_env} environment variable.",
            )
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        model = request.model_id or self._default_model
        payload = {
            "model": model,
            "messages": build_openrouter_messages(request),
        }
        headers = {
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self._site_url,
            "X-Title": self._site_name,
        }
        logger.debug("OpenRouter request model=%s messages=%d", model, len(payload["messages"]))
        data = await post_json(self.name, self._api_url, payload, headers, self._timeout)
        return parse_openrouter_response(data)
