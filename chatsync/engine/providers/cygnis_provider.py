"""Cygnis question-answering provider.

Sends only the latest question (with any attached document prepended);
the endpoint keeps no conversation state and returns cited sources.
"""
from __future__ import annotations

import logging
from typing import Any

from ..cancellation import CancellationToken
from ..errors import InferenceFailure
from .base import HttpProvider, InferenceRequest, InferenceResult
from .http_utils import parse_sources, post_json

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://cygnis-ai-studio.vercel.app/api/ask"
EMPTY_REPLY_TEXT = "The Cygnis model could not generate a response."


def parse_cygnis_response(data: dict[str, Any]) -> InferenceResult:
    answer = data.get("answer")
    return InferenceResult(
        text=answer if isinstance(answer, str) and answer else EMPTY_REPLY_TEXT,
        sources=parse_sources(data.get("sources")),
    )


class CygnisProvider(HttpProvider):

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        api_key_env: str = "CYGNIS_API_KEY",
        *,
        timeout: float = 120.0,
    ) -> None:
        super().__init__(api_url, api_key_env, timeout=timeout)

    @property
    def name(self) -> str:
        return "cygnis"

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
        headers = {
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        }
        data = await post_json(
            self.name,
            self._api_url,
            {"question": request.prompt_text()},
            headers,
            self._timeout,
        )
        return parse_cygnis_response(data)
