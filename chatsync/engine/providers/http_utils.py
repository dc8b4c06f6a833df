"""aiohttp helpers shared by the HTTP inference providers."""
from __future__ import annotations

import json
import logging
from typing import Any

import aiohttp

from chatsync.shared.models.message import Source

from ..errors import InferenceFailure

logger = logging.getLogger(__name__)


async def post_json(
    provider: str,
    url: str,
    payload: dict[str, Any],
    headers: dict[str, str],
    timeout: float,
) -> dict[str, Any]:
    """POST *payload* and return the decoded JSON body.

    Non-2xx responses and transport errors raise InferenceFailure carrying
    the provider's own error text when the body has one.
    """
    client_timeout = aiohttp.ClientTimeout(total=timeout if timeout > 0 else None)
    try:
        async with aiohttp.ClientSession(timeout=client_timeout) as http:
            async with http.post(url, json=payload, headers=headers) as resp:
                raw = await resp.text()
                data = _decode(raw)
                if resp.status >= 400:
                    raise InferenceFailure(
                        provider,
                        extract_error_message(data)
                        or f"{provider} returned HTTP {resp.status}",
                    )
    except aiohttp.ClientError as exc:
        logger.warning("%s request failed: %s", provider, exc)
        raise InferenceFailure(provider, f"request failed: {exc}") from exc
    if not isinstance(data, dict):
        raise InferenceFailure(provider, "response was not a JSON object")
    return data


def _decode(raw: str) -> Any:
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except ValueError:
        return {"error": raw.strip()[:500]}


def extract_error_message(data: Any) -> str | None:
    """Pull a human-readable error out of ``{"error": ...}`` shaped bodies."""
    if not isinstance(data, dict):
        return None
    err = data.get("error")
    if isinstance(err, str) and err.strip():
        return err.strip()
    if isinstance(err, dict):
        msg = err.get("message")
        if isinstance(msg, str) and msg.strip():
            return msg.strip()
    return None


def parse_sources(raw: Any) -> list[Source]:
    """Keep well-formed ``{title, url, snippet}`` entries, drop the rest."""
    sources: list[Source] = []
    if not isinstance(raw, list):
        return sources
    for item in raw:
        if not isinstance(item, dict):
            continue
        url = item.get("url")
        if not isinstance(url, str) or not url.startswith(("http://", "https://")):
            continue
        sources.append(Source(
            title=str(item.get("title") or url),
            url=url,
            snippet=str(item.get("snippet") or ""),
        ))
    return sources
