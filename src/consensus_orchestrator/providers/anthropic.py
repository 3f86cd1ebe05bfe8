"""Anthropic Messages API streaming backend."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from consensus_orchestrator.providers.base import iter_sse_data, raise_for_status
from consensus_orchestrator.providers.errors import BackendError

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicBackend:
    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        api_key: str,
        model: str,
        base_url: str = "https://api.anthropic.com/v1",
        max_tokens: int = 4096,
        timeout_s: float = 120.0,
    ) -> None:
        self.client = client
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.max_tokens = max_tokens
        self.timeout_s = timeout_s
        self.name = f"anthropic:{model}"

    async def stream_text(
        self,
        prompt: str,
        *,
        system: str | None = None,
        json_schema: dict[str, Any] | None = None,
    ) -> AsyncIterator[str]:
        body: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "stream": True,
            "messages": [{"role": "user", "content": prompt}],
        }
        system_prompt = _with_schema_instruction(system, json_schema)
        if system_prompt:
            body["system"] = system_prompt
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        url = f"{self.base_url}/messages"
        logger.debug("llm_request provider=anthropic model=%s url=%s", self.model, url)
        async with self.client.stream(
            "POST", url, json=body, headers=headers, timeout=self.timeout_s
        ) as response:
            await raise_for_status(response, provider="anthropic")
            async for event in iter_sse_data(response):
                event_type = event.get("type")
                if event_type == "error":
                    error = event.get("error") or {}
                    raise BackendError(
                        str(error.get("message") or "Anthropic stream error"),
                        provider="anthropic",
                        status_code=429 if error.get("type") == "rate_limit_error" else None,
                        response_body=json.dumps(event),
                    )
                if event_type != "content_block_delta":
                    continue
                delta = event.get("delta") or {}
                text = delta.get("text")
                if isinstance(text, str) and text:
                    yield text


def _with_schema_instruction(system: str | None, json_schema: dict[str, Any] | None) -> str:
    if json_schema is None:
        return system or ""
    instruction = (
        "Respond with a single JSON object and nothing else. "
        f"It must match this JSON schema:\n{json.dumps(json_schema)}"
    )
    if not system:
        return instruction
    return f"{system}\n\n{instruction}"
