"""OpenAI-compatible chat completions backend (OpenAI and OpenRouter)."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from consensus_orchestrator.providers.base import iter_sse_data, raise_for_status
from consensus_orchestrator.providers.errors import BackendError

logger = logging.getLogger(__name__)


class OpenAIChatBackend:
    """Stream text from a ``/chat/completions`` endpoint."""

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        api_key: str,
        model: str,
        base_url: str = "https://api.openai.com/v1",
        provider: str = "openai",
        timeout_s: float = 120.0,
        extra_headers: dict[str, str] | None = None,
    ) -> None:
        self.client = client
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.provider = provider
        self.timeout_s = timeout_s
        self.extra_headers = dict(extra_headers or {})
        self.name = f"{provider}:{model}"

    async def stream_text(
        self,
        prompt: str,
        *,
        system: str | None = None,
        json_schema: dict[str, Any] | None = None,
    ) -> AsyncIterator[str]:
        payload = self._request_body(prompt, system=system, json_schema=json_schema)
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            **self.extra_headers,
        }
        url = f"{self.base_url}/chat/completions"
        logger.debug("llm_request provider=%s model=%s url=%s", self.provider, self.model, url)
        async with self.client.stream(
            "POST", url, json=payload, headers=headers, timeout=self.timeout_s
        ) as response:
            await raise_for_status(response, provider=self.provider)
            async for event in iter_sse_data(response):
                if "error" in event:
                    raise _stream_error(self.provider, event["error"])
                text = _delta_text(event)
                if text:
                    yield text

    def _request_body(
        self,
        prompt: str,
        *,
        system: str | None,
        json_schema: dict[str, Any] | None,
    ) -> dict[str, Any]:
        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        body: dict[str, Any] = {"model": self.model, "messages": messages, "stream": True}
        if json_schema is not None:
            body["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": "consensus_evaluation",
                    # Strict mode rejects numeric bounds on some models.
                    "strict": False,
                    "schema": json_schema,
                },
            }
        return body


def _delta_text(event: dict[str, Any]) -> str:
    choices = event.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return ""
    delta = choices[0].get("delta") or {}
    content = delta.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            item["text"]
            for item in content
            if isinstance(item, dict) and isinstance(item.get("text"), str)
        )
    return ""


def _stream_error(provider: str, error: Any) -> BackendError:
    if isinstance(error, dict):
        code = error.get("code")
        return BackendError(
            str(error.get("message") or "stream error"),
            provider=provider,
            status_code=code if isinstance(code, int) else None,
            response_body=str(error),
        )
    return BackendError(str(error), provider=provider)
