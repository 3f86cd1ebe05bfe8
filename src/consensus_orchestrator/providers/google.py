"""Google Gemini streaming backend (``streamGenerateContent`` over SSE)."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from consensus_orchestrator.providers.base import iter_sse_data, raise_for_status
from consensus_orchestrator.providers.errors import BackendError

logger = logging.getLogger(__name__)


class GoogleBackend:
    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        api_key: str,
        model: str,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout_s: float = 120.0,
    ) -> None:
        self.client = client
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.name = f"google:{model}"

    async def stream_text(
        self,
        prompt: str,
        *,
        system: str | None = None,
        json_schema: dict[str, Any] | None = None,
    ) -> AsyncIterator[str]:
        body: dict[str, Any] = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}
        if json_schema is not None:
            # Gemini responseSchema is an OpenAPI subset; callers describe the fields
            # in the system prompt and only the JSON mime type is requested here.
            body["generationConfig"] = {"responseMimeType": "application/json"}
        url = f"{self.base_url}/models/{self.model}:streamGenerateContent"
        logger.debug("llm_request provider=google model=%s url=%s", self.model, url)
        async with self.client.stream(
            "POST",
            url,
            params={"alt": "sse"},
            json=body,
            headers={"x-goog-api-key": self.api_key, "Content-Type": "application/json"},
            timeout=self.timeout_s,
        ) as response:
            await raise_for_status(response, provider="google")
            async for event in iter_sse_data(response):
                error = event.get("error")
                if isinstance(error, dict):
                    code = error.get("code")
                    raise BackendError(
                        str(error.get("message") or "Gemini stream error"),
                        provider="google",
                        status_code=code if isinstance(code, int) else None,
                        response_body=str(error),
                    )
                text = _candidate_text(event)
                if text:
                    yield text


def _candidate_text(event: dict[str, Any]) -> str:
    candidates = event.get("candidates") or []
    if not candidates or not isinstance(candidates[0], dict):
        return ""
    content = candidates[0].get("content") or {}
    parts = content.get("parts") or []
    return "".join(
        part["text"] for part in parts if isinstance(part, dict) and isinstance(part.get("text"), str)
    )
