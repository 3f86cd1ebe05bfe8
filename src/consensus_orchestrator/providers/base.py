"""Backend interface shared by every provider adapter."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable
from typing import Any, Protocol

import httpx

from consensus_orchestrator.providers.errors import BackendError


class TextBackend(Protocol):
    """One provider/model pair that streams generated text fragments."""

    name: str

    def stream_text(
        self,
        prompt: str,
        *,
        system: str | None = None,
        json_schema: dict[str, Any] | None = None,
    ) -> AsyncIterator[str]: ...


BackendResolver = Callable[[str], TextBackend | None]


async def generate_text(
    backend: TextBackend,
    prompt: str,
    *,
    system: str | None = None,
) -> str:
    parts: list[str] = []
    async for fragment in backend.stream_text(prompt, system=system):
        parts.append(fragment)
    return "".join(parts)


async def iter_sse_data(response: httpx.Response) -> AsyncIterator[dict[str, Any]]:
    """Yield decoded JSON payloads of ``data:`` lines from a server-sent event stream."""
    async for line in response.aiter_lines():
        line = line.strip()
        if not line.startswith("data:"):
            continue
        data = line[len("data:") :].strip()
        if not data or data == "[DONE]":
            continue
        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            continue
        if isinstance(payload, dict):
            yield payload


async def raise_for_status(response: httpx.Response, *, provider: str) -> None:
    if response.is_success:
        return
    body = (await response.aread()).decode("utf-8", errors="replace")
    raise BackendError(
        f"{provider} request failed with status {response.status_code}: {body[:400]}",
        provider=provider,
        status_code=response.status_code,
        response_body=body,
    )
