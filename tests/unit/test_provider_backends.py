import asyncio
import json

import httpx
import pytest

from consensus_orchestrator.providers import (
    AnthropicBackend,
    BackendError,
    GoogleBackend,
    OpenAIChatBackend,
    classify_error,
    generate_text,
)


def _sse(*payloads: object) -> bytes:
    lines = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        lines.append(f"data: {data}\n\n")
    return "".join(lines).encode("utf-8")


def _collect(backend, prompt: str, **kwargs) -> list[str]:
    async def _run() -> list[str]:
        return [fragment async for fragment in backend.stream_text(prompt, **kwargs)]

    return asyncio.run(_run())


def test_openai_backend_streams_deltas_and_sends_schema() -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        body = _sse(
            {"choices": [{"delta": {"role": "assistant"}}]},
            {"choices": [{"delta": {"content": "Hel"}}]},
            {"choices": [{"delta": {"content": "lo"}}]},
            "[DONE]",
        )
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    backend = OpenAIChatBackend(client=client, api_key="sk-test", model="gpt-4o")

    fragments = _collect(backend, "Hi", system="Be brief", json_schema={"type": "object"})

    assert fragments == ["Hel", "lo"]
    assert seen["url"] == "https://api.openai.com/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    body = seen["body"]
    assert body["stream"] is True
    assert body["messages"][0] == {"role": "system", "content": "Be brief"}
    assert body["response_format"]["json_schema"]["schema"] == {"type": "object"}


def test_openai_backend_raises_backend_error_on_429() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": {"message": "Rate limit reached"}})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    backend = OpenAIChatBackend(client=client, api_key="sk-test", model="gpt-4o")

    with pytest.raises(BackendError) as exc_info:
        _collect(backend, "Hi")

    assert exc_info.value.status_code == 429
    assert classify_error(exc_info.value).kind == "rate-limit"


def test_openrouter_stream_error_payload_becomes_backend_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["X-Title"] == "consensus-orchestrator"
        body = _sse({"error": {"message": "No endpoints found matching your data policy", "code": 404}})
        return httpx.Response(200, content=body)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    backend = OpenAIChatBackend(
        client=client,
        api_key="sk-or",
        model="meta-llama/llama-3.3-70b",
        base_url="https://openrouter.ai/api/v1",
        provider="openrouter",
        extra_headers={"X-Title": "consensus-orchestrator"},
    )

    with pytest.raises(BackendError) as exc_info:
        _collect(backend, "Hi")

    assert classify_error(exc_info.value).kind == "provider-policy"


def test_anthropic_backend_yields_text_deltas() -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        body = _sse(
            {"type": "message_start", "message": {}},
            {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Bon"}},
            {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "jour"}},
            {"type": "message_stop"},
        )
        return httpx.Response(200, content=body)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    backend = AnthropicBackend(client=client, api_key="sk-ant", model="claude-sonnet-4-5")

    text = asyncio.run(generate_text(backend, "Hi", system="Be French"))

    assert text == "Bonjour"
    assert seen["headers"]["x-api-key"] == "sk-ant"
    assert seen["headers"]["anthropic-version"] == "2023-06-01"
    assert seen["body"]["system"] == "Be French"


def test_anthropic_schema_instruction_is_added_to_system() -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, content=_sse({"type": "message_stop"}))

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    backend = AnthropicBackend(client=client, api_key="sk-ant", model="claude-sonnet-4-5")

    _collect(backend, "Score this", system="You evaluate.", json_schema={"type": "object"})

    system = seen["body"]["system"]
    assert system.startswith("You evaluate.")
    assert "JSON schema" in system


def test_anthropic_rate_limit_event_maps_to_429() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = _sse({"type": "error", "error": {"type": "rate_limit_error", "message": "slow"}})
        return httpx.Response(200, content=body)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    backend = AnthropicBackend(client=client, api_key="sk-ant", model="claude-sonnet-4-5")

    with pytest.raises(BackendError) as exc_info:
        _collect(backend, "Hi")

    assert exc_info.value.status_code == 429


def test_google_backend_streams_candidate_parts() -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = request.url
        seen["key"] = request.headers["x-goog-api-key"]
        seen["body"] = json.loads(request.content)
        body = _sse(
            {"candidates": [{"content": {"parts": [{"text": "Ciao"}]}}]},
            {"candidates": [{"content": {"parts": [{"text": " mondo"}]}}]},
        )
        return httpx.Response(200, content=body)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    backend = GoogleBackend(client=client, api_key="g-key", model="gemini-2.5-pro")

    fragments = _collect(backend, "Hi", json_schema={"type": "object"})

    assert fragments == ["Ciao", " mondo"]
    assert seen["url"].path.endswith("/models/gemini-2.5-pro:streamGenerateContent")
    assert seen["url"].params["alt"] == "sse"
    assert seen["key"] == "g-key"
    assert seen["body"]["generationConfig"]["responseMimeType"] == "application/json"
