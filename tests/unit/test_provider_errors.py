import httpx

from consensus_orchestrator.providers.errors import (
    MAX_ERROR_DEPTH,
    RATE_LIMIT_MESSAGE,
    BackendError,
    classify_error,
)


class WrappedError(Exception):
    def __init__(self, message: str, last_error: BaseException | None = None) -> None:
        super().__init__(message)
        self.last_error = last_error


def test_status_429_is_rate_limit() -> None:
    error = BackendError("failed", provider="openai", status_code=429)

    classified = classify_error(error)

    assert classified.kind == "rate-limit"
    assert classified.message == RATE_LIMIT_MESSAGE
    assert classified.status_code == 429


def test_rate_limit_text_in_body_is_rate_limit() -> None:
    error = BackendError(
        "upstream error",
        provider="openrouter",
        status_code=400,
        response_body='{"error": "model is temporarily rate-limited upstream"}',
    )

    assert classify_error(error).kind == "rate-limit"


def test_nested_rate_limit_is_found_through_wrappers() -> None:
    inner = BackendError("boom", provider="anthropic", status_code=429)
    outer = WrappedError("retry failed", last_error=WrappedError("attempt 3", last_error=inner))

    assert classify_error(outer).kind == "rate-limit"


def test_cause_chain_is_traversed() -> None:
    try:
        try:
            raise BackendError("denied", provider="openrouter", status_code=404,
                               response_body="No endpoints found matching your data policy")
        except BackendError as exc:
            raise RuntimeError("stream failed") from exc
    except RuntimeError as outer:
        classified = classify_error(outer)

    assert classified.kind == "provider-policy"
    assert classified.status_code == 404


def test_traversal_depth_is_bounded() -> None:
    error: BaseException = BackendError("deep", provider="openai", status_code=429)
    for index in range(MAX_ERROR_DEPTH + 2):
        error = WrappedError(f"wrapper {index}", last_error=error)

    classified = classify_error(error)

    assert classified.kind == "generic"


def test_cyclic_wrappers_do_not_recurse_forever() -> None:
    first = WrappedError("first")
    second = WrappedError("second", last_error=first)
    first.last_error = second

    classified = classify_error(first)

    assert classified.kind == "generic"
    assert classified.message == "first"


def test_httpx_status_error_uses_response_status() -> None:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(429, request=request, text="slow down")
    error = httpx.HTTPStatusError("Too many requests", request=request, response=response)

    assert classify_error(error).kind == "rate-limit"


def test_unclassified_error_keeps_message() -> None:
    classified = classify_error(ValueError("socket closed"))

    assert classified.kind == "generic"
    assert classified.message == "socket closed"
