"""Provider error types and normalisation into the round-level taxonomy."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

ErrorKind = Literal["rate-limit", "provider-policy", "generic"]

MAX_ERROR_DEPTH = 5
RATE_LIMIT_MESSAGE = (
    "This model is temporarily rate-limited. Please wait a moment and try again, "
    "or add your own API key for higher limits."
)
PROVIDER_POLICY_MESSAGE = (
    "The provider rejected this request because of its data policy settings. "
    "Update the provider privacy settings (for OpenRouter: openrouter.ai/settings/privacy) "
    "to use this model."
)
_NESTED_ATTRIBUTES = ("last_error", "error", "cause", "__cause__", "__context__")


class BackendError(RuntimeError):
    """A provider answered with a non-success status or an error payload."""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.response_body = response_body


@dataclass(frozen=True)
class ClassifiedError:
    kind: ErrorKind
    message: str
    status_code: int | None = None


def classify_error(exc: BaseException) -> ClassifiedError:
    """Map any provider failure onto ``rate-limit``, ``provider-policy`` or ``generic``."""
    details = _extract_error_details(exc, depth=0)
    status_code = details.get("status_code")
    message = str(exc) or type(exc).__name__
    haystack = " ".join(
        [details.get("message", ""), details.get("response_body", ""), message]
    ).lower()

    if status_code == 429 or "rate-limited" in haystack or "rate limit" in haystack:
        return ClassifiedError(kind="rate-limit", message=RATE_LIMIT_MESSAGE, status_code=429)
    if "data policy" in haystack or "no endpoints found matching" in haystack:
        return ClassifiedError(
            kind="provider-policy",
            message=PROVIDER_POLICY_MESSAGE,
            status_code=status_code,
        )
    return ClassifiedError(kind="generic", message=message, status_code=status_code)


def _extract_error_details(obj: Any, *, depth: int) -> dict[str, Any]:
    # Wrapped errors can be cyclic (__context__ pointing back up the chain).
    if depth > MAX_ERROR_DEPTH or obj is None:
        return {}

    details: dict[str, Any] = {}
    status_code = getattr(obj, "status_code", None)
    if isinstance(status_code, int):
        details["status_code"] = status_code
    response_body = getattr(obj, "response_body", None)
    if isinstance(response_body, str):
        details["response_body"] = response_body
    if isinstance(obj, BaseException) and str(obj):
        details["message"] = str(obj)

    response = getattr(obj, "response", None)
    if response is not None and not isinstance(response, (str, bytes)):
        response_status = getattr(response, "status_code", None)
        if isinstance(response_status, int):
            details.setdefault("status_code", response_status)
        body = _response_text(response)
        if body:
            details.setdefault("response_body", body)

    for attribute in _NESTED_ATTRIBUTES:
        nested = getattr(obj, attribute, None)
        if nested is None or nested is obj:
            continue
        nested_details = _extract_error_details(nested, depth=depth + 1)
        for key, value in nested_details.items():
            details.setdefault(key, value)
    return details


def _response_text(response: Any) -> str:
    try:
        text = response.text
    except Exception:  # noqa: BLE001 - streamed bodies may not be readable
        return ""
    return text if isinstance(text, str) else ""
