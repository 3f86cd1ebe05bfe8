"""Route logical model ids to a concrete backend based on the caller's keys.

Priority: a direct provider key wins, OpenRouter is the fallback, otherwise the
model is unreachable and the resolver returns ``None``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import httpx

from consensus_orchestrator.config.settings import Settings
from consensus_orchestrator.providers.anthropic import AnthropicBackend
from consensus_orchestrator.providers.base import BackendResolver, TextBackend
from consensus_orchestrator.providers.google import GoogleBackend
from consensus_orchestrator.providers.openai import OpenAIChatBackend
from consensus_orchestrator.schemas import KeySet

DIRECT_PROVIDERS = ("anthropic", "openai", "google")
_OPENAI_PREFIXES = ("gpt", "chatgpt", "o1", "o3", "o4")


@dataclass(frozen=True)
class RouteInfo:
    source: Literal["direct", "openrouter"]
    provider: str
    model_id: str


def extract_direct_model_id(model_id: str) -> str:
    """``openai/gpt-4o`` -> ``gpt-4o``; direct ids are returned unchanged."""
    if "/" in model_id:
        return model_id.split("/", 1)[1]
    return model_id


def resolve_provider(model_id: str) -> str | None:
    if "/" in model_id:
        return model_id.split("/", 1)[0]
    if model_id.startswith("claude"):
        return "anthropic"
    if model_id.startswith(_OPENAI_PREFIXES):
        return "openai"
    if model_id.startswith("gemini"):
        return "google"
    return None


def get_route_for_model(model_id: str, keys: KeySet) -> RouteInfo | None:
    provider = resolve_provider(model_id)
    if provider is None:
        return None

    if provider in DIRECT_PROVIDERS and keys.get(provider):
        return RouteInfo(
            source="direct",
            provider=provider,
            model_id=extract_direct_model_id(model_id),
        )

    if keys.openrouter:
        openrouter_id = model_id if "/" in model_id else f"{provider}/{model_id}"
        return RouteInfo(source="openrouter", provider=provider, model_id=openrouter_id)
    return None


def can_access_model(model_id: str, keys: KeySet) -> bool:
    return get_route_for_model(model_id, keys) is not None


def build_backend(
    route: RouteInfo,
    keys: KeySet,
    *,
    settings: Settings,
    client: httpx.AsyncClient,
) -> TextBackend | None:
    if route.source == "openrouter":
        api_key = keys.openrouter
        if not api_key:
            return None
        return OpenAIChatBackend(
            client=client,
            api_key=api_key,
            model=route.model_id,
            base_url=settings.openrouter_base_url,
            provider="openrouter",
            timeout_s=settings.llm_timeout_s,
            extra_headers={"X-Title": settings.app_name},
        )

    api_key = keys.get(route.provider)
    if not api_key:
        return None
    if route.provider == "anthropic":
        return AnthropicBackend(
            client=client,
            api_key=api_key,
            model=route.model_id,
            base_url=settings.anthropic_base_url,
            max_tokens=settings.anthropic_max_tokens,
            timeout_s=settings.llm_timeout_s,
        )
    if route.provider == "google":
        return GoogleBackend(
            client=client,
            api_key=api_key,
            model=route.model_id,
            base_url=settings.google_base_url,
            timeout_s=settings.llm_timeout_s,
        )
    return OpenAIChatBackend(
        client=client,
        api_key=api_key,
        model=route.model_id,
        base_url=settings.openai_base_url,
        timeout_s=settings.llm_timeout_s,
    )


def make_backend_resolver(
    keys: KeySet,
    *,
    settings: Settings,
    client: httpx.AsyncClient,
) -> BackendResolver:
    """Return ``model_id -> TextBackend | None`` bound to one caller's keys."""

    def _resolve(model_id: str) -> TextBackend | None:
        route = get_route_for_model(model_id, keys)
        if route is None:
            return None
        return build_backend(route, keys, settings=settings, client=client)

    return _resolve
