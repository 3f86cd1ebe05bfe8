"""Model backend adapters and routing."""

from consensus_orchestrator.providers.anthropic import AnthropicBackend
from consensus_orchestrator.providers.base import BackendResolver, TextBackend, generate_text
from consensus_orchestrator.providers.errors import BackendError, ClassifiedError, classify_error
from consensus_orchestrator.providers.google import GoogleBackend
from consensus_orchestrator.providers.openai import OpenAIChatBackend
from consensus_orchestrator.providers.routing import (
    RouteInfo,
    can_access_model,
    get_route_for_model,
    make_backend_resolver,
    resolve_provider,
)

__all__ = [
    "AnthropicBackend",
    "BackendError",
    "BackendResolver",
    "ClassifiedError",
    "GoogleBackend",
    "OpenAIChatBackend",
    "RouteInfo",
    "TextBackend",
    "can_access_model",
    "classify_error",
    "generate_text",
    "get_route_for_model",
    "make_backend_resolver",
    "resolve_provider",
]
