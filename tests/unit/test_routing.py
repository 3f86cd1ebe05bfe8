import httpx

from consensus_orchestrator.config.settings import Settings
from consensus_orchestrator.providers import (
    AnthropicBackend,
    GoogleBackend,
    OpenAIChatBackend,
    can_access_model,
    get_route_for_model,
    make_backend_resolver,
    resolve_provider,
)
from consensus_orchestrator.providers.routing import extract_direct_model_id
from consensus_orchestrator.schemas import KeySet


def test_resolve_provider_from_prefixes_and_openrouter_form() -> None:
    assert resolve_provider("claude-sonnet-4-5") == "anthropic"
    assert resolve_provider("gpt-4o") == "openai"
    assert resolve_provider("o3-mini") == "openai"
    assert resolve_provider("gemini-2.5-pro") == "google"
    assert resolve_provider("meta-llama/llama-3.3-70b") == "meta-llama"
    assert resolve_provider("mystery-model") is None


def test_extract_direct_model_id_strips_provider_prefix() -> None:
    assert extract_direct_model_id("openai/gpt-4o") == "gpt-4o"
    assert extract_direct_model_id("gpt-4o") == "gpt-4o"


def test_direct_key_wins_over_openrouter() -> None:
    keys = KeySet(openai="sk-direct", openrouter="sk-or")

    route = get_route_for_model("openai/gpt-4o", keys)

    assert route is not None
    assert route.source == "direct"
    assert route.model_id == "gpt-4o"


def test_openrouter_is_the_fallback() -> None:
    keys = KeySet(openrouter="sk-or")

    direct_id_route = get_route_for_model("claude-sonnet-4-5", keys)
    vendor_route = get_route_for_model("meta-llama/llama-3.3-70b", keys)

    assert direct_id_route is not None
    assert direct_id_route.source == "openrouter"
    assert direct_id_route.model_id == "anthropic/claude-sonnet-4-5"
    assert vendor_route is not None
    assert vendor_route.model_id == "meta-llama/llama-3.3-70b"


def test_unreachable_model_has_no_route() -> None:
    keys = KeySet(anthropic="sk-ant")

    assert get_route_for_model("gpt-4o", keys) is None
    assert not can_access_model("gpt-4o", keys)
    assert can_access_model("claude-sonnet-4-5", keys)


def test_resolver_builds_backend_per_provider() -> None:
    keys = KeySet(openai="sk-oa", anthropic="sk-ant", google="g-key", openrouter="sk-or")
    client = httpx.AsyncClient()
    resolve = make_backend_resolver(keys, settings=Settings(), client=client)

    assert isinstance(resolve("gpt-4o"), OpenAIChatBackend)
    assert isinstance(resolve("claude-sonnet-4-5"), AnthropicBackend)
    assert isinstance(resolve("gemini-2.5-pro"), GoogleBackend)
    openrouter = resolve("mistralai/mistral-large")
    assert isinstance(openrouter, OpenAIChatBackend)
    assert openrouter.provider == "openrouter"
    assert resolve("mystery-model") is None
