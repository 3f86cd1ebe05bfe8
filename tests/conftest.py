from __future__ import annotations

import asyncio
import json
import time
from collections.abc import AsyncIterator, Callable, Mapping
from typing import Any

import pytest

from consensus_orchestrator.config.settings import Settings
from consensus_orchestrator.graph.state import ConsensusState, initial_state
from consensus_orchestrator.prompts import SEARCH_CLASSIFIER_SYSTEM_PROMPT, SEARCH_QUERY_SYSTEM_PROMPT
from consensus_orchestrator.providers.errors import BackendError
from consensus_orchestrator.runtime import ConsensusRuntime
from consensus_orchestrator.schemas import ModelSelection, SearchResult
from consensus_orchestrator.storage.memory import InMemoryConversationStorage, InMemoryUsageCounter


class ListEventSink:
    """Test sink that records every event in order."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []
        self.closed = False

    def emit(self, event: dict[str, Any]) -> None:
        if self.closed:
            return
        self.events.append(event)

    def close(self) -> None:
        self.closed = True

    def types(self) -> list[str]:
        return [event["type"] for event in self.events]

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [event for event in self.events if event["type"] == event_type]


class ScriptedBackend:
    """Deterministic backend returning scripted replies in order (last one repeats).

    A reply that is an exception instance is raised instead of streamed.
    """

    def __init__(
        self, name: str, replies: list[str | BaseException], *, delay_s: float = 0.0
    ) -> None:
        self.name = name
        self.replies = list(replies)
        self.delay_s = delay_s
        self.calls: list[dict[str, Any]] = []

    async def stream_text(
        self,
        prompt: str,
        *,
        system: str | None = None,
        json_schema: dict[str, Any] | None = None,
    ) -> AsyncIterator[str]:
        index = min(len(self.calls), len(self.replies) - 1)
        self.calls.append({"prompt": prompt, "system": system, "json_schema": json_schema})
        reply = self.replies[index]
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if isinstance(reply, BaseException):
            raise reply
        for chunk in _chunks(reply):
            yield chunk


class EvaluatorBackend:
    """Stub for the evaluator model: classifies, writes queries, scores, synthesises."""

    def __init__(
        self,
        *,
        scores: list[int] | None = None,
        good_enough: bool | None = None,
        needs_more_info: bool = False,
        suggested_query: str = "",
        classifier_answer: str = "no",
        search_query: str = "current interest rates 2026",
        synthesis: str = "Unified answer.",
        progression: str = "The models converged.",
        evaluation_error: BaseException | None = None,
        synthesis_error: BaseException | None = None,
        progression_error: BaseException | None = None,
        classifier_error: BaseException | None = None,
    ) -> None:
        self.name = "stub:evaluator"
        self.scores = scores or [90]
        self.good_enough = good_enough
        self.needs_more_info = needs_more_info
        self.suggested_query = suggested_query
        self.classifier_answer = classifier_answer
        self.search_query = search_query
        self.synthesis = synthesis
        self.progression = progression
        self.evaluation_error = evaluation_error
        self.synthesis_error = synthesis_error
        self.progression_error = progression_error
        self.classifier_error = classifier_error
        self.calls: list[dict[str, Any]] = []

    def calls_of_kind(self, kind: str) -> list[dict[str, Any]]:
        return [call for call in self.calls if call["kind"] == kind]

    async def stream_text(
        self,
        prompt: str,
        *,
        system: str | None = None,
        json_schema: dict[str, Any] | None = None,
    ) -> AsyncIterator[str]:
        kind = _call_kind(prompt, system, json_schema)
        self.calls.append(
            {"kind": kind, "prompt": prompt, "system": system, "json_schema": json_schema}
        )
        if kind == "classifier":
            if self.classifier_error is not None:
                raise self.classifier_error
            reply = self.classifier_answer
        elif kind == "query":
            reply = self.search_query
        elif kind == "evaluation":
            if self.evaluation_error is not None:
                raise self.evaluation_error
            reply = self._evaluation_json(len(self.calls_of_kind("evaluation")))
        elif kind == "progression":
            if self.progression_error is not None:
                raise self.progression_error
            reply = self.progression
        else:
            if self.synthesis_error is not None:
                raise self.synthesis_error
            reply = self.synthesis
        for chunk in _chunks(reply):
            yield chunk

    def _evaluation_json(self, call_number: int) -> str:
        score = self.scores[min(call_number, len(self.scores)) - 1]
        good_enough = score >= 80 if self.good_enough is None else self.good_enough
        return json.dumps(
            {
                "score": score,
                "summary": f"Score {score}",
                "emoji": "🤝",
                "vibe": "agreement" if score >= 75 else "disagreement",
                "areasOfAgreement": ["Both cite the same core facts"],
                "keyDifferences": ["Different emphasis on risk"],
                "reasoning": "FACTUAL question, minor penalties.",
                "isGoodEnough": good_enough,
                "needsMoreInfo": self.needs_more_info,
                "suggestedSearchQuery": self.suggested_query,
            }
        )


class StubSearchClient:
    def __init__(self, results: list[SearchResult] | None = None, error: BaseException | None = None) -> None:
        self.results = results if results is not None else [
            SearchResult(title="Result", url="https://example.com/a", content="Fresh fact", score=0.9)
        ]
        self.error = error
        self.queries: list[str] = []

    async def search(self, query: str) -> list[SearchResult]:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return list(self.results)


def _call_kind(prompt: str, system: str | None, json_schema: dict[str, Any] | None) -> str:
    if json_schema is not None:
        return "evaluation"
    if system == SEARCH_CLASSIFIER_SYSTEM_PROMPT:
        return "classifier"
    if system == SEARCH_QUERY_SYSTEM_PROMPT:
        return "query"
    if "rounds of consensus-building" in prompt:
        return "progression"
    return "synthesis"


def _chunks(text: str, size: int = 8) -> list[str]:
    if not text:
        return []
    return [text[index : index + size] for index in range(0, len(text), size)]


def make_resolver(backends: Mapping[str, Any]) -> Callable[[str], Any]:
    return lambda model_id: backends.get(model_id)


def rate_limit_error() -> BackendError:
    return BackendError(
        "openai request failed with status 429: Too Many Requests",
        provider="openai",
        status_code=429,
        response_body='{"error": {"message": "Rate limit reached"}}',
    )


TWO_MODELS = [
    ModelSelection(id="model-1", provider="openai", model_id="gpt-4o", label="GPT-4o"),
    ModelSelection(id="model-2", provider="anthropic", model_id="claude-sonnet-4-5", label="Claude"),
]
THREE_MODELS = [
    *TWO_MODELS,
    ModelSelection(id="model-3", provider="google", model_id="gemini-2.5-pro", label="Gemini"),
]
EVALUATOR_MODEL = "claude-3-7-sonnet-20250219"


def make_state(
    storage: InMemoryConversationStorage,
    *,
    models: list[ModelSelection] | None = None,
    max_rounds: int = 3,
    consensus_threshold: int = 80,
    enable_search: bool = False,
    use_targeted_refinement: bool = False,
    preview_identifier: str | None = None,
    prompt: str = "What is the best way to learn Python?",
) -> ConsensusState:
    record = storage.create_conversation(
        user_id=None if preview_identifier else "user-1",
        prompt=prompt,
        max_rounds=max_rounds,
        consensus_threshold=consensus_threshold,
        preview_identifier=preview_identifier,
    )
    return initial_state(
        conversation_id=record.conversation_id,
        prompt=prompt,
        models=models or TWO_MODELS,
        max_rounds=max_rounds,
        consensus_threshold=consensus_threshold,
        evaluator_model=EVALUATOR_MODEL,
        enable_search=enable_search,
        use_targeted_refinement=use_targeted_refinement,
        preview_identifier=preview_identifier,
        start_time=time.time(),
    )


def make_runtime(
    backends: Mapping[str, Any],
    *,
    storage: InMemoryConversationStorage | None = None,
    sink: ListEventSink | None = None,
    settings: Settings | None = None,
    search_client: StubSearchClient | None = None,
    usage_counter: InMemoryUsageCounter | None = None,
) -> ConsensusRuntime:
    return ConsensusRuntime(
        events=sink or ListEventSink(),
        storage=storage or InMemoryConversationStorage(),
        resolve_backend=make_resolver(backends),
        settings=settings or Settings(),
        search_client=search_client,
        usage_counter=usage_counter,
    )


@pytest.fixture
def storage() -> InMemoryConversationStorage:
    return InMemoryConversationStorage()


@pytest.fixture
def sink() -> ListEventSink:
    return ListEventSink()
