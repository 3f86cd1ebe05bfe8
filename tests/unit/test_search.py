import asyncio
import json

import httpx
import pytest

from conftest import EvaluatorBackend, ListEventSink, StubSearchClient

from consensus_orchestrator.schemas import Evaluation
from consensus_orchestrator.search import SearchError, TavilySearchClient, generate_search_query, run_search_step


def _run_step(**kwargs):
    return asyncio.run(run_search_step(**kwargs))


def test_tavily_client_posts_expected_body() -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(
            200,
            json={
                "query": "q",
                "results": [
                    {"title": "A", "url": "https://a.example", "content": "alpha", "score": 0.8},
                    {"title": "B", "url": "https://b.example", "snippet": "beta"},
                ],
            },
        )

    client = TavilySearchClient(
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        api_key="tvly-key",
    )

    results = asyncio.run(client.search("python release"))

    assert seen["body"] == {
        "query": "python release",
        "max_results": 5,
        "search_depth": "basic",
        "include_answer": False,
    }
    assert seen["auth"] == "Bearer tvly-key"
    assert [item.title for item in results] == ["A", "B"]
    assert results[1].content == "beta"
    assert results[1].score is None


def test_tavily_client_raises_on_error_status() -> None:
    client = TavilySearchClient(
        client=httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(401, text="bad key"))
        ),
        api_key="tvly-key",
    )

    with pytest.raises(SearchError) as exc_info:
        asyncio.run(client.search("anything"))

    assert exc_info.value.status_code == 401


def test_round_one_classifier_no_skips_search() -> None:
    sink = ListEventSink()
    classifier = EvaluatorBackend(classifier_answer="no")
    search = StubSearchClient()

    data = _run_step(
        round_number=1,
        prompt="What is 2 + 2?",
        previous_evaluation=None,
        classifier=classifier,
        client=search,
        events=sink,
    )

    assert data is None
    assert search.queries == []
    assert "search-start" not in sink.types()


def test_round_one_classifier_yes_generates_query_and_searches() -> None:
    sink = ListEventSink()
    classifier = EvaluatorBackend(classifier_answer="Yes", search_query="ECB interest rate today")
    search = StubSearchClient()

    data = _run_step(
        round_number=1,
        prompt="What is the ECB rate right now?",
        previous_evaluation=None,
        classifier=classifier,
        client=search,
        events=sink,
    )

    assert data is not None
    assert data.query == "ECB interest rate today"
    assert data.triggered_by == "user"
    assert data.round == 1
    assert search.queries == ["ECB interest rate today"]
    assert sink.types() == ["search-start", "search-complete"]
    complete = sink.of_type("search-complete")[0]["data"]
    assert complete["triggeredBy"] == "user"
    assert complete["results"][0]["url"] == "https://example.com/a"


def test_later_round_uses_evaluator_suggestion() -> None:
    sink = ListEventSink()
    search = StubSearchClient()
    previous = Evaluation(score=40, needs_more_info=True, suggested_search_query="latest GDP figures")

    data = _run_step(
        round_number=2,
        prompt="How is the economy doing?",
        previous_evaluation=previous,
        classifier=EvaluatorBackend(),
        client=search,
        events=sink,
    )

    assert data is not None
    assert data.triggered_by == "model"
    assert search.queries == ["latest GDP figures"]


def test_later_round_without_request_does_not_search() -> None:
    search = StubSearchClient()
    missing_query = Evaluation(score=40, needs_more_info=True, suggested_search_query="  ")
    not_needed = Evaluation(score=40, needs_more_info=False, suggested_search_query="ignored")

    for previous in (missing_query, not_needed, None):
        data = _run_step(
            round_number=2,
            prompt="Q",
            previous_evaluation=previous,
            classifier=EvaluatorBackend(),
            client=search,
            events=ListEventSink(),
        )
        assert data is None
    assert search.queries == []


def test_search_failure_emits_search_error_and_continues() -> None:
    sink = ListEventSink()
    search = StubSearchClient(error=SearchError("Search API error (500): boom", status_code=500))

    data = _run_step(
        round_number=2,
        prompt="Q",
        previous_evaluation=Evaluation(needs_more_info=True, suggested_search_query="fresh data"),
        classifier=None,
        client=search,
        events=sink,
    )

    assert data is None
    assert sink.types() == ["search-start", "search-error"]
    error = sink.of_type("search-error")[0]["data"]
    assert error == {"query": "fresh data", "round": 2, "error": "Search API error (500): boom"}


def test_classifier_failure_skips_search_quietly() -> None:
    sink = ListEventSink()
    search = StubSearchClient()

    data = _run_step(
        round_number=1,
        prompt="Q",
        previous_evaluation=None,
        classifier=EvaluatorBackend(classifier_error=RuntimeError("classifier down")),
        client=search,
        events=sink,
    )

    assert data is None
    assert sink.events == []
    assert search.queries == []


def test_generated_query_is_capped_at_eight_words() -> None:
    backend = EvaluatorBackend(search_query='"one two three four five six seven eight nine ten"')

    query = asyncio.run(generate_search_query(backend, "Q"))

    assert query == "one two three four five six seven eight"
