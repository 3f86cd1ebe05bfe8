"""Optional web-search sub-step run at the start of a round."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from consensus_orchestrator.events import (
    EventSink,
    search_complete_event,
    search_error_event,
    search_start_event,
)
from consensus_orchestrator.prompts import SEARCH_CLASSIFIER_SYSTEM_PROMPT, SEARCH_QUERY_SYSTEM_PROMPT
from consensus_orchestrator.providers.base import TextBackend, generate_text
from consensus_orchestrator.schemas import Evaluation, SearchData, SearchResult

logger = logging.getLogger(__name__)

MAX_QUERY_WORDS = 8


class SearchError(RuntimeError):
    """The search API answered with a non-success status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SearchClient(Protocol):
    async def search(self, query: str) -> list[SearchResult]: ...


class TavilySearchClient:
    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        api_key: str,
        url: str = "https://api.tavily.com/search",
        max_results: int = 5,
        search_depth: str = "basic",
        timeout_s: float = 15.0,
    ) -> None:
        self.client = client
        self.api_key = api_key
        self.url = url
        self.max_results = max_results
        self.search_depth = search_depth
        self.timeout_s = timeout_s

    async def search(self, query: str) -> list[SearchResult]:
        response = await self.client.post(
            self.url,
            json={
                "query": query,
                "max_results": self.max_results,
                "search_depth": self.search_depth,
                "include_answer": False,
            },
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout_s,
        )
        if not response.is_success:
            raise SearchError(
                f"Search API error ({response.status_code}): {response.text[:400]}",
                status_code=response.status_code,
            )
        payload = response.json()
        rows = payload.get("results") if isinstance(payload, dict) else None
        if not isinstance(rows, list):
            return []
        return [_to_result(row) for row in rows[: self.max_results] if isinstance(row, dict)]


def _to_result(row: dict[str, Any]) -> SearchResult:
    score = row.get("score")
    return SearchResult(
        title=str(row.get("title") or ""),
        url=str(row.get("url") or ""),
        # Some search APIs call the excerpt "snippet".
        content=str(row.get("content") or row.get("snippet") or ""),
        score=float(score) if isinstance(score, (int, float)) and not isinstance(score, bool) else None,
    )


async def should_search(backend: TextBackend, prompt: str) -> bool:
    answer = await generate_text(backend, prompt, system=SEARCH_CLASSIFIER_SYSTEM_PROMPT)
    return answer.strip().lower().rstrip(".") == "yes"


async def generate_search_query(backend: TextBackend, prompt: str) -> str:
    raw = await generate_text(backend, prompt, system=SEARCH_QUERY_SYSTEM_PROMPT)
    query = raw.strip().splitlines()[0] if raw.strip() else ""
    query = query.strip().strip('"').strip("'")
    words = query.split()
    if len(words) > MAX_QUERY_WORDS:
        query = " ".join(words[:MAX_QUERY_WORDS])
    return query


async def run_search_step(
    *,
    round_number: int,
    prompt: str,
    previous_evaluation: Evaluation | None,
    classifier: TextBackend | None,
    client: SearchClient | None,
    events: EventSink,
) -> SearchData | None:
    """Decide whether this round searches, run at most one search, return its data.

    Round 1 asks ``classifier`` whether the question needs current information.
    Later rounds search only when the previous evaluation asked for it. Every
    failure is absorbed: the round simply proceeds without search context.
    """
    if client is None:
        return None

    query = ""
    if round_number == 1:
        if classifier is None:
            logger.info("consensus_search event=skipped round=1 reason=no_classifier")
            return None
        try:
            if not await should_search(classifier, prompt):
                logger.info("consensus_search event=not_needed round=1")
                return None
            query = await generate_search_query(classifier, prompt)
        except Exception as exc:  # noqa: BLE001 - classification failure only skips search
            logger.warning(
                "consensus_search event=classifier_failed round=1 error_type=%s error=%s",
                type(exc).__name__,
                exc,
            )
            return None
    elif previous_evaluation is not None and previous_evaluation.needs_more_info:
        query = previous_evaluation.suggested_search_query.strip()

    if not query:
        return None

    events.emit(search_start_event(query, round_number))
    try:
        results = await client.search(query)
    except Exception as exc:  # noqa: BLE001 - search failure is non-fatal to the round
        logger.warning(
            "consensus_search event=failed round=%d error_type=%s error=%s",
            round_number,
            type(exc).__name__,
            exc,
        )
        events.emit(search_error_event(query, round_number, str(exc) or "Search failed"))
        return None

    search_data = SearchData(
        query=query,
        results=results,
        round=round_number,
        triggered_by="user" if round_number == 1 else "model",
    )
    events.emit(search_complete_event(search_data))
    logger.info(
        "consensus_search event=complete round=%d results=%d", round_number, len(results)
    )
    return search_data
