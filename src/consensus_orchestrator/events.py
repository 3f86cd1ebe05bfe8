"""Typed progress events and the sinks that carry them to the caller.

Events are plain dicts with a ``type`` key and camelCase payloads. They are
written one JSON object per line (NDJSON). Delivery is best effort: once a sink
is closed further emits are dropped.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any, Protocol

from consensus_orchestrator.schemas import Evaluation, SearchData
from consensus_orchestrator.timing import TimingData

logger = logging.getLogger(__name__)

Event = dict[str, Any]

_CLOSED = object()


class EventSink(Protocol):
    def emit(self, event: Event) -> None: ...

    def close(self) -> None: ...


class QueueEventSink:
    """Sink backed by an unbounded ``asyncio.Queue`` and drained as NDJSON."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: Event) -> None:
        if self._closed:
            logger.debug("event_sink event=dropped type=%s", event.get("type"))
            return
        self._queue.put_nowait(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def stream_ndjson(self) -> AsyncIterator[str]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield encode_event(item)


def encode_event(event: Event) -> str:
    return json.dumps(event) + "\n"


def start_event(conversation_id: str) -> Event:
    return {"type": "start", "conversationId": conversation_id}


def round_status_event(round_number: int, max_rounds: int, status: str) -> Event:
    return {
        "type": "round-status",
        "data": {"roundNumber": round_number, "maxRounds": max_rounds, "status": status},
    }


def search_start_event(query: str, round_number: int) -> Event:
    return {"type": "search-start", "data": {"query": query, "round": round_number}}


def search_complete_event(search_data: SearchData) -> Event:
    return {"type": "search-complete", "data": search_data.to_wire()}


def search_error_event(query: str, round_number: int, error: str) -> Event:
    return {
        "type": "search-error",
        "data": {"query": query, "round": round_number, "error": error},
    }


def model_response_event(model_id: str, model_label: str, content: str, round_number: int) -> Event:
    return {
        "type": "model-response",
        "data": {
            "modelId": model_id,
            "modelLabel": model_label,
            "content": content,
            "round": round_number,
        },
    }


def model_complete_event(model_id: str, model_label: str, round_number: int) -> Event:
    return {
        "type": "model-complete",
        "data": {"modelId": model_id, "modelLabel": model_label, "round": round_number},
    }


def model_error_event(
    model_id: str,
    model_label: str,
    round_number: int,
    *,
    error: str,
    error_type: str,
) -> Event:
    return {
        "type": "model-error",
        "data": {
            "modelId": model_id,
            "modelLabel": model_label,
            "error": error,
            "errorType": error_type,
            "round": round_number,
        },
    }


def evaluation_start_event(round_number: int) -> Event:
    return {"type": "evaluation-start", "round": round_number}


def evaluation_event(evaluation: Evaluation, round_number: int) -> Event:
    return {"type": "evaluation", "data": evaluation.to_wire(), "round": round_number}


def evaluation_complete_event(round_number: int) -> Event:
    return {"type": "evaluation-complete", "round": round_number}


def timing_event(timing: TimingData) -> Event:
    return {"type": "timing", "data": timing.to_wire()}


def error_event(message: str, *, round_number: int | None = None, fatal: bool = True) -> Event:
    data: dict[str, Any] = {"message": message, "fatal": fatal}
    if round_number is not None:
        data["round"] = round_number
    return {"type": "error", "data": data}


def refinement_prompts_event(prompts: Mapping[str, str], round_number: int) -> Event:
    return {"type": "refinement-prompts", "data": dict(prompts), "round": round_number}


def synthesis_start_event() -> Event:
    return {"type": "synthesis-start"}


def synthesis_chunk_event(content: str) -> Event:
    return {"type": "synthesis-chunk", "content": content}


def progression_summary_start_event() -> Event:
    return {"type": "progression-summary-start"}


def progression_summary_chunk_event(content: str) -> Event:
    return {"type": "progression-summary-chunk", "content": content}


def final_responses_event(responses: Mapping[str, str]) -> Event:
    return {"type": "final-responses", "data": dict(responses)}


def complete_event() -> Event:
    return {"type": "complete"}
