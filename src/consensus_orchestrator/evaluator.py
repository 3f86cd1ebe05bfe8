"""Consensus evaluator: scores agreement between the models' answers for one round.

The evaluator model streams a JSON object. Every fragment is re-parsed as
partial JSON and relayed as an ``evaluation`` event with all fields
default-filled. Any failure degrades to a fallback verdict; this module never
raises out of ``evaluate_round``.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic_core import from_json

from consensus_orchestrator.events import (
    EventSink,
    evaluation_complete_event,
    evaluation_event,
    evaluation_start_event,
)
from consensus_orchestrator.prompts import build_evaluation_prompt, build_evaluation_system_prompt
from consensus_orchestrator.providers.base import TextBackend
from consensus_orchestrator.schemas import VIBES, Evaluation, ModelSelection

logger = logging.getLogger(__name__)

EVALUATION_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "score": {"type": "number", "minimum": 0, "maximum": 100},
        "summary": {"type": "string"},
        "emoji": {"type": "string"},
        "vibe": {"type": "string", "enum": list(VIBES)},
        "areasOfAgreement": {"type": "array", "items": {"type": "string"}},
        "keyDifferences": {"type": "array", "items": {"type": "string"}},
        "reasoning": {"type": "string"},
        "isGoodEnough": {"type": "boolean"},
        "needsMoreInfo": {"type": "boolean"},
        "suggestedSearchQuery": {"type": "string"},
    },
    "required": [
        "score",
        "summary",
        "emoji",
        "vibe",
        "areasOfAgreement",
        "keyDifferences",
        "reasoning",
        "isGoodEnough",
        "needsMoreInfo",
        "suggestedSearchQuery",
    ],
    "additionalProperties": False,
}

FALLBACK_KEY_DIFFERENCE = "Evaluation could not be completed"

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_DOUBLE_BRACE_PATTERN = re.compile(r"^\{\s*\{")


class EvaluationError(ValueError):
    """Evaluator output could not be turned into an evaluation object."""


def extract_json_from_text(text: str) -> dict[str, Any] | None:
    """Pull one JSON object out of model output.

    Handles a bare object, a preamble before the object, markdown code fences,
    and the doubled opening brace some models emit (``{\\n{``). Returns ``None``
    when nothing parses.
    """
    if not text or not text.strip():
        return None

    candidates: list[str] = [text.strip()]
    fenced = _FENCE_PATTERN.search(text)
    if fenced:
        candidates.append(fenced.group(1).strip())

    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start : end + 1])

    for candidate in candidates:
        parsed = _loads_object(candidate)
        if parsed is not None:
            return parsed
        if _DOUBLE_BRACE_PATTERN.match(candidate):
            parsed = _loads_object(_DOUBLE_BRACE_PATTERN.sub("{", candidate, count=1))
            if parsed is not None:
                return parsed
    return None


def _loads_object(candidate: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def parse_partial_evaluation(text: str) -> dict[str, Any] | None:
    """Parse a possibly truncated JSON object; ``None`` until an object has started."""
    start = text.find("{")
    if start == -1:
        return None
    candidate = text[start:]
    # Only a closing fence after the object counts; backticks inside strings are content.
    if text.lstrip().startswith("```"):
        closing = candidate.rfind("}")
        fence_end = candidate.rfind("```")
        if closing != -1 and fence_end > closing and not candidate[closing + 1 : fence_end].strip():
            candidate = candidate[:fence_end]
    candidate = _DOUBLE_BRACE_PATTERN.sub("{", candidate, count=1)
    try:
        parsed = from_json(candidate, allow_partial="trailing-strings")
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def fill_partial_evaluation(raw: Mapping[str, Any] | None) -> Evaluation:
    """Default-fill every evaluation field so consumers never see a missing key."""
    raw = raw or {}
    vibe = raw.get("vibe")
    return Evaluation(
        score=_coerce_score(raw.get("score")),
        summary=_coerce_str(raw.get("summary")),
        emoji=_coerce_str(raw.get("emoji")),
        vibe=vibe if vibe in VIBES else "mixed",
        areas_of_agreement=_coerce_str_list(raw.get("areasOfAgreement")),
        key_differences=_coerce_str_list(raw.get("keyDifferences")),
        reasoning=_coerce_str(raw.get("reasoning")),
        is_good_enough=raw.get("isGoodEnough") is True,
        needs_more_info=raw.get("needsMoreInfo") is True,
        suggested_search_query=_coerce_str(raw.get("suggestedSearchQuery")),
    )


def _coerce_score(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return max(0, min(100, int(round(value))))


def _coerce_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _coerce_str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def fallback_evaluation(exc: BaseException) -> Evaluation:
    message = str(exc) or type(exc).__name__
    return Evaluation(
        score=0,
        summary="The evaluator could not score this round.",
        emoji="⚠️",
        vibe="clash",
        areas_of_agreement=[],
        key_differences=[FALLBACK_KEY_DIFFERENCE],
        reasoning=message,
        is_good_enough=False,
        needs_more_info=False,
        suggested_search_query="",
    )


async def evaluate_round(
    backend: TextBackend | None,
    responses: Mapping[str, str],
    selections: Sequence[ModelSelection],
    round_number: int,
    *,
    consensus_threshold: int,
    enable_search: bool,
    events: EventSink,
) -> Evaluation:
    events.emit(evaluation_start_event(round_number))
    try:
        if backend is None:
            raise EvaluationError("Evaluator model is not available with the configured keys")
        evaluation = await _stream_evaluation(
            backend,
            build_evaluation_prompt(responses, selections, round_number),
            build_evaluation_system_prompt(consensus_threshold, enable_search),
            round_number,
            events,
        )
    except Exception as exc:  # noqa: BLE001 - evaluator failure degrades the round
        logger.warning(
            "consensus_evaluation event=fallback round=%d error_type=%s error=%s",
            round_number,
            type(exc).__name__,
            exc,
        )
        evaluation = fallback_evaluation(exc)

    events.emit(evaluation_event(evaluation, round_number))
    events.emit(evaluation_complete_event(round_number))
    return evaluation


async def _stream_evaluation(
    backend: TextBackend,
    prompt: str,
    system: str,
    round_number: int,
    events: EventSink,
) -> Evaluation:
    text = ""
    last_partial: dict[str, Any] | None = None
    async for fragment in backend.stream_text(
        prompt, system=system, json_schema=EVALUATION_JSON_SCHEMA
    ):
        text += fragment
        partial = parse_partial_evaluation(text)
        if partial is None or partial == last_partial:
            continue
        last_partial = partial
        events.emit(evaluation_event(fill_partial_evaluation(partial), round_number))

    parsed = extract_json_from_text(text)
    if parsed is None:
        raise EvaluationError(f"Evaluator returned no JSON object: {text[:200]!r}")
    return fill_partial_evaluation(parsed)
