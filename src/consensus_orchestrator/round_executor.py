"""One consensus round: search, concurrent model fan-out, evaluation, persistence."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from consensus_orchestrator.evaluator import evaluate_round
from consensus_orchestrator.events import (
    error_event,
    model_complete_event,
    model_error_event,
    model_response_event,
    round_status_event,
)
from consensus_orchestrator.graph.state import ConsensusState, rounds_from_state, selections_from_state
from consensus_orchestrator.prompts import (
    build_initial_prompt,
    build_refinement_prompt,
    build_search_augmented_prompt,
)
from consensus_orchestrator.providers.errors import classify_error
from consensus_orchestrator.runtime import ConsensusRuntime
from consensus_orchestrator.schemas import ModelSelection, RoundResult, SearchData
from consensus_orchestrator.search import run_search_step

logger = logging.getLogger(__name__)

ALL_MODELS_FAILED_MESSAGE = "All models failed to respond."


def error_placeholder(label: str) -> str:
    return f"[Error: {label} did not respond]"


def build_refinement_prompts(
    state: ConsensusState,
    previous: RoundResult,
    next_round: int,
) -> dict[str, str]:
    """Refinement prompt per model slot for ``next_round``, built from ``previous``."""
    selections = selections_from_state(state)
    prior_evaluation = previous.evaluation if state.get("use_targeted_refinement") else None
    return {
        selection.id: build_refinement_prompt(
            state["prompt"],
            selection.id,
            selection.label,
            previous.responses,
            selections,
            next_round,
            prior_evaluation,
        )
        for selection in selections
    }


def build_round_prompts(
    state: ConsensusState,
    round_number: int,
    previous: RoundResult | None,
    search_data: SearchData | None,
) -> dict[str, str]:
    selections = selections_from_state(state)
    if round_number == 1 or previous is None:
        base = build_initial_prompt(state["prompt"])
        prompts = {selection.id: base for selection in selections}
    else:
        prompts = build_refinement_prompts(state, previous, round_number)
    if search_data is not None:
        prompts = {
            slot: build_search_augmented_prompt(text, search_data.results)
            for slot, text in prompts.items()
        }
    return prompts


async def execute_round(
    round_number: int,
    state: ConsensusState,
    runtime: ConsensusRuntime,
) -> RoundResult:
    events = runtime.events
    conversation_id = state["conversation_id"]
    start_time = state["start_time"]
    selections = selections_from_state(state)
    rounds = rounds_from_state(state)
    previous = rounds[-1] if rounds else None
    status = "Initial responses" if round_number == 1 else "Refining responses"

    logger.info(
        "consensus_round event=start conversation_id=%s round=%d models=%d",
        conversation_id,
        round_number,
        len(selections),
    )
    events.emit(round_status_event(round_number, state["max_rounds"], status))

    evaluator_backend = runtime.resolve_backend(state["evaluator_model"])
    search_enabled = bool(state.get("enable_search")) and runtime.search_client is not None

    search_data: SearchData | None = None
    if search_enabled:
        search_data = await run_search_step(
            round_number=round_number,
            prompt=state["prompt"],
            previous_evaluation=previous.evaluation if previous is not None else None,
            classifier=evaluator_backend,
            client=runtime.search_client,
            events=events,
        )
        runtime.emit_timing(f"round_{round_number}_search", start_time)
        runtime.check_debug_crash(f"round_{round_number}_search")

    prompts = build_round_prompts(state, round_number, previous, search_data)
    outcomes = await asyncio.gather(
        *(
            _run_model(selection, prompts[selection.id], round_number, runtime)
            for selection in selections
        )
    )
    responses = {selection.id: text for selection, (text, _) in zip(selections, outcomes)}
    failed = [selection for selection, (_, ok) in zip(selections, outcomes) if not ok]

    runtime.emit_timing(f"round_{round_number}_models", start_time)
    runtime.check_debug_crash(f"round_{round_number}_models")

    if len(failed) == len(selections):
        logger.error(
            "consensus_round event=all_models_failed conversation_id=%s round=%d",
            conversation_id,
            round_number,
        )
        events.emit(error_event(ALL_MODELS_FAILED_MESSAGE, round_number=round_number))
        return RoundResult(
            round=round_number,
            responses=responses,
            evaluation=None,
            search_data=search_data,
            has_error=True,
        )
    if failed:
        events.emit(
            error_event(
                f"{_join_labels(failed)} failed to respond; continuing with the remaining models.",
                round_number=round_number,
                fatal=False,
            )
        )

    evaluation = await evaluate_round(
        evaluator_backend,
        responses,
        selections,
        round_number,
        consensus_threshold=state["consensus_threshold"],
        enable_search=search_enabled,
        events=events,
    )
    runtime.emit_timing(f"round_{round_number}_evaluation", start_time)
    runtime.check_debug_crash(f"round_{round_number}_evaluation")

    result = RoundResult(
        round=round_number,
        responses=responses,
        evaluation=evaluation,
        search_data=search_data,
        has_error=False,
    )
    await asyncio.to_thread(runtime.storage.save_round, conversation_id, result)
    logger.info(
        "consensus_round event=complete conversation_id=%s round=%d score=%d good_enough=%s",
        conversation_id,
        round_number,
        evaluation.score,
        evaluation.is_good_enough,
    )
    return result


async def _run_model(
    selection: ModelSelection,
    prompt: str,
    round_number: int,
    runtime: ConsensusRuntime,
) -> tuple[str, bool]:
    events = runtime.events
    backend = runtime.resolve_backend(selection.model_id)
    if backend is None:
        events.emit(
            model_error_event(
                selection.id,
                selection.label,
                round_number,
                error=f"Provider not configured for {selection.label}",
                error_type="generic",
            )
        )
        return error_placeholder(selection.label), False

    content = ""
    try:
        async for fragment in backend.stream_text(prompt):
            content += fragment
            events.emit(model_response_event(selection.id, selection.label, content, round_number))
    except Exception as exc:  # noqa: BLE001 - one model failing must not abort the round
        classified = classify_error(exc)
        logger.warning(
            "consensus_model event=failed model=%s round=%d error_type=%s error=%s",
            selection.model_id,
            round_number,
            classified.kind,
            exc,
        )
        events.emit(
            model_error_event(
                selection.id,
                selection.label,
                round_number,
                error=classified.message,
                error_type=classified.kind,
            )
        )
        return error_placeholder(selection.label), False

    events.emit(model_complete_event(selection.id, selection.label, round_number))
    return content, True


def _join_labels(selections: Sequence[ModelSelection]) -> str:
    return ", ".join(selection.label for selection in selections)
