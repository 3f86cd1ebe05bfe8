"""Typed state contract for the consensus LangGraph workflow.

Only JSON-friendly values live here so any checkpointer can persist it.
Secrets never enter the state.
"""

import operator
from typing import Annotated, Any, TypedDict

from consensus_orchestrator.schemas import ModelSelection, RoundResult


class ConsensusState(TypedDict, total=False):
    conversation_id: str
    prompt: str
    models: list[dict[str, Any]]
    max_rounds: int
    consensus_threshold: int
    evaluator_model: str
    enable_search: bool
    use_targeted_refinement: bool
    preview_identifier: str | None
    start_time: float
    current_round: int
    # Appended to by the round node only.
    all_rounds: Annotated[list[dict[str, Any]], operator.add]
    status: str
    error: str | None
    synthesis: str | None
    progression_summary: str | None


def initial_state(
    *,
    conversation_id: str,
    prompt: str,
    models: list[ModelSelection],
    max_rounds: int,
    consensus_threshold: int,
    evaluator_model: str,
    enable_search: bool = False,
    use_targeted_refinement: bool = False,
    preview_identifier: str | None = None,
    start_time: float,
) -> ConsensusState:
    return {
        "conversation_id": conversation_id,
        "prompt": prompt,
        "models": [item.model_dump(mode="json") for item in models],
        "max_rounds": max_rounds,
        "consensus_threshold": consensus_threshold,
        "evaluator_model": evaluator_model,
        "enable_search": enable_search,
        "use_targeted_refinement": use_targeted_refinement,
        "preview_identifier": preview_identifier,
        "start_time": start_time,
        "current_round": 0,
        "all_rounds": [],
        "status": "running",
        "error": None,
        "synthesis": None,
        "progression_summary": None,
    }


def selections_from_state(state: ConsensusState) -> list[ModelSelection]:
    return [ModelSelection.model_validate(item) for item in state.get("models", [])]


def rounds_from_state(state: ConsensusState) -> list[RoundResult]:
    return [RoundResult.model_validate(item) for item in state.get("all_rounds", [])]
