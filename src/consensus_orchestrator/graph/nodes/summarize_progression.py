"""Progression node: narrate how the answers evolved across rounds.

Cosmetic step. Failures fall back to a one-line summary.
"""

from __future__ import annotations

import logging

from consensus_orchestrator.events import (
    progression_summary_chunk_event,
    progression_summary_start_event,
)
from consensus_orchestrator.graph.state import ConsensusState, rounds_from_state, selections_from_state
from consensus_orchestrator.prompts import build_progression_prompt
from consensus_orchestrator.runtime import ConsensusRuntime

logger = logging.getLogger(__name__)


def fallback_progression_summary(rounds_completed: int) -> str:
    return (
        "Unable to generate progression summary. "
        f"The consensus evolved across {rounds_completed} rounds."
    )


def make_node(runtime: ConsensusRuntime):
    async def run(state: ConsensusState) -> ConsensusState:
        events = runtime.events
        rounds = rounds_from_state(state)
        prompt = build_progression_prompt(state["prompt"], rounds, selections_from_state(state))

        events.emit(progression_summary_start_event())
        summary = ""
        try:
            backend = runtime.resolve_backend(state["evaluator_model"])
            if backend is None:
                raise RuntimeError(f"Evaluator model {state['evaluator_model']} is not available")
            async for chunk in backend.stream_text(prompt):
                summary += chunk
                events.emit(progression_summary_chunk_event(chunk))
        except Exception as exc:  # noqa: BLE001 - progression summary never fails the run
            logger.warning(
                "consensus_progression event=fallback conversation_id=%s error_type=%s error=%s",
                state["conversation_id"],
                type(exc).__name__,
                exc,
            )
            summary = fallback_progression_summary(len(rounds))
            events.emit(progression_summary_chunk_event(summary))

        runtime.emit_timing("progression_summary", state["start_time"])
        runtime.check_debug_crash("progression_summary")
        return {"progression_summary": summary}

    return run
