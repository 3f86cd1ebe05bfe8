"""Refine node: publish next-round refinement prompts and advance the round counter."""

from __future__ import annotations

from consensus_orchestrator.events import refinement_prompts_event
from consensus_orchestrator.graph.state import ConsensusState, rounds_from_state
from consensus_orchestrator.round_executor import build_refinement_prompts
from consensus_orchestrator.runtime import ConsensusRuntime


def make_node(runtime: ConsensusRuntime):
    async def run(state: ConsensusState) -> ConsensusState:
        latest = rounds_from_state(state)[-1]
        next_round = latest.round + 1
        prompts = build_refinement_prompts(state, latest, next_round)
        runtime.events.emit(refinement_prompts_event(prompts, next_round))
        return {"current_round": next_round}

    return run
