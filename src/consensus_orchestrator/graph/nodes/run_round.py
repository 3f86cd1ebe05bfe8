"""Round node: execute the current round and append its result."""

from __future__ import annotations

import asyncio

from consensus_orchestrator.graph.state import ConsensusState
from consensus_orchestrator.round_executor import ALL_MODELS_FAILED_MESSAGE, execute_round
from consensus_orchestrator.runtime import ConsensusRuntime


def make_node(runtime: ConsensusRuntime):
    async def run(state: ConsensusState) -> ConsensusState:
        round_number = int(state.get("current_round") or 1)
        result = await execute_round(round_number, state, runtime)
        if result.has_error:
            await asyncio.to_thread(runtime.storage.set_status, state["conversation_id"], "failed")
            return {"status": "failed", "error": ALL_MODELS_FAILED_MESSAGE}
        return {"all_rounds": [result.model_dump(mode="json")]}

    return run
