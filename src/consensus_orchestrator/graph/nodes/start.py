"""Start node: announce the conversation and open round 1."""

from __future__ import annotations

import logging

from consensus_orchestrator.events import start_event
from consensus_orchestrator.graph.state import ConsensusState
from consensus_orchestrator.runtime import ConsensusRuntime

logger = logging.getLogger(__name__)


def make_node(runtime: ConsensusRuntime):
    async def run(state: ConsensusState) -> ConsensusState:
        conversation_id = state["conversation_id"]
        logger.info(
            "consensus_workflow event=start conversation_id=%s max_rounds=%d threshold=%d",
            conversation_id,
            state["max_rounds"],
            state["consensus_threshold"],
        )
        runtime.events.emit(start_event(conversation_id))
        runtime.emit_timing("workflow_start", state["start_time"])
        runtime.check_debug_crash("workflow_start")
        return {"current_round": 1, "status": "running"}

    return run
