"""Finalize node: persist the result, count preview usage, close out the stream."""

from __future__ import annotations

import asyncio
import logging

from consensus_orchestrator.events import complete_event, final_responses_event
from consensus_orchestrator.graph.state import ConsensusState, rounds_from_state
from consensus_orchestrator.runtime import ConsensusRuntime

logger = logging.getLogger(__name__)


def make_node(runtime: ConsensusRuntime):
    async def run(state: ConsensusState) -> ConsensusState:
        conversation_id = state["conversation_id"]
        rounds = rounds_from_state(state)
        latest = rounds[-1]
        final_score = latest.evaluation.score if latest.evaluation is not None else 0

        await asyncio.to_thread(
            runtime.storage.update_result,
            conversation_id,
            synthesis=state.get("synthesis") or "",
            final_score=final_score,
            rounds_completed=len(rounds),
        )

        identifier = state.get("preview_identifier")
        if identifier and runtime.usage_counter is not None:
            try:
                counted = await asyncio.to_thread(
                    runtime.usage_counter.record_usage,
                    identifier,
                    f"consensus-{conversation_id}",
                )
            except Exception as exc:  # noqa: BLE001 - usage accounting never blocks completion
                logger.warning(
                    "consensus_usage event=record_failed conversation_id=%s error=%s",
                    conversation_id,
                    exc,
                )
            else:
                logger.info(
                    "consensus_usage event=recorded conversation_id=%s counted=%s",
                    conversation_id,
                    counted,
                )

        runtime.events.emit(final_responses_event(latest.responses))
        runtime.emit_timing("workflow_complete", state["start_time"])
        runtime.check_debug_crash("workflow_complete")
        runtime.events.emit(complete_event())
        logger.info(
            "consensus_workflow event=complete conversation_id=%s rounds=%d score=%d",
            conversation_id,
            len(rounds),
            final_score,
        )
        return {"status": "completed"}

    return run
