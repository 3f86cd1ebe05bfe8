"""Synthesis node: merge the final round's answers into one response."""

from __future__ import annotations

import asyncio
import logging

from consensus_orchestrator.events import error_event, synthesis_chunk_event, synthesis_start_event
from consensus_orchestrator.graph.state import ConsensusState, rounds_from_state, selections_from_state
from consensus_orchestrator.prompts import build_synthesis_prompt
from consensus_orchestrator.providers.errors import BackendError, classify_error
from consensus_orchestrator.runtime import ConsensusRuntime

logger = logging.getLogger(__name__)


def make_node(runtime: ConsensusRuntime):
    async def run(state: ConsensusState) -> ConsensusState:
        events = runtime.events
        conversation_id = state["conversation_id"]
        latest = rounds_from_state(state)[-1]
        prompt = build_synthesis_prompt(
            state["prompt"], latest.responses, selections_from_state(state)
        )

        events.emit(synthesis_start_event())
        synthesis = ""
        try:
            backend = runtime.resolve_backend(state["evaluator_model"])
            if backend is None:
                raise BackendError(
                    f"Evaluator model {state['evaluator_model']} is not available",
                    provider="unknown",
                )
            async for chunk in backend.stream_text(prompt):
                synthesis += chunk
                events.emit(synthesis_chunk_event(chunk))
        except Exception as exc:  # noqa: BLE001 - synthesis failure ends the run
            classified = classify_error(exc)
            message = f"Synthesis failed: {classified.message}"
            logger.error(
                "consensus_synthesis event=failed conversation_id=%s error_type=%s error=%s",
                conversation_id,
                classified.kind,
                exc,
            )
            events.emit(error_event(message))
            await asyncio.to_thread(runtime.storage.set_status, conversation_id, "failed")
            return {"status": "failed", "error": message}

        runtime.emit_timing("synthesis", state["start_time"])
        runtime.check_debug_crash("synthesis")
        return {"synthesis": synthesis}

    return run
