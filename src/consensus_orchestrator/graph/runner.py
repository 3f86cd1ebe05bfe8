"""Drive the consensus graph for a fresh run or a resume, and own checkpointers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from langgraph.checkpoint.memory import InMemorySaver

from consensus_orchestrator.config.settings import Settings
from consensus_orchestrator.events import error_event
from consensus_orchestrator.graph.state import ConsensusState
from consensus_orchestrator.graph.workflow import build_graph
from consensus_orchestrator.runtime import ConsensusRuntime, SimulatedCrash

logger = logging.getLogger(__name__)

RECURSION_LIMIT = 100


def thread_id_for(conversation_id: str) -> str:
    return f"consensus-{conversation_id}"


def thread_config(conversation_id: str) -> dict[str, Any]:
    return {
        "configurable": {"thread_id": thread_id_for(conversation_id)},
        "recursion_limit": RECURSION_LIMIT,
    }


@asynccontextmanager
async def open_checkpointer(settings: Settings) -> AsyncIterator[Any]:
    """In-memory checkpoints by default, PostgreSQL when a database URL is configured."""
    database_url = settings.resolved_checkpoint_database_url()
    if not database_url:
        yield InMemorySaver()
        return
    try:
        from langgraph.checkpoint.postgres.aio import AsyncPostgresSaver
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError(
            "Durable checkpoints require langgraph-checkpoint-postgres. "
            'Install with: python -m pip install "consensus-orchestrator[postgres]"'
        ) from exc
    async with AsyncPostgresSaver.from_conn_string(database_url) as saver:
        await saver.setup()
        yield saver


async def load_checkpoint(checkpointer: Any, conversation_id: str) -> ConsensusState | None:
    """Latest committed state for a conversation, or ``None`` if it never checkpointed."""
    checkpoint_tuple = await checkpointer.aget_tuple(thread_config(conversation_id))
    if checkpoint_tuple is None:
        return None
    values = checkpoint_tuple.checkpoint.get("channel_values") or {}
    if "conversation_id" not in values:
        return None
    return values


async def run_workflow(
    runtime: ConsensusRuntime,
    state: ConsensusState,
    *,
    checkpointer: Any,
) -> ConsensusState | None:
    graph = build_graph(runtime, checkpointer=checkpointer)
    return await _drive(graph, state, state["conversation_id"], runtime)


async def resume_workflow(
    runtime: ConsensusRuntime,
    conversation_id: str,
    *,
    checkpointer: Any,
) -> ConsensusState | None:
    logger.info("consensus_workflow event=resume conversation_id=%s", conversation_id)
    graph = build_graph(runtime, checkpointer=checkpointer)
    return await _drive(graph, None, conversation_id, runtime)


async def _drive(
    graph: Any,
    payload: ConsensusState | None,
    conversation_id: str,
    runtime: ConsensusRuntime,
) -> ConsensusState | None:
    try:
        return await graph.ainvoke(payload, thread_config(conversation_id))
    except SimulatedCrash:
        # Behaves like a killed process: no error and no complete event.
        logger.error("consensus_workflow event=crashed conversation_id=%s", conversation_id)
        return None
    except Exception as exc:
        logger.exception(
            "consensus_workflow event=failed conversation_id=%s error_type=%s",
            conversation_id,
            type(exc).__name__,
        )
        runtime.events.emit(error_event(f"Workflow failed: {exc}"))
        try:
            await asyncio.to_thread(runtime.storage.set_status, conversation_id, "failed")
        except Exception:  # noqa: BLE001
            logger.exception(
                "consensus_workflow event=status_update_failed conversation_id=%s",
                conversation_id,
            )
        return None
    finally:
        runtime.events.close()
