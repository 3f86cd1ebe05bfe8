"""LangGraph workflow assembly for a consensus run."""

from typing import Any

from langgraph.graph import END, StateGraph

from consensus_orchestrator.graph.nodes import (
    finalize,
    refine,
    run_round,
    start,
    summarize_progression,
    synthesize,
)
from consensus_orchestrator.graph.state import ConsensusState, rounds_from_state
from consensus_orchestrator.runtime import ConsensusRuntime
from consensus_orchestrator.schemas import Evaluation


def consensus_reached(evaluation: Evaluation | None, consensus_threshold: int) -> bool:
    # Either signal is enough to stop; the two can disagree.
    if evaluation is None:
        return False
    return evaluation.is_good_enough or evaluation.score >= consensus_threshold


def build_graph(runtime: ConsensusRuntime, *, checkpointer: Any = None):
    def _after_round(state: ConsensusState) -> str:
        if state.get("status") == "failed":
            return "failed"
        latest = rounds_from_state(state)[-1]
        if consensus_reached(latest.evaluation, int(state["consensus_threshold"])):
            return "synthesize"
        if latest.round >= int(state["max_rounds"]):
            return "synthesize"
        return "refine"

    def _after_synthesis(state: ConsensusState) -> str:
        if state.get("status") == "failed":
            return "failed"
        if len(state.get("all_rounds", [])) > 1:
            return "summarize"
        return "finalize"

    graph = StateGraph(ConsensusState)

    graph.add_node("start", start.make_node(runtime))
    graph.add_node("run_round", run_round.make_node(runtime))
    graph.add_node("refine", refine.make_node(runtime))
    graph.add_node("synthesize", synthesize.make_node(runtime))
    graph.add_node("summarize_progression", summarize_progression.make_node(runtime))
    graph.add_node("finalize", finalize.make_node(runtime))

    graph.set_entry_point("start")
    graph.add_edge("start", "run_round")
    graph.add_conditional_edges(
        "run_round",
        _after_round,
        {"failed": END, "refine": "refine", "synthesize": "synthesize"},
    )
    graph.add_edge("refine", "run_round")
    graph.add_conditional_edges(
        "synthesize",
        _after_synthesis,
        {"failed": END, "summarize": "summarize_progression", "finalize": "finalize"},
    )
    graph.add_edge("summarize_progression", "finalize")
    graph.add_edge("finalize", END)

    return graph.compile(checkpointer=checkpointer)
