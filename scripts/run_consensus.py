from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time

import httpx

from consensus_orchestrator.config.settings import get_settings
from consensus_orchestrator.events import QueueEventSink
from consensus_orchestrator.graph.runner import open_checkpointer, run_workflow
from consensus_orchestrator.graph.state import initial_state
from consensus_orchestrator.providers import can_access_model, make_backend_resolver, resolve_provider
from consensus_orchestrator.runtime import ConsensusRuntime
from consensus_orchestrator.schemas import ModelSelection
from consensus_orchestrator.search import TavilySearchClient
from consensus_orchestrator.storage.credentials import SettingsCredentialStore
from consensus_orchestrator.storage.memory import InMemoryConversationStorage


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run one consensus workflow and print its NDJSON event stream to stdout."
    )
    parser.add_argument("prompt", help="Question to send to every model.")
    parser.add_argument(
        "--model",
        dest="models",
        action="append",
        required=True,
        help="Model id to include (repeat 2-3 times), e.g. --model gpt-4o --model claude-sonnet-4-5.",
    )
    parser.add_argument("--max-rounds", type=int, default=None, help="Maximum refinement rounds.")
    parser.add_argument(
        "--threshold", type=int, default=None, help="Consensus threshold (0-100)."
    )
    parser.add_argument("--evaluator", default=None, help="Evaluator model id.")
    parser.add_argument("--search", action="store_true", help="Enable the web-search sub-step.")
    parser.add_argument(
        "--targeted",
        action="store_true",
        help="Surface the evaluator's key differences in refinement prompts.",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Logging level for stderr output (default: WARNING).",
    )
    return parser.parse_args()


def _selections(model_ids: list[str]) -> list[ModelSelection]:
    if not 2 <= len(model_ids) <= 3:
        raise SystemExit("Pass --model two or three times.")
    selections = []
    for index, model_id in enumerate(model_ids, start=1):
        provider = resolve_provider(model_id)
        if provider not in {"anthropic", "openai", "google"}:
            provider = "openrouter"
        selections.append(
            ModelSelection(id=f"model-{index}", provider=provider, model_id=model_id, label=model_id)
        )
    return selections


async def _run(args: argparse.Namespace) -> int:
    settings = get_settings()
    keys = SettingsCredentialStore(settings).get_keys(None)
    selections = _selections(args.models)
    evaluator_model = args.evaluator or settings.default_evaluator_model
    missing = [
        model_id
        for model_id in [*args.models, evaluator_model]
        if not can_access_model(model_id, keys)
    ]
    if missing:
        print(f"Missing API key for: {', '.join(missing)}", file=sys.stderr)
        return 2

    storage = InMemoryConversationStorage()
    max_rounds = args.max_rounds or settings.default_max_rounds
    threshold = (
        args.threshold if args.threshold is not None else settings.default_consensus_threshold
    )
    record = storage.create_conversation(
        user_id=None,
        prompt=args.prompt,
        max_rounds=max_rounds,
        consensus_threshold=threshold,
    )
    state = initial_state(
        conversation_id=record.conversation_id,
        prompt=args.prompt,
        models=selections,
        max_rounds=max_rounds,
        consensus_threshold=threshold,
        evaluator_model=evaluator_model,
        enable_search=args.search,
        use_targeted_refinement=args.targeted,
        start_time=time.time(),
    )

    async with httpx.AsyncClient() as client, open_checkpointer(settings) as checkpointer:
        search_client = None
        if keys.tavily:
            search_client = TavilySearchClient(
                client=client,
                api_key=keys.tavily,
                url=settings.search_url,
                max_results=settings.search_max_results,
                search_depth=settings.search_depth,
                timeout_s=settings.search_timeout_s,
            )
        sink = QueueEventSink()
        runtime = ConsensusRuntime(
            events=sink,
            storage=storage,
            resolve_backend=make_backend_resolver(keys, settings=settings, client=client),
            settings=settings,
            search_client=search_client,
        )
        workflow = asyncio.create_task(run_workflow(runtime, state, checkpointer=checkpointer))
        async for line in sink.stream_ndjson():
            sys.stdout.write(line)
            sys.stdout.flush()
        result = await workflow

    return 0 if result is not None and result.get("status") == "completed" else 1


def main() -> None:
    args = _parse_args()
    logging.basicConfig(level=args.log_level.upper(), stream=sys.stderr)
    raise SystemExit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
