"""FastAPI app entrypoint for consensus-orchestrator."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from collections.abc import Callable
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse
from langgraph.checkpoint.memory import InMemorySaver
from pydantic import BaseModel

from consensus_orchestrator.config.settings import Settings, get_settings
from consensus_orchestrator.events import QueueEventSink
from consensus_orchestrator.graph.runner import (
    load_checkpoint,
    open_checkpointer,
    resume_workflow,
    run_workflow,
)
from consensus_orchestrator.graph.state import initial_state
from consensus_orchestrator.providers import BackendResolver, can_access_model, make_backend_resolver
from consensus_orchestrator.runtime import ConsensusRuntime
from consensus_orchestrator.schemas import ConsensusRequest, KeySet
from consensus_orchestrator.search import SearchClient, TavilySearchClient
from consensus_orchestrator.storage.base import ConversationStorage, CredentialStore, UsageCounter
from consensus_orchestrator.storage.credentials import SettingsCredentialStore
from consensus_orchestrator.storage.memory import InMemoryCredentialStore
from consensus_orchestrator.storage.models import ConversationRecord, RoundRecord
from consensus_orchestrator.storage.postgres import PostgresConversationStorage

logger = logging.getLogger(__name__)

NDJSON_MEDIA_TYPE = "application/x-ndjson"

BackendResolverFactory = Callable[[KeySet], BackendResolver]
SearchClientFactory = Callable[[KeySet], SearchClient | None]


class ConversationDetail(BaseModel):
    conversation: ConversationRecord
    rounds: list[RoundRecord]


def _ensure_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    storage_override: ConversationStorage | None,
    credentials_override: CredentialStore | None,
    usage_counter_override: UsageCounter | None,
    checkpointer_override: Any,
) -> None:
    if not hasattr(app.state, "storage"):
        database_url = settings.resolved_database_url()
        if storage_override is None and not database_url:
            raise RuntimeError(
                "Missing database URL. Set CONSENSUS_DATABASE_URL "
                "or DATABASE_URL before starting the app."
            )
        app.state.storage = storage_override or PostgresConversationStorage(database_url)
        app.state.storage.migrate()

    if not hasattr(app.state, "settings"):
        app.state.settings = settings

    if not hasattr(app.state, "credentials"):
        app.state.credentials = credentials_override or InMemoryCredentialStore()

    if not hasattr(app.state, "preview_credentials"):
        app.state.preview_credentials = SettingsCredentialStore(settings)

    if not hasattr(app.state, "usage_counter"):
        if usage_counter_override is not None:
            app.state.usage_counter = usage_counter_override
        elif isinstance(app.state.storage, PostgresConversationStorage):
            app.state.usage_counter = app.state.storage
        else:
            app.state.usage_counter = None

    if checkpointer_override is not None and not hasattr(app.state, "checkpointer"):
        app.state.checkpointer = checkpointer_override

    if not hasattr(app.state, "active_runs"):
        app.state.active_runs = {}


def create_app(
    *,
    storage: ConversationStorage | None = None,
    credentials: CredentialStore | None = None,
    usage_counter: UsageCounter | None = None,
    settings_override: Settings | None = None,
    backend_resolver_factory: BackendResolverFactory | None = None,
    search_client_factory: SearchClientFactory | None = None,
    checkpointer: Any = None,
) -> FastAPI:
    settings = settings_override or get_settings()

    def _ensure(app: FastAPI) -> None:
        _ensure_runtime_state(
            app,
            settings=settings,
            storage_override=storage,
            credentials_override=credentials,
            usage_counter_override=usage_counter,
            checkpointer_override=checkpointer,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with AsyncExitStack() as stack:
            _ensure(app)
            if not hasattr(app.state, "checkpointer"):
                app.state.checkpointer = await stack.enter_async_context(
                    open_checkpointer(settings)
                )
            yield
            await _shutdown(app)

    app_lifespan = lifespan if storage is None else None
    app = FastAPI(title=settings.app_name, lifespan=app_lifespan)

    # Keep test paths reliable when lifespan is not executed by the client.
    if storage is not None:
        _ensure(app)

    def _get_storage(request: Request) -> ConversationStorage:
        if not hasattr(request.app.state, "storage"):
            _ensure(request.app)
        return request.app.state.storage

    def _get_checkpointer(request: Request) -> Any:
        if not hasattr(request.app.state, "checkpointer"):
            request.app.state.checkpointer = InMemorySaver()
        return request.app.state.checkpointer

    def _get_http_client(request: Request) -> httpx.AsyncClient:
        client = getattr(request.app.state, "http_client", None)
        if client is None:
            client = httpx.AsyncClient()
            request.app.state.http_client = client
        return client

    def _build_runtime(request: Request, keys: KeySet, sink: QueueEventSink) -> ConsensusRuntime:
        if backend_resolver_factory is not None:
            resolver = backend_resolver_factory(keys)
        else:
            resolver = make_backend_resolver(
                keys, settings=settings, client=_get_http_client(request)
            )
        if search_client_factory is not None:
            search_client = search_client_factory(keys)
        elif keys.tavily:
            search_client = TavilySearchClient(
                client=_get_http_client(request),
                api_key=keys.tavily,
                url=settings.search_url,
                max_results=settings.search_max_results,
                search_depth=settings.search_depth,
                timeout_s=settings.search_timeout_s,
            )
        else:
            search_client = None
        return ConsensusRuntime(
            events=sink,
            storage=_get_storage(request),
            resolve_backend=resolver,
            settings=request.app.state.settings,
            search_client=search_client,
            usage_counter=request.app.state.usage_counter,
        )

    def _spawn(request: Request, conversation_id: str, coro: Any) -> None:
        active_runs: dict[str, asyncio.Task] = request.app.state.active_runs
        task = asyncio.create_task(coro)
        active_runs[conversation_id] = task

        def _release(done: asyncio.Task) -> None:
            if active_runs.get(conversation_id) is done:
                del active_runs[conversation_id]

        task.add_done_callback(_release)

    def _is_running(request: Request, conversation_id: str) -> bool:
        task = request.app.state.active_runs.get(conversation_id)
        return task is not None and not task.done()

    def _keys_for(request: Request, user_id: str | None) -> KeySet:
        if user_id is None:
            return request.app.state.preview_credentials.get_keys(None)
        return request.app.state.credentials.get_keys(user_id)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    @app.post("/consensus")
    async def start_consensus(payload: ConsensusRequest, request: Request) -> StreamingResponse:
        task_storage = _get_storage(request)
        user_id, preview_identifier = _caller(request)
        keys = _keys_for(request, user_id)

        evaluator_model = payload.evaluator_model or settings.default_evaluator_model
        _require_credentials(payload, evaluator_model, keys)

        max_rounds = payload.max_rounds or settings.default_max_rounds
        threshold = (
            payload.consensus_threshold
            if payload.consensus_threshold is not None
            else settings.default_consensus_threshold
        )
        record = await asyncio.to_thread(
            task_storage.create_conversation,
            user_id=user_id,
            prompt=payload.prompt,
            max_rounds=max_rounds,
            consensus_threshold=threshold,
            preview_identifier=preview_identifier,
        )
        state = initial_state(
            conversation_id=record.conversation_id,
            prompt=payload.prompt,
            models=payload.models,
            max_rounds=max_rounds,
            consensus_threshold=threshold,
            evaluator_model=evaluator_model,
            enable_search=payload.enable_search,
            use_targeted_refinement=payload.use_targeted_refinement,
            preview_identifier=preview_identifier,
            start_time=time.time(),
        )
        logger.info(
            "consensus_request event=accepted conversation_id=%s preview=%s models=%d",
            record.conversation_id,
            preview_identifier is not None,
            len(payload.models),
        )

        sink = QueueEventSink()
        runtime = _build_runtime(request, keys, sink)
        _spawn(
            request,
            record.conversation_id,
            run_workflow(runtime, state, checkpointer=_get_checkpointer(request)),
        )
        return StreamingResponse(
            sink.stream_ndjson(),
            media_type=NDJSON_MEDIA_TYPE,
            headers={"X-Conversation-Id": record.conversation_id},
        )

    @app.post("/consensus/{conversation_id}/resume")
    async def resume_consensus(conversation_id: str, request: Request) -> StreamingResponse:
        task_storage = _get_storage(request)
        record = await asyncio.to_thread(task_storage.get_conversation, conversation_id)
        if record is None or not _owns(record, *_caller(request)):
            raise HTTPException(status_code=404, detail="Conversation not found")

        checkpointer = _get_checkpointer(request)
        checkpoint = await load_checkpoint(checkpointer, conversation_id)
        if checkpoint is None:
            raise HTTPException(status_code=404, detail="No checkpoint for conversation")
        if checkpoint.get("status") in {"completed", "failed"}:
            raise HTTPException(status_code=409, detail="Workflow already finished")
        # No await between this check and _spawn, so two resumes cannot both pass.
        if _is_running(request, conversation_id):
            logger.warning(
                "consensus_request event=resume_rejected conversation_id=%s reason=running",
                conversation_id,
            )
            raise HTTPException(status_code=409, detail="Workflow is already running")

        keys = _keys_for(request, record.user_id)
        sink = QueueEventSink()
        runtime = _build_runtime(request, keys, sink)
        _spawn(
            request,
            conversation_id,
            resume_workflow(runtime, conversation_id, checkpointer=checkpointer),
        )
        return StreamingResponse(
            sink.stream_ndjson(),
            media_type=NDJSON_MEDIA_TYPE,
            headers={"X-Conversation-Id": conversation_id},
        )

    @app.get("/conversations/{conversation_id}", response_model=ConversationDetail)
    def get_conversation(conversation_id: str, request: Request) -> ConversationDetail:
        task_storage = _get_storage(request)
        record = task_storage.get_conversation(conversation_id)
        if record is None or not _owns(record, *_caller(request)):
            raise HTTPException(status_code=404, detail="Conversation not found")
        return ConversationDetail(
            conversation=record,
            rounds=task_storage.list_rounds(conversation_id),
        )

    return app


app = create_app()


def _caller(request: Request) -> tuple[str | None, str | None]:
    """``(user_id, None)`` for identified callers, ``(None, client hash)`` for preview callers."""
    user_id = request.headers.get("x-user-id") or None
    if user_id is not None:
        return user_id, None
    client_host = request.client.host if request.client else "unknown"
    return None, hashlib.sha256(client_host.encode("utf-8")).hexdigest()


def _owns(record: ConversationRecord, user_id: str | None, preview_identifier: str | None) -> bool:
    if record.user_id is not None:
        return user_id == record.user_id
    return user_id is None and preview_identifier == record.preview_identifier


def _require_credentials(payload: ConsensusRequest, evaluator_model: str, keys: KeySet) -> None:
    missing = [
        selection.label
        for selection in payload.models
        if not can_access_model(selection.model_id, keys)
    ]
    if missing:
        raise HTTPException(
            status_code=400,
            detail=f"Missing API key for: {', '.join(missing)}",
        )
    if not can_access_model(evaluator_model, keys):
        raise HTTPException(
            status_code=400,
            detail=f"Missing API key for evaluator model {evaluator_model}",
        )


async def _shutdown(app: FastAPI) -> None:
    tasks = list(getattr(app.state, "active_runs", {}).values())
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
    client = getattr(app.state, "http_client", None)
    if client is not None:
        await client.aclose()
