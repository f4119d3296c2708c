from __future__ import annotations

import asyncio
import json
import time
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException
from loguru import logger
from sse_starlette.sse import EventSourceResponse

from billbot.agents.orchestrator import RetrievalOrchestrator
from billbot.api.deps import get_orchestrator, get_registry
from billbot.errors import ValidationError
from billbot.models.schemas import (
    ChatRequest,
    ConnectionStatsResponse,
    SessionStatusResponse,
    StopRequest,
    StopResponse,
)
from billbot.services import logger as log_service
from billbot.services.registry import SessionHandle, SessionRegistry

router = APIRouter(prefix="/api/chat", tags=["chat"])

# Strong references to running sessions so they are not garbage collected mid-run.
_running: set[asyncio.Task] = set()


async def _run_session(
    orchestrator: RetrievalOrchestrator,
    registry: SessionRegistry,
    request: ChatRequest,
    handle: SessionHandle,
) -> None:
    try:
        await orchestrator.run(request, handle)
    finally:
        await registry.remove(handle.session_id, handle)


@router.post("/stream")
async def stream_chat(
    request: ChatRequest,
    registry: SessionRegistry = Depends(get_registry),
    orchestrator: RetrievalOrchestrator = Depends(get_orchestrator),
):
    """Open a chat session and stream its events as Server-Sent Events."""
    session_id = request.session_id or f"session_{uuid4().hex}"
    try:
        handle = await registry.create(session_id, request.connection_id)
    except ValidationError as exc:
        raise HTTPException(status_code=409, detail=exc.to_event_data()) from exc

    task = asyncio.create_task(_run_session(orchestrator, registry, request, handle))
    _running.add(task)
    task.add_done_callback(_running.discard)

    async def event_generator():
        try:
            async for event in handle.stream.events():
                yield {
                    "event": event.event.value,
                    "data": json.dumps(event.to_dict()),
                }
        finally:
            if not handle.stream.ended:
                logger.info(f"Client for session {session_id} went away before the stream ended")
                handle.request_stop("disconnected")
                handle.stream.mark_disconnected()

    return EventSourceResponse(
        event_generator(),
        headers={"X-Session-Id": session_id, "Cache-Control": "no-cache"},
    )


@router.post("/stop", response_model=StopResponse)
async def stop_chat(request: StopRequest, registry: SessionRegistry = Depends(get_registry)):
    """Ask a running session to stop. Unknown or finished sessions are not an error."""
    stopped = await registry.request_stop(request.session_id, request.connection_id)
    log_service.log_event(
        event_type="chat_stop_requested",
        message="Stop requested",
        session_id=request.session_id,
        connection_id=request.connection_id,
        stopped=stopped,
    )
    return StopResponse(stopped=stopped, session_id=request.session_id)


@router.get("/status/{session_id}", response_model=SessionStatusResponse)
async def session_status(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    handle = registry.get(session_id)
    if handle is not None:
        record = handle.search_session
        return SessionStatusResponse(
            session_id=session_id,
            active=handle.stream.is_open(),
            connection_id=handle.connection_id,
            iterations=[i.to_dict() for i in record.iterations] if record else [],
            total_results=record.total_results if record else 0,
        )

    record = registry.finished(session_id)
    if record is None:
        return SessionStatusResponse(session_id=session_id, active=False)
    return SessionStatusResponse(
        session_id=session_id,
        active=False,
        iterations=[i.to_dict() for i in record.iterations],
        total_results=record.total_results,
        completion_reason=record.completion_reason.value if record.completion_reason else None,
    )


@router.get("/connection/{connection_id}", response_model=ConnectionStatsResponse)
async def connection_stats(connection_id: str, registry: SessionRegistry = Depends(get_registry)):
    handle = registry.find_connection(connection_id)
    if handle is None:
        raise HTTPException(status_code=404, detail="Connection not found")
    stream = handle.stream
    return ConnectionStatsResponse(
        connection_id=connection_id,
        active=stream.is_open(),
        session_id=handle.session_id,
        events_count=stream.events_count,
        dropped_count=stream.dropped_count,
        idle_seconds=round(stream.idle_seconds(time.monotonic()), 3),
    )
