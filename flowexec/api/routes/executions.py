"""
Execution API Routes.

Browse executions, view one, follow its progress over server-sent events,
answer its checkpoint or cancel it.
"""

from typing import Any, Dict, Optional
from fastapi import APIRouter, Header, Query
from fastapi.responses import StreamingResponse
import asyncio
import logging

from flowexec.api.schemas import (
    ErrorResponse,
    ExecutionListResponse,
    ExecutionSummary,
    ResumeRequest,
)
from flowexec.config import settings
from flowexec.engine.orchestrator import execution_engine
from flowexec.engine.state import ExecutionStatus


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/executions", tags=["Executions"])


def _parse_event_id(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


@router.get("", response_model=ExecutionListResponse)
async def list_executions(
    workflow_id: Optional[str] = Query(None, alias="workflowId"),
    status: Optional[ExecutionStatus] = Query(None),
) -> ExecutionListResponse:
    """List executions, newest first, optionally filtered by workflow and status."""
    instances = await execution_engine.executions.list_all(workflow_id=workflow_id, status=status)
    summaries = [ExecutionSummary.model_validate(i.summary()) for i in instances]
    return ExecutionListResponse(executions=summaries, total=len(summaries))


@router.get("/{execution_id}", responses={404: {"model": ErrorResponse}})
async def get_execution(execution_id: str) -> Dict[str, Any]:
    """Current snapshot of an execution (running, paused or finished)."""
    instance = await execution_engine.get(execution_id)
    return instance.snapshot()


@router.get("/{execution_id}/stream", responses={404: {"model": ErrorResponse}})
async def stream_execution(
    execution_id: str,
    last_event_id: Optional[str] = Header(None, alias="Last-Event-ID"),
):
    """
    Follow an execution as server-sent events.

    The first event is a `snapshot` of the full state (or, when
    reconnecting with `Last-Event-ID`, the buffered events missed since).
    Then `node_start`, `node_complete`, `checkpoint_pending` and
    `status_changed` follow in the order they were applied. The stream
    ends after the terminal `status_changed`.
    """
    instance = await execution_engine.get(execution_id)
    publisher = execution_engine.publisher
    subscription = publisher.subscribe(
        execution_id,
        instance.snapshot(),
        last_event_id=_parse_event_id(last_event_id),
        finished=instance.is_terminal,
    )

    async def event_stream():
        try:
            while True:
                try:
                    event = await asyncio.wait_for(subscription.get(), timeout=settings.SSE_KEEPALIVE)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                if event is None:
                    break
                yield event.to_sse()
        finally:
            publisher.unsubscribe(subscription)
            logger.debug(f"Stream closed for execution {execution_id}")

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )


@router.post(
    "/{execution_id}/resume",
    response_model=ExecutionSummary,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "Execution is not paused"},
        422: {"model": ErrorResponse, "description": "Response does not fit the checkpoint"},
    },
)
async def resume_execution(execution_id: str, request: ResumeRequest) -> ExecutionSummary:
    """Answer the pending human checkpoint and continue the execution."""
    instance = await execution_engine.resume(
        execution_id,
        request.branch,
        request.data,
        checkpoint_id=request.checkpoint_id,
    )
    return ExecutionSummary.model_validate(instance.summary())


@router.post(
    "/{execution_id}/cancel",
    response_model=ExecutionSummary,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "Execution already finished"},
    },
)
async def cancel_execution(execution_id: str) -> ExecutionSummary:
    """Cancel a running or paused execution."""
    instance = await execution_engine.cancel(execution_id)
    return ExecutionSummary.model_validate(instance.summary())
