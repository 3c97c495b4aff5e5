"""
Workflow API Routes.

Endpoints for registering and reading workflow definitions, and for
starting executions of them.
"""

from typing import Optional
from fastapi import APIRouter, Query, status
import logging

from flowexec.api.schemas import (
    ErrorResponse,
    ExecutionStartRequest,
    ExecutionStartResponse,
    WorkflowCreateRequest,
    WorkflowInfo,
    WorkflowListResponse,
)
from flowexec.engine.orchestrator import execution_engine
from flowexec.errors import WorkflowNotFound


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflows", tags=["Workflows"])


@router.post(
    "",
    response_model=WorkflowInfo,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse, "description": "Invalid workflow definition"}},
)
async def create_workflow(request: WorkflowCreateRequest) -> WorkflowInfo:
    """
    Register a workflow definition.

    The graph is validated before it is stored. Definitions are immutable;
    registering the same id again creates a new version.
    """
    definition = await execution_engine.workflows.save(
        request.to_definition(request.version or 1),
        assign_version=request.version is None,
    )
    return WorkflowInfo.from_definition(definition)


@router.get("", response_model=WorkflowListResponse)
async def list_workflows() -> WorkflowListResponse:
    """List all registered workflow definitions (every version)."""
    definitions = await execution_engine.workflows.list_all()
    infos = [WorkflowInfo.from_definition(d, diagram=False) for d in definitions]
    return WorkflowListResponse(workflows=infos, total=len(infos))


@router.get(
    "/{workflow_id}",
    response_model=WorkflowInfo,
    responses={404: {"model": ErrorResponse}},
)
async def get_workflow(
    workflow_id: str,
    version: Optional[int] = Query(None, ge=1, description="Version (latest when omitted)"),
) -> WorkflowInfo:
    """Get a workflow definition, including a Mermaid diagram of its graph."""
    definition = await execution_engine.workflows.get(workflow_id, version)
    if definition is None:
        raise WorkflowNotFound(workflow_id, version)
    return WorkflowInfo.from_definition(definition)


@router.post(
    "/{workflow_id}/executions",
    response_model=ExecutionStartResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Malformed workflow graph"},
        404: {"model": ErrorResponse, "description": "Workflow not found"},
    },
)
async def start_execution(workflow_id: str, request: ExecutionStartRequest) -> ExecutionStartResponse:
    """
    Start an execution.

    Returns immediately; follow progress with
    `GET /executions/{executionId}/stream`.
    """
    execution_id = await execution_engine.start(workflow_id, request.input_variables, request.version)
    instance = await execution_engine.get(execution_id)
    return ExecutionStartResponse(
        execution_id=execution_id,
        workflow_id=instance.workflow_id,
        version=instance.version,
        status=instance.status,
    )
