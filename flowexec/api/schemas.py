"""
Pydantic Schemas for API Request/Response Models.

These schemas define the structure of data flowing through the API,
providing automatic validation and documentation. Field names are
snake_case in Python and camelCase on the wire.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from flowexec.engine.definition import NodeDefinition, WorkflowDefinition
from flowexec.engine.state import CamelModel, ExecutionStatus


# ============================================================
# Workflow Schemas
# ============================================================

class WorkflowCreateRequest(BaseModel):
    """Request to register a workflow definition."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "id": "greeting",
                "name": "Greeting",
                "nodes": [
                    {"id": "start", "type": "start", "edges": [{"to": "greet"}]},
                    {
                        "id": "greet",
                        "type": "agent",
                        "config": {"prompt": "Say hello to ${name}", "outputVariable": "greeting"},
                        "edges": [{"to": "end"}],
                    },
                    {"id": "end", "type": "end", "config": {"includeFields": ["greeting"]}},
                ],
            }
        },
    )

    id: str = Field(..., min_length=1, description="Workflow id")
    version: Optional[int] = Field(None, ge=1, description="Version (next free version when omitted)")
    name: str = Field("", description="Display name")
    description: str = Field("", description="What the workflow does")
    nodes: List[NodeDefinition] = Field(..., description="Nodes with their outgoing edges")

    def to_definition(self, version: int) -> WorkflowDefinition:
        return WorkflowDefinition(
            id=self.id,
            version=version,
            name=self.name,
            description=self.description,
            nodes=self.nodes,
        )


class WorkflowInfo(CamelModel):
    """A stored workflow definition."""
    id: str
    version: int
    name: str
    description: str
    node_count: int
    nodes: List[Dict[str, Any]]
    mermaid_diagram: Optional[str] = Field(None, description="Mermaid diagram of the graph")

    @classmethod
    def from_definition(cls, definition: WorkflowDefinition, diagram: bool = True) -> "WorkflowInfo":
        return cls(
            id=definition.id,
            version=definition.version,
            name=definition.name,
            description=definition.description,
            node_count=len(definition.nodes),
            nodes=definition.to_dict()["nodes"],
            mermaid_diagram=definition.to_mermaid() if diagram else None,
        )


class WorkflowListResponse(CamelModel):
    workflows: List[WorkflowInfo]
    total: int


# ============================================================
# Execution Schemas
# ============================================================

class ExecutionStartRequest(BaseModel):
    """Request to start an execution of a workflow."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {"inputVariables": {"topic": "graph schedulers"}}
        },
    )

    input_variables: Dict[str, Any] = Field(default_factory=dict, description="Workflow input")
    version: Optional[int] = Field(None, ge=1, description="Definition version (latest when omitted)")


class ExecutionStartResponse(CamelModel):
    execution_id: str
    workflow_id: str
    version: int
    status: ExecutionStatus


class ResumeRequest(BaseModel):
    """A human response to the pending checkpoint."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {"branch": "revise", "data": {"comment": "Add an example."}}
        },
    )

    branch: str = Field(..., min_length=1, description="Chosen option / branch label")
    data: Optional[Dict[str, Any]] = Field(None, description="Freeform response data")
    checkpoint_id: Optional[str] = Field(None, description="Checkpoint being answered")


class ExecutionSummary(CamelModel):
    execution_id: str
    workflow_id: str
    version: int
    status: ExecutionStatus
    current_nodes: List[str]
    pending_checkpoint: Optional[Dict[str, Any]] = None
    error_count: int
    created_at: str
    updated_at: str
    completed_at: Optional[str] = None


class ExecutionListResponse(CamelModel):
    executions: List[ExecutionSummary]
    total: int


# ============================================================
# Tool Schemas
# ============================================================

class ToolInfo(CamelModel):
    """Information about a registered tool."""
    name: str
    description: str
    parameters: Dict[str, Dict[str, Any]]
    is_async: bool = False


class ToolListResponse(CamelModel):
    """Response listing all registered tools."""
    tools: List[ToolInfo]
    total: int


# ============================================================
# Error Schemas
# ============================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[Any] = None
