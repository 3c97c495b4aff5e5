"""
Execution State for the Workflow Engine.

An ExecutionInstance is the durable record of one workflow run. It is
mutated only by the ExecutionEngine; everything else reads snapshots of it.
The ``history`` log is append-only and is the single ordering of what
happened to which node at which iteration.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def result_key(node_id: str, iteration: int, loop_body: bool) -> str:
    """Key under which a node's result is stored in ``nodeResults``."""
    if loop_body:
        return f"{node_id}_iter{iteration}"
    return node_id


class ExecutionStatus(str, Enum):
    """Status of a workflow execution."""
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    ExecutionStatus.COMPLETED,
    ExecutionStatus.FAILED,
    ExecutionStatus.CANCELLED,
    ExecutionStatus.APPROVED,
    ExecutionStatus.REJECTED,
})


class HistoryEventKind(str, Enum):
    """Kinds of entries in the execution history."""
    NODE_COMPLETE = "node_complete"
    NODE_FAILED = "node_failed"
    NODE_CANCELLED = "node_cancelled"
    NODE_SKIPPED = "node_skipped"
    CHECKPOINT_PENDING = "checkpoint_pending"

    @property
    def is_terminal(self) -> bool:
        return self != HistoryEventKind.CHECKPOINT_PENDING


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HistoryEntry(CamelModel):
    node_id: str
    iteration: int
    timestamp: datetime = Field(default_factory=utcnow)
    event_kind: HistoryEventKind


class ErrorEntry(CamelModel):
    node_id: Optional[str] = None
    message: str
    timestamp: datetime = Field(default_factory=utcnow)
    iteration: Optional[int] = None
    code: str = "EXECUTOR_ERROR"
    fatal: bool = True


class Checkpoint(CamelModel):
    """A human checkpoint awaiting an external response."""
    id: str
    node_id: str
    node_name: str
    iteration: int
    message: str = ""
    options: List[Dict[str, Any]] = Field(default_factory=list)
    input_schema: Optional[Dict[str, Any]] = None
    display_data: Dict[str, Any] = Field(default_factory=dict)
    default_branch: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = None


class ExecutionInstance(CamelModel):
    """
    The mutable state of one workflow execution.

    Attributes:
        current_nodes: Frontier of node ids executing or awaiting resumption
        completed_nodes / failed_nodes: Node ids that reached that state at least once
        history: Append-only log of per-node terminal (and checkpoint) entries
        node_results: Results keyed by node id, or ``<id>_iter<N>`` for loop bodies
        node_iterations: Admission counter per node (the loop counter)
        variables: Workflow variables visible to node bindings
    """

    execution_id: str
    workflow_id: str
    version: int
    status: ExecutionStatus = ExecutionStatus.PENDING

    input_variables: Dict[str, Any] = Field(default_factory=dict)
    variables: Dict[str, Any] = Field(default_factory=dict)

    current_nodes: List[str] = Field(default_factory=list)
    completed_nodes: List[str] = Field(default_factory=list)
    failed_nodes: List[str] = Field(default_factory=list)
    history: List[HistoryEntry] = Field(default_factory=list)
    node_results: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    node_iterations: Dict[str, int] = Field(default_factory=dict)
    pending_checkpoint: Optional[Checkpoint] = None
    errors: List[ErrorEntry] = Field(default_factory=list)

    output: Any = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def iteration_of(self, node_id: str) -> int:
        """Latest admitted iteration of a node (0 if never admitted)."""
        return self.node_iterations.get(node_id, 0)

    def touch(self) -> None:
        self.updated_at = utcnow()

    # ------------------------------------------------------------
    # Mutators (called by the engine only)
    # ------------------------------------------------------------

    def append_history(self, node_id: str, iteration: int, kind: HistoryEventKind) -> HistoryEntry:
        entry = HistoryEntry(node_id=node_id, iteration=iteration, event_kind=kind)
        self.history.append(entry)
        self.touch()
        return entry

    def record_error(
        self,
        message: str,
        node_id: Optional[str] = None,
        iteration: Optional[int] = None,
        code: str = "EXECUTOR_ERROR",
        fatal: bool = True,
    ) -> ErrorEntry:
        entry = ErrorEntry(
            node_id=node_id,
            message=message,
            iteration=iteration,
            code=code,
            fatal=fatal,
        )
        self.errors.append(entry)
        self.touch()
        return entry

    def mark_completed(self, node_id: str) -> None:
        if node_id not in self.completed_nodes:
            self.completed_nodes.append(node_id)

    def mark_failed(self, node_id: str) -> None:
        if node_id not in self.failed_nodes:
            self.failed_nodes.append(node_id)

    def leave_frontier(self, node_id: str) -> None:
        if node_id in self.current_nodes:
            self.current_nodes.remove(node_id)

    # ------------------------------------------------------------
    # Read views
    # ------------------------------------------------------------

    def checkpoint_resolved(self) -> bool:
        """True if at least one human checkpoint was raised and answered."""
        raised = {
            (e.node_id, e.iteration) for e in self.history
            if e.event_kind == HistoryEventKind.CHECKPOINT_PENDING
        }
        return any(
            (e.node_id, e.iteration) in raised
            for e in self.history
            if e.event_kind == HistoryEventKind.NODE_COMPLETE
        )

    def snapshot(self) -> Dict[str, Any]:
        """Full JSON-ready state, as served to observers joining late."""
        return self.model_dump(mode="json", by_alias=True)

    def summary(self) -> Dict[str, Any]:
        """Compact view for execution lists."""
        return {
            "executionId": self.execution_id,
            "workflowId": self.workflow_id,
            "version": self.version,
            "status": self.status.value,
            "currentNodes": list(self.current_nodes),
            "pendingCheckpoint": (
                self.pending_checkpoint.model_dump(mode="json", by_alias=True)
                if self.pending_checkpoint else None
            ),
            "errorCount": len(self.errors),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }
