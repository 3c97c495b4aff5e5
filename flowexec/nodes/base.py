"""
Node executor contract.

Every node type is handled by one executor object with a single
``execute(ctx)`` coroutine. It returns a NodeResult when the node is done
or a NodePause when the node must wait for external input; failures are
raised as exceptions and classified by the engine.
"""

from typing import Any, Dict, List, Optional, Protocol, Union
from dataclasses import dataclass, field
import asyncio

from flowexec.config import settings
from flowexec.engine.definition import NodeDefinition
from flowexec.errors import ExecutorError


@dataclass
class NodeContext:
    """
    Everything an executor may read for one node execution.

    ``bindings`` is a private copy built for the batch; executors may read
    it freely but their only way to change execution state is the result
    they return.
    """
    execution_id: str
    workflow_id: str
    version: int
    node: NodeDefinition
    iteration: int
    bindings: Dict[str, Any]
    input_variables: Dict[str, Any] = field(default_factory=dict)

    @property
    def config(self) -> Dict[str, Any]:
        return self.node.config

    @property
    def variables(self) -> Dict[str, Any]:
        """Workflow variables without the reserved binding keys."""
        return {
            k: v for k, v in self.bindings.items()
            if k not in ("input", "nodes", "context")
        }


@dataclass
class NodeResult:
    """
    A completed node execution.

    Attributes:
        output: The node's output; bound to ``config.outputVariable`` if set
        branch: Branch label selecting outgoing edges (decision, human)
        state_updates: Top-level workflow variables to set
        model / tokens / metrics: Observability data from agent calls
        terminal_status: Requested terminal status (end nodes only)
    """
    output: Any = None
    branch: Optional[str] = None
    state_updates: Dict[str, Any] = field(default_factory=dict)
    model: Optional[str] = None
    tokens: Optional[Dict[str, Any]] = None
    metrics: Optional[Dict[str, Any]] = None
    terminal_status: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        """The entry stored under the node's key in ``nodeResults``."""
        record: Dict[str, Any] = {"output": self.output}
        if self.branch is not None:
            record["branch"] = self.branch
        if self.model is not None:
            record["model"] = self.model
        if self.tokens is not None:
            record["tokens"] = self.tokens
        if self.metrics is not None:
            record["metrics"] = self.metrics
        if self.terminal_status is not None:
            record["status"] = self.terminal_status
        return record


@dataclass
class NodePause:
    """Signal that the node is waiting for a human response."""
    message: str = ""
    options: List[Dict[str, Any]] = field(default_factory=list)
    input_schema: Optional[Dict[str, Any]] = None
    display_data: Dict[str, Any] = field(default_factory=dict)
    timeout: Optional[float] = None
    default_branch: Optional[str] = None


NodeOutcome = Union[NodeResult, NodePause]


class NodeExecutor(Protocol):
    """The capability every node type provides."""

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        ...


def node_timeout(ctx: NodeContext) -> float:
    """Timeout for external calls made by a node."""
    value = ctx.config.get("timeout")
    if value is None:
        return float(settings.NODE_TIMEOUT)
    return float(value)


async def with_timeout(awaitable, seconds: float, node_id: str) -> Any:
    """Await with a deadline, raising a node-level TIMEOUT error."""
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError:
        raise ExecutorError(
            f"Node '{node_id}' timed out after {seconds:g}s",
            node_id=node_id,
            code="TIMEOUT",
        )
