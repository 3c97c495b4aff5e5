"""
Engine package - definitions, execution state and expressions.

The orchestrator lives in ``flowexec.engine.orchestrator``; it depends on
the node executors, which in turn depend on the modules exported here.
"""

from flowexec.engine.definition import Edge, NodeDefinition, NodeType, WorkflowDefinition
from flowexec.engine.state import (
    Checkpoint,
    ExecutionInstance,
    ExecutionStatus,
    HistoryEntry,
    HistoryEventKind,
    TERMINAL_STATUSES,
    result_key,
)

__all__ = [
    "Edge",
    "NodeDefinition",
    "NodeType",
    "WorkflowDefinition",
    "Checkpoint",
    "ExecutionInstance",
    "ExecutionStatus",
    "HistoryEntry",
    "HistoryEventKind",
    "TERMINAL_STATUSES",
    "result_key",
]
