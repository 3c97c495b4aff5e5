"""
Storage package - workflow definitions and execution state.
"""

from flowexec.storage.files import FileStateStore
from flowexec.storage.memory import (
    ExecutionStorage,
    WorkflowStorage,
    create_execution_storage,
    execution_storage,
    workflow_storage,
)

__all__ = [
    "FileStateStore",
    "ExecutionStorage",
    "WorkflowStorage",
    "create_execution_storage",
    "execution_storage",
    "workflow_storage",
]
