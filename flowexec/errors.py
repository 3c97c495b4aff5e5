"""
Error taxonomy for the Workflow Execution Engine.

Node-level failures are recorded on the execution instance; only the
errors that escape to the caller (definition, state and lookup errors)
are mapped to HTTP responses in ``flowexec.main``.
"""

from typing import List, Optional


class WorkflowEngineError(Exception):
    """Base class for all engine errors."""

    code: str = "ENGINE_ERROR"


class DefinitionError(WorkflowEngineError):
    """The workflow graph is malformed. No instance is ever created for it."""

    code = "DEFINITION_ERROR"

    def __init__(self, problems: List[str], workflow_id: Optional[str] = None):
        self.problems = list(problems)
        self.workflow_id = workflow_id
        prefix = f"Workflow '{workflow_id}' is invalid" if workflow_id else "Workflow is invalid"
        super().__init__(f"{prefix}: {'; '.join(self.problems)}")


class ExecutorError(WorkflowEngineError):
    """A single node failed. Fatal unless the node sets continueOnError."""

    code = "EXECUTOR_ERROR"

    def __init__(self, message: str, node_id: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.node_id = node_id
        if code:
            self.code = code


class ExpressionError(ExecutorError):
    """An expression, path or template could not be parsed or evaluated."""

    code = "EXPRESSION_ERROR"


class LoopLimitExceeded(WorkflowEngineError):
    """A node was re-admitted more times than its iteration ceiling allows."""

    code = "LOOP_LIMIT_EXCEEDED"

    def __init__(self, node_id: str, limit: int):
        self.node_id = node_id
        self.limit = limit
        super().__init__(f"Node '{node_id}' exceeded its iteration limit of {limit}")


class InvalidState(WorkflowEngineError):
    """The operation is not valid for the execution's current status."""

    code = "INVALID_STATE"

    def __init__(self, execution_id: str, status: str, operation: str):
        self.execution_id = execution_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} execution '{execution_id}' with status '{status}'"
        )


class CancellationError(WorkflowEngineError):
    """An in-flight node call was aborted by cancellation."""

    code = "CANCELLED"

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node '{node_id}' was cancelled while in flight")


class CheckpointResponseError(WorkflowEngineError):
    """A human response does not match what the checkpoint expects."""

    code = "INVALID_CHECKPOINT_RESPONSE"


class WorkflowNotFound(WorkflowEngineError):
    code = "WORKFLOW_NOT_FOUND"

    def __init__(self, workflow_id: str, version: Optional[int] = None):
        self.workflow_id = workflow_id
        self.version = version
        suffix = f" (version {version})" if version is not None else ""
        super().__init__(f"Workflow '{workflow_id}'{suffix} not found")


class ExecutionNotFound(WorkflowEngineError):
    code = "EXECUTION_NOT_FOUND"

    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Execution '{execution_id}' not found")
