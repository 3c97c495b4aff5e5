"""
Execution Engine.

The engine is the only code that mutates an ExecutionInstance. Every
mutation happens while holding the instance's lock from the execution
store, and every applied mutation is published right away, so observers
see events in exactly the order state changed.

One driver task per running execution calls :meth:`ExecutionEngine.advance`
until the instance pauses or terminates. A single advance runs one batch:
the ready part of the frontier is dispatched concurrently, then the
outcomes are applied one by one in frontier order.
"""

from typing import Any, Dict, List, Optional, Set
from copy import deepcopy
from datetime import timedelta
from uuid import uuid4
import asyncio
import logging

from flowexec.config import settings
from flowexec.engine.definition import Edge, NodeDefinition, NodeType, WorkflowDefinition
from flowexec.engine.expressions import build_bindings
from flowexec.engine.state import (
    Checkpoint,
    ExecutionInstance,
    ExecutionStatus,
    HistoryEventKind,
    result_key,
    utcnow,
)
from flowexec.errors import (
    CancellationError,
    CheckpointResponseError,
    ExecutionNotFound,
    ExecutorError,
    InvalidState,
    LoopLimitExceeded,
    WorkflowNotFound,
)
from flowexec.events import publisher as events
from flowexec.events.publisher import ProgressPublisher, progress_publisher
from flowexec.nodes import build_executors
from flowexec.nodes.base import NodeContext, NodeExecutor, NodePause, NodeResult
from flowexec.storage.memory import (
    ExecutionStorage,
    WorkflowStorage,
    execution_storage,
    workflow_storage,
)


logger = logging.getLogger(__name__)


class ExecutionEngine:
    """
    Drives workflow executions through their state machine.

    Usage:
        engine = ExecutionEngine(workflows, executions, publisher)
        execution_id = await engine.start("review", {"topic": "graphs"})
        instance = await engine.wait(execution_id)      # paused at a checkpoint
        await engine.resume(execution_id, "approve")
    """

    def __init__(
        self,
        workflows: WorkflowStorage,
        executions: ExecutionStorage,
        publisher: ProgressPublisher,
        executors: Optional[Dict[NodeType, NodeExecutor]] = None,
        max_node_iterations: Optional[int] = None,
    ):
        self.workflows = workflows
        self.executions = executions
        self.publisher = publisher
        self.executors = executors if executors is not None else build_executors()
        self.max_node_iterations = max_node_iterations or settings.MAX_NODE_ITERATIONS

        self._drivers: Dict[str, asyncio.Task] = {}
        self._inflight: Dict[str, Dict[str, asyncio.Task]] = {}
        self._cancel_requested: Set[str] = set()
        self._timers: Dict[str, asyncio.Task] = {}

    # ============================================================
    # Public operations
    # ============================================================

    async def start(
        self,
        workflow_id: str,
        input_variables: Optional[Dict[str, Any]] = None,
        version: Optional[int] = None,
    ) -> str:
        """
        Create an execution and start driving it.

        Raises:
            WorkflowNotFound: If no such definition (version) is stored
            DefinitionError: If the graph is malformed; no instance is created
        """
        definition = await self.workflows.get(workflow_id, version)
        if definition is None:
            raise WorkflowNotFound(workflow_id, version)
        definition.ensure_valid()

        instance = ExecutionInstance(
            execution_id=str(uuid4()),
            workflow_id=definition.id,
            version=definition.version,
            input_variables=deepcopy(input_variables or {}),
        )
        await self.executions.add(instance)

        async with self.executions.lock(instance.execution_id):
            self._begin(instance, definition)
            await self.executions.save(instance)

        logger.info(
            f"Started execution {instance.execution_id} of workflow "
            f"'{definition.id}' v{definition.version}"
        )
        self._spawn(instance.execution_id)
        return instance.execution_id

    async def advance(self, execution_id: str) -> ExecutionInstance:
        """
        Run one batch of ready frontier nodes and apply their outcomes.

        Raises:
            ExecutionNotFound: If the execution does not exist
            InvalidState: If the execution is not running
        """
        instance = await self._get(execution_id)

        async with self.executions.lock(execution_id):
            if instance.status != ExecutionStatus.RUNNING:
                raise InvalidState(execution_id, instance.status.value, "advance")

            definition = await self._definition_for(instance)
            if not instance.current_nodes:
                self._finish(instance, definition)
                await self.executions.save(instance)
                return instance

            batch = self._ready(instance, definition)
            bindings = self._bindings(instance, definition)

            tasks: Dict[str, asyncio.Task] = {}
            for node in batch:
                self.publisher.publish(execution_id, events.NODE_START, {
                    "nodeId": node.id,
                    "nodeType": node.type.value,
                    "name": node.label,
                    "iteration": instance.iteration_of(node.id),
                })
                tasks[node.id] = asyncio.create_task(
                    self._run_node(instance, node, bindings),
                    name=f"{execution_id}:{node.id}",
                )
            logger.debug(f"Execution {execution_id} dispatched batch {[n.id for n in batch]}")

            self._inflight[execution_id] = tasks
            try:
                outcomes = await asyncio.gather(*tasks.values(), return_exceptions=True)
            finally:
                self._inflight.pop(execution_id, None)

            fatal = False
            for node, outcome in zip(batch, outcomes):
                if self._apply(instance, definition, node, outcome, halting=fatal):
                    fatal = True

            if execution_id in self._cancel_requested:
                self._halt(instance, ExecutionStatus.CANCELLED)
            elif fatal:
                self._halt(instance, ExecutionStatus.FAILED)
            elif instance.pending_checkpoint is not None:
                self._set_status(instance, ExecutionStatus.PAUSED)
                self._schedule_expiry(instance)
            elif not instance.current_nodes:
                self._finish(instance, definition)

            await self.executions.save(instance)
            return instance

    async def resume(
        self,
        execution_id: str,
        branch: Optional[str],
        data: Optional[Dict[str, Any]] = None,
        checkpoint_id: Optional[str] = None,
    ) -> ExecutionInstance:
        """
        Answer the pending checkpoint and continue the execution.

        Raises:
            InvalidState: If the execution is not paused (no state change)
            CheckpointResponseError: If the response does not fit the
                checkpoint (no state change)
        """
        instance = await self._get(execution_id)

        async with self.executions.lock(execution_id):
            checkpoint = instance.pending_checkpoint
            if instance.status != ExecutionStatus.PAUSED or checkpoint is None:
                raise InvalidState(execution_id, instance.status.value, "resume")
            if checkpoint_id is not None and checkpoint_id != checkpoint.id:
                raise CheckpointResponseError(
                    f"Checkpoint '{checkpoint_id}' is not pending (pending: '{checkpoint.id}')"
                )

            definition = await self._definition_for(instance)
            node = definition.get_node(checkpoint.node_id)
            result = self.executors[NodeType.HUMAN].resolve(checkpoint, branch, data)
            if not definition.route(node, result.branch):
                raise CheckpointResponseError(
                    f"Branch '{result.branch}' has no outgoing edge from '{node.id}'"
                )

            self._cancel_timer(execution_id)
            instance.pending_checkpoint = None
            self._set_status(instance, ExecutionStatus.RUNNING)
            logger.info(
                f"Execution {execution_id} resumed at '{node.id}' with branch '{result.branch}'"
            )

            if self._apply(instance, definition, node, result, halting=False):
                self._halt(instance, ExecutionStatus.FAILED)
            elif not instance.current_nodes:
                self._finish(instance, definition)

            await self.executions.save(instance)

        self._spawn(execution_id)
        return instance

    async def cancel(self, execution_id: str) -> ExecutionInstance:
        """
        Cancel a non-terminal execution, aborting in-flight node calls.

        Raises:
            InvalidState: If the execution is already terminal
        """
        instance = await self._get(execution_id)
        if instance.is_terminal:
            raise InvalidState(execution_id, instance.status.value, "cancel")

        self._cancel_requested.add(execution_id)
        try:
            for task in self._inflight.get(execution_id, {}).values():
                task.cancel()

            async with self.executions.lock(execution_id):
                if instance.status != ExecutionStatus.CANCELLED:
                    if instance.is_terminal:
                        raise InvalidState(execution_id, instance.status.value, "cancel")
                    self._halt(instance, ExecutionStatus.CANCELLED)
                    await self.executions.save(instance)
        finally:
            self._cancel_requested.discard(execution_id)

        logger.info(f"Execution {execution_id} cancelled")
        return instance

    async def wait(self, execution_id: str) -> ExecutionInstance:
        """Wait until the execution stops running (paused or terminal)."""
        task = self._drivers.get(execution_id)
        if task is not None:
            await task
        return await self._get(execution_id)

    async def get(self, execution_id: str) -> ExecutionInstance:
        return await self._get(execution_id)

    async def recover(self) -> int:
        """
        Re-drive executions loaded from persistent state.

        Running executions continue from their frontier (nodes that were in
        flight run again at the same iteration); paused ones keep waiting.
        Returns the number of executions re-driven.
        """
        recovered = 0
        for instance in await self.executions.list_all():
            if instance.status == ExecutionStatus.PAUSED:
                self._schedule_expiry(instance)
                continue
            if instance.status not in (ExecutionStatus.PENDING, ExecutionStatus.RUNNING):
                continue

            async with self.executions.lock(instance.execution_id):
                definition = await self.workflows.get(instance.workflow_id, instance.version)
                if definition is None:
                    instance.record_error(
                        f"Workflow '{instance.workflow_id}' v{instance.version} is no longer available",
                        code=WorkflowNotFound.code,
                    )
                    self._halt(instance, ExecutionStatus.FAILED)
                    await self.executions.save(instance)
                    continue
                if instance.status == ExecutionStatus.PENDING:
                    self._begin(instance, definition)
                    await self.executions.save(instance)

            logger.info(f"Recovering execution {instance.execution_id} at {instance.current_nodes}")
            self._spawn(instance.execution_id)
            recovered += 1
        return recovered

    async def shutdown(self) -> None:
        """Stop driver and timer tasks; state stays as last persisted."""
        tasks = [*self._drivers.values(), *self._timers.values()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._drivers.clear()
        self._timers.clear()

    # ============================================================
    # Driving
    # ============================================================

    def _spawn(self, execution_id: str) -> None:
        running = self._drivers.get(execution_id)
        if running is not None and not running.done():
            return
        self._track(self._drivers, execution_id, asyncio.create_task(
            self._drive(execution_id), name=f"drive:{execution_id}"
        ))

    @staticmethod
    def _track(registry: Dict[str, asyncio.Task], execution_id: str, task: asyncio.Task) -> None:
        """Register a task under its execution; the entry goes away when the task ends."""
        registry[execution_id] = task

        def forget(done: asyncio.Task) -> None:
            if registry.get(execution_id) is done:
                del registry[execution_id]

        task.add_done_callback(forget)

    async def _drive(self, execution_id: str) -> None:
        instance = await self._get(execution_id)
        while instance.status == ExecutionStatus.RUNNING:
            try:
                await self.advance(execution_id)
            except InvalidState:
                return
            except Exception as e:
                logger.exception(f"Execution {execution_id} crashed: {e}")
                await self._crash(instance, e)
                return

    async def _crash(self, instance: ExecutionInstance, error: Exception) -> None:
        async with self.executions.lock(instance.execution_id):
            if instance.is_terminal:
                return
            instance.record_error(f"{type(error).__name__}: {error}", code="ENGINE_ERROR")
            self._halt(instance, ExecutionStatus.FAILED)
            await self.executions.save(instance)

    async def _run_node(
        self,
        instance: ExecutionInstance,
        node: NodeDefinition,
        bindings: Dict[str, Any],
    ):
        iteration = instance.iteration_of(node.id)
        ctx = NodeContext(
            execution_id=instance.execution_id,
            workflow_id=instance.workflow_id,
            version=instance.version,
            node=node,
            iteration=iteration,
            bindings={
                **bindings,
                "context": {
                    "executionId": instance.execution_id,
                    "workflowId": instance.workflow_id,
                    "version": instance.version,
                    "nodeId": node.id,
                    "iteration": iteration,
                },
            },
            input_variables=deepcopy(instance.input_variables),
        )
        return await self.executors[node.type].execute(ctx)

    def _ready(self, instance: ExecutionInstance, definition: WorkflowDefinition) -> List[NodeDefinition]:
        """Frontier nodes no other frontier node can still reach; one checkpoint at most."""
        frontier = list(instance.current_nodes)
        batch: List[NodeDefinition] = []
        has_human = False

        for node_id in frontier:
            if any(other != node_id and definition.reaches(other, node_id) for other in frontier):
                continue
            node = definition.get_node(node_id)
            if node.type == NodeType.HUMAN:
                if has_human:
                    continue
                has_human = True
            batch.append(node)
        return batch

    def _bindings(self, instance: ExecutionInstance, definition: WorkflowDefinition) -> Dict[str, Any]:
        """A private copy of the variables visible to this batch."""
        latest: Dict[str, Any] = {}
        for entry in instance.history:
            key = result_key(entry.node_id, entry.iteration, definition.is_loop_body(entry.node_id))
            record = instance.node_results.get(key)
            if record is not None:
                latest[entry.node_id] = record.get("output")

        return deepcopy(build_bindings(
            instance.variables,
            instance.input_variables,
            latest,
        ))

    # ============================================================
    # Applying outcomes
    # ============================================================

    def _apply(
        self,
        instance: ExecutionInstance,
        definition: WorkflowDefinition,
        node: NodeDefinition,
        outcome: Any,
        halting: bool,
    ) -> bool:
        """Apply one node outcome. Returns True if the failure is fatal."""
        iteration = instance.iteration_of(node.id)
        cancelling = instance.execution_id in self._cancel_requested
        route = not (halting or cancelling)

        if isinstance(outcome, asyncio.CancelledError):
            if cancelling:
                self._record_cancelled(instance, node, iteration)
                return False
            outcome = CancellationError(node.id)

        if isinstance(outcome, NodePause):
            if route:
                self._pause(instance, node, iteration, outcome)
            return False

        if isinstance(outcome, NodeResult):
            try:
                self._complete(instance, definition, node, iteration, outcome, route)
                return False
            except ExecutorError as e:
                outcome = e
            except LoopLimitExceeded as e:
                self._record_loop_limit(instance, e)
                return True

        return self._fail(instance, definition, node, iteration, self._as_executor_error(node, outcome), route)

    def _complete(
        self,
        instance: ExecutionInstance,
        definition: WorkflowDefinition,
        node: NodeDefinition,
        iteration: int,
        result: NodeResult,
        route: bool,
    ) -> None:
        edges: List[Edge] = []
        if route and node.type != NodeType.END:
            edges = definition.route(node, result.branch)
            if not edges:
                raise ExecutorError(
                    f"No outgoing edge of '{node.id}' matches branch '{result.branch}'",
                    node_id=node.id,
                    code="NO_MATCHING_BRANCH",
                )

        key = result_key(node.id, iteration, definition.is_loop_body(node.id))
        record = result.to_record()
        instance.node_results[key] = record
        if node.output_variable:
            instance.variables[node.output_variable] = deepcopy(result.output)
        instance.variables.update(deepcopy(result.state_updates))

        instance.leave_frontier(node.id)
        instance.mark_completed(node.id)
        instance.append_history(node.id, iteration, HistoryEventKind.NODE_COMPLETE)
        self.publisher.publish(instance.execution_id, events.NODE_COMPLETE, {
            "nodeId": node.id,
            "iteration": iteration,
            "resultKey": key,
            "result": record,
            "branch": result.branch,
            "error": False,
        })

        self._follow(instance, definition, edges)

    def _fail(
        self,
        instance: ExecutionInstance,
        definition: WorkflowDefinition,
        node: NodeDefinition,
        iteration: int,
        error: ExecutorError,
        route: bool,
    ) -> bool:
        recoverable = node.continue_on_error and node.type != NodeType.END
        instance.record_error(error.message, node.id, iteration, code=error.code, fatal=not recoverable)
        instance.mark_failed(node.id)
        instance.leave_frontier(node.id)
        instance.append_history(node.id, iteration, HistoryEventKind.NODE_FAILED)

        key = result_key(node.id, iteration, definition.is_loop_body(node.id))
        record = {"output": None, "error": {"message": error.message, "code": error.code}}
        if recoverable:
            instance.node_results[key] = record

        self.publisher.publish(instance.execution_id, events.NODE_COMPLETE, {
            "nodeId": node.id,
            "iteration": iteration,
            "resultKey": key,
            "result": record,
            "error": True,
            "fatal": not recoverable,
        })

        if not recoverable:
            logger.error(f"Execution {instance.execution_id}: node '{node.id}' failed: {error.message}")
            return True

        logger.warning(
            f"Execution {instance.execution_id}: node '{node.id}' failed, continuing: {error.message}"
        )
        if route:
            try:
                self._follow(instance, definition, definition.failure_route(node))
            except LoopLimitExceeded as e:
                self._record_loop_limit(instance, e)
                return True
        return False

    def _pause(self, instance: ExecutionInstance, node: NodeDefinition, iteration: int, pause: NodePause) -> None:
        created = utcnow()
        checkpoint = Checkpoint(
            id=str(uuid4()),
            node_id=node.id,
            node_name=node.label,
            iteration=iteration,
            message=pause.message,
            options=pause.options,
            input_schema=pause.input_schema,
            display_data=deepcopy(pause.display_data),
            default_branch=pause.default_branch,
            created_at=created,
            expires_at=created + timedelta(seconds=pause.timeout) if pause.timeout else None,
        )
        instance.pending_checkpoint = checkpoint
        instance.append_history(node.id, iteration, HistoryEventKind.CHECKPOINT_PENDING)
        self.publisher.publish(
            instance.execution_id,
            events.CHECKPOINT_PENDING,
            checkpoint.model_dump(mode="json", by_alias=True),
        )
        logger.info(f"Execution {instance.execution_id} waiting at checkpoint '{node.id}'")

    def _record_cancelled(self, instance: ExecutionInstance, node: NodeDefinition, iteration: int) -> None:
        error = CancellationError(node.id)
        instance.record_error(str(error), node.id, iteration, code=error.code)
        instance.mark_failed(node.id)
        instance.leave_frontier(node.id)
        instance.append_history(node.id, iteration, HistoryEventKind.NODE_CANCELLED)
        self.publisher.publish(instance.execution_id, events.NODE_COMPLETE, {
            "nodeId": node.id,
            "iteration": iteration,
            "error": True,
            "cancelled": True,
        })

    def _record_loop_limit(self, instance: ExecutionInstance, error: LoopLimitExceeded) -> None:
        instance.record_error(
            str(error),
            error.node_id,
            instance.iteration_of(error.node_id),
            code=error.code,
        )
        logger.error(f"Execution {instance.execution_id}: {error}")

    @staticmethod
    def _as_executor_error(node: NodeDefinition, error: BaseException) -> ExecutorError:
        if isinstance(error, ExecutorError):
            if error.node_id is None:
                error.node_id = node.id
            return error
        message = str(error) or type(error).__name__
        if not getattr(error, "code", None):
            message = f"{type(error).__name__}: {message}"
        return ExecutorError(message, node_id=node.id, code=getattr(error, "code", None))

    # ============================================================
    # Frontier & status transitions
    # ============================================================

    def _begin(self, instance: ExecutionInstance, definition: WorkflowDefinition) -> None:
        instance.started_at = utcnow()
        self._admit(instance, definition, definition.start_node.id)
        self._set_status(instance, ExecutionStatus.RUNNING)

    def _follow(self, instance: ExecutionInstance, definition: WorkflowDefinition, edges: List[Edge]) -> None:
        for edge in edges:
            self._admit(instance, definition, edge.to)

    def _admit(self, instance: ExecutionInstance, definition: WorkflowDefinition, node_id: str) -> None:
        """Put a node on the frontier; a node already there is a join and is admitted once."""
        if node_id in instance.current_nodes:
            return
        node = definition.get_node(node_id)
        limit = int(node.config.get("maxIterations") or self.max_node_iterations)
        iteration = instance.iteration_of(node_id) + 1
        if iteration > limit:
            raise LoopLimitExceeded(node_id, limit)
        instance.node_iterations[node_id] = iteration
        instance.current_nodes.append(node_id)
        logger.debug(f"Execution {instance.execution_id} admitted '{node_id}' (iteration {iteration})")

    def _set_status(self, instance: ExecutionInstance, status: ExecutionStatus) -> None:
        previous = instance.status
        instance.status = status
        instance.touch()
        data: Dict[str, Any] = {
            "from": previous.value,
            "to": status.value,
            "terminal": status.is_terminal,
            "currentNodes": list(instance.current_nodes),
        }
        if status.is_terminal:
            data["output"] = deepcopy(instance.output)
            data["errors"] = [e.model_dump(mode="json", by_alias=True) for e in instance.errors]
        self.publisher.publish(instance.execution_id, events.STATUS_CHANGED, data)
        logger.info(f"Execution {instance.execution_id}: {previous.value} -> {status.value}")

    def _finish(self, instance: ExecutionInstance, definition: WorkflowDefinition) -> None:
        """All branches reached an end node or were pruned."""
        status = ExecutionStatus.COMPLETED
        for entry in reversed(instance.history):
            node = definition.get_node(entry.node_id)
            if node is None or node.type != NodeType.END:
                continue
            if entry.event_kind != HistoryEventKind.NODE_COMPLETE:
                continue
            record = instance.node_results.get(
                result_key(node.id, entry.iteration, definition.is_loop_body(node.id)), {}
            )
            instance.output = deepcopy(record.get("output"))
            requested = record.get("status")
            if requested and instance.checkpoint_resolved():
                status = ExecutionStatus(requested)
            break

        instance.completed_at = utcnow()
        self._cancel_timer(instance.execution_id)
        self._set_status(instance, status)
        self.publisher.close(instance.execution_id)

    def _halt(self, instance: ExecutionInstance, status: ExecutionStatus) -> None:
        """Stop the execution; frontier nodes that never finished are closed out in history."""
        checkpoint = instance.pending_checkpoint
        for node_id in list(instance.current_nodes):
            kind = HistoryEventKind.NODE_SKIPPED
            if checkpoint is not None and checkpoint.node_id == node_id and status == ExecutionStatus.CANCELLED:
                kind = HistoryEventKind.NODE_CANCELLED
            instance.append_history(node_id, instance.iteration_of(node_id), kind)
        instance.current_nodes.clear()
        instance.pending_checkpoint = None
        instance.completed_at = utcnow()

        self._cancel_timer(instance.execution_id)
        self._set_status(instance, status)
        self.publisher.close(instance.execution_id)

    # ============================================================
    # Checkpoint expiry
    # ============================================================

    def _schedule_expiry(self, instance: ExecutionInstance) -> None:
        checkpoint = instance.pending_checkpoint
        if checkpoint is None or checkpoint.expires_at is None:
            return
        delay = max(0.0, (checkpoint.expires_at - utcnow()).total_seconds())
        self._cancel_timer(instance.execution_id)
        self._track(self._timers, instance.execution_id, asyncio.create_task(
            self._expire(instance.execution_id, checkpoint.id, delay),
            name=f"expire:{checkpoint.id}",
        ))

    def _cancel_timer(self, execution_id: str) -> None:
        timer = self._timers.pop(execution_id, None)
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

    async def _expire(self, execution_id: str, checkpoint_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        instance = await self._get(execution_id)
        checkpoint = instance.pending_checkpoint
        if checkpoint is None or checkpoint.id != checkpoint_id:
            return

        if checkpoint.default_branch:
            logger.info(
                f"Checkpoint '{checkpoint.node_id}' of execution {execution_id} expired, "
                f"taking default branch '{checkpoint.default_branch}'"
            )
            try:
                await self.resume(
                    execution_id,
                    checkpoint.default_branch,
                    {"expired": True},
                    checkpoint_id=checkpoint_id,
                )
                return
            except CheckpointResponseError as e:
                logger.warning(f"Default branch rejected for expired checkpoint: {e}")
            except InvalidState:
                return

        async with self.executions.lock(execution_id):
            checkpoint = instance.pending_checkpoint
            if instance.status != ExecutionStatus.PAUSED or checkpoint is None or checkpoint.id != checkpoint_id:
                return
            error = ExecutorError(
                f"Checkpoint '{checkpoint.node_id}' expired without a response",
                node_id=checkpoint.node_id,
                code="CHECKPOINT_EXPIRED",
            )
            instance.record_error(error.message, error.node_id, checkpoint.iteration, code=error.code)
            instance.mark_failed(checkpoint.node_id)
            instance.leave_frontier(checkpoint.node_id)
            instance.append_history(checkpoint.node_id, checkpoint.iteration, HistoryEventKind.NODE_FAILED)
            self._halt(instance, ExecutionStatus.FAILED)
            await self.executions.save(instance)

    # ============================================================
    # Lookups
    # ============================================================

    async def _get(self, execution_id: str) -> ExecutionInstance:
        instance = await self.executions.get(execution_id)
        if instance is None:
            raise ExecutionNotFound(execution_id)
        return instance

    async def _definition_for(self, instance: ExecutionInstance) -> WorkflowDefinition:
        definition = await self.workflows.get(instance.workflow_id, instance.version)
        if definition is None:
            raise WorkflowNotFound(instance.workflow_id, instance.version)
        return definition


# Global engine instance
execution_engine = ExecutionEngine(workflow_storage, execution_storage, progress_publisher)
