"""
In-Memory Storage for the Execution Engine.

WorkflowStorage holds immutable definitions by (id, version).
ExecutionStorage holds execution instances and hands out one asyncio.Lock
per execution id; that lock is what serializes every mutation of an
instance. No lock ever spans two executions.
"""

from typing import Dict, List, Optional
import asyncio
import logging
import weakref

from flowexec.config import settings
from flowexec.engine.definition import WorkflowDefinition
from flowexec.engine.state import ExecutionInstance, ExecutionStatus
from flowexec.errors import DefinitionError
from flowexec.storage.files import FileStateStore


logger = logging.getLogger(__name__)


class WorkflowStorage:
    """
    In-memory store for workflow definitions.

    Definitions are validated before they are stored and never change
    afterwards; a new version is a new entry.
    """

    def __init__(self):
        self._definitions: Dict[str, Dict[int, WorkflowDefinition]] = {}
        self._lock = asyncio.Lock()

    async def save(self, definition: WorkflowDefinition, assign_version: bool = False) -> WorkflowDefinition:
        """
        Validate and store a definition.

        With ``assign_version`` the definition is stored under the next free
        version of its id, allocated while the store lock is held.

        Raises:
            DefinitionError: If the graph is malformed or the version is taken
        """
        definition.ensure_valid()
        async with self._lock:
            versions = self._definitions.setdefault(definition.id, {})
            if assign_version:
                definition = definition.model_copy(update={"version": max(versions, default=0) + 1})
            if definition.version in versions:
                raise DefinitionError(
                    [f"Version {definition.version} is already registered"],
                    workflow_id=definition.id,
                )
            versions[definition.version] = definition
        logger.info(f"Registered workflow '{definition.id}' v{definition.version}")
        return definition

    async def get(self, workflow_id: str, version: Optional[int] = None) -> Optional[WorkflowDefinition]:
        """Get a definition; the latest version when none is given."""
        async with self._lock:
            versions = self._definitions.get(workflow_id)
            if not versions:
                return None
            if version is None:
                return versions[max(versions)]
            return versions.get(version)

    async def list_all(self) -> List[WorkflowDefinition]:
        """All stored definitions, every version."""
        async with self._lock:
            return [
                definition
                for versions in self._definitions.values()
                for _, definition in sorted(versions.items())
            ]

    async def exists(self, workflow_id: str) -> bool:
        async with self._lock:
            return workflow_id in self._definitions

    def __len__(self) -> int:
        return sum(len(v) for v in self._definitions.values())


class ExecutionStorage:
    """
    In-memory store for execution instances, optionally backed by JSON files.

    The store returns live instances; only the engine mutates them, and only
    while holding ``lock(execution_id)``.
    """

    def __init__(self, persistence: Optional[FileStateStore] = None):
        self._executions: Dict[str, ExecutionInstance] = {}
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._lock = asyncio.Lock()
        self.persistence = persistence

    def lock(self, execution_id: str) -> asyncio.Lock:
        """
        The mutual-exclusion lock for one execution.

        A lock lives only while a holder or waiter references it, so the
        table never outgrows the executions currently in flight.
        """
        lock = self._locks.get(execution_id)
        if lock is None:
            lock = self._locks[execution_id] = asyncio.Lock()
        return lock

    async def add(self, instance: ExecutionInstance) -> ExecutionInstance:
        async with self._lock:
            self._executions[instance.execution_id] = instance
        await self.save(instance)
        return instance

    async def get(self, execution_id: str) -> Optional[ExecutionInstance]:
        async with self._lock:
            return self._executions.get(execution_id)

    async def save(self, instance: ExecutionInstance) -> None:
        """Write the instance through to the persistence layer, if any."""
        if self.persistence is not None:
            await self.persistence.write(instance)

    async def list_all(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
    ) -> List[ExecutionInstance]:
        """List executions, newest first."""
        async with self._lock:
            instances = list(self._executions.values())
        if workflow_id is not None:
            instances = [i for i in instances if i.workflow_id == workflow_id]
        if status is not None:
            instances = [i for i in instances if i.status == status]
        return sorted(instances, key=lambda i: i.created_at, reverse=True)

    async def load(self) -> List[ExecutionInstance]:
        """Reload persisted instances into memory."""
        if self.persistence is None:
            return []
        instances = await self.persistence.load_all()
        async with self._lock:
            for instance in instances:
                self._executions[instance.execution_id] = instance
        logger.info(f"Loaded {len(instances)} persisted executions")
        return instances

    def __len__(self) -> int:
        return len(self._executions)


def create_execution_storage(state_dir: Optional[str]) -> ExecutionStorage:
    persistence = FileStateStore(state_dir) if state_dir else None
    return ExecutionStorage(persistence)


# Global storage instances
workflow_storage = WorkflowStorage()
execution_storage = create_execution_storage(settings.STATE_DIR)
