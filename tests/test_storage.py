"""
Tests for workflow and execution storage.
"""

from datetime import timedelta
import asyncio

import pytest

from flowexec.engine.definition import WorkflowDefinition
from flowexec.engine.state import ExecutionInstance, ExecutionStatus, utcnow
from flowexec.errors import DefinitionError
from flowexec.storage.files import FileStateStore
from flowexec.storage.memory import ExecutionStorage, WorkflowStorage, create_execution_storage
from flowexec.workflows import SAMPLE_WORKFLOWS, register_sample_workflows


def definition(version: int = 1) -> WorkflowDefinition:
    return WorkflowDefinition.model_validate({
        "id": "wf",
        "version": version,
        "nodes": [
            {"id": "start", "type": "start", "edges": [{"to": "end"}]},
            {"id": "end", "type": "end"},
        ],
    })


class TestWorkflowStorage:
    """Tests for the definition store."""

    @pytest.mark.asyncio
    async def test_versions(self):
        storage = WorkflowStorage()
        await storage.save(definition(1))
        await storage.save(definition(2))

        assert (await storage.get("wf")).version == 2
        assert (await storage.get("wf", 1)).version == 1
        assert await storage.get("wf", 3) is None
        assert len(storage) == 2

    @pytest.mark.asyncio
    async def test_assigned_versions_follow_the_latest(self):
        storage = WorkflowStorage()
        await storage.save(definition(3))

        assigned = await storage.save(definition(1), assign_version=True)

        assert assigned.version == 4
        assert (await storage.get("wf")).version == 4

    @pytest.mark.asyncio
    async def test_concurrent_saves_get_distinct_versions(self):
        storage = WorkflowStorage()

        saved = await asyncio.gather(*[storage.save(definition(1), assign_version=True) for _ in range(5)])

        assert sorted(d.version for d in saved) == [1, 2, 3, 4, 5]
        assert len(storage) == 5

    @pytest.mark.asyncio
    async def test_version_is_immutable(self):
        storage = WorkflowStorage()
        await storage.save(definition(1))

        with pytest.raises(DefinitionError):
            await storage.save(definition(1))

    @pytest.mark.asyncio
    async def test_invalid_definition_is_rejected(self):
        storage = WorkflowStorage()
        with pytest.raises(DefinitionError):
            await storage.save(WorkflowDefinition(id="bad", nodes=[]))
        assert not await storage.exists("bad")

    @pytest.mark.asyncio
    async def test_register_samples_once(self):
        storage = WorkflowStorage()

        first = await register_sample_workflows(storage)
        second = await register_sample_workflows(storage)

        assert len(first) == len(SAMPLE_WORKFLOWS)
        assert second == []
        assert {d.id for d in await storage.list_all()} == {"article-review", "text-insights"}


class TestExecutionStorage:
    """Tests for the execution store."""

    @pytest.mark.asyncio
    async def test_list_filters_newest_first(self):
        storage = ExecutionStorage()
        now = utcnow()
        await storage.add(ExecutionInstance(execution_id="old", workflow_id="a", version=1, created_at=now - timedelta(minutes=5)))
        await storage.add(ExecutionInstance(execution_id="new", workflow_id="a", version=1, created_at=now))
        await storage.add(ExecutionInstance(
            execution_id="other", workflow_id="b", version=1, status=ExecutionStatus.PAUSED, created_at=now,
        ))

        assert [i.execution_id for i in await storage.list_all(workflow_id="a")] == ["new", "old"]
        assert [i.execution_id for i in await storage.list_all(status=ExecutionStatus.PAUSED)] == ["other"]
        assert len(storage) == 3

    def test_lock_per_execution(self):
        storage = ExecutionStorage()
        assert storage.lock("a") is storage.lock("a")
        assert storage.lock("a") is not storage.lock("b")

    @pytest.mark.asyncio
    async def test_locks_are_dropped_once_released(self):
        storage = ExecutionStorage()
        async with storage.lock("a"):
            assert "a" in storage._locks
        assert len(storage._locks) == 0

    def test_in_memory_without_state_dir(self):
        assert create_execution_storage(None).persistence is None


class TestFileStateStore:
    """Tests for JSON-file persistence."""

    @pytest.mark.asyncio
    async def test_write_and_reload(self, tmp_path):
        storage = ExecutionStorage(FileStateStore(tmp_path))
        instance = ExecutionInstance(
            execution_id="e1",
            workflow_id="wf",
            version=1,
            status=ExecutionStatus.RUNNING,
            node_results={"a_iter1": {"output": 1}, "a_iter2": {"output": 2}},
        )
        await storage.add(instance)

        assert (tmp_path / "e1.json").exists()
        assert list(tmp_path.glob("*.tmp")) == []

        reloaded = ExecutionStorage(FileStateStore(tmp_path))
        await reloaded.load()
        copy = await reloaded.get("e1")
        assert copy.status == ExecutionStatus.RUNNING
        assert copy.node_results == instance.node_results

    @pytest.mark.asyncio
    async def test_unreadable_records_are_skipped(self, tmp_path):
        store = FileStateStore(tmp_path)
        (tmp_path / "broken.json").write_text("{not json")
        await store.write(ExecutionInstance(execution_id="ok", workflow_id="wf", version=1))

        assert [i.execution_id for i in await store.load_all()] == ["ok"]

    @pytest.mark.asyncio
    async def test_delete(self, tmp_path):
        store = FileStateStore(tmp_path)
        await store.write(ExecutionInstance(execution_id="gone", workflow_id="wf", version=1))

        await store.delete("gone")
        await store.delete("gone")

        assert not store.path_for("gone").exists()
