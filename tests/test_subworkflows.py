"""Tests for nested sub-workflow executions."""

import pytest

from workflow_manager.errors import (
    AlreadyTerminalError,
    DefinitionNotFoundError,
    SubWorkflowNotFoundError,
)
from workflow_manager.models import (
    SubWorkflowStatus,
    VersionSnapshotCreate,
    WorkflowDefinitionCreate,
)


@pytest.fixture
async def child(store, make_payload):
    return await store.import_definition(
        WorkflowDefinitionCreate.model_validate(make_payload("sub-a", name="Sub A"))
    )


class TestSubWorkflowExecutions:
    """Tests for starting and completing sub-workflows."""

    async def test_failed_execution_scenario(self, sub_workflows, child):
        execution = await sub_workflows.start_sub_workflow(5, 2, "sub-a", "1.0.0")
        assert execution.status == SubWorkflowStatus.IN_PROGRESS
        assert execution.started_at is not None

        failed = await sub_workflows.complete_sub_workflow(execution.id, error="boom")
        assert failed.status == SubWorkflowStatus.FAILED
        assert failed.error == "boom"

        fetched = await sub_workflows.get_execution(execution.id)
        assert fetched.status == SubWorkflowStatus.FAILED
        assert fetched.error == "boom"
        assert fetched.completed_at is not None

    async def test_complete_with_output(self, sub_workflows, child):
        execution = await sub_workflows.start_sub_workflow(5, 2, "sub-a", "1.0.0")

        done = await sub_workflows.complete_sub_workflow(
            execution.id, output={"chapters": 3}
        )

        assert done.status == SubWorkflowStatus.COMPLETE
        fetched = await sub_workflows.get_execution(execution.id)
        assert fetched.output == {"chapters": 3}
        assert fetched.error is None

    async def test_complete_twice_fails(self, sub_workflows, child):
        execution = await sub_workflows.start_sub_workflow(5, 2, "sub-a", "1.0.0")
        await sub_workflows.complete_sub_workflow(execution.id)

        with pytest.raises(AlreadyTerminalError):
            await sub_workflows.complete_sub_workflow(execution.id, error="late")

    async def test_unknown_execution(self, sub_workflows):
        with pytest.raises(SubWorkflowNotFoundError):
            await sub_workflows.get_execution(999)

    async def test_unknown_child_version(self, sub_workflows, child):
        with pytest.raises(DefinitionNotFoundError):
            await sub_workflows.start_sub_workflow(5, 2, "sub-a", "4.0.0")

    async def test_start_snapshot_only_version(self, sub_workflows, store, child):
        await store.create_version("sub-a", VersionSnapshotCreate(version="2.0.0"))
        await store.lock_version("sub-a", "2.0.0", 7)

        execution = await sub_workflows.start_sub_workflow(5, 2, "sub-a", "2.0.0")

        assert execution.child_version == "2.0.0"
        assert execution.status == SubWorkflowStatus.IN_PROGRESS


class TestParentLookup:
    """Tests for per-parent lookups across retries."""

    async def test_retries_create_new_executions(self, sub_workflows, child):
        first = await sub_workflows.start_sub_workflow(5, 2, "sub-a", "1.0.0")
        await sub_workflows.complete_sub_workflow(first.id, error="boom")
        retry = await sub_workflows.start_sub_workflow(5, 2, "sub-a", "1.0.0")

        assert retry.id != first.id
        current = await sub_workflows.get_current(5, 2)
        assert current.id == retry.id
        assert current.status == SubWorkflowStatus.IN_PROGRESS

    async def test_list_for_parent_filters_phase(self, sub_workflows, child):
        await sub_workflows.start_sub_workflow(5, 1, "sub-a", "1.0.0")
        await sub_workflows.start_sub_workflow(5, 2, "sub-a", "1.0.0")
        await sub_workflows.start_sub_workflow(6, 2, "sub-a", "1.0.0")

        assert len(await sub_workflows.list_for_parent(5)) == 2
        phase_two = await sub_workflows.list_for_parent(5, 2)
        assert [e.parent_phase_number for e in phase_two] == [2]

    async def test_no_current_execution(self, sub_workflows):
        assert await sub_workflows.get_current(5, 2) is None
