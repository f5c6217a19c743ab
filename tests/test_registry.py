"""Tests for the active workflow registry."""

from datetime import datetime, timedelta, timezone

import pytest

from workflow_manager.db.database import get_db
from workflow_manager.errors import (
    AlreadyTerminalError,
    ConcurrentModificationError,
    InvalidTransitionError,
    NodeNotFoundError,
    RegistryEntryNotFoundError,
    WorkflowValidationError,
)
from workflow_manager.models import RegistryStatus, WorkflowSource


@pytest.fixture
async def entry(registry, pipeline):
    return await registry.register("pipeline-x", WorkflowSource.AGENT_RUNTIME)


class TestRegister:
    """Tests for registering workflows."""

    async def test_register_starts_running(self, entry):
        assert entry.status == RegistryStatus.RUNNING
        assert entry.progress_percent == 0
        assert entry.row_version == 1

    async def test_register_resolves_name_and_node_count(self, entry):
        assert entry.workflow_name == "Pipeline X"
        assert entry.total_nodes == 3

    async def test_register_explicit_values_win(self, registry, pipeline):
        created = await registry.register(
            "pipeline-x", "ui", workflow_name="Custom", total_nodes=10
        )
        assert created.workflow_name == "Custom"
        assert created.total_nodes == 10

    async def test_register_unknown_definition(self, registry):
        created = await registry.register("external-flow", "chat-client")
        assert created.workflow_name is None
        assert created.total_nodes == 0

    async def test_register_invalid_source(self, registry):
        with pytest.raises(WorkflowValidationError):
            await registry.register("pipeline-x", "cron")

    async def test_get_lists_available_nodes(self, registry, entry):
        fetched = await registry.get(entry.id)
        assert [(n.id, n.name) for n in fetched.available_nodes] == [
            ("n1", "Outline"),
            ("n2", "Draft"),
            ("n3", "Review"),
        ]

    async def test_get_unknown_entry(self, registry):
        with pytest.raises(RegistryEntryNotFoundError):
            await registry.get("nope")


class TestProgress:
    """Tests for progress updates."""

    async def test_progress_is_clamped(self, registry, entry):
        high = await registry.update_progress(entry.id, progress_percent=150)
        assert high.progress_percent == 100

        low = await registry.update_progress(entry.id, progress_percent=-5)
        assert low.progress_percent == 0

    async def test_metadata_merge(self, registry, pipeline):
        created = await registry.register("pipeline-x", "ui", metadata={"a": 1})

        merged = await registry.update_progress(created.id, metadata={"b": 2})
        assert merged.metadata == {"a": 1, "b": 2}

        overwritten = await registry.update_progress(created.id, metadata={"a": 3})
        assert overwritten.metadata == {"a": 3, "b": 2}

    async def test_update_position(self, registry, entry):
        updated = await registry.update_progress(
            entry.id, current_node_id="n2", current_node_name="Draft", completed_nodes=1
        )
        assert updated.current_node_id == "n2"
        assert updated.completed_nodes == 1
        assert updated.row_version == 2

    async def test_no_fields(self, registry, entry):
        with pytest.raises(WorkflowValidationError):
            await registry.update_progress(entry.id)

    async def test_stale_version_rejected(self, registry, entry):
        await registry.update_progress(entry.id, progress_percent=10, expected_version=1)

        with pytest.raises(ConcurrentModificationError):
            await registry.update_progress(entry.id, progress_percent=20, expected_version=1)

    async def test_progress_after_terminal_fails(self, registry, entry):
        await registry.cancel(entry.id)

        with pytest.raises(AlreadyTerminalError):
            await registry.update_progress(entry.id, progress_percent=50)


class TestJump:
    """Tests for jumping to a node."""

    async def test_jump_fills_name_from_graph(self, registry, entry):
        jumped = await registry.jump_to_node(entry.id, "n3")

        assert jumped.current_node_id == "n3"
        assert jumped.current_node_name == "Review"
        assert jumped.metadata["jumped_to_node"] is True
        assert "jump_timestamp" in jumped.metadata

    async def test_jump_to_unknown_node(self, registry, entry):
        with pytest.raises(NodeNotFoundError):
            await registry.jump_to_node(entry.id, "n9")

    async def test_jump_unvalidated_without_definition(self, registry):
        created = await registry.register("external-flow", "ui")
        jumped = await registry.jump_to_node(created.id, "anything", "Anything")
        assert jumped.current_node_id == "anything"


class TestTransitions:
    """Tests for the registry state machine."""

    async def test_pause_and_resume(self, registry, entry):
        paused = await registry.pause(entry.id)
        assert paused.status == RegistryStatus.PAUSED

        resumed = await registry.resume(entry.id)
        assert resumed.status == RegistryStatus.RUNNING

    async def test_pause_when_paused(self, registry, entry):
        await registry.pause(entry.id)

        with pytest.raises(InvalidTransitionError):
            await registry.pause(entry.id)

    async def test_resume_when_running(self, registry, entry):
        with pytest.raises(InvalidTransitionError):
            await registry.resume(entry.id)

    async def test_complete_scenario(self, registry, entry):
        await registry.update_progress(entry.id, progress_percent=40)

        completed = await registry.complete(entry.id, final_metadata={"words": 5200})
        assert completed.status == RegistryStatus.COMPLETED
        assert completed.progress_percent == 100
        assert completed.completed_at is not None
        assert completed.metadata == {"words": 5200}

        with pytest.raises(AlreadyTerminalError):
            await registry.complete(entry.id)

    async def test_complete_from_paused(self, registry, entry):
        await registry.pause(entry.id)
        completed = await registry.complete(entry.id)
        assert completed.status == RegistryStatus.COMPLETED

    async def test_fail_records_node(self, registry, entry):
        await registry.update_progress(entry.id, current_node_id="n2", current_node_name="Draft")

        failed = await registry.fail(entry.id, "Model timeout", error_details={"retries": 3})

        assert failed.status == RegistryStatus.FAILED
        assert failed.error_message == "Model timeout"
        assert failed.failed_at_node == "Draft"
        assert failed.metadata["error_details"] == {"retries": 3}

    async def test_cancel_with_reason(self, registry, entry):
        cancelled = await registry.cancel(entry.id, reason="user abort")

        assert cancelled.status == RegistryStatus.CANCELLED
        assert cancelled.metadata["cancel_reason"] == "user abort"
        with pytest.raises(AlreadyTerminalError):
            await registry.fail(entry.id, "too late")

    async def test_terminal_states_reject_pause(self, registry, entry):
        await registry.fail(entry.id, "boom")

        with pytest.raises(AlreadyTerminalError):
            await registry.pause(entry.id)


class TestListAndCleanup:
    """Tests for listing and retention cleanup."""

    async def test_list_active_excludes_terminal(self, registry, pipeline):
        running = await registry.register("pipeline-x", "ui")
        done = await registry.register("pipeline-x", "agent-runtime")
        await registry.complete(done.id)

        active = await registry.list_active()
        assert [e.id for e in active] == [running.id]
        assert len(active[0].available_nodes) == 3

        everything = await registry.list_active(include_completed=True)
        assert {e.id for e in everything} == {running.id, done.id}

    async def test_list_filters(self, registry, pipeline):
        ui = await registry.register("pipeline-x", "ui")
        await registry.register("pipeline-x", "chat-client")
        done = await registry.register("pipeline-x", "ui")
        await registry.cancel(done.id)

        by_source = await registry.list_active(source=WorkflowSource.UI)
        assert [e.id for e in by_source] == [ui.id]

        by_status = await registry.list_active(status=RegistryStatus.CANCELLED)
        assert [e.id for e in by_status] == [done.id]

    async def test_list_newest_first(self, registry, pipeline):
        first = await registry.register("pipeline-x", "ui")
        second = await registry.register("pipeline-x", "ui")

        assert [e.id for e in await registry.list_active()] == [second.id, first.id]

    async def test_cleanup_removes_old_terminal_entries(self, registry, pipeline):
        old = await registry.register("pipeline-x", "ui")
        recent = await registry.register("pipeline-x", "ui")
        running = await registry.register("pipeline-x", "ui")
        await registry.complete(old.id)
        await registry.complete(recent.id)

        cutoff = (datetime.now(timezone.utc) - timedelta(days=45)).isoformat()
        db = await get_db()
        await db.execute(
            "UPDATE active_workflow_registry SET completed_at = ? WHERE id = ?",
            (cutoff, old.id),
        )
        await db.commit()

        deleted = await registry.cleanup_old_workflows(30)

        assert deleted == 1
        remaining = {e.id for e in await registry.list_active(include_completed=True)}
        assert remaining == {recent.id, running.id}

    async def test_cleanup_rejects_negative_days(self, registry):
        with pytest.raises(WorkflowValidationError):
            await registry.cleanup_old_workflows(-1)
