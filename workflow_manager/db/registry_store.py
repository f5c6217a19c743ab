"""RegistryStore - the active workflow registry.

A passive ledger of workflow instances started from any calling runtime.
Entries are created ``running`` and moved through the state machine in
``workflow_manager.models.registry`` by explicit calls; once terminal an
entry is never modified again (only deleted by cleanup).

Every write bumps the entry's ``row_version`` and is applied only if the
version read beforehand is still current, so two runtimes updating the
same entry cannot silently overwrite each other's state transitions.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import aiosqlite

from workflow_manager.db.database import get_db, transaction, utc_now
from workflow_manager.errors import (
    AlreadyTerminalError,
    ConcurrentModificationError,
    InvalidTransitionError,
    NodeNotFoundError,
    RegistryEntryNotFoundError,
    WorkflowValidationError,
)
from workflow_manager.models import (
    ActiveWorkflow,
    AvailableNode,
    RegistryStatus,
    WorkflowDefinition,
    WorkflowSource,
)
from workflow_manager.models.registry import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    TRANSITIONS,
    merge_metadata,
)

if TYPE_CHECKING:
    from workflow_manager.db.definition_store import DefinitionStore

logger = logging.getLogger(__name__)


def _generate_id() -> str:
    """Generate a unique ID."""
    return str(uuid.uuid4())


def _clamp_percent(value: int) -> int:
    return min(100, max(0, value))


def _row_to_entry(row: aiosqlite.Row) -> ActiveWorkflow:
    """Convert a database row to an ActiveWorkflow model."""
    return ActiveWorkflow(
        id=row["id"],
        workflow_def_id=row["workflow_def_id"],
        workflow_name=row["workflow_name"],
        source=WorkflowSource(row["source"]),
        project_folder=row["project_folder"],
        project_name=row["project_name"],
        current_node_id=row["current_node_id"],
        current_node_name=row["current_node_name"],
        status=RegistryStatus(row["status"]),
        progress_percent=row["progress_percent"],
        total_nodes=row["total_nodes"],
        completed_nodes=row["completed_nodes"],
        started_at=row["started_at"],
        updated_at=row["updated_at"],
        completed_at=row["completed_at"],
        error_message=row["error_message"],
        metadata=json.loads(row["metadata_json"] or "{}"),
        row_version=row["row_version"],
    )


def _available_nodes(definition: WorkflowDefinition | None) -> list[AvailableNode]:
    if definition is None:
        return []
    return [AvailableNode(id=n.id, name=n.display_name) for n in definition.graph.nodes]


class RegistryStore:
    """Tracks in-flight workflow instances across calling sources."""

    def __init__(self, definitions: DefinitionStore) -> None:
        self._definitions = definitions

    # ==================== Internal helpers ====================

    async def _fetch(self, db: aiosqlite.Connection, registry_id: str) -> ActiveWorkflow:
        cursor = await db.execute(
            "SELECT * FROM active_workflow_registry WHERE id = ?", (registry_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            raise RegistryEntryNotFoundError(
                f"Workflow {registry_id} not found", registry_id=registry_id
            )
        return _row_to_entry(row)

    @staticmethod
    def _require_active(
        entry: ActiveWorkflow, operation: str, expected_version: int | None = None
    ) -> None:
        if entry.status.is_terminal:
            raise AlreadyTerminalError(
                f"Workflow {entry.id} is already {entry.status.value}",
                current=entry.status.value,
                operation=operation,
            )
        if expected_version is not None and expected_version != entry.row_version:
            raise ConcurrentModificationError(
                f"Workflow {entry.id} is at version {entry.row_version}, "
                f"expected {expected_version}",
                expected=expected_version,
                actual=entry.row_version,
            )

    async def _write(
        self, db: aiosqlite.Connection, entry: ActiveWorkflow, fields: dict[str, Any]
    ) -> ActiveWorkflow:
        """Apply column updates guarded by the entry's row version."""
        fields = {**fields, "updated_at": utc_now()}
        assignments = ", ".join(f"{column} = ?" for column in fields)
        cursor = await db.execute(
            f"""
            UPDATE active_workflow_registry
            SET {assignments}, row_version = row_version + 1
            WHERE id = ? AND row_version = ?
            """,
            [*fields.values(), entry.id, entry.row_version],
        )
        if cursor.rowcount == 0:
            raise ConcurrentModificationError(
                f"Workflow {entry.id} was modified concurrently",
                expected=entry.row_version,
            )
        return await self._fetch(db, entry.id)

    async def _transition(
        self,
        registry_id: str,
        operation: str,
        fields: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
        expected_version: int | None = None,
    ) -> ActiveWorkflow:
        allowed, target = TRANSITIONS[operation]

        async with transaction() as db:
            entry = await self._fetch(db, registry_id)
            self._require_active(entry, operation, expected_version)
            if entry.status not in allowed:
                raise InvalidTransitionError(
                    f"Cannot {operation} workflow {registry_id} while {entry.status.value}",
                    current=entry.status.value,
                    operation=operation,
                )

            changes = {"status": target.value, **(fields or {})}
            if metadata:
                changes["metadata_json"] = json.dumps(merge_metadata(entry.metadata, metadata))
            updated = await self._write(db, entry, changes)

        logger.info(
            f"Workflow {registry_id} ({updated.workflow_name}) "
            f"{entry.status.value} -> {updated.status.value}"
        )
        return updated

    # ==================== Registration ====================

    async def register(
        self,
        workflow_def_id: str,
        source: WorkflowSource | str,
        workflow_name: str | None = None,
        project_folder: str | None = None,
        project_name: str | None = None,
        total_nodes: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ActiveWorkflow:
        """Register a workflow instance as running.

        ``workflow_name`` and ``total_nodes`` fall back to the current
        definition when omitted. Definitions that cannot be resolved are
        accepted as-is; the registry may track externally defined workflows.
        """
        try:
            source = WorkflowSource(source)
        except ValueError as e:
            valid = ", ".join(s.value for s in WorkflowSource)
            raise WorkflowValidationError(
                f"Invalid source: {source}. Must be one of: {valid}"
            ) from e

        if workflow_name is None or total_nodes is None:
            definition = await self._definitions.find_definition(workflow_def_id)
            if definition is not None:
                if workflow_name is None:
                    workflow_name = definition.name
                if total_nodes is None:
                    total_nodes = len(definition.graph.nodes)

        entry_id = _generate_id()
        now = utc_now()
        entry = ActiveWorkflow(
            id=entry_id,
            workflow_def_id=workflow_def_id,
            workflow_name=workflow_name,
            source=source,
            project_folder=project_folder,
            project_name=project_name,
            status=RegistryStatus.RUNNING,
            progress_percent=0,
            total_nodes=total_nodes or 0,
            completed_nodes=0,
            started_at=now,
            updated_at=now,
            metadata=dict(metadata or {}),
            row_version=1,
        )

        async with transaction() as db:
            await db.execute(
                """
                INSERT INTO active_workflow_registry (
                    id, workflow_def_id, workflow_name, source, project_folder, project_name,
                    status, progress_percent, total_nodes, completed_nodes,
                    started_at, updated_at, metadata_json, row_version
                ) VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?, 0, ?, ?, ?, 1)
                """,
                (
                    entry.id,
                    entry.workflow_def_id,
                    entry.workflow_name,
                    entry.source.value,
                    entry.project_folder,
                    entry.project_name,
                    entry.status.value,
                    entry.total_nodes,
                    now,
                    now,
                    json.dumps(entry.metadata),
                ),
            )

        logger.info(
            f"Registered workflow {workflow_def_id} as {entry_id} from {source.value}"
        )
        return entry

    # ==================== Progress ====================

    async def update_progress(
        self,
        registry_id: str,
        current_node_id: str | None = None,
        current_node_name: str | None = None,
        progress_percent: int | None = None,
        completed_nodes: int | None = None,
        metadata: dict[str, Any] | None = None,
        expected_version: int | None = None,
    ) -> ActiveWorkflow:
        """Update position/progress of a running or paused workflow.

        ``progress_percent`` is clamped to [0, 100]. ``metadata`` is merged
        into the existing map; keys not mentioned are kept.
        """
        fields: dict[str, Any] = {}
        if current_node_id is not None:
            fields["current_node_id"] = current_node_id
        if current_node_name is not None:
            fields["current_node_name"] = current_node_name
        if progress_percent is not None:
            fields["progress_percent"] = _clamp_percent(progress_percent)
        if completed_nodes is not None:
            fields["completed_nodes"] = completed_nodes
        if not fields and metadata is None:
            raise WorkflowValidationError("No fields to update")

        async with transaction() as db:
            entry = await self._fetch(db, registry_id)
            self._require_active(entry, "update_progress", expected_version)
            if metadata is not None:
                fields["metadata_json"] = json.dumps(merge_metadata(entry.metadata, metadata))
            updated = await self._write(db, entry, fields)

        logger.debug(
            f"Workflow {registry_id} progress {updated.progress_percent}% "
            f"at {updated.current_node_id}"
        )
        return updated

    async def jump_to_node(
        self,
        registry_id: str,
        node_id: str,
        node_name: str | None = None,
    ) -> ActiveWorkflow:
        """Move the current position without executing anything.

        When the definition graph can be resolved the node must exist in it,
        and its name fills in ``node_name`` if omitted.
        """
        async with transaction() as db:
            entry = await self._fetch(db, registry_id)
            self._require_active(entry, "jump_to_node")

            definition = await self._definitions.find_definition(entry.workflow_def_id)
            if definition is not None:
                node = definition.graph.get_node(node_id)
                if node is None:
                    raise NodeNotFoundError(
                        f"Node {node_id} not found in workflow graph",
                        node_id=node_id,
                        workflow_def_id=entry.workflow_def_id,
                    )
                if node_name is None:
                    node_name = node.display_name

            metadata = merge_metadata(
                entry.metadata,
                {"jumped_to_node": True, "jump_timestamp": utc_now()},
            )
            updated = await self._write(
                db,
                entry,
                {
                    "current_node_id": node_id,
                    "current_node_name": node_name,
                    "metadata_json": json.dumps(metadata),
                },
            )

        logger.info(f"Workflow {registry_id} jumped to node {node_name or node_id}")
        return updated

    # ==================== Transitions ====================

    async def pause(self, registry_id: str, expected_version: int | None = None) -> ActiveWorkflow:
        return await self._transition(registry_id, "pause", expected_version=expected_version)

    async def resume(self, registry_id: str, expected_version: int | None = None) -> ActiveWorkflow:
        return await self._transition(registry_id, "resume", expected_version=expected_version)

    async def cancel(
        self,
        registry_id: str,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> ActiveWorkflow:
        return await self._transition(
            registry_id,
            "cancel",
            fields={"completed_at": utc_now()},
            metadata={"cancel_reason": reason} if reason else None,
            expected_version=expected_version,
        )

    async def complete(
        self,
        registry_id: str,
        final_metadata: dict[str, Any] | None = None,
        expected_version: int | None = None,
    ) -> ActiveWorkflow:
        """Mark a workflow completed; progress is forced to 100."""
        return await self._transition(
            registry_id,
            "complete",
            fields={"progress_percent": 100, "completed_at": utc_now()},
            metadata=final_metadata,
            expected_version=expected_version,
        )

    async def fail(
        self,
        registry_id: str,
        error_message: str,
        error_details: Any | None = None,
        expected_version: int | None = None,
    ) -> ActiveWorkflow:
        """Mark a workflow failed at its current node."""
        return await self._transition(
            registry_id,
            "fail",
            fields={"error_message": error_message, "completed_at": utc_now()},
            metadata={"error_details": error_details} if error_details is not None else None,
            expected_version=expected_version,
        )

    # ==================== Queries ====================

    async def get(self, registry_id: str) -> ActiveWorkflow:
        """Get an entry with the nodes available in its definition graph."""
        db = await get_db()
        entry = await self._fetch(db, registry_id)
        definition = await self._definitions.find_definition(entry.workflow_def_id)
        return entry.model_copy(update={"available_nodes": _available_nodes(definition)})

    async def list_active(
        self,
        status: RegistryStatus | None = None,
        source: WorkflowSource | None = None,
        include_completed: bool = False,
    ) -> list[ActiveWorkflow]:
        """List entries, newest first.

        Only running and paused entries are listed unless ``status`` is
        given or ``include_completed`` is set.
        """
        db = await get_db()

        where_clauses: list[str] = []
        params: list[Any] = []

        if status is not None:
            where_clauses.append("status = ?")
            params.append(status.value)
        elif not include_completed:
            placeholders = ",".join("?" * len(ACTIVE_STATUSES))
            where_clauses.append(f"status IN ({placeholders})")
            params.extend(sorted(s.value for s in ACTIVE_STATUSES))

        if source is not None:
            where_clauses.append("source = ?")
            params.append(source.value)

        where_sql = f"WHERE {' AND '.join(where_clauses)}" if where_clauses else ""
        cursor = await db.execute(
            f"""
            SELECT * FROM active_workflow_registry
            {where_sql}
            ORDER BY started_at DESC, rowid DESC
            """,
            params,
        )
        rows = await cursor.fetchall()

        entries = []
        definitions: dict[str, WorkflowDefinition | None] = {}
        for row in rows:
            entry = _row_to_entry(row)
            if entry.workflow_def_id not in definitions:
                definitions[entry.workflow_def_id] = await self._definitions.find_definition(
                    entry.workflow_def_id
                )
            entries.append(
                entry.model_copy(
                    update={"available_nodes": _available_nodes(definitions[entry.workflow_def_id])}
                )
            )
        return entries

    # ==================== Maintenance ====================

    async def cleanup_old_workflows(self, older_than_days: int = 30) -> int:
        """Delete terminal entries completed more than ``older_than_days`` ago.

        Returns the number of deleted entries. This cannot be undone.
        """
        if older_than_days < 0:
            raise WorkflowValidationError("older_than_days must be non-negative")

        cutoff = (datetime.now(timezone.utc) - timedelta(days=older_than_days)).isoformat()
        placeholders = ",".join("?" * len(TERMINAL_STATUSES))

        async with transaction() as db:
            cursor = await db.execute(
                f"""
                DELETE FROM active_workflow_registry
                WHERE status IN ({placeholders})
                  AND completed_at IS NOT NULL
                  AND completed_at < ?
                """,
                [*sorted(s.value for s in TERMINAL_STATUSES), cutoff],
            )
            deleted = cursor.rowcount

        logger.info(
            f"Cleaned up {deleted} workflow record(s) older than {older_than_days} days"
        )
        return deleted
