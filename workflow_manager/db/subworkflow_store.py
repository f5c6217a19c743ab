"""Database operations for nested sub-workflow executions."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import aiosqlite

from workflow_manager.db.database import get_db, transaction, utc_now
from workflow_manager.errors import AlreadyTerminalError, SubWorkflowNotFoundError
from workflow_manager.models import SubWorkflowExecution, SubWorkflowStatus

if TYPE_CHECKING:
    from workflow_manager.db.definition_store import DefinitionStore

logger = logging.getLogger(__name__)

_NEWEST_FIRST = "ORDER BY started_at DESC, id DESC"


def _row_to_execution(row: aiosqlite.Row) -> SubWorkflowExecution:
    """Convert a database row to a SubWorkflowExecution model."""
    return SubWorkflowExecution(
        id=row["id"],
        parent_instance_id=row["parent_instance_id"],
        parent_phase_number=row["parent_phase_number"],
        child_def_id=row["child_def_id"],
        child_version=row["child_version"],
        status=SubWorkflowStatus(row["status"]),
        output=json.loads(row["output_json"] or "{}"),
        error=row["error"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        created_at=row["created_at"],
    )


class SubWorkflowStore:
    """Links a parent instance's phase to executions of a child workflow.

    Executions are independent of the active workflow registry. A parent
    phase may accumulate several executions (retries); none is ever reused
    once it has finished.
    """

    def __init__(self, definitions: DefinitionStore) -> None:
        self._definitions = definitions

    async def start_sub_workflow(
        self,
        parent_instance_id: int,
        parent_phase_number: int,
        child_def_id: str,
        child_version: str,
    ) -> SubWorkflowExecution:
        """Start a new execution of ``child_def_id`` at ``child_version``."""
        # Raises if the child definition/version does not exist
        await self._definitions.get_definition(child_def_id, child_version)

        now = utc_now()
        async with transaction() as db:
            cursor = await db.execute(
                """
                INSERT INTO sub_workflow_executions (
                    parent_instance_id, parent_phase_number, child_def_id, child_version,
                    status, output_json, started_at, created_at
                ) VALUES (?, ?, ?, ?, ?, '{}', ?, ?)
                """,
                (
                    parent_instance_id,
                    parent_phase_number,
                    child_def_id,
                    child_version,
                    SubWorkflowStatus.IN_PROGRESS.value,
                    now,
                    now,
                ),
            )
            execution_id = cursor.lastrowid

        logger.info(
            f"Started sub-workflow {child_def_id} v{child_version} "
            f"(execution {execution_id}) for instance {parent_instance_id} "
            f"phase {parent_phase_number}"
        )
        return SubWorkflowExecution(
            id=execution_id,
            parent_instance_id=parent_instance_id,
            parent_phase_number=parent_phase_number,
            child_def_id=child_def_id,
            child_version=child_version,
            status=SubWorkflowStatus.IN_PROGRESS,
            started_at=now,
            created_at=now,
        )

    async def _fetch(
        self, db: aiosqlite.Connection, execution_id: int
    ) -> SubWorkflowExecution:
        cursor = await db.execute(
            "SELECT * FROM sub_workflow_executions WHERE id = ?", (execution_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            raise SubWorkflowNotFoundError(
                f"Sub-workflow execution {execution_id} not found",
                execution_id=execution_id,
            )
        return _row_to_execution(row)

    async def complete_sub_workflow(
        self,
        execution_id: int,
        output: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> SubWorkflowExecution:
        """Finish an execution: ``failed`` when ``error`` is given, else ``complete``."""
        status = SubWorkflowStatus.FAILED if error else SubWorkflowStatus.COMPLETE

        async with transaction() as db:
            current = await self._fetch(db, execution_id)
            if current.status.is_terminal:
                raise AlreadyTerminalError(
                    f"Sub-workflow execution {execution_id} is already {current.status.value}",
                    current=current.status.value,
                    operation="complete",
                    execution_id=execution_id,
                )

            now = utc_now()
            await db.execute(
                """
                UPDATE sub_workflow_executions
                SET status = ?, completed_at = ?, output_json = ?, error = ?
                WHERE id = ?
                """,
                (status.value, now, json.dumps(output or {}), error, execution_id),
            )

        logger.info(
            f"Sub-workflow {current.child_def_id} (execution {execution_id}) {status.value}"
        )
        return current.model_copy(
            update={
                "status": status,
                "completed_at": now,
                "output": output or {},
                "error": error,
            }
        )

    async def get_execution(self, execution_id: int) -> SubWorkflowExecution:
        db = await get_db()
        return await self._fetch(db, execution_id)

    async def list_for_parent(
        self,
        parent_instance_id: int,
        parent_phase_number: int | None = None,
    ) -> list[SubWorkflowExecution]:
        """Executions for a parent instance, most recently started first."""
        db = await get_db()

        where_clauses = ["parent_instance_id = ?"]
        params: list[Any] = [parent_instance_id]
        if parent_phase_number is not None:
            where_clauses.append("parent_phase_number = ?")
            params.append(parent_phase_number)

        cursor = await db.execute(
            f"""
            SELECT * FROM sub_workflow_executions
            WHERE {" AND ".join(where_clauses)}
            {_NEWEST_FIRST}
            """,
            params,
        )
        rows = await cursor.fetchall()
        return [_row_to_execution(row) for row in rows]

    async def get_current(
        self, parent_instance_id: int, parent_phase_number: int
    ) -> SubWorkflowExecution | None:
        """The most recently started execution for a parent phase."""
        executions = await self.list_for_parent(parent_instance_id, parent_phase_number)
        return executions[0] if executions else None
