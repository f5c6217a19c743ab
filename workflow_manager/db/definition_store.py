"""DefinitionStore - persisted workflow definitions, version snapshots and locks.

Graph, dependency and phase payloads are stored as whole JSON documents.
Every import inserts a new row, so one definition id can have many rows;
the row created last is the current definition for that id. Version
strings are never compared to pick the current row.
"""

import json
import logging
from typing import Any

import aiosqlite
from pydantic import ValidationError as PydanticValidationError

from workflow_manager.db.database import get_db, transaction, utc_now
from workflow_manager.errors import (
    ConcurrentModificationError,
    DefinitionNotFoundError,
    LockNotFoundError,
    LockNotHeldError,
    VersionExistsError,
    VersionLockedError,
    VersionNotFoundError,
    WorkflowValidationError,
)
from workflow_manager.models import (
    Graph,
    SourceType,
    VersionLock,
    VersionSnapshot,
    VersionSnapshotCreate,
    VersionSummary,
    WorkflowDefinition,
    WorkflowDefinitionCreate,
    WorkflowDefinitionSummary,
    WorkflowDependencies,
    WorkflowImport,
)

logger = logging.getLogger(__name__)

_CURRENT_ORDER = "ORDER BY created_at DESC, row_id DESC"


def _row_to_definition(row: aiosqlite.Row) -> WorkflowDefinition:
    """Convert a database row to a WorkflowDefinition model."""
    return WorkflowDefinition(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        version=row["version"],
        graph=Graph.model_validate_json(row["graph_json"]),
        dependencies=WorkflowDependencies.model_validate_json(row["dependencies_json"]),
        phases=json.loads(row["phases_json"] or "[]"),
        tags=json.loads(row["tags_json"] or "[]"),
        marketplace_metadata=json.loads(row["marketplace_metadata_json"] or "{}"),
        is_system=bool(row["is_system"]),
        source_type=SourceType(row["source_type"]) if row["source_type"] else None,
        source_path=row["source_path"],
        created_by=row["created_by"],
        revision=row["revision"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_summary(row: aiosqlite.Row) -> WorkflowDefinitionSummary:
    """Convert a database row to a WorkflowDefinitionSummary model."""
    graph = json.loads(row["graph_json"] or "{}")
    return WorkflowDefinitionSummary(
        id=row["id"],
        name=row["name"],
        version=row["version"],
        description=row["description"],
        tags=json.loads(row["tags_json"] or "[]"),
        marketplace_metadata=json.loads(row["marketplace_metadata_json"] or "{}"),
        is_system=bool(row["is_system"]),
        created_by=row["created_by"],
        node_count=len(graph.get("nodes", [])),
        edge_count=len(graph.get("edges", [])),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_snapshot(row: aiosqlite.Row) -> VersionSnapshot:
    return VersionSnapshot(
        id=row["id"],
        workflow_def_id=row["workflow_def_id"],
        version=row["version"],
        definition=json.loads(row["definition_json"]),
        changelog=row["changelog"],
        parent_version=row["parent_version"],
        created_by=row["created_by"],
        created_at=row["created_at"],
    )


def _row_to_lock(row: aiosqlite.Row) -> VersionLock:
    return VersionLock(
        workflow_def_id=row["workflow_def_id"],
        version=row["version"],
        instance_id=row["instance_id"],
        locked_at=row["locked_at"],
    )


def _snapshot_to_create(
    snapshot: VersionSnapshot, created_by: str | None = None
) -> WorkflowDefinitionCreate:
    """Rebuild a definition from a snapshot payload, minus import provenance."""
    payload = {
        key: value
        for key, value in snapshot.definition.items()
        if key not in ("sourceType", "sourcePath", "source_type", "source_path")
    }
    payload.update({"id": snapshot.workflow_def_id, "version": snapshot.version})
    if created_by is not None:
        payload["createdBy"] = created_by

    try:
        return WorkflowDefinitionCreate.model_validate(payload)
    except PydanticValidationError as e:
        raise WorkflowValidationError(
            f"Snapshot {snapshot.workflow_def_id} v{snapshot.version} is not a valid definition",
            workflow_def_id=snapshot.workflow_def_id,
            version=snapshot.version,
        ) from e


def _not_found(def_id: str, version: str | None = None) -> DefinitionNotFoundError:
    label = f"{def_id} v{version}" if version else def_id
    return DefinitionNotFoundError(
        f"Workflow definition {label} not found", workflow_def_id=def_id, version=version
    )


class DefinitionStore:
    """Storage for workflow definitions, their version snapshots and version locks."""

    # ==================== Definitions ====================

    async def _insert_definition(
        self, db: aiosqlite.Connection, definition: WorkflowDefinitionCreate
    ) -> WorkflowDefinition:
        now = utc_now()
        await db.execute(
            """
            INSERT INTO workflow_definitions (
                id, name, version, description, graph_json, dependencies_json,
                phases_json, tags_json, marketplace_metadata_json, is_system,
                source_type, source_path, created_by, revision, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?)
            """,
            (
                definition.id,
                definition.name,
                definition.version,
                definition.description,
                json.dumps(definition.graph.to_document()),
                definition.dependencies.model_dump_json(by_alias=True),
                json.dumps(definition.phases),
                json.dumps(definition.tags),
                json.dumps(definition.marketplace_metadata),
                int(definition.is_system),
                definition.source_type.value if definition.source_type else None,
                definition.source_path,
                definition.created_by,
                now,
                now,
            ),
        )

        if definition.source_type and definition.source_path:
            await db.execute(
                """
                INSERT INTO workflow_imports (
                    workflow_def_id, version, source_type, source_path, imported_by, imported_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    definition.id,
                    definition.version,
                    definition.source_type.value,
                    definition.source_path,
                    definition.created_by,
                    now,
                ),
            )

        return WorkflowDefinition(
            **definition.model_dump(),
            revision=1,
            created_at=now,
            updated_at=now,
        )

    async def import_definition(
        self, definition: WorkflowDefinitionCreate
    ) -> WorkflowDefinition:
        """Store a new definition row.

        Importing an id that already exists adds another row rather than
        failing; the new row becomes the current definition.
        """
        async with transaction() as db:
            created = await self._insert_definition(db, definition)

        logger.info(
            f"Imported workflow definition {created.id} v{created.version} "
            f"({len(created.graph.nodes)} nodes, {len(created.graph.edges)} edges)"
        )
        return created

    async def list_definitions(
        self,
        tags: list[str] | None = None,
        is_system: bool | None = None,
    ) -> list[WorkflowDefinitionSummary]:
        """List the current definition of every id, ordered by name.

        ``tags`` matches definitions carrying any of the given tags.
        """
        db = await get_db()

        conditions = [
            """row_id = (
                SELECT latest.row_id FROM workflow_definitions latest
                WHERE latest.id = d.id
                ORDER BY latest.created_at DESC, latest.row_id DESC
                LIMIT 1
            )"""
        ]
        params: list[Any] = []

        if is_system is not None:
            conditions.append("is_system = ?")
            params.append(int(is_system))

        cursor = await db.execute(
            f"""
            SELECT * FROM workflow_definitions d
            WHERE {" AND ".join(conditions)}
            ORDER BY name ASC, id ASC
            """,
            params,
        )
        rows = await cursor.fetchall()

        summaries = [_row_to_summary(row) for row in rows]
        if tags:
            wanted = set(tags)
            summaries = [s for s in summaries if wanted.intersection(s.tags)]
        return summaries

    async def _fetch_row(
        self, db: aiosqlite.Connection, def_id: str, version: str | None = None
    ) -> aiosqlite.Row | None:
        if version is None:
            cursor = await db.execute(
                f"SELECT * FROM workflow_definitions WHERE id = ? {_CURRENT_ORDER} LIMIT 1",
                (def_id,),
            )
        else:
            cursor = await db.execute(
                f"""
                SELECT * FROM workflow_definitions WHERE id = ? AND version = ?
                {_CURRENT_ORDER} LIMIT 1
                """,
                (def_id, version),
            )
        return await cursor.fetchone()

    async def get_definition(
        self, def_id: str, version: str | None = None
    ) -> WorkflowDefinition:
        """Get a definition.

        Without ``version`` this is the row created last for ``def_id``,
        which is not necessarily the highest version number. Pass
        ``version`` to pin an exact version; a version that was only ever
        snapshotted with ``create_version`` is served from its snapshot.
        """
        db = await get_db()
        row = await self._fetch_row(db, def_id, version)
        if row is not None:
            return _row_to_definition(row)

        if version is not None:
            cursor = await db.execute(
                "SELECT * FROM workflow_versions WHERE workflow_def_id = ? AND version = ?",
                (def_id, version),
            )
            snapshot_row = await cursor.fetchone()
            if snapshot_row is not None:
                snapshot = _row_to_snapshot(snapshot_row)
                return WorkflowDefinition(
                    **_snapshot_to_create(snapshot).model_dump(),
                    created_at=snapshot.created_at,
                    updated_at=snapshot.created_at,
                )

        raise _not_found(def_id, version)

    async def find_definition(self, def_id: str) -> WorkflowDefinition | None:
        """Get the current definition, or None when the id is unknown."""
        db = await get_db()
        row = await self._fetch_row(db, def_id)
        return _row_to_definition(row) if row is not None else None

    async def list_imports(self, def_id: str) -> list[WorkflowImport]:
        """List import provenance records for a definition, newest first."""
        db = await get_db()
        cursor = await db.execute(
            """
            SELECT * FROM workflow_imports
            WHERE workflow_def_id = ?
            ORDER BY imported_at DESC, id DESC
            """,
            (def_id,),
        )
        rows = await cursor.fetchall()
        return [
            WorkflowImport(
                id=row["id"],
                workflow_def_id=row["workflow_def_id"],
                version=row["version"],
                source_type=SourceType(row["source_type"]),
                source_path=row["source_path"],
                imported_by=row["imported_by"],
                imported_at=row["imported_at"],
            )
            for row in rows
        ]

    # ==================== Graph documents ====================

    async def load_current(
        self, db: aiosqlite.Connection, def_id: str
    ) -> tuple[int, WorkflowDefinition]:
        """Load the current row for a read-modify-write cycle.

        Returns the storage row id alongside the definition. Call inside
        ``transaction()``.
        """
        row = await self._fetch_row(db, def_id)
        if row is None:
            raise _not_found(def_id)
        return row["row_id"], _row_to_definition(row)

    async def write_graph(
        self,
        db: aiosqlite.Connection,
        row_id: int,
        definition: WorkflowDefinition,
        graph: Graph,
    ) -> WorkflowDefinition:
        """Replace a row's graph document.

        The write only applies if the row still carries the revision it was
        read with; otherwise another writer got there first.
        """
        now = utc_now()
        cursor = await db.execute(
            """
            UPDATE workflow_definitions
            SET graph_json = ?, revision = revision + 1, updated_at = ?
            WHERE row_id = ? AND revision = ?
            """,
            (json.dumps(graph.to_document()), now, row_id, definition.revision),
        )
        if cursor.rowcount == 0:
            raise ConcurrentModificationError(
                f"Workflow definition {definition.id} was modified concurrently",
                expected=definition.revision,
                workflow_def_id=definition.id,
            )
        return definition.model_copy(
            update={"graph": graph, "revision": definition.revision + 1, "updated_at": now}
        )

    # ==================== Versions ====================

    async def create_version(
        self, def_id: str, request: VersionSnapshotCreate
    ) -> VersionSnapshot:
        """Record an immutable snapshot of a definition at ``request.version``.

        This is the only way a version snapshot is made; editing the
        current graph never snapshots implicitly. Without an explicit
        payload the current definition is captured.
        """
        async with transaction() as db:
            row = await self._fetch_row(db, def_id)
            if row is None:
                raise _not_found(def_id)

            cursor = await db.execute(
                "SELECT id FROM workflow_versions WHERE workflow_def_id = ? AND version = ?",
                (def_id, request.version),
            )
            if await cursor.fetchone() is not None:
                raise VersionExistsError(
                    f"Version {request.version} of {def_id} already exists",
                    workflow_def_id=def_id,
                    version=request.version,
                )

            payload = request.definition
            if payload is None:
                payload = _row_to_definition(row).to_payload()
                payload["version"] = request.version

            now = utc_now()
            cursor = await db.execute(
                """
                INSERT INTO workflow_versions (
                    workflow_def_id, version, definition_json, changelog,
                    parent_version, created_by, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    def_id,
                    request.version,
                    json.dumps(payload),
                    request.changelog,
                    request.parent_version,
                    request.created_by,
                    now,
                ),
            )
            version_id = cursor.lastrowid

        logger.info(f"Created version snapshot {def_id} v{request.version}")
        return VersionSnapshot(
            id=version_id,
            workflow_def_id=def_id,
            version=request.version,
            definition=payload,
            changelog=request.changelog,
            parent_version=request.parent_version,
            created_by=request.created_by,
            created_at=now,
        )

    async def get_version(self, def_id: str, version: str) -> VersionSnapshot:
        """Get a version snapshot."""
        db = await get_db()
        cursor = await db.execute(
            "SELECT * FROM workflow_versions WHERE workflow_def_id = ? AND version = ?",
            (def_id, version),
        )
        row = await cursor.fetchone()
        if row is None:
            raise VersionNotFoundError(
                f"Version {version} of {def_id} not found",
                workflow_def_id=def_id,
                version=version,
            )
        return _row_to_snapshot(row)

    async def list_versions(self, def_id: str) -> list[VersionSummary]:
        """List version history for a definition, newest first."""
        db = await get_db()
        cursor = await db.execute(
            """
            SELECT id, version, changelog, parent_version, created_by, created_at
            FROM workflow_versions
            WHERE workflow_def_id = ?
            ORDER BY created_at DESC, id DESC
            """,
            (def_id,),
        )
        rows = await cursor.fetchall()
        return [
            VersionSummary(
                id=row["id"],
                version=row["version"],
                changelog=row["changelog"],
                parent_version=row["parent_version"],
                created_by=row["created_by"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    async def restore_version(
        self, def_id: str, version: str, created_by: str | None = None
    ) -> WorkflowDefinition:
        """Make a snapshot the current definition again.

        The snapshot is copied into a new definition row; neither the
        snapshot nor older rows are modified.
        """
        snapshot = await self.get_version(def_id, version)
        definition = _snapshot_to_create(snapshot, created_by)

        async with transaction() as db:
            restored = await self._insert_definition(db, definition)

        logger.info(f"Restored workflow definition {def_id} to snapshot v{version}")
        return restored

    # ==================== Version locks ====================

    async def get_lock(
        self, def_id: str, version: str, db: aiosqlite.Connection | None = None
    ) -> VersionLock | None:
        """Current lock on a version, or None.

        Pass ``db`` to read on a connection already inside ``transaction()``.
        """
        if db is None:
            db = await get_db()
        cursor = await db.execute(
            """
            SELECT * FROM workflow_version_locks
            WHERE workflow_def_id = ? AND version = ?
            """,
            (def_id, version),
        )
        row = await cursor.fetchone()
        return _row_to_lock(row) if row is not None else None

    async def _version_exists(
        self, db: aiosqlite.Connection, def_id: str, version: str
    ) -> bool:
        cursor = await db.execute(
            """
            SELECT 1 FROM workflow_definitions WHERE id = ? AND version = ?
            UNION ALL
            SELECT 1 FROM workflow_versions WHERE workflow_def_id = ? AND version = ?
            LIMIT 1
            """,
            (def_id, version, def_id, version),
        )
        return await cursor.fetchone() is not None

    async def lock_version(self, def_id: str, version: str, instance_id: int) -> VersionLock:
        """Acquire the exclusive lock on a (definition, version) pair.

        Re-locking by the current holder is a no-op. Acquisition is a
        single insert guarded by the table's primary key.
        """
        async with transaction() as db:
            if not await self._version_exists(db, def_id, version):
                raise _not_found(def_id, version)

            now = utc_now()
            cursor = await db.execute(
                """
                INSERT INTO workflow_version_locks (workflow_def_id, version, instance_id, locked_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (workflow_def_id, version) DO NOTHING
                """,
                (def_id, version, instance_id, now),
            )
            if cursor.rowcount > 0:
                logger.info(f"Instance {instance_id} locked {def_id} v{version}")
                return VersionLock(
                    workflow_def_id=def_id,
                    version=version,
                    instance_id=instance_id,
                    locked_at=now,
                )

            existing = await self.get_lock(def_id, version, db=db)

        if existing is None or existing.instance_id != instance_id:
            holder = existing.instance_id if existing else None
            raise VersionLockedError(
                f"Workflow {def_id} v{version} is locked by instance {holder}",
                holder=holder,
                workflow_def_id=def_id,
                version=version,
            )
        return existing

    async def unlock_version(self, def_id: str, version: str, instance_id: int) -> VersionLock:
        """Release a lock held by ``instance_id``."""
        async with transaction() as db:
            existing = await self.get_lock(def_id, version, db=db)
            if existing is None:
                raise LockNotFoundError(
                    f"Workflow {def_id} v{version} is not locked",
                    workflow_def_id=def_id,
                    version=version,
                )
            if existing.instance_id != instance_id:
                raise LockNotHeldError(
                    f"Instance {instance_id} does not hold the lock on {def_id} v{version}",
                    holder=existing.instance_id,
                    workflow_def_id=def_id,
                    version=version,
                )
            await db.execute(
                """
                DELETE FROM workflow_version_locks
                WHERE workflow_def_id = ? AND version = ? AND instance_id = ?
                """,
                (def_id, version, instance_id),
            )

        logger.info(f"Instance {instance_id} unlocked {def_id} v{version}")
        return existing

    async def list_locks(self, def_id: str) -> list[VersionLock]:
        db = await get_db()
        cursor = await db.execute(
            """
            SELECT * FROM workflow_version_locks
            WHERE workflow_def_id = ?
            ORDER BY locked_at ASC
            """,
            (def_id,),
        )
        rows = await cursor.fetchall()
        return [_row_to_lock(row) for row in rows]


definition_store = DefinitionStore()
