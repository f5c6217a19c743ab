"""SQLite database connection and schema initialization."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

# Global connection holder
_db_connection: aiosqlite.Connection | None = None

# Serialises write transactions on the shared connection
_write_lock: asyncio.Lock | None = None


def utc_now() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


async def init_database(db_path: str) -> None:
    """Initialize the database connection and create schema."""
    global _db_connection, _write_lock

    # Ensure the data directory exists
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    _db_connection = await aiosqlite.connect(db_path)
    _db_connection.row_factory = aiosqlite.Row

    await _db_connection.execute("PRAGMA foreign_keys = ON")
    _write_lock = asyncio.Lock()

    await _create_schema(_db_connection)


async def close_database() -> None:
    """Close the database connection."""
    global _db_connection
    if _db_connection:
        await _db_connection.close()
        _db_connection = None


async def get_db() -> aiosqlite.Connection:
    """Get the database connection."""
    if _db_connection is None:
        raise RuntimeError("Database not initialized. Call init_database first.")
    return _db_connection


@asynccontextmanager
async def transaction() -> AsyncIterator[aiosqlite.Connection]:
    """Run a group of statements atomically.

    Commits when the block exits normally and rolls back if it raises.
    Writers are serialised so a read-check-write sequence inside the block
    cannot interleave with another one.
    """
    db = await get_db()
    if _write_lock is None:
        raise RuntimeError("Database not initialized. Call init_database first.")
    async with _write_lock:
        try:
            yield db
        except BaseException:
            await db.rollback()
            raise
        else:
            await db.commit()


async def _create_schema(db: aiosqlite.Connection) -> None:
    """Create database tables and indexes."""
    # =========================================================================
    # Workflow Definitions (one row per import; many rows may share an id)
    # =========================================================================
    await db.execute("""
        CREATE TABLE IF NOT EXISTS workflow_definitions (
            row_id INTEGER PRIMARY KEY AUTOINCREMENT,
            id TEXT NOT NULL,
            name TEXT NOT NULL,
            version TEXT NOT NULL DEFAULT '1.0.0',
            description TEXT,
            graph_json TEXT NOT NULL DEFAULT '{"nodes": [], "edges": []}',
            dependencies_json TEXT NOT NULL DEFAULT '{}',
            phases_json TEXT NOT NULL DEFAULT '[]',
            tags_json TEXT NOT NULL DEFAULT '[]',
            marketplace_metadata_json TEXT NOT NULL DEFAULT '{}',
            is_system INTEGER NOT NULL DEFAULT 0,
            source_type TEXT,
            source_path TEXT,
            created_by TEXT,
            revision INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at TEXT NOT NULL DEFAULT (datetime('now'))
        )
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_workflow_def_id_created
        ON workflow_definitions(id, created_at, row_id)
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_workflow_def_id_version
        ON workflow_definitions(id, version)
    """)

    # Import provenance
    await db.execute("""
        CREATE TABLE IF NOT EXISTS workflow_imports (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            workflow_def_id TEXT NOT NULL,
            version TEXT NOT NULL,
            source_type TEXT NOT NULL,
            source_path TEXT NOT NULL,
            imported_by TEXT,
            imported_at TEXT NOT NULL DEFAULT (datetime('now'))
        )
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_imports_def
        ON workflow_imports(workflow_def_id, imported_at)
    """)

    # =========================================================================
    # Version Snapshots (immutable)
    # =========================================================================
    await db.execute("""
        CREATE TABLE IF NOT EXISTS workflow_versions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            workflow_def_id TEXT NOT NULL,
            version TEXT NOT NULL,
            definition_json TEXT NOT NULL,
            changelog TEXT,
            parent_version TEXT,
            created_by TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            UNIQUE(workflow_def_id, version)
        )
    """)

    # =========================================================================
    # Version Locks (at most one holder per definition/version)
    # =========================================================================
    await db.execute("""
        CREATE TABLE IF NOT EXISTS workflow_version_locks (
            workflow_def_id TEXT NOT NULL,
            version TEXT NOT NULL,
            instance_id INTEGER NOT NULL,
            locked_at TEXT NOT NULL DEFAULT (datetime('now')),
            PRIMARY KEY (workflow_def_id, version)
        )
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_version_lock_instance
        ON workflow_version_locks(instance_id)
    """)

    # =========================================================================
    # Sub-Workflow Executions
    # =========================================================================
    await db.execute("""
        CREATE TABLE IF NOT EXISTS sub_workflow_executions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            parent_instance_id INTEGER NOT NULL,
            parent_phase_number INTEGER NOT NULL,
            child_def_id TEXT NOT NULL,
            child_version TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            output_json TEXT NOT NULL DEFAULT '{}',
            error TEXT,
            started_at TEXT,
            completed_at TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        )
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_subworkflow_parent
        ON sub_workflow_executions(parent_instance_id, parent_phase_number, started_at)
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_subworkflow_status
        ON sub_workflow_executions(status)
    """)

    # =========================================================================
    # Active Workflow Registry
    # =========================================================================
    await db.execute("""
        CREATE TABLE IF NOT EXISTS active_workflow_registry (
            id TEXT PRIMARY KEY,
            workflow_def_id TEXT NOT NULL,
            workflow_name TEXT,
            source TEXT NOT NULL CHECK (source IN ('ui', 'agent-runtime', 'chat-client')),
            project_folder TEXT,
            project_name TEXT,
            current_node_id TEXT,
            current_node_name TEXT,
            status TEXT NOT NULL DEFAULT 'running'
                CHECK (status IN ('running', 'paused', 'completed', 'failed', 'cancelled')),
            progress_percent INTEGER NOT NULL DEFAULT 0
                CHECK (progress_percent >= 0 AND progress_percent <= 100),
            total_nodes INTEGER NOT NULL DEFAULT 0,
            completed_nodes INTEGER NOT NULL DEFAULT 0,
            started_at TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at TEXT NOT NULL DEFAULT (datetime('now')),
            completed_at TEXT,
            error_message TEXT,
            metadata_json TEXT NOT NULL DEFAULT '{}',
            row_version INTEGER NOT NULL DEFAULT 1
        )
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_active_registry_status
        ON active_workflow_registry(status, source)
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_active_registry_started
        ON active_workflow_registry(started_at)
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_active_registry_workflow_def
        ON active_workflow_registry(workflow_def_id)
    """)

    await db.commit()
