"""Version snapshot and version lock API routes."""

from fastapi import APIRouter, Query
from pydantic import BaseModel
from pydantic import Field as PydanticField

from workflow_manager.db import definition_store
from workflow_manager.models import (
    VersionLock,
    VersionSnapshot,
    VersionSnapshotCreate,
    VersionSummary,
    WorkflowDefinition,
)

router = APIRouter()


class RestoreRequest(BaseModel):
    created_by: str | None = PydanticField(default=None, alias="createdBy")

    model_config = {"populate_by_name": True}


class LockRequest(BaseModel):
    """Request to lock a version for an executing instance."""

    instance_id: int = PydanticField(alias="instanceId")

    model_config = {"populate_by_name": True}


# ==================== Versions ====================


@router.post("/definitions/{def_id}/versions", status_code=201)
async def create_version(def_id: str, request: VersionSnapshotCreate) -> VersionSnapshot:
    """Snapshot a definition at a version string."""
    return await definition_store.create_version(def_id, request)


@router.get("/definitions/{def_id}/versions")
async def list_versions(def_id: str) -> list[VersionSummary]:
    """List version history, newest first."""
    return await definition_store.list_versions(def_id)


@router.get("/definitions/{def_id}/versions/{version}")
async def get_version(def_id: str, version: str) -> VersionSnapshot:
    return await definition_store.get_version(def_id, version)


@router.post("/definitions/{def_id}/versions/{version}/restore")
async def restore_version(
    def_id: str, version: str, request: RestoreRequest | None = None
) -> WorkflowDefinition:
    """Make a snapshot the current definition again."""
    created_by = request.created_by if request else None
    return await definition_store.restore_version(def_id, version, created_by=created_by)


# ==================== Locks ====================


@router.get("/definitions/{def_id}/locks")
async def list_locks(def_id: str) -> list[VersionLock]:
    return await definition_store.list_locks(def_id)


@router.post("/definitions/{def_id}/versions/{version}/lock")
async def lock_version(def_id: str, version: str, request: LockRequest) -> VersionLock:
    """Lock a version while an instance executes it."""
    return await definition_store.lock_version(def_id, version, request.instance_id)


@router.delete("/definitions/{def_id}/versions/{version}/lock")
async def unlock_version(
    def_id: str,
    version: str,
    instance_id: int = Query(..., alias="instanceId"),
) -> VersionLock:
    """Release a lock; only the holding instance may do so."""
    return await definition_store.unlock_version(def_id, version, instance_id)
