"""Active workflow registry API routes."""

from fastapi import APIRouter, Query
from pydantic import BaseModel
from pydantic import Field as PydanticField

from workflow_manager import config
from workflow_manager.db import registry_store
from workflow_manager.models import ActiveWorkflow, RegistryStatus, WorkflowSource
from workflow_manager.models.registry import (
    CancelRequest,
    CompleteRequest,
    FailRequest,
    JumpRequest,
    ProgressUpdate,
    RegisterWorkflowRequest,
)

router = APIRouter()


class FailResponse(BaseModel):
    """A failed entry and the node it failed at."""

    workflow: ActiveWorkflow
    failed_at_node: str | None = PydanticField(default=None, alias="failedAtNode")

    model_config = {"populate_by_name": True}


class CleanupRequest(BaseModel):
    older_than_days: int | None = PydanticField(default=None, ge=0, alias="olderThanDays")

    model_config = {"populate_by_name": True}


class CleanupResponse(BaseModel):
    deleted_count: int = PydanticField(alias="deletedCount")
    older_than_days: int = PydanticField(alias="olderThanDays")

    model_config = {"populate_by_name": True}


# ==================== Registry ====================


@router.post("/active-workflows", status_code=201)
async def register_workflow(request: RegisterWorkflowRequest) -> ActiveWorkflow:
    """Register a workflow instance as running."""
    return await registry_store.register(
        request.workflow_def_id,
        request.source,
        workflow_name=request.workflow_name,
        project_folder=request.project_folder,
        project_name=request.project_name,
        total_nodes=request.total_nodes,
        metadata=request.metadata,
    )


@router.get("/active-workflows")
async def list_active_workflows(
    status: RegistryStatus | None = Query(None),
    source: WorkflowSource | None = Query(None),
    include_completed: bool = Query(False, alias="includeCompleted"),
) -> list[ActiveWorkflow]:
    """List running and paused workflows, newest first."""
    return await registry_store.list_active(
        status=status, source=source, include_completed=include_completed
    )


@router.post("/active-workflows/cleanup")
async def cleanup_workflows(request: CleanupRequest | None = None) -> CleanupResponse:
    """Delete terminal entries older than the retention window."""
    days = request.older_than_days if request else None
    if days is None:
        days = config.registry_retention_days()
    deleted = await registry_store.cleanup_old_workflows(days)
    return CleanupResponse(deleted_count=deleted, older_than_days=days)


@router.get("/active-workflows/{registry_id}")
async def get_active_workflow(registry_id: str) -> ActiveWorkflow:
    """Get an entry with the nodes it can jump to."""
    return await registry_store.get(registry_id)


@router.patch("/active-workflows/{registry_id}/progress")
async def update_progress(registry_id: str, request: ProgressUpdate) -> ActiveWorkflow:
    return await registry_store.update_progress(
        registry_id,
        current_node_id=request.current_node_id,
        current_node_name=request.current_node_name,
        progress_percent=request.progress_percent,
        completed_nodes=request.completed_nodes,
        metadata=request.metadata,
        expected_version=request.expected_version,
    )


@router.post("/active-workflows/{registry_id}/jump")
async def jump_to_node(registry_id: str, request: JumpRequest) -> ActiveWorkflow:
    """Move the current position to another node."""
    return await registry_store.jump_to_node(registry_id, request.node_id, request.node_name)


# ==================== Transitions ====================


@router.post("/active-workflows/{registry_id}/pause")
async def pause_workflow(registry_id: str) -> ActiveWorkflow:
    return await registry_store.pause(registry_id)


@router.post("/active-workflows/{registry_id}/resume")
async def resume_workflow(registry_id: str) -> ActiveWorkflow:
    return await registry_store.resume(registry_id)


@router.post("/active-workflows/{registry_id}/cancel")
async def cancel_workflow(
    registry_id: str, request: CancelRequest | None = None
) -> ActiveWorkflow:
    return await registry_store.cancel(registry_id, reason=request.reason if request else None)


@router.post("/active-workflows/{registry_id}/complete")
async def complete_workflow(
    registry_id: str, request: CompleteRequest | None = None
) -> ActiveWorkflow:
    return await registry_store.complete(
        registry_id, final_metadata=request.final_metadata if request else None
    )


@router.post("/active-workflows/{registry_id}/fail")
async def fail_workflow(registry_id: str, request: FailRequest) -> FailResponse:
    """Mark a workflow failed at its current node."""
    failed = await registry_store.fail(
        registry_id, request.error_message, error_details=request.error_details
    )
    return FailResponse(workflow=failed, failed_at_node=failed.failed_at_node)
