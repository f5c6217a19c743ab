"""Sub-workflow execution API routes."""

from fastapi import APIRouter, Query

from workflow_manager.db import subworkflow_store
from workflow_manager.models import SubWorkflowExecution
from workflow_manager.models.subworkflow import SubWorkflowCompletion, SubWorkflowStart

router = APIRouter()


@router.post("/sub-workflows", status_code=201)
async def start_sub_workflow(request: SubWorkflowStart) -> SubWorkflowExecution:
    """Start a child workflow inside a parent instance's phase."""
    return await subworkflow_store.start_sub_workflow(
        request.parent_instance_id,
        request.parent_phase_number,
        request.child_def_id,
        request.child_version,
    )


@router.post("/sub-workflows/{execution_id}/complete")
async def complete_sub_workflow(
    execution_id: int, request: SubWorkflowCompletion
) -> SubWorkflowExecution:
    """Finish an execution; an ``error`` marks it failed."""
    return await subworkflow_store.complete_sub_workflow(
        execution_id, output=request.output, error=request.error
    )


@router.get("/sub-workflows/{execution_id}")
async def get_sub_workflow(execution_id: int) -> SubWorkflowExecution:
    return await subworkflow_store.get_execution(execution_id)


@router.get("/instances/{parent_instance_id}/sub-workflows")
async def list_sub_workflows(
    parent_instance_id: int,
    phase: int | None = Query(None, ge=0, description="Filter by parent phase number"),
) -> list[SubWorkflowExecution]:
    """List executions for a parent instance, most recently started first."""
    return await subworkflow_store.list_for_parent(parent_instance_id, phase)
