"""Pydantic models for nested sub-workflow executions."""

from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import Field as PydanticField


class SubWorkflowStatus(str, Enum):
    """Status of a sub-workflow execution."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"  # Terminal
    FAILED = "failed"  # Terminal

    @property
    def is_terminal(self) -> bool:
        return self in (SubWorkflowStatus.COMPLETE, SubWorkflowStatus.FAILED)


class SubWorkflowStart(BaseModel):
    """Request model for starting a sub-workflow inside a parent phase."""

    parent_instance_id: int = PydanticField(alias="parentInstanceId")
    parent_phase_number: int = PydanticField(ge=0, alias="parentPhaseNumber")
    child_def_id: str = PydanticField(min_length=1, alias="childDefId")
    child_version: str = PydanticField(min_length=1, alias="childVersion")

    model_config = {"populate_by_name": True}


class SubWorkflowCompletion(BaseModel):
    """Request model for finishing a sub-workflow execution."""

    output: dict[str, Any] | None = None
    error: str | None = None


class SubWorkflowExecution(BaseModel):
    """One execution of a child workflow linked to a parent instance phase.

    Retries for the same parent phase create new executions; the most
    recently started one is the current execution.
    """

    id: int
    parent_instance_id: int = PydanticField(alias="parentInstanceId")
    parent_phase_number: int = PydanticField(alias="parentPhaseNumber")
    child_def_id: str = PydanticField(alias="childDefId")
    child_version: str = PydanticField(alias="childVersion")
    status: SubWorkflowStatus
    output: dict[str, Any] = {}
    error: str | None = None
    started_at: str | None = PydanticField(default=None, alias="startedAt")
    completed_at: str | None = PydanticField(default=None, alias="completedAt")
    created_at: str = PydanticField(alias="createdAt")

    model_config = {"populate_by_name": True}
