"""Pydantic models for the active workflow registry.

The registry tracks every in-flight workflow instance regardless of which
runtime started it. Entries follow a small state machine:

    running <-> paused
    running | paused -> completed | failed | cancelled
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import Field as PydanticField


class WorkflowSource(str, Enum):
    """Runtime that registered the workflow."""

    UI = "ui"
    AGENT_RUNTIME = "agent-runtime"
    CHAT_CLIENT = "chat-client"


class RegistryStatus(str, Enum):
    """Lifecycle status of a registry entry."""

    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"  # Terminal
    FAILED = "failed"  # Terminal
    CANCELLED = "cancelled"  # Terminal

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {RegistryStatus.COMPLETED, RegistryStatus.FAILED, RegistryStatus.CANCELLED}
)
ACTIVE_STATUSES = frozenset({RegistryStatus.RUNNING, RegistryStatus.PAUSED})

# operation -> (allowed source states, target state)
TRANSITIONS: dict[str, tuple[frozenset[RegistryStatus], RegistryStatus]] = {
    "pause": (frozenset({RegistryStatus.RUNNING}), RegistryStatus.PAUSED),
    "resume": (frozenset({RegistryStatus.PAUSED}), RegistryStatus.RUNNING),
    "complete": (ACTIVE_STATUSES, RegistryStatus.COMPLETED),
    "fail": (ACTIVE_STATUSES, RegistryStatus.FAILED),
    "cancel": (ACTIVE_STATUSES, RegistryStatus.CANCELLED),
}


def merge_metadata(
    existing: dict[str, Any], updates: dict[str, Any] | None
) -> dict[str, Any]:
    """Shallow-merge metadata: update keys overwrite, other keys are kept."""
    if not updates:
        return dict(existing)
    return {**existing, **updates}


class AvailableNode(BaseModel):
    """A node a caller may jump to."""

    id: str
    name: str


class ActiveWorkflow(BaseModel):
    """A registry entry for one workflow instance."""

    id: str
    workflow_def_id: str = PydanticField(alias="workflowDefId")
    workflow_name: str | None = PydanticField(default=None, alias="workflowName")
    source: WorkflowSource
    project_folder: str | None = PydanticField(default=None, alias="projectFolder")
    project_name: str | None = PydanticField(default=None, alias="projectName")
    current_node_id: str | None = PydanticField(default=None, alias="currentNodeId")
    current_node_name: str | None = PydanticField(default=None, alias="currentNodeName")
    status: RegistryStatus = RegistryStatus.RUNNING
    progress_percent: int = PydanticField(default=0, ge=0, le=100, alias="progressPercent")
    total_nodes: int = PydanticField(default=0, alias="totalNodes")
    completed_nodes: int = PydanticField(default=0, alias="completedNodes")
    started_at: str = PydanticField(alias="startedAt")
    updated_at: str = PydanticField(alias="updatedAt")
    completed_at: str | None = PydanticField(default=None, alias="completedAt")
    error_message: str | None = PydanticField(default=None, alias="errorMessage")
    metadata: dict[str, Any] = {}
    row_version: int = PydanticField(default=1, alias="rowVersion")
    available_nodes: list[AvailableNode] = PydanticField(default=[], alias="availableNodes")

    model_config = {"populate_by_name": True}

    @property
    def failed_at_node(self) -> str | None:
        """The node the entry was positioned at, by name if known."""
        return self.current_node_name or self.current_node_id


# =============================================================================
# Request models
# =============================================================================


class RegisterWorkflowRequest(BaseModel):
    """Request to register a new active workflow."""

    workflow_def_id: str = PydanticField(min_length=1, alias="workflowDefId")
    source: WorkflowSource
    workflow_name: str | None = PydanticField(default=None, alias="workflowName")
    project_folder: str | None = PydanticField(default=None, alias="projectFolder")
    project_name: str | None = PydanticField(default=None, alias="projectName")
    total_nodes: int | None = PydanticField(default=None, ge=0, alias="totalNodes")
    metadata: dict[str, Any] | None = None

    model_config = {"populate_by_name": True}


class ProgressUpdate(BaseModel):
    """Request to update progress on an active workflow."""

    current_node_id: str | None = PydanticField(default=None, alias="currentNodeId")
    current_node_name: str | None = PydanticField(default=None, alias="currentNodeName")
    # Out-of-range values are clamped rather than rejected
    progress_percent: int | None = PydanticField(default=None, alias="progressPercent")
    completed_nodes: int | None = PydanticField(default=None, ge=0, alias="completedNodes")
    metadata: dict[str, Any] | None = None
    expected_version: int | None = PydanticField(default=None, alias="expectedVersion")

    model_config = {"populate_by_name": True}


class JumpRequest(BaseModel):
    node_id: str = PydanticField(min_length=1, alias="nodeId")
    node_name: str | None = PydanticField(default=None, alias="nodeName")

    model_config = {"populate_by_name": True}


class CancelRequest(BaseModel):
    reason: str | None = None


class CompleteRequest(BaseModel):
    final_metadata: dict[str, Any] | None = PydanticField(default=None, alias="finalMetadata")

    model_config = {"populate_by_name": True}


class FailRequest(BaseModel):
    error_message: str = PydanticField(min_length=1, alias="errorMessage")
    error_details: Any | None = PydanticField(default=None, alias="errorDetails")

    model_config = {"populate_by_name": True}
