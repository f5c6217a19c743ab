"""Pydantic models for workflow definitions, version snapshots and locks."""

from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import Field as PydanticField

from workflow_manager.models.graph import Graph

DEFAULT_VERSION = "1.0.0"


class SourceType(str, Enum):
    """Where an imported definition came from."""

    MARKETPLACE = "marketplace"
    FOLDER = "folder"
    FILE = "file"
    URL = "url"


class WorkflowDependencies(BaseModel):
    """Agents, skills, integrations and sub-workflows a definition requires."""

    agents: list[str] = []
    skills: list[str] = []
    integrations: list[str] = PydanticField(default=[], alias="mcpServers")
    sub_workflows: list[str] = PydanticField(default=[], alias="subWorkflows")

    model_config = {"populate_by_name": True}


class WorkflowDefinitionCreate(BaseModel):
    """Request model for importing a workflow definition."""

    id: str = PydanticField(min_length=1)
    name: str = PydanticField(min_length=1)
    description: str | None = None
    version: str = DEFAULT_VERSION
    graph: Graph = PydanticField(default_factory=Graph)
    dependencies: WorkflowDependencies = PydanticField(default_factory=WorkflowDependencies)
    # Linear mirror of the graph nodes for consumers that ignore edges
    phases: list[dict[str, Any]] = []
    tags: list[str] = []
    marketplace_metadata: dict[str, Any] = PydanticField(
        default_factory=dict, alias="marketplaceMetadata"
    )
    is_system: bool = PydanticField(default=False, alias="isSystem")
    source_type: SourceType | None = PydanticField(default=None, alias="sourceType")
    source_path: str | None = PydanticField(default=None, alias="sourcePath")
    created_by: str | None = PydanticField(default=None, alias="createdBy")

    model_config = {"populate_by_name": True}


class WorkflowDefinition(BaseModel):
    """A stored workflow definition row.

    Several rows may share the same ``id``; the one created last is the
    current definition for that id.
    """

    id: str
    name: str
    description: str | None = None
    version: str = DEFAULT_VERSION
    graph: Graph = PydanticField(default_factory=Graph)
    dependencies: WorkflowDependencies = PydanticField(default_factory=WorkflowDependencies)
    phases: list[dict[str, Any]] = []
    tags: list[str] = []
    marketplace_metadata: dict[str, Any] = PydanticField(
        default_factory=dict, alias="marketplaceMetadata"
    )
    is_system: bool = PydanticField(default=False, alias="isSystem")
    source_type: SourceType | None = PydanticField(default=None, alias="sourceType")
    source_path: str | None = PydanticField(default=None, alias="sourcePath")
    created_by: str | None = PydanticField(default=None, alias="createdBy")
    revision: int = 1
    created_at: str = PydanticField(alias="createdAt")
    updated_at: str = PydanticField(alias="updatedAt")

    model_config = {"populate_by_name": True}

    def to_payload(self) -> dict[str, Any]:
        """The definition as a standalone document, without storage bookkeeping."""
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude={"revision", "created_at", "updated_at"},
            exclude_none=True,
        )


class WorkflowDefinitionSummary(BaseModel):
    """Summary of a definition for list views."""

    id: str
    name: str
    version: str
    description: str | None = None
    tags: list[str] = []
    marketplace_metadata: dict[str, Any] = PydanticField(
        default_factory=dict, alias="marketplaceMetadata"
    )
    is_system: bool = PydanticField(default=False, alias="isSystem")
    created_by: str | None = PydanticField(default=None, alias="createdBy")
    node_count: int = PydanticField(default=0, alias="nodeCount")
    edge_count: int = PydanticField(default=0, alias="edgeCount")
    created_at: str = PydanticField(alias="createdAt")
    updated_at: str = PydanticField(alias="updatedAt")

    model_config = {"populate_by_name": True}


class WorkflowImport(BaseModel):
    """Provenance record for an import from a marketplace, folder, file or URL."""

    id: int
    workflow_def_id: str = PydanticField(alias="workflowDefId")
    version: str
    source_type: SourceType = PydanticField(alias="sourceType")
    source_path: str = PydanticField(alias="sourcePath")
    imported_by: str | None = PydanticField(default=None, alias="importedBy")
    imported_at: str = PydanticField(alias="importedAt")

    model_config = {"populate_by_name": True}


# =============================================================================
# Versions
# =============================================================================


class VersionSnapshotCreate(BaseModel):
    """Request model for snapshotting a version.

    When ``definition`` is omitted the current definition is captured.
    """

    version: str = PydanticField(min_length=1)
    definition: dict[str, Any] | None = None
    changelog: str | None = None
    parent_version: str | None = PydanticField(default=None, alias="parentVersion")
    created_by: str | None = PydanticField(default=None, alias="createdBy")

    model_config = {"populate_by_name": True}


class VersionSnapshot(BaseModel):
    """An immutable copy of a definition at a given version."""

    id: int
    workflow_def_id: str = PydanticField(alias="workflowDefId")
    version: str
    definition: dict[str, Any]
    changelog: str | None = None
    parent_version: str | None = PydanticField(default=None, alias="parentVersion")
    created_by: str | None = PydanticField(default=None, alias="createdBy")
    created_at: str = PydanticField(alias="createdAt")

    model_config = {"populate_by_name": True}


class VersionSummary(BaseModel):
    """A version history entry without the payload."""

    id: int
    version: str
    changelog: str | None = None
    parent_version: str | None = PydanticField(default=None, alias="parentVersion")
    created_by: str | None = PydanticField(default=None, alias="createdBy")
    created_at: str = PydanticField(alias="createdAt")

    model_config = {"populate_by_name": True}


class VersionLock(BaseModel):
    """An exclusive claim on a (definition, version) pair."""

    workflow_def_id: str = PydanticField(alias="workflowDefId")
    version: str
    instance_id: int = PydanticField(alias="instanceId")
    locked_at: str = PydanticField(alias="lockedAt")

    model_config = {"populate_by_name": True}
