"""Export a stored definition as a shareable workflow package.

A package is everything needed to recreate the workflow elsewhere:

    <workflow-id>/
        workflow.json | workflow.yaml
        manifest.json
        README.md
        agents/<agent>.md
        skills/<skill>.md

Nothing is written to disk here; the caller decides where the files go.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import BaseModel
from pydantic import Field as PydanticField

from workflow_manager.db.database import utc_now
from workflow_manager.errors import WorkflowValidationError
from workflow_manager.models import NodeKind, WorkflowDefinition

if TYPE_CHECKING:
    from workflow_manager.db.definition_store import DefinitionStore

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "Workflow"
DEFAULT_DIFFICULTY = "Intermediate"


class ExportFormat(str, Enum):
    JSON = "json"
    YAML = "yaml"


class DependencyFile(BaseModel):
    """Placeholder for an agent or skill markdown file shipped with a package."""

    name: str
    filename: str
    directory: str


class PackageRequirements(BaseModel):
    agents: list[str] = []
    skills: list[str] = []
    integrations: list[str] = PydanticField(default=[], alias="mcpServers")
    sub_workflows: list[str] = PydanticField(default=[], alias="subWorkflows")

    model_config = {"populate_by_name": True}


class PackageManifest(BaseModel):
    """Marketplace listing metadata for a package."""

    id: str
    name: str
    version: str
    description: str | None = None
    author: str
    category: str
    difficulty: str
    tags: list[str] = []
    phase_count: int
    requires: PackageRequirements
    exported_at: str


class WorkflowPackage(BaseModel):
    """An exported workflow with its manifest, README and dependency stubs."""

    workflow_def_id: str = PydanticField(alias="workflowDefId")
    version: str
    format: ExportFormat
    workflow: dict[str, Any]
    workflow_document: str = PydanticField(alias="workflowDocument")
    manifest: PackageManifest
    readme: str
    agents: list[DependencyFile] = []
    skills: list[DependencyFile] = []
    files: list[str] = []
    exported_at: str = PydanticField(alias="exportedAt")
    exported_by: str = PydanticField(alias="exportedBy")

    model_config = {"populate_by_name": True}


def _author(definition: WorkflowDefinition) -> str:
    return (
        definition.marketplace_metadata.get("author")
        or definition.created_by
        or "Unknown"
    )


def _render_document(workflow: dict[str, Any], export_format: ExportFormat) -> str:
    if export_format == ExportFormat.YAML:
        return yaml.dump(workflow, default_flow_style=False, sort_keys=False, allow_unicode=True)
    return json.dumps(workflow, indent=2)


def _node_badge(node_type: NodeKind, data: dict[str, Any]) -> str:
    if data.get("gate") or node_type == NodeKind.GATE:
        return " (Quality Gate)"
    if node_type == NodeKind.SUBWORKFLOW:
        return " (Sub-Workflow)"
    if data.get("requiresApproval"):
        return " (Approval Required)"
    return ""


def _bullets(items: list[str]) -> str:
    return "\n".join(f"- {item}" for item in items) or "_None_"


def render_readme(definition: WorkflowDefinition, exported_at: str) -> str:
    """Markdown README describing the workflow's nodes and dependencies."""
    metadata = definition.marketplace_metadata
    deps = definition.dependencies
    nodes = definition.graph.nodes

    node_lines = []
    for index, node in enumerate(nodes, start=1):
        lines = [
            f"{index}. **{node.display_name}**{_node_badge(node.type, node.data)}",
            f"   - Type: {node.type.value}",
            f"   - Agent: {node.data.get('agent') or 'N/A'}",
        ]
        if node.data.get("skill"):
            lines.append(f"   - Skill: {node.data['skill']}")
        if node.data.get("gateCondition"):
            lines.append(f"   - Condition: {node.data['gateCondition']}")
        node_lines.append("\n".join(lines))

    sections = [
        f"# {definition.name}",
        "\n".join(
            [
                f"**Version:** {definition.version}",
                f"**Author:** {_author(definition)}",
                f"**Category:** {metadata.get('category') or DEFAULT_CATEGORY}",
                f"**Difficulty:** {metadata.get('difficulty') or DEFAULT_DIFFICULTY}",
            ]
        ),
        "## Description",
        definition.description or "No description provided.",
        "## Workflow Overview",
        f"This workflow consists of **{len(nodes)} nodes**:",
        "\n\n".join(node_lines),
        "## Dependencies",
        f"### Agents Required ({len(deps.agents)})\n{_bullets(deps.agents)}",
        f"### Skills Required ({len(deps.skills)})\n{_bullets(deps.skills)}",
        f"### Integrations Required ({len(deps.integrations)})\n{_bullets(deps.integrations)}",
    ]
    if deps.sub_workflows:
        sections.append(
            f"### Sub-Workflows ({len(deps.sub_workflows)})\n{_bullets(deps.sub_workflows)}"
        )
    if definition.tags:
        sections.extend(["## Tags", ", ".join(f"`{tag}`" for tag in definition.tags)])
    sections.append(f"---\n\n*Exported {exported_at}*")

    return "\n\n".join(section for section in sections if section) + "\n"


class PackageExporter:
    """Builds workflow packages from stored definitions."""

    def __init__(self, store: DefinitionStore) -> None:
        self._store = store

    async def export_package(
        self,
        def_id: str,
        version: str | None = None,
        include_agents: bool = True,
        include_skills: bool = True,
        export_format: ExportFormat | str = ExportFormat.JSON,
    ) -> WorkflowPackage:
        """Export the current definition, or a pinned ``version`` of it."""
        try:
            export_format = ExportFormat(export_format)
        except ValueError as e:
            raise WorkflowValidationError(
                f"Unsupported export format: {export_format}. Use json or yaml"
            ) from e
        definition = await self._store.get_definition(def_id, version)
        return build_package(definition, include_agents, include_skills, export_format)


def build_package(
    definition: WorkflowDefinition,
    include_agents: bool = True,
    include_skills: bool = True,
    export_format: ExportFormat = ExportFormat.JSON,
) -> WorkflowPackage:
    exported_at = utc_now()
    deps = definition.dependencies

    workflow = {
        "id": definition.id,
        "name": definition.name,
        "version": definition.version,
        "description": definition.description,
        "tags": definition.tags,
        "marketplaceMetadata": definition.marketplace_metadata,
        "graph": definition.graph.to_document(),
        "dependencies": deps.model_dump(mode="json", by_alias=True),
        "phases": definition.phases,
    }

    agents = (
        [DependencyFile(name=a, filename=f"{a}.md", directory="agents") for a in deps.agents]
        if include_agents
        else []
    )
    skills = (
        [DependencyFile(name=s, filename=f"{s}.md", directory="skills") for s in deps.skills]
        if include_skills
        else []
    )

    manifest = PackageManifest(
        id=definition.id,
        name=definition.name,
        version=definition.version,
        description=definition.description,
        author=_author(definition),
        category=definition.marketplace_metadata.get("category") or DEFAULT_CATEGORY,
        difficulty=definition.marketplace_metadata.get("difficulty") or DEFAULT_DIFFICULTY,
        tags=definition.tags,
        phase_count=len(definition.graph.nodes),
        requires=PackageRequirements(
            agents=deps.agents,
            skills=deps.skills,
            integrations=deps.integrations,
            sub_workflows=deps.sub_workflows,
        ),
        exported_at=exported_at,
    )

    files = [f"workflow.{export_format.value}", "manifest.json", "README.md"]
    files.extend(f"{f.directory}/{f.filename}" for f in agents + skills)

    logger.info(
        f"Exported workflow package {definition.id} v{definition.version} "
        f"as {export_format.value} ({len(files)} files)"
    )
    return WorkflowPackage(
        workflow_def_id=definition.id,
        version=definition.version,
        format=export_format,
        workflow=workflow,
        workflow_document=_render_document(workflow, export_format),
        manifest=manifest,
        readme=render_readme(definition, exported_at),
        agents=agents,
        skills=skills,
        files=files,
        exported_at=exported_at,
        exported_by=definition.created_by or "system",
    )
