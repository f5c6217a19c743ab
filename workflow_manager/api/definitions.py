"""Workflow definition API routes."""

from fastapi import APIRouter, Query

from workflow_manager.db import definition_store
from workflow_manager.models import (
    WorkflowDefinition,
    WorkflowDefinitionCreate,
    WorkflowDefinitionSummary,
    WorkflowImport,
)
from workflow_manager.services import ExportFormat, PackageExporter, WorkflowPackage

router = APIRouter()

package_exporter = PackageExporter(definition_store)


# ==================== Definitions ====================


@router.post("/definitions", status_code=201)
async def import_definition(definition: WorkflowDefinitionCreate) -> WorkflowDefinition:
    """Import a definition. Re-importing an id makes the new row current."""
    return await definition_store.import_definition(definition)


@router.get("/definitions")
async def list_definitions(
    tags: str | None = Query(None, description="Comma-separated tags; matches any"),
    is_system: bool | None = Query(None, alias="isSystem"),
) -> list[WorkflowDefinitionSummary]:
    """List the current definition of every workflow."""
    tag_list = [t.strip() for t in tags.split(",") if t.strip()] if tags else None
    return await definition_store.list_definitions(tags=tag_list, is_system=is_system)


@router.get("/definitions/{def_id}")
async def get_definition(
    def_id: str,
    version: str | None = Query(None, description="Pin an exact version"),
) -> WorkflowDefinition:
    """Get the current definition, or a specific version of it."""
    return await definition_store.get_definition(def_id, version)


@router.get("/definitions/{def_id}/imports")
async def list_imports(def_id: str) -> list[WorkflowImport]:
    """List where a definition was imported from."""
    return await definition_store.list_imports(def_id)


# ==================== Export ====================


@router.get("/definitions/{def_id}/export")
async def export_definition(
    def_id: str,
    version: str | None = Query(None),
    include_agents: bool = Query(True, alias="includeAgents"),
    include_skills: bool = Query(True, alias="includeSkills"),
    export_format: ExportFormat = Query(ExportFormat.JSON, alias="format"),
) -> WorkflowPackage:
    """Export a definition as a shareable package."""
    return await package_exporter.export_package(
        def_id,
        version=version,
        include_agents=include_agents,
        include_skills=include_skills,
        export_format=export_format,
    )
