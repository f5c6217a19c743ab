"""Graph editing API routes."""

from typing import Any

from fastapi import APIRouter, Query
from pydantic import BaseModel
from pydantic import Field as PydanticField

from workflow_manager.db import definition_store
from workflow_manager.models import EdgeKind, NodeKind, NodePosition
from workflow_manager.services import GraphEditor, GraphEditResult

router = APIRouter()

graph_editor = GraphEditor(definition_store)


class AddNodeRequest(BaseModel):
    """Request to append a node to a definition's graph."""

    id: str
    type: NodeKind
    data: dict[str, Any] = {}
    position: NodePosition | None = None
    expected_revision: int | None = PydanticField(default=None, alias="expectedRevision")

    model_config = {"populate_by_name": True}


class GraphUpdateRequest(BaseModel):
    """Top-level keys to replace on a node or edge."""

    updates: dict[str, Any]
    expected_revision: int | None = PydanticField(default=None, alias="expectedRevision")

    model_config = {"populate_by_name": True}


class PositionsRequest(BaseModel):
    positions: dict[str, NodePosition]
    expected_revision: int | None = PydanticField(default=None, alias="expectedRevision")

    model_config = {"populate_by_name": True}


class CreateEdgeRequest(BaseModel):
    """Request to connect two existing nodes."""

    id: str
    source: str
    target: str
    type: EdgeKind = EdgeKind.DEFAULT
    label: str | None = None
    condition: str | None = None
    expected_revision: int | None = PydanticField(default=None, alias="expectedRevision")

    model_config = {"populate_by_name": True}


# ==================== Nodes ====================


@router.post("/definitions/{def_id}/nodes", status_code=201)
async def add_node(def_id: str, request: AddNodeRequest) -> GraphEditResult:
    return await graph_editor.add_node(
        def_id,
        request.id,
        request.type,
        data=request.data,
        position=request.position,
        expected_revision=request.expected_revision,
    )


@router.patch("/definitions/{def_id}/nodes/{node_id}")
async def update_node(def_id: str, node_id: str, request: GraphUpdateRequest) -> GraphEditResult:
    """Shallow-merge updates into a node."""
    return await graph_editor.update_node(
        def_id, node_id, request.updates, expected_revision=request.expected_revision
    )


@router.delete("/definitions/{def_id}/nodes/{node_id}")
async def delete_node(
    def_id: str,
    node_id: str,
    expected_revision: int | None = Query(None, alias="expectedRevision"),
) -> GraphEditResult:
    """Delete a node and every edge touching it."""
    return await graph_editor.delete_node(def_id, node_id, expected_revision=expected_revision)


@router.put("/definitions/{def_id}/positions")
async def update_positions(def_id: str, request: PositionsRequest) -> GraphEditResult:
    """Move nodes on the canvas."""
    return await graph_editor.update_positions(
        def_id, request.positions, expected_revision=request.expected_revision
    )


# ==================== Edges ====================


@router.post("/definitions/{def_id}/edges", status_code=201)
async def create_edge(def_id: str, request: CreateEdgeRequest) -> GraphEditResult:
    return await graph_editor.create_edge(
        def_id,
        request.id,
        request.source,
        request.target,
        edge_type=request.type,
        label=request.label,
        condition=request.condition,
        expected_revision=request.expected_revision,
    )


@router.patch("/definitions/{def_id}/edges/{edge_id}")
async def update_edge(def_id: str, edge_id: str, request: GraphUpdateRequest) -> GraphEditResult:
    return await graph_editor.update_edge(
        def_id, edge_id, request.updates, expected_revision=request.expected_revision
    )


@router.delete("/definitions/{def_id}/edges/{edge_id}")
async def delete_edge(
    def_id: str,
    edge_id: str,
    expected_revision: int | None = Query(None, alias="expectedRevision"),
) -> GraphEditResult:
    return await graph_editor.delete_edge(def_id, edge_id, expected_revision=expected_revision)
