"""Pydantic models for workflow graphs (nodes and edges).

A graph is persisted as a single JSON document. Mutations never modify a
``Graph`` in place: each returns a new value, so a document read from
storage stays intact if a write fails halfway.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from workflow_manager.errors import (
    DuplicateEdgeError,
    DuplicateNodeError,
    EdgeNotFoundError,
    EndpointNotFoundError,
    NodeNotFoundError,
    WorkflowValidationError,
)


class NodeKind(str, Enum):
    """Supported node types in a workflow graph."""

    PLANNING = "planning"
    WRITING = "writing"
    GATE = "gate"
    USER_INPUT = "user-input"
    CODE = "code"
    HTTP = "http"
    FILE = "file"
    CONDITIONAL = "conditional"
    LOOP = "loop"
    SUBWORKFLOW = "subworkflow"


class EdgeKind(str, Enum):
    """Supported edge types."""

    DEFAULT = "default"
    CONDITIONAL = "conditional"
    LOOP_BACK = "loop-back"


class NodePosition(BaseModel):
    """Canvas coordinates used by the visual editor."""

    x: float = 0
    y: float = 0


class Node(BaseModel):
    """A unit of work in a workflow graph."""

    id: str = Field(min_length=1)
    type: NodeKind
    data: dict[str, Any] = Field(default_factory=dict)
    position: NodePosition | None = None

    model_config = {"extra": "allow"}

    @property
    def display_name(self) -> str:
        """Human-readable name, falling back to the node id."""
        name = self.data.get("name")
        return str(name) if name else self.id


class Edge(BaseModel):
    """A directed connection between two nodes."""

    id: str = Field(min_length=1)
    source: str
    target: str
    type: EdgeKind = EdgeKind.DEFAULT
    label: str | None = None
    condition: str | None = None
    animated: bool = False

    model_config = {"extra": "allow"}


def _rebuild(model: type[BaseModel], current: BaseModel, updates: dict[str, Any]) -> Any:
    """Shallow-merge ``updates`` over ``current`` and re-validate."""
    merged = {**current.model_dump(mode="json", exclude_none=True), **updates}
    try:
        return model.model_validate(merged)
    except PydanticValidationError as e:
        raise WorkflowValidationError(
            f"Invalid {model.__name__.lower()} update: {e.errors()[0]['msg']}"
        ) from e


class Graph(BaseModel):
    """Nodes plus the edges between them.

    Node ids and edge ids are unique within the graph, and every edge's
    endpoints reference existing nodes.
    """

    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_structure(self) -> "Graph":
        node_ids: set[str] = set()
        for node in self.nodes:
            if node.id in node_ids:
                raise ValueError(f"Duplicate node id '{node.id}'")
            node_ids.add(node.id)

        edge_ids: set[str] = set()
        for edge in self.edges:
            if edge.id in edge_ids:
                raise ValueError(f"Duplicate edge id '{edge.id}'")
            edge_ids.add(edge.id)
            missing = [end for end in (edge.source, edge.target) if end not in node_ids]
            if missing:
                raise ValueError(
                    f"Edge '{edge.id}' references missing node(s): {', '.join(missing)}"
                )
        return self

    # ==================== Lookups ====================

    def node_ids(self) -> set[str]:
        return {node.id for node in self.nodes}

    def get_node(self, node_id: str) -> Node | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_edge(self, edge_id: str) -> Edge | None:
        for edge in self.edges:
            if edge.id == edge_id:
                return edge
        return None

    def edges_touching(self, node_id: str) -> list[Edge]:
        """Edges whose source or target is ``node_id``."""
        return [e for e in self.edges if e.source == node_id or e.target == node_id]

    # ==================== Copy-on-write mutations ====================

    def with_node(self, node: Node) -> "Graph":
        if self.get_node(node.id) is not None:
            raise DuplicateNodeError(f"Node {node.id} already exists", node_id=node.id)
        return self.model_copy(update={"nodes": [*self.nodes, node]})

    def with_node_updated(self, node_id: str, updates: dict[str, Any]) -> "Graph":
        current = self.get_node(node_id)
        if current is None:
            raise NodeNotFoundError(f"Node {node_id} not found", node_id=node_id)
        if "id" in updates and updates["id"] != node_id:
            raise WorkflowValidationError("Node id cannot be changed", node_id=node_id)

        updated = _rebuild(Node, current, updates)
        nodes = [updated if n.id == node_id else n for n in self.nodes]
        return self.model_copy(update={"nodes": nodes})

    def without_node(self, node_id: str) -> tuple["Graph", list[str]]:
        """Remove a node and cascade every edge referencing it.

        Returns the new graph and the ids of the removed edges.
        """
        if self.get_node(node_id) is None:
            raise NodeNotFoundError(f"Node {node_id} not found", node_id=node_id)

        removed = [e.id for e in self.edges_touching(node_id)]
        nodes = [n for n in self.nodes if n.id != node_id]
        edges = [e for e in self.edges if e.id not in removed]
        return self.model_copy(update={"nodes": nodes, "edges": edges}), removed

    def _check_endpoints(self, source: str, target: str) -> None:
        ids = self.node_ids()
        missing = [end for end in (source, target) if end not in ids]
        if missing:
            raise EndpointNotFoundError(
                f"Edge endpoint(s) not found: {', '.join(missing)}",
                missing=missing,
            )

    def with_edge(self, edge: Edge) -> "Graph":
        self._check_endpoints(edge.source, edge.target)
        if self.get_edge(edge.id) is not None:
            raise DuplicateEdgeError(f"Edge {edge.id} already exists", edge_id=edge.id)
        return self.model_copy(update={"edges": [*self.edges, edge]})

    def with_edge_updated(self, edge_id: str, updates: dict[str, Any]) -> "Graph":
        current = self.get_edge(edge_id)
        if current is None:
            raise EdgeNotFoundError(f"Edge {edge_id} not found", edge_id=edge_id)
        if "id" in updates and updates["id"] != edge_id:
            raise WorkflowValidationError("Edge id cannot be changed", edge_id=edge_id)

        updated = _rebuild(Edge, current, updates)
        if updated.source != current.source or updated.target != current.target:
            self._check_endpoints(updated.source, updated.target)
        edges = [updated if e.id == edge_id else e for e in self.edges]
        return self.model_copy(update={"edges": edges})

    def without_edge(self, edge_id: str) -> "Graph":
        if self.get_edge(edge_id) is None:
            raise EdgeNotFoundError(f"Edge {edge_id} not found", edge_id=edge_id)
        edges = [e for e in self.edges if e.id != edge_id]
        return self.model_copy(update={"edges": edges})

    def with_positions(self, positions: dict[str, NodePosition]) -> tuple["Graph", int]:
        """Apply canvas positions; ids not in the graph are ignored.

        Returns the new graph and the number of nodes moved.
        """
        moved = 0
        nodes = []
        for node in self.nodes:
            if node.id in positions:
                nodes.append(node.model_copy(update={"position": positions[node.id]}))
                moved += 1
            else:
                nodes.append(node)
        return self.model_copy(update={"nodes": nodes}), moved

    # ==================== Serialization ====================

    def to_document(self) -> dict[str, Any]:
        """Serialize to the JSON document stored with the definition."""
        return self.model_dump(mode="json", exclude_none=True)
