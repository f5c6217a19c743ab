"""GraphEditor - structural edits to a definition's current graph.

Every edit is a whole-document read-modify-write on the current definition
row:

1. load the row inside a transaction,
2. refuse if the row's (id, version) is locked and lock enforcement is on,
3. refuse if the caller's ``expected_revision`` is stale,
4. apply a copy-on-write change to the ``Graph`` value,
5. write the new document back guarded by the revision that was read.

Edits never create version snapshots; see ``DefinitionStore.create_version``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from workflow_manager import config
from workflow_manager.db.database import transaction
from workflow_manager.errors import (
    ConcurrentModificationError,
    VersionLockedError,
    WorkflowValidationError,
)
from workflow_manager.models import (
    Edge,
    EdgeKind,
    Graph,
    Node,
    NodeKind,
    NodePosition,
    WorkflowDefinition,
)

if TYPE_CHECKING:
    from workflow_manager.db.definition_store import DefinitionStore

logger = logging.getLogger(__name__)


class GraphEditResult(BaseModel):
    """Outcome of a graph edit."""

    workflow_def_id: str
    version: str
    revision: int
    node_count: int
    edge_count: int
    removed_edge_ids: list[str] = []
    moved_nodes: int = 0


class GraphEditor:
    """Applies node and edge edits to a definition's current graph.

    Example:
        editor = GraphEditor(definition_store)
        await editor.add_node("pipeline-x", "n4", NodeKind.WRITING, {"name": "Draft"})
        await editor.create_edge("pipeline-x", "e3", "n3", "n4")
    """

    def __init__(
        self, store: DefinitionStore, enforce_locks: bool | None = None
    ) -> None:
        self._store = store
        self._enforce_locks = (
            config.enforce_version_locks() if enforce_locks is None else enforce_locks
        )

    @property
    def enforces_locks(self) -> bool:
        return self._enforce_locks

    async def _edit(
        self,
        def_id: str,
        change: Callable[[Graph], Graph],
        expected_revision: int | None,
        action: str,
    ) -> WorkflowDefinition:
        async with transaction() as db:
            row_id, definition = await self._store.load_current(db, def_id)

            if self._enforce_locks:
                lock = await self._store.get_lock(def_id, definition.version, db=db)
                if lock is not None:
                    raise VersionLockedError(
                        f"Workflow {def_id} v{definition.version} is locked by "
                        f"instance {lock.instance_id}; graph edits are blocked",
                        holder=lock.instance_id,
                        workflow_def_id=def_id,
                        version=definition.version,
                    )

            if expected_revision is not None and expected_revision != definition.revision:
                raise ConcurrentModificationError(
                    f"Workflow definition {def_id} is at revision {definition.revision}, "
                    f"expected {expected_revision}",
                    expected=expected_revision,
                    actual=definition.revision,
                    workflow_def_id=def_id,
                )

            graph = change(definition.graph)
            updated = await self._store.write_graph(db, row_id, definition, graph)

        logger.info(f"{action} in workflow {def_id} (revision {updated.revision})")
        return updated

    @staticmethod
    def _result(definition: WorkflowDefinition, **extra: Any) -> GraphEditResult:
        return GraphEditResult(
            workflow_def_id=definition.id,
            version=definition.version,
            revision=definition.revision,
            node_count=len(definition.graph.nodes),
            edge_count=len(definition.graph.edges),
            **extra,
        )

    # ==================== Nodes ====================

    async def add_node(
        self,
        def_id: str,
        node_id: str,
        node_type: NodeKind | str,
        data: dict[str, Any] | None = None,
        position: NodePosition | None = None,
        expected_revision: int | None = None,
    ) -> GraphEditResult:
        """Append a node; fails if the id is already used."""
        try:
            node = Node(id=node_id, type=node_type, data=data or {}, position=position)
        except PydanticValidationError as e:
            raise WorkflowValidationError(
                f"Invalid node {node_id}: {e.errors()[0]['msg']}"
            ) from e
        updated = await self._edit(
            def_id,
            lambda graph: graph.with_node(node),
            expected_revision,
            f"Added node {node_id}",
        )
        return self._result(updated)

    async def update_node(
        self,
        def_id: str,
        node_id: str,
        updates: dict[str, Any],
        expected_revision: int | None = None,
    ) -> GraphEditResult:
        """Shallow-merge ``updates`` into a node.

        Top-level keys replace existing values wholesale; ``data`` is not
        deep-merged.
        """
        updated = await self._edit(
            def_id,
            lambda graph: graph.with_node_updated(node_id, updates),
            expected_revision,
            f"Updated node {node_id}",
        )
        return self._result(updated)

    async def delete_node(
        self,
        def_id: str,
        node_id: str,
        expected_revision: int | None = None,
    ) -> GraphEditResult:
        """Remove a node and every edge that references it."""
        removed: list[str] = []

        def change(graph: Graph) -> Graph:
            new_graph, removed_ids = graph.without_node(node_id)
            removed.extend(removed_ids)
            return new_graph

        updated = await self._edit(
            def_id, change, expected_revision, f"Deleted node {node_id}"
        )
        return self._result(updated, removed_edge_ids=removed)

    async def update_positions(
        self,
        def_id: str,
        positions: dict[str, NodePosition],
        expected_revision: int | None = None,
    ) -> GraphEditResult:
        """Move nodes on the editor canvas; unknown node ids are ignored."""
        moved = 0

        def change(graph: Graph) -> Graph:
            nonlocal moved
            new_graph, moved = graph.with_positions(positions)
            return new_graph

        updated = await self._edit(
            def_id, change, expected_revision, "Updated node positions"
        )
        return self._result(updated, moved_nodes=moved)

    # ==================== Edges ====================

    async def create_edge(
        self,
        def_id: str,
        edge_id: str,
        source: str,
        target: str,
        edge_type: EdgeKind | str = EdgeKind.DEFAULT,
        label: str | None = None,
        condition: str | None = None,
        expected_revision: int | None = None,
    ) -> GraphEditResult:
        """Connect two existing nodes."""
        try:
            edge = Edge(
                id=edge_id,
                source=source,
                target=target,
                type=edge_type,
                label=label,
                condition=condition,
            )
        except PydanticValidationError as e:
            raise WorkflowValidationError(
                f"Invalid edge {edge_id}: {e.errors()[0]['msg']}"
            ) from e
        updated = await self._edit(
            def_id,
            lambda graph: graph.with_edge(edge),
            expected_revision,
            f"Created edge {edge_id} ({source} -> {target})",
        )
        return self._result(updated)

    async def update_edge(
        self,
        def_id: str,
        edge_id: str,
        updates: dict[str, Any],
        expected_revision: int | None = None,
    ) -> GraphEditResult:
        updated = await self._edit(
            def_id,
            lambda graph: graph.with_edge_updated(edge_id, updates),
            expected_revision,
            f"Updated edge {edge_id}",
        )
        return self._result(updated)

    async def delete_edge(
        self,
        def_id: str,
        edge_id: str,
        expected_revision: int | None = None,
    ) -> GraphEditResult:
        updated = await self._edit(
            def_id,
            lambda graph: graph.without_edge(edge_id),
            expected_revision,
            f"Deleted edge {edge_id}",
        )
        return self._result(updated)
