"""Tests for the Graph value type."""

import pytest
from pydantic import ValidationError

from workflow_manager.errors import (
    DuplicateEdgeError,
    DuplicateNodeError,
    EdgeNotFoundError,
    EndpointNotFoundError,
    NodeNotFoundError,
    WorkflowValidationError,
)
from workflow_manager.models import Edge, EdgeKind, Graph, Node, NodeKind, NodePosition


def make_graph() -> Graph:
    return Graph(
        nodes=[
            Node(id="n1", type=NodeKind.PLANNING, data={"name": "Outline"}),
            Node(id="n2", type=NodeKind.WRITING),
            Node(id="n3", type=NodeKind.GATE),
        ],
        edges=[
            Edge(id="e1", source="n1", target="n2"),
            Edge(id="e2", source="n2", target="n3", label="done"),
        ],
    )


class TestGraphValidation:
    """Tests for structural validation on construction."""

    def test_valid_graph(self):
        graph = make_graph()
        assert graph.node_ids() == {"n1", "n2", "n3"}
        assert len(graph.edges) == 2

    def test_duplicate_node_ids_rejected(self):
        with pytest.raises(ValidationError):
            Graph(nodes=[{"id": "a", "type": "code"}, {"id": "a", "type": "http"}])

    def test_dangling_edge_rejected(self):
        with pytest.raises(ValidationError):
            Graph(
                nodes=[{"id": "a", "type": "code"}],
                edges=[{"id": "e", "source": "a", "target": "missing"}],
            )

    def test_unknown_node_type_rejected(self):
        with pytest.raises(ValidationError):
            Graph(nodes=[{"id": "a", "type": "teleport"}])

    def test_extra_node_keys_preserved(self):
        graph = Graph.model_validate(
            {"nodes": [{"id": "a", "type": "code", "width": 240}]}
        )
        assert graph.to_document()["nodes"][0]["width"] == 240

    def test_display_name_falls_back_to_id(self):
        graph = make_graph()
        assert graph.get_node("n1").display_name == "Outline"
        assert graph.get_node("n2").display_name == "n2"


class TestNodeMutations:
    """Tests for copy-on-write node mutations."""

    def test_with_node_appends_without_touching_original(self):
        graph = make_graph()
        updated = graph.with_node(Node(id="n4", type=NodeKind.FILE))

        assert updated.node_ids() == {"n1", "n2", "n3", "n4"}
        assert graph.node_ids() == {"n1", "n2", "n3"}

    def test_with_node_duplicate(self):
        with pytest.raises(DuplicateNodeError):
            make_graph().with_node(Node(id="n1", type=NodeKind.CODE))

    def test_update_is_shallow_merge(self):
        graph = make_graph()
        updated = graph.with_node_updated("n1", {"data": {"agent": "planner"}})

        # data is replaced wholesale, not deep-merged
        assert updated.get_node("n1").data == {"agent": "planner"}
        assert updated.get_node("n1").type == NodeKind.PLANNING

    def test_update_missing_node(self):
        with pytest.raises(NodeNotFoundError):
            make_graph().with_node_updated("nope", {"data": {}})

    def test_update_cannot_change_id(self):
        with pytest.raises(WorkflowValidationError):
            make_graph().with_node_updated("n1", {"id": "other"})

    def test_update_with_invalid_type(self):
        with pytest.raises(WorkflowValidationError):
            make_graph().with_node_updated("n1", {"type": "teleport"})

    def test_without_node_cascades_edges(self):
        graph, removed = make_graph().without_node("n2")

        assert graph.node_ids() == {"n1", "n3"}
        assert graph.edges == []
        assert sorted(removed) == ["e1", "e2"]

    def test_without_missing_node(self):
        with pytest.raises(NodeNotFoundError):
            make_graph().without_node("nope")

    def test_with_positions_ignores_unknown_ids(self):
        graph, moved = make_graph().with_positions(
            {"n1": NodePosition(x=10, y=20), "ghost": NodePosition(x=1, y=1)}
        )
        assert moved == 1
        assert graph.get_node("n1").position == NodePosition(x=10, y=20)


class TestEdgeMutations:
    """Tests for copy-on-write edge mutations."""

    def test_with_edge(self):
        graph = make_graph().with_edge(
            Edge(id="e3", source="n3", target="n1", type=EdgeKind.LOOP_BACK)
        )
        assert graph.get_edge("e3").type == EdgeKind.LOOP_BACK
        assert {e.id for e in graph.edges_touching("n3")} == {"e2", "e3"}

    def test_with_edge_missing_endpoint(self):
        with pytest.raises(EndpointNotFoundError) as exc_info:
            make_graph().with_edge(Edge(id="e3", source="n3", target="n9"))
        assert exc_info.value.missing == ["n9"]

    def test_missing_endpoint_checked_before_duplicate(self):
        with pytest.raises(EndpointNotFoundError):
            make_graph().with_edge(Edge(id="e1", source="n1", target="n9"))

    def test_with_edge_duplicate(self):
        with pytest.raises(DuplicateEdgeError):
            make_graph().with_edge(Edge(id="e1", source="n1", target="n3"))

    def test_update_edge_retarget_checks_endpoints(self):
        with pytest.raises(EndpointNotFoundError):
            make_graph().with_edge_updated("e1", {"target": "n9"})

    def test_update_edge_label(self):
        graph = make_graph().with_edge_updated("e2", {"label": "approved"})
        assert graph.get_edge("e2").label == "approved"
        assert graph.get_edge("e2").source == "n2"

    def test_without_edge(self):
        graph = make_graph().without_edge("e1")
        assert [e.id for e in graph.edges] == ["e2"]

    def test_without_missing_edge(self):
        with pytest.raises(EdgeNotFoundError):
            make_graph().without_edge("e9")


class TestSerialization:
    def test_document_round_trip(self):
        graph = make_graph()
        assert Graph.model_validate(graph.to_document()) == graph

    def test_document_drops_empty_optionals(self):
        doc = make_graph().to_document()
        assert "position" not in doc["nodes"][0]
        assert "label" not in doc["edges"][0]
        assert doc["edges"][1]["label"] == "done"
