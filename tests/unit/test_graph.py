"""
Unit tests for FlowGraph loading and edge resolution.
"""
import pytest

from zapflow.flow.errors import GraphValidationError
from zapflow.flow.graph import FlowGraph
from zapflow.models.flow import NodeType, TextMessageNode, QuestionNode, Flow


@pytest.fixture
def branching_graph():
    """Buttons node with typed handles plus an api node with success/error edges."""
    return FlowGraph.from_elements({
        "nodes": [
            {"id": "t", "type": "trigger"},
            {"id": "menu", "type": "buttonsMessage", "data": {
                "bodyText": "Pick one",
                "buttons": [{"id": "a", "title": "A"}, {"id": "b", "title": "B"}]
            }},
            {"id": "api", "type": "apiCall", "data": {"apiUrl": "https://x"}},
            {"id": "ok", "type": "textMessage", "data": {"message": "ok"}},
            {"id": "bad", "type": "textMessage", "data": {"message": "bad"}},
            {"id": "other", "type": "textMessage", "data": {"message": "other"}},
        ],
        "edges": [
            {"id": "e1", "source": "t", "target": "menu"},
            {"id": "e2", "source": "menu", "target": "api", "sourceHandle": "a"},
            {"id": "e3", "source": "menu", "target": "other", "sourceHandle": "default"},
            {"id": "e4", "source": "api", "target": "ok", "sourceHandle": "source-success"},
            {"id": "e5", "source": "api", "target": "bad", "sourceHandle": "source-error"},
        ],
    }, flow_id="f1")


class TestLoading:
    """Tests for graph construction."""

    def test_nodes_indexed_by_id(self, branching_graph):
        assert "menu" in branching_graph
        assert len(branching_graph) == 6
        assert branching_graph.get_node("missing") is None

    def test_typed_nodes(self):
        """Nodes are parsed into the class of their type."""
        graph = FlowGraph.from_elements({
            "nodes": [
                {"id": "1", "type": "textMessage", "data": {"message": "Hi"}},
                {"id": "2", "type": "question", "data": {"questionText": "Name?", "variableToSave": "name"}},
            ],
            "edges": [{"id": "e", "source": "1", "target": "2"}],
        })

        assert isinstance(graph.get_node("1"), TextMessageNode)
        question = graph.get_node("2")
        assert isinstance(question, QuestionNode)
        assert question.data.variable_to_store_answer == "name"
        assert question.is_waiting

    def test_legacy_type_names(self):
        """Editor names with a Node suffix are normalized."""
        graph = FlowGraph.from_elements({
            "nodes": [
                {"id": "1", "type": "startNode"},
                {"id": "2", "type": "externalDataFetchNode", "data": {"dataSourceUrl": "https://x"}},
                {"id": "3", "type": "textMessageNode", "data": {"text": "Hi"}},
            ],
            "edges": [],
        })

        assert graph.get_node("1").node_type == NodeType.TRIGGER
        assert graph.get_node("2").node_type == NodeType.EXTERNAL_DATA
        assert graph.get_node("3").data.message == "Hi"

    def test_unknown_node_type_rejected(self):
        with pytest.raises(GraphValidationError) as exc_info:
            FlowGraph.from_elements({"nodes": [{"id": "1", "type": "teleport"}], "edges": []}, flow_id="f1")

        assert exc_info.value.flow_id == "f1"
        assert exc_info.value.problems

    def test_dangling_edge_rejected(self):
        with pytest.raises(GraphValidationError) as exc_info:
            FlowGraph.from_elements({
                "nodes": [{"id": "1", "type": "trigger"}],
                "edges": [{"id": "e", "source": "1", "target": "ghost"}],
            })

        assert "ghost" in str(exc_info.value)

    def test_duplicate_node_id_rejected(self):
        with pytest.raises(GraphValidationError):
            FlowGraph.from_elements({
                "nodes": [{"id": "1", "type": "trigger"}, {"id": "1", "type": "end"}],
                "edges": [],
            })

    def test_from_flow(self, make_flow, greeting_flow):
        flow = Flow.model_validate(greeting_flow)
        graph = FlowGraph.from_flow(flow)

        assert graph.flow_id == "flow-1"
        assert graph.start_node().id == "trigger"


class TestStartNode:
    """Tests for start node detection."""

    def test_single_root(self, branching_graph):
        assert branching_graph.start_node().id == "t"

    def test_two_roots_rejected(self):
        graph = FlowGraph.from_elements({
            "nodes": [{"id": "a", "type": "trigger"}, {"id": "b", "type": "end"}],
            "edges": [],
        })

        with pytest.raises(GraphValidationError):
            graph.start_node()

    def test_no_root_rejected(self):
        graph = FlowGraph.from_elements({
            "nodes": [{"id": "a", "type": "textMessage"}, {"id": "b", "type": "textMessage"}],
            "edges": [
                {"id": "e1", "source": "a", "target": "b"},
                {"id": "e2", "source": "b", "target": "a"},
            ],
        })

        with pytest.raises(GraphValidationError):
            graph.start_node()


class TestEdgeResolution:
    """Tests for next-node resolution."""

    def test_handle_edge(self, branching_graph):
        assert branching_graph.next_node_id("menu", "a") == "api"

    def test_unknown_handle_falls_back_to_default(self, branching_graph):
        assert branching_graph.next_node_id("menu", "b") == "other"

    def test_unknown_handle_without_fallback(self, branching_graph):
        assert branching_graph.next_node_id("menu", "b", fallback=False) is None

    def test_default_edge_without_handle(self, branching_graph):
        assert branching_graph.next_node_id("t") == "menu"

    def test_success_handle(self, branching_graph):
        assert branching_graph.resolve_action("api", True) == "ok"

    def test_error_handle(self, branching_graph):
        assert branching_graph.resolve_action("api", False) == "bad"

    def test_failure_without_error_edge(self, branching_graph):
        """Failures never follow default edges."""
        assert branching_graph.resolve_action("menu", False) is None

    def test_success_never_takes_error_edge(self):
        graph = FlowGraph.from_elements({
            "nodes": [{"id": "a", "type": "apiCall"}, {"id": "b", "type": "end"}],
            "edges": [{"id": "e", "source": "a", "target": "b", "sourceHandle": "source-error"}],
        })

        assert graph.resolve_action("a", True) is None

    def test_dead_end(self, branching_graph):
        assert branching_graph.next_node_id("ok") is None

    def test_typed_handle_never_takes_sibling_edge(self):
        """A reply with no edge of its own ends the path even when other replies are wired."""
        graph = FlowGraph.from_elements({
            "nodes": [
                {"id": "menu", "type": "buttonsMessage", "data": {
                    "bodyText": "Pick one",
                    "buttons": [{"id": "a", "title": "A"}, {"id": "b", "title": "B"}]
                }},
                {"id": "b_branch", "type": "end"},
            ],
            "edges": [{"id": "e", "source": "menu", "target": "b_branch", "sourceHandle": "b"}],
        })

        assert graph.resolve_action("menu", True, "a") is None
        assert graph.next_node_id("menu", "a") is None
        assert graph.resolve_action("menu", True, "b") == "b_branch"

    def test_single_labelled_edge_followed_without_handle(self):
        graph = FlowGraph.from_elements({
            "nodes": [{"id": "a", "type": "setVariable"}, {"id": "b", "type": "end"}],
            "edges": [{"id": "e", "source": "a", "target": "b", "sourceHandle": "out"}],
        })

        assert graph.resolve_action("a", True) == "b"

    def test_several_labelled_edges_not_guessed_without_handle(self):
        """Without a handle, a choice between labelled edges is not made for the operator."""
        graph = FlowGraph.from_elements({
            "nodes": [{"id": "a", "type": "setVariable"}, {"id": "b", "type": "end"}, {"id": "c", "type": "end"}],
            "edges": [
                {"id": "e1", "source": "a", "target": "b", "sourceHandle": "x"},
                {"id": "e2", "source": "a", "target": "c", "sourceHandle": "y"},
            ],
        })

        assert graph.resolve_action("a", True) is None
