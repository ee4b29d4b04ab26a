"""
Flow Graph - id-indexed nodes and outgoing edges, validated once at load
"""
import logging
from typing import Optional, Any, Dict, List, Union

from pydantic import ValidationError

from ..models.flow import (
    Flow, FlowElements, FlowNode, FlowEdge,
    SUCCESS_HANDLE, ERROR_HANDLE
)
from .errors import GraphValidationError

logger = logging.getLogger(__name__)


class FlowGraph:
    """
    Read-only view over a flow definition.

    Built once per step: nodes are indexed by id and edges by source node,
    so traversal never scans the raw lists. Referential integrity is checked
    on construction.
    """

    def __init__(
        self,
        nodes: List[FlowNode],
        edges: List[FlowEdge],
        flow_id: Optional[str] = None
    ):
        self.flow_id = flow_id
        self.nodes: List[FlowNode] = list(nodes)
        self.edges: List[FlowEdge] = list(edges)
        self.nodes_by_id: Dict[str, FlowNode] = {}
        self.outgoing: Dict[str, List[FlowEdge]] = {}
        self.incoming_count: Dict[str, int] = {}

        problems: List[str] = []

        for node in self.nodes:
            if node.id in self.nodes_by_id:
                problems.append(f"Duplicate node id '{node.id}'")
                continue
            self.nodes_by_id[node.id] = node
            self.outgoing[node.id] = []
            self.incoming_count[node.id] = 0

        for edge in self.edges:
            if edge.source not in self.nodes_by_id:
                problems.append(f"Edge '{edge.id}' references unknown source '{edge.source}'")
                continue
            if edge.target not in self.nodes_by_id:
                problems.append(f"Edge '{edge.id}' references unknown target '{edge.target}'")
                continue
            self.outgoing[edge.source].append(edge)
            self.incoming_count[edge.target] += 1

        if problems:
            raise GraphValidationError("Invalid flow graph", problems, flow_id=flow_id)

    # ==================== Construction ====================

    @classmethod
    def from_elements(
        cls,
        elements: Union[FlowElements, Dict[str, Any]],
        flow_id: Optional[str] = None
    ) -> "FlowGraph":
        """Build from the persisted {nodes, edges} shape"""
        if not isinstance(elements, FlowElements):
            try:
                elements = FlowElements.model_validate(elements or {})
            except ValidationError as e:
                problems = [
                    f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
                    for err in e.errors()
                ]
                raise GraphValidationError("Invalid flow definition", problems, flow_id=flow_id) from e

        return cls(elements.nodes, elements.edges, flow_id=flow_id)

    @classmethod
    def from_flow(cls, flow: Flow) -> "FlowGraph":
        return cls(flow.elements.nodes, flow.elements.edges, flow_id=flow.id)

    # ==================== Lookup ====================

    def get_node(self, node_id: Optional[str]) -> Optional[FlowNode]:
        if node_id is None:
            return None
        return self.nodes_by_id.get(node_id)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self.nodes_by_id

    def __len__(self) -> int:
        return len(self.nodes_by_id)

    def edges_from(self, node_id: str) -> List[FlowEdge]:
        return self.outgoing.get(node_id, [])

    def root_nodes(self) -> List[FlowNode]:
        """Nodes with no incoming edge, in declaration order"""
        return [node for node in self.nodes_by_id.values() if self.incoming_count[node.id] == 0]

    def start_node(self) -> FlowNode:
        """
        The single node with zero incoming edges.

        Raises:
            GraphValidationError: when there is no such node or more than one
        """
        roots = self.root_nodes()
        if len(roots) != 1:
            found = ", ".join(node.id for node in roots) or "none"
            raise GraphValidationError(
                "Flow must have exactly one start node",
                [f"Nodes without incoming edges: {found}"],
                flow_id=self.flow_id
            )
        return roots[0]

    # ==================== Edge resolution ====================

    def target_for_handle(self, node_id: str, handle: str) -> Optional[str]:
        for edge in self.edges_from(node_id):
            if edge.source_handle == handle:
                return edge.target
        return None

    def next_node_id(
        self,
        node_id: str,
        handle: Optional[str] = None,
        fallback: bool = True
    ) -> Optional[str]:
        """
        Resolve the next node from `node_id`.

        Args:
            node_id: Source node
            handle: Typed output handle (button id, branch id...)
            fallback: When the handle has no edge, use the default edge

        Without a handle the default (unlabeled) edge is used. Failing that,
        a node with a single non-error edge follows it whatever its label.
        A typed handle never borrows a sibling handle's edge.
        """
        if handle is not None:
            target = self.target_for_handle(node_id, handle)
            if target is not None or not fallback:
                return target

        edges = self.edges_from(node_id)
        for edge in edges:
            if edge.is_default:
                return edge.target

        if handle is None:
            labelled = [edge for edge in edges if edge.source_handle != ERROR_HANDLE]
            if len(labelled) == 1:
                return labelled[0].target

        return None

    def resolve_action(
        self,
        node_id: str,
        succeeded: bool,
        handle: Optional[str] = None
    ) -> Optional[str]:
        """
        Next node after an action node ran.

        Failure only follows the error handle. Success tries the explicit
        handle, then the success handle, then the default edge. A handle
        with no edge of its own ends the path instead of taking another
        handle's edge.
        """
        if not succeeded:
            return self.target_for_handle(node_id, ERROR_HANDLE)

        if handle is not None:
            target = self.target_for_handle(node_id, handle)
            if target is not None:
                return target

        target = self.target_for_handle(node_id, SUCCESS_HANDLE)
        if target is not None:
            return target

        return self.next_node_id(node_id, handle)

    def __repr__(self) -> str:
        return f"FlowGraph(flow={self.flow_id}, nodes={len(self.nodes_by_id)}, edges={len(self.edges)})"
