"""
Flow Validator - structural validation plus non-fatal lint of flow definitions
"""
import re
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import List, Dict, Any, Set, Optional, Union
from datetime import datetime

from ..models.flow import (
    FlowElements, FlowNode,
    TextMessageNode, MediaMessageNode, ButtonsMessageNode, ListMessageNode,
    QuestionNode, ConditionNode, ApiCallNode, ExternalDataNode,
    GptQueryNode, AiDecisionNode, TagContactNode
)
from .errors import GraphValidationError
from .evaluator import ConditionEvaluator
from .graph import FlowGraph, ERROR_HANDLE

logger = logging.getLogger(__name__)


class FlowValidationError:
    """Represents a validation problem"""

    def __init__(
        self,
        code: str,
        message: str,
        node_id: Optional[str] = None,
        severity: str = "error"  # error, warning
    ):
        self.code = code
        self.message = message
        self.node_id = node_id
        self.severity = severity
        self.timestamp = datetime.now()

    @property
    def is_error(self) -> bool:
        return self.severity == "error"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "node_id": self.node_id,
            "severity": self.severity,
            "timestamp": self.timestamp.isoformat()
        }

    def __str__(self) -> str:
        node_info = f" [Node: {self.node_id}]" if self.node_id else ""
        return f"[{self.severity.upper()}] {self.code}: {self.message}{node_info}"


@dataclass
class ValidationReport:
    """Outcome of validating one flow definition"""
    start_node_id: Optional[str] = None
    problems: List[FlowValidationError] = field(default_factory=list)

    @property
    def errors(self) -> List[FlowValidationError]:
        return [p for p in self.problems if p.is_error]

    @property
    def warnings(self) -> List[FlowValidationError]:
        return [p for p in self.problems if not p.is_error]

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.is_valid,
            "start_node_id": self.start_node_id,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


class FlowValidator:
    """
    Validates flow definitions before they are activated.

    Errors are the same conditions that make the engine refuse a flow
    (bad node data, dangling edges, not exactly one start node). Warnings
    flag definitions that load but will probably misbehave.
    """

    @classmethod
    def validate(
        cls,
        elements: Union[FlowElements, Dict[str, Any]],
        flow_id: Optional[str] = None
    ) -> ValidationReport:
        """
        Validate a flow definition.

        Args:
            elements: `{nodes, edges}` as stored by the flow editor
            flow_id: Used in log messages only

        Returns:
            ValidationReport with errors and warnings
        """
        report = ValidationReport()

        try:
            graph = FlowGraph.from_elements(elements, flow_id=flow_id)
            start = graph.start_node()
        except GraphValidationError as e:
            report.problems.extend(
                FlowValidationError("INVALID_GRAPH", problem) for problem in e.problems
            )
            logger.info(f"Flow {flow_id or '?'} rejected: {e}")
            return report

        report.start_node_id = start.id
        report.problems.extend(cls._detect_unreachable_nodes(graph, start.id))

        for node in graph.nodes_by_id.values():
            report.problems.extend(cls._lint_node(graph, node))

        return report

    @classmethod
    def _detect_unreachable_nodes(cls, graph: FlowGraph, start_node_id: str) -> List[FlowValidationError]:
        """Nodes that cannot be reached from the start node"""
        reachable: Set[str] = set()
        queue = deque([start_node_id])

        while queue:
            current = queue.popleft()
            if current in reachable:
                continue
            reachable.add(current)
            for edge in graph.edges_from(current):
                if edge.target not in reachable:
                    queue.append(edge.target)

        return [
            FlowValidationError(
                "UNREACHABLE_NODE",
                f"Node '{node_id}' is never reached from the start node",
                node_id=node_id,
                severity="warning"
            )
            for node_id in graph.nodes_by_id
            if node_id not in reachable
        ]

    @classmethod
    def _lint_node(cls, graph: FlowGraph, node: FlowNode) -> List[FlowValidationError]:
        problems: List[FlowValidationError] = []

        def warn(code: str, message: str) -> None:
            problems.append(FlowValidationError(code, message, node_id=node.id, severity="warning"))

        edges = graph.edges_from(node.id)

        if node.is_waiting and not any(e.source_handle != ERROR_HANDLE for e in edges):
            warn("WAITING_DEAD_END", "Waiting node has no outgoing edge, the reply will end the flow")

        if isinstance(node, TextMessageNode) and not node.data.message.strip():
            warn("EMPTY_MESSAGE", "Text message is empty")

        elif isinstance(node, MediaMessageNode) and not (node.data.media_url or "").strip():
            warn("MISSING_URL", "Media message has no URL")

        elif isinstance(node, ButtonsMessageNode):
            if not node.data.buttons:
                warn("NO_OPTIONS", "Buttons message has no buttons")
            if not node.data.body_text.strip():
                warn("EMPTY_MESSAGE", "Buttons message has no body text")

        elif isinstance(node, ListMessageNode) and not node.data.rows():
            warn("NO_OPTIONS", "List message has no rows")

        elif isinstance(node, QuestionNode):
            if not node.data.question_text.strip():
                warn("EMPTY_MESSAGE", "Question has no text")
            if node.data.validation_regex:
                try:
                    re.compile(node.data.validation_regex)
                except re.error as e:
                    warn("INVALID_REGEX", f"validationRegex does not compile: {e}")

        elif isinstance(node, ConditionNode):
            cls._lint_condition(node, warn)

        elif isinstance(node, (ApiCallNode, ExternalDataNode)):
            url = node.data.api_url if isinstance(node, ApiCallNode) else node.data.data_source_url
            if not url.strip():
                warn("MISSING_URL", "Request node has no URL")

        elif isinstance(node, GptQueryNode) and not node.data.prompt_template.strip():
            warn("EMPTY_PROMPT", "GPT query has no prompt")

        elif isinstance(node, AiDecisionNode) and not node.data.category_values():
            warn("NO_OPTIONS", "AI decision has no outcomes")

        elif isinstance(node, TagContactNode) and not node.data.tag_name.strip():
            warn("MISSING_TAG", "Tag node has no tag name")

        return problems

    @staticmethod
    def _lint_condition(node: ConditionNode, warn) -> None:
        data = node.data

        if not data.branch_configs and not data.variable_to_check:
            warn("EMPTY_CONDITION", "Condition has no branches")
            return

        for branch in data.branch_configs:
            if not branch.rules:
                warn("EMPTY_BRANCH", f"Branch '{branch.handle_id}' has no rules and never matches")
            for rule in branch.rules:
                if not ConditionEvaluator.is_known_operator(rule.operator):
                    warn("UNKNOWN_OPERATOR", f"Unknown operator '{rule.operator}' in branch '{branch.handle_id}'")

        if data.operator and data.variable_to_check and not ConditionEvaluator.is_known_operator(data.operator):
            warn("UNKNOWN_OPERATOR", f"Unknown operator '{data.operator}'")


def validate_flow(
    elements: Union[FlowElements, Dict[str, Any]],
    flow_id: Optional[str] = None
) -> ValidationReport:
    """Convenience function to validate a flow"""
    return FlowValidator.validate(elements, flow_id)
