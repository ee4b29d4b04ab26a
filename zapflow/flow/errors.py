"""
Flow engine exceptions
"""
from typing import Optional, List


class FlowEngineError(Exception):
    """Base class for flow engine errors"""


class GraphValidationError(FlowEngineError):
    """Flow definition is structurally unusable (bad start node, dangling edge, bad node data)"""

    def __init__(self, message: str, problems: Optional[List[str]] = None, flow_id: Optional[str] = None):
        self.problems = problems or [message]
        self.flow_id = flow_id
        super().__init__(message)

    def __str__(self) -> str:
        flow_info = f" [Flow: {self.flow_id}]" if self.flow_id else ""
        details = "; ".join(self.problems)
        return f"{self.args[0]}{flow_info}: {details}"


class StateNotFoundError(FlowEngineError):
    """Execution state is missing or points at a flow/node that no longer exists"""


class ExternalCallError(FlowEngineError):
    """A collaborator (HTTP API, AI, transport) failed or timed out"""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class MessageDeliveryError(ExternalCallError):
    """The messaging transport could not deliver a payload"""


class CycleDetectedError(FlowEngineError):
    """Too many nodes executed for a single inbound message"""

    def __init__(self, flow_id: str, node_id: str, limit: int):
        self.flow_id = flow_id
        self.node_id = node_id
        self.limit = limit
        super().__init__(
            f"Flow {flow_id} exceeded {limit} steps in one turn (last node: {node_id})"
        )
