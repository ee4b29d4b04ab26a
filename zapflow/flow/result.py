"""
Flow Result - data classes describing node outcomes and per-message step results
"""
from dataclasses import dataclass, field
from typing import Optional, Any, Dict, List
from datetime import datetime
from enum import Enum


class StepStatus(str, Enum):
    """How a single inbound-message turn finished"""
    AWAITING_INPUT = "awaiting_input"   # parked at a waiting node
    DELAYED = "delayed"                 # parked at a delay node
    ENDED = "ended"                     # end node or dead end, state deleted
    STALLED = "stalled"                 # reply did not match, nothing changed
    IGNORED = "ignored"                 # no session and no trigger matched
    ERROR = "error"                     # structural error, message dropped


@dataclass
class NodeOutcome:
    """
    Result of running one action/control node.

    `handle` is the output the node selected (branch id, outcome handle);
    `succeeded=False` routes through the error handle.
    """
    succeeded: bool = True
    handle: Optional[str] = None
    error: Optional[str] = None
    ends_flow: bool = False
    # When False, the handle is authoritative and no default edge is used
    allow_fallback: bool = True
    # Set by delay nodes; the turn suspends until then
    resume_at: Optional[datetime] = None


def success_outcome(handle: Optional[str] = None) -> NodeOutcome:
    return NodeOutcome(succeeded=True, handle=handle)


def branch_outcome(handle: Optional[str]) -> NodeOutcome:
    """Condition result: only the selected branch edge is followed"""
    return NodeOutcome(succeeded=True, handle=handle, allow_fallback=False)


def failure_outcome(error: str) -> NodeOutcome:
    return NodeOutcome(succeeded=False, error=error)


def end_outcome() -> NodeOutcome:
    return NodeOutcome(succeeded=True, ends_flow=True)


@dataclass
class StepResult:
    """Result of processing one inbound message (or one delay resume)"""

    status: StepStatus
    flow_id: Optional[str] = None
    current_node_id: Optional[str] = None
    is_new_session: bool = False
    executed_nodes: List[str] = field(default_factory=list)
    messages_sent: int = 0
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def is_error(self) -> bool:
        return self.status == StepStatus.ERROR

    def is_suspended(self) -> bool:
        return self.status in (StepStatus.AWAITING_INPUT, StepStatus.DELAYED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "flow_id": self.flow_id,
            "current_node_id": self.current_node_id,
            "is_new_session": self.is_new_session,
            "executed_nodes": self.executed_nodes,
            "messages_sent": self.messages_sent,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        status = self.status.value if not self.error else f"{self.status.value}: {self.error}"
        return f"StepResult({status}, flow={self.flow_id}, node={self.current_node_id})"


def ignored_result() -> StepResult:
    return StepResult(status=StepStatus.IGNORED)


def error_result(error: str, flow_id: Optional[str] = None) -> StepResult:
    return StepResult(status=StepStatus.ERROR, flow_id=flow_id, error=error)
