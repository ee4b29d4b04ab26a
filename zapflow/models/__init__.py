from .flow import (
    # Enums and constants
    NodeType,
    TriggerType,
    FlowStatus,
    WAITING_NODE_TYPES,
    SUCCESS_HANDLE,
    ERROR_HANDLE,
    normalize_node_type,

    # Graph
    FlowNode,
    FlowEdge,
    FlowElements,
    Flow,
)
from .state import ExecutionState, ExecutionStatus
from .channel import ChannelConfig
from .message import (
    InboundMessage,
    OutboundPayload,
    TextPayload,
    ButtonsPayload,
    ButtonChoice,
    ListPayload,
    ListChoiceSection,
    ListChoice,
    MediaPayload,
)
from .webhook import WebhookPayload, parse_webhook, extract_phone_from_jid

__all__ = [
    # Flow
    "NodeType", "TriggerType", "FlowStatus", "WAITING_NODE_TYPES",
    "SUCCESS_HANDLE", "ERROR_HANDLE", "normalize_node_type",
    "FlowNode", "FlowEdge", "FlowElements", "Flow",

    # State
    "ExecutionState", "ExecutionStatus", "ChannelConfig",

    # Messages
    "InboundMessage", "OutboundPayload", "TextPayload",
    "ButtonsPayload", "ButtonChoice", "ListPayload",
    "ListChoiceSection", "ListChoice", "MediaPayload",

    # Webhook
    "WebhookPayload", "parse_webhook", "extract_phone_from_jid",
]
