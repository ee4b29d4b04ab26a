"""
Pytest configuration and shared fixtures for ZapFlow tests.
"""
import pytest
from typing import Dict, Any, List, Optional, Tuple
from unittest.mock import AsyncMock

from zapflow.flow.engine import FlowEngine
from zapflow.flow.errors import MessageDeliveryError
from zapflow.flow.executor import FlowExecutor
from zapflow.models.message import InboundMessage, OutboundPayload
from zapflow.services.external_api import ApiResponse
from zapflow.services.registry import TenantRegistry
from zapflow.services.store import InMemoryFlowStore
from zapflow.services.transport import MessagingTransport

TENANT_ID = "tenant-1"
CONTACT_ID = "5511999998888"
INSTANCE_TOKEN = "instance-token-1"


class RecordingTransport(MessagingTransport):
    """Transport double that keeps every payload it was asked to send."""

    def __init__(self, fail: bool = False):
        self.sent: List[Tuple[str, OutboundPayload]] = []
        self.fail = fail
        self.closed = False

    async def send(self, contact_id: str, payload: OutboundPayload) -> Dict[str, Any]:
        if self.fail:
            raise MessageDeliveryError("channel offline")
        self.sent.append((contact_id, payload))
        return {"success": True}

    @property
    def payloads(self) -> List[OutboundPayload]:
        return [payload for _, payload in self.sent]

    @property
    def texts(self) -> List[str]:
        """Text of every payload (body text for interactive messages)."""
        return [getattr(payload, "text", None) or getattr(payload, "caption", "") for payload in self.payloads]

    def clear(self) -> None:
        self.sent.clear()

    async def close(self) -> None:
        self.closed = True


def build_flow(
    nodes: List[Dict[str, Any]],
    edges: List[Dict[str, Any]],
    flow_id: str = "flow-1",
    keyword: Optional[str] = "start",
    status: str = "active",
    **extra: Any
) -> Dict[str, Any]:
    """Flow record in the shape the editor saves."""
    flow = {
        "id": flow_id,
        "tenant_id": TENANT_ID,
        "name": f"Flow {flow_id}",
        "status": status,
        "elements": {"nodes": nodes, "edges": edges},
    }
    if keyword is not None:
        flow["trigger_type"] = "keyword"
        flow["trigger_config"] = {"keywords": [keyword]}
    flow.update(extra)
    return flow


def chain(*node_ids: str) -> List[Dict[str, Any]]:
    """Default edges connecting the given nodes in order."""
    return [
        {"id": f"e-{source}-{target}", "source": source, "target": target}
        for source, target in zip(node_ids, node_ids[1:])
    ]


@pytest.fixture
def make_flow():
    """Factory for flow records."""
    return build_flow


@pytest.fixture
def make_chain():
    """Factory for linear edge lists."""
    return chain


@pytest.fixture
def inbound():
    """Factory for inbound messages from the default contact."""
    def _inbound(text: str = "", reply_id: Optional[str] = None, contact_id: str = CONTACT_ID) -> InboundMessage:
        return InboundMessage(contact_id=contact_id, text=text, reply_id=reply_id, sender_name="Bob")
    return _inbound


@pytest.fixture
def greeting_flow() -> Dict[str, Any]:
    """trigger(start) -> "Hi" -> ask name -> "Hello {{name}}" -> end"""
    nodes = [
        {"id": "trigger", "type": "trigger", "data": {"label": "Start"}},
        {"id": "hi", "type": "textMessage", "data": {"message": "Hi"}},
        {
            "id": "ask_name",
            "type": "question",
            "data": {"questionText": "What is your name?", "variableToStoreAnswer": "name"}
        },
        {"id": "hello", "type": "textMessage", "data": {"message": "Hello {{name}}"}},
        {"id": "end", "type": "end", "data": {}},
    ]
    return build_flow(nodes, chain("trigger", "hi", "ask_name", "hello", "end"))


@pytest.fixture
def store() -> InMemoryFlowStore:
    """Empty in-memory store."""
    return InMemoryFlowStore()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def failing_transport() -> RecordingTransport:
    """Transport whose channel rejects every message."""
    return RecordingTransport(fail=True)


@pytest.fixture
def api_client() -> AsyncMock:
    """External API double returning an empty JSON object."""
    client = AsyncMock()
    client.request.return_value = ApiResponse(status=200, data={})
    return client


@pytest.fixture
def ai_client() -> AsyncMock:
    """AI double with canned answers."""
    client = AsyncMock()
    client.generate.return_value = "generated text"
    client.decide.return_value = "yes"
    return client


@pytest.fixture
def registry(transport) -> TenantRegistry:
    registry = TenantRegistry()
    registry.register(TENANT_ID, transport, token=INSTANCE_TOKEN)
    return registry


@pytest.fixture
def executor(store, api_client, ai_client) -> FlowExecutor:
    return FlowExecutor(store, api_client, ai_client, max_steps=50, call_timeout=5)


@pytest.fixture
def engine(store, registry, executor) -> FlowEngine:
    return FlowEngine(store, registry, executor)

