"""
Flow store - persistence interface the engine needs, plus an in-memory implementation
"""
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Any, Dict, List, Iterable, Set, Tuple, Union

from ..models.flow import Flow
from ..models.state import ExecutionState, ExecutionStatus
from ..models.channel import ChannelConfig
from ..flow.graph import FlowGraph
from ..flow.trigger import TriggerMatcher

logger = logging.getLogger(__name__)


class FlowStore(ABC):
    """
    Storage for flow definitions, execution states and contact tags.

    The engine is the only writer of execution states; callers serialize
    access per (tenant, contact).
    """

    # ==================== EXECUTION STATES ====================

    @abstractmethod
    async def get_state(self, tenant_id: str, contact_id: str) -> Optional[ExecutionState]:
        """Live state for a contact, if any"""

    @abstractmethod
    async def create_state(
        self,
        tenant_id: str,
        contact_id: str,
        flow_id: str,
        start_node_id: str,
        variables: Optional[Dict[str, Any]] = None
    ) -> ExecutionState:
        """Start a conversation at `start_node_id`"""

    @abstractmethod
    async def update_state(self, state_id: str, **changes: Any) -> Optional[ExecutionState]:
        """Apply a partial update (current_node_id, variables, status, resume_at)"""

    @abstractmethod
    async def delete_state(self, state_id: str) -> bool:
        """End a conversation"""

    @abstractmethod
    async def list_due_states(self, now: datetime) -> List[ExecutionState]:
        """Delayed states whose resume time has passed"""

    # ==================== FLOWS ====================

    @abstractmethod
    async def get_flow(self, flow_id: str, tenant_id: str) -> Optional[Flow]:
        """Flow definition owned by the tenant"""

    @abstractmethod
    async def list_flows(self, tenant_id: str) -> List[Flow]:
        """All flow definitions of a tenant"""

    async def get_flow_graph(self, flow_id: str, tenant_id: str) -> Optional[FlowGraph]:
        """Flow definition loaded into an indexed graph"""
        flow = await self.get_flow(flow_id, tenant_id)
        if flow is None:
            return None
        return FlowGraph.from_flow(flow)

    async def find_trigger_flow(self, tenant_id: str, message_text: str) -> Optional[Flow]:
        """Active flow whose trigger matches the text"""
        flows = await self.list_flows(tenant_id)
        return TriggerMatcher.match(flows, message_text)

    # ==================== CONTACTS / CHANNELS ====================

    @abstractmethod
    async def update_contact_tags(
        self,
        tenant_id: str,
        contact_id: str,
        add: Iterable[str] = (),
        remove: Iterable[str] = ()
    ) -> Set[str]:
        """Add/remove tags and return the contact's resulting tag set"""

    @abstractmethod
    async def list_channels(self) -> List[ChannelConfig]:
        """Configured WhatsApp instances for all tenants"""


class InMemoryFlowStore(FlowStore):
    """Process-local store for tests and single-instance deployments"""

    def __init__(self):
        self.flows: Dict[str, Flow] = {}
        self.states: Dict[str, ExecutionState] = {}
        self.tags: Dict[Tuple[str, str], Set[str]] = {}
        self.channels: List[ChannelConfig] = []

    # ==================== Seeding ====================

    def add_flow(self, flow: Union[Flow, Dict[str, Any]]) -> Flow:
        if isinstance(flow, dict):
            flow = Flow.model_validate(flow)
        self.flows[flow.id] = flow
        return flow

    def add_channel(self, channel: Union[ChannelConfig, Dict[str, Any]]) -> ChannelConfig:
        if isinstance(channel, dict):
            channel = ChannelConfig.model_validate(channel)
        self.channels.append(channel)
        return channel

    # ==================== States ====================

    async def get_state(self, tenant_id: str, contact_id: str) -> Optional[ExecutionState]:
        for state in self.states.values():
            if state.tenant_id == tenant_id and state.contact_id == contact_id:
                return state.model_copy(deep=True)
        return None

    async def create_state(
        self,
        tenant_id: str,
        contact_id: str,
        flow_id: str,
        start_node_id: str,
        variables: Optional[Dict[str, Any]] = None
    ) -> ExecutionState:
        existing = await self.get_state(tenant_id, contact_id)
        if existing is not None:
            del self.states[existing.id]

        state = ExecutionState(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            contact_id=contact_id,
            active_flow_id=flow_id,
            current_node_id=start_node_id,
            variables=dict(variables or {}),
        )
        self.states[state.id] = state
        return state.model_copy(deep=True)

    async def update_state(self, state_id: str, **changes: Any) -> Optional[ExecutionState]:
        state = self.states.get(state_id)
        if state is None:
            return None
        changes["updated_at"] = datetime.now()
        updated = state.model_copy(update=changes, deep=True)
        self.states[state_id] = updated
        return updated.model_copy(deep=True)

    async def delete_state(self, state_id: str) -> bool:
        return self.states.pop(state_id, None) is not None

    async def list_due_states(self, now: datetime) -> List[ExecutionState]:
        return [
            state.model_copy(deep=True)
            for state in self.states.values()
            if state.status == ExecutionStatus.DELAYED and state.is_due(now)
        ]

    # ==================== Flows ====================

    async def get_flow(self, flow_id: str, tenant_id: str) -> Optional[Flow]:
        flow = self.flows.get(flow_id)
        if flow is None or flow.tenant_id != tenant_id:
            return None
        return flow

    async def list_flows(self, tenant_id: str) -> List[Flow]:
        return [flow for flow in self.flows.values() if flow.tenant_id == tenant_id]

    # ==================== Contacts / channels ====================

    async def update_contact_tags(
        self,
        tenant_id: str,
        contact_id: str,
        add: Iterable[str] = (),
        remove: Iterable[str] = ()
    ) -> Set[str]:
        tags = self.tags.setdefault((tenant_id, contact_id), set())
        tags.update(add)
        tags.difference_update(remove)
        return set(tags)

    async def list_channels(self) -> List[ChannelConfig]:
        return [channel for channel in self.channels if channel.active]
