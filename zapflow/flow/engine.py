"""
Flow Engine - entry point for inbound messages and delay resumes

Loads or creates the contact's execution state, serializes turns per
contact, and hands the turn to the FlowExecutor.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional, Dict, Tuple, TYPE_CHECKING

from ..models.message import InboundMessage
from ..models.state import ExecutionState
from .context import StepContext
from .errors import GraphValidationError, StateNotFoundError, CycleDetectedError
from .executor import FlowExecutor
from .graph import FlowGraph
from .result import StepResult, StepStatus, ignored_result, error_result

if TYPE_CHECKING:
    from ..services.store import FlowStore
    from ..services.registry import TenantRegistry

logger = logging.getLogger(__name__)


class ContactLockRegistry:
    """
    One asyncio.Lock per (tenant, contact), kept only while a turn holds or
    waits on it.
    """

    def __init__(self):
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._users: Dict[Tuple[str, str], int] = {}

    def get(self, tenant_id: str, contact_id: str) -> asyncio.Lock:
        key = (tenant_id, contact_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, tenant_id: str, contact_id: str):
        """Serialize a turn for the contact and drop the lock once nobody uses it"""
        key = (tenant_id, contact_id)
        lock = self.get(tenant_id, contact_id)
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class FlowEngine:
    """
    Runs conversations for all tenants.

    Turns of the same contact never overlap; different contacts run
    concurrently.
    """

    def __init__(self, store: "FlowStore", registry: "TenantRegistry", executor: FlowExecutor):
        self.store = store
        self.registry = registry
        self.executor = executor
        self.locks = ContactLockRegistry()

    async def process_message(self, tenant_id: str, inbound: InboundMessage) -> StepResult:
        """
        Process one inbound message for a contact.

        Returns:
            StepResult describing how the turn finished
        """
        contact_id = inbound.contact_id
        async with self.locks.hold(tenant_id, contact_id):
            try:
                return await self._process(tenant_id, inbound)
            except (GraphValidationError, CycleDetectedError) as e:
                logger.error(f"[{contact_id}] dropping message for tenant {tenant_id}: {e}")
                flow_id = getattr(e, "flow_id", None)
                await self._discard_state(tenant_id, contact_id)
                return error_result(str(e), flow_id=flow_id)

    async def _process(self, tenant_id: str, inbound: InboundMessage) -> StepResult:
        contact_id = inbound.contact_id
        state = await self.store.get_state(tenant_id, contact_id)

        if state is not None:
            if state.is_delayed:
                logger.info(
                    f"[{contact_id}] conversation is delayed until "
                    f"{state.resume_at.isoformat() if state.resume_at else '?'}, ignoring message"
                )
                return StepResult(
                    status=StepStatus.IGNORED,
                    flow_id=state.active_flow_id,
                    current_node_id=state.current_node_id
                )

            try:
                return await self._continue(state, inbound)
            except StateNotFoundError as e:
                logger.warning(f"[{contact_id}] {e}, discarding state and matching triggers again")
                await self.store.delete_state(state.id)

        return await self._start_session(tenant_id, inbound)

    async def _start_session(self, tenant_id: str, inbound: InboundMessage) -> StepResult:
        contact_id = inbound.contact_id
        flow = await self.store.find_trigger_flow(tenant_id, inbound.text)
        if flow is None:
            logger.debug(f"[{contact_id}] no trigger matched for tenant {tenant_id}")
            return ignored_result()

        graph = await self.store.get_flow_graph(flow.id, tenant_id)
        if graph is None:
            logger.warning(f"[{contact_id}] flow {flow.id} disappeared before it could start")
            return ignored_result()

        start = graph.start_node()
        now = datetime.now()
        state = await self.store.create_state(
            tenant_id,
            contact_id,
            flow.id,
            start.id,
            variables={
                "contactId": contact_id,
                "contactName": inbound.sender_name or "",
                "triggerMessage": inbound.text,
                "currentDate": now.strftime("%Y-%m-%d"),
                "currentTime": now.strftime("%H:%M"),
            }
        )
        logger.info(f"[{contact_id}] started flow {flow.id} ({flow.name}) at node {start.id}")

        ctx = self._context(state, inbound, is_new_session=True)
        return await self.executor.start(ctx, graph, start.id)

    async def _continue(self, state: ExecutionState, inbound: InboundMessage) -> StepResult:
        graph, node = await self._load_position(state)
        ctx = self._context(state, inbound)

        if node.is_waiting:
            return await self.executor.resume_with_input(ctx, graph, node)

        # A previous turn stopped mid-flight; carry on from the recorded node
        logger.warning(f"[{state.contact_id}] state parked at non-waiting node {node.id}, advancing")
        return await self.executor.advance(ctx, graph, node.id)

    async def _load_position(self, state: ExecutionState):
        """
        Raises:
            StateNotFoundError: the flow or the current node no longer exists
        """
        graph: Optional[FlowGraph] = await self.store.get_flow_graph(state.active_flow_id, state.tenant_id)
        if graph is None:
            raise StateNotFoundError(f"Flow {state.active_flow_id} no longer exists")

        node = graph.get_node(state.current_node_id)
        if node is None:
            raise StateNotFoundError(
                f"Node {state.current_node_id} no longer exists in flow {state.active_flow_id}"
            )
        return graph, node

    async def resume(self, tenant_id: str, contact_id: str) -> StepResult:
        """Continue a delayed conversation whose timer has fired"""
        async with self.locks.hold(tenant_id, contact_id):
            state = await self.store.get_state(tenant_id, contact_id)
            if state is None or not state.is_delayed:
                logger.debug(f"[{contact_id}] nothing to resume for tenant {tenant_id}")
                return ignored_result()

            try:
                graph, node = await self._load_position(state)
                ctx = self._context(state, None)
                return await self.executor.continue_after_delay(ctx, graph, node)
            except (StateNotFoundError, GraphValidationError, CycleDetectedError) as e:
                logger.error(f"[{contact_id}] could not resume flow {state.active_flow_id}: {e}")
                await self.store.delete_state(state.id)
                return error_result(str(e), flow_id=state.active_flow_id)

    async def end_conversation(self, tenant_id: str, contact_id: str) -> bool:
        """Delete a contact's conversation from outside the flow"""
        async with self.locks.hold(tenant_id, contact_id):
            ended = await self._discard_state(tenant_id, contact_id)
        if ended:
            logger.info(f"[{contact_id}] conversation ended externally for tenant {tenant_id}")
        return ended

    async def _discard_state(self, tenant_id: str, contact_id: str) -> bool:
        state = await self.store.get_state(tenant_id, contact_id)
        if state is None:
            return False
        return await self.store.delete_state(state.id)

    def _context(
        self,
        state: ExecutionState,
        inbound: Optional[InboundMessage],
        is_new_session: bool = False
    ) -> StepContext:
        return StepContext(
            state=state,
            transport=self.registry.transport_for(state.tenant_id),
            inbound=inbound,
            is_new_session=is_new_session
        )
