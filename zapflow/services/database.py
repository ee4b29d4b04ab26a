"""
Database service - Supabase implementation of the flow store
Tables are prefixed: zapflow_*
"""
import logging
from datetime import datetime
from typing import Optional, Any, Dict, Iterable, List, Set

from pydantic import ValidationError
from supabase import Client

from ..core.supabase_client import get_supabase_client
from ..models.flow import Flow
from ..models.state import ExecutionState, ExecutionStatus
from ..models.channel import ChannelConfig
from ..flow.errors import GraphValidationError
from .store import FlowStore

logger = logging.getLogger(__name__)

# Table prefix
TABLE_PREFIX = "zapflow_"

# Table names
FLOWS_TABLE = f"{TABLE_PREFIX}flows"
STATES_TABLE = f"{TABLE_PREFIX}flow_states"
CONTACT_TAGS_TABLE = f"{TABLE_PREFIX}contact_tags"
CHANNELS_TABLE = f"{TABLE_PREFIX}channels"


def _flow_from_row(row: Dict[str, Any]) -> Flow:
    """Flow rows keep the graph in the `flow_data` JSON column"""
    data = dict(row)
    data["elements"] = data.pop("flow_data", None) or {}
    return Flow.model_validate(data)


def _state_to_row(changes: Dict[str, Any]) -> Dict[str, Any]:
    row = {}
    for key, value in changes.items():
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, ExecutionStatus):
            value = value.value
        row[key] = value
    return row


class SupabaseFlowStore(FlowStore):
    """Flow store backed by Supabase tables"""

    def __init__(self, client: Optional[Client] = None):
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    # ==================== EXECUTION STATES ====================

    async def get_state(self, tenant_id: str, contact_id: str) -> Optional[ExecutionState]:
        """Get live state for a contact"""
        response = self.client.table(STATES_TABLE).select("*").eq(
            "tenant_id", tenant_id
        ).eq("contact_id", contact_id).limit(1).execute()
        if response.data and len(response.data) > 0:
            return ExecutionState(**response.data[0])
        return None

    async def create_state(
        self,
        tenant_id: str,
        contact_id: str,
        flow_id: str,
        start_node_id: str,
        variables: Optional[Dict[str, Any]] = None
    ) -> ExecutionState:
        """Create state, replacing any previous one for the contact"""
        self.client.table(STATES_TABLE).delete().eq(
            "tenant_id", tenant_id
        ).eq("contact_id", contact_id).execute()

        response = self.client.table(STATES_TABLE).insert({
            "tenant_id": tenant_id,
            "contact_id": contact_id,
            "active_flow_id": flow_id,
            "current_node_id": start_node_id,
            "variables": variables or {},
            "status": ExecutionStatus.ADVANCING.value,
        }).execute()
        return ExecutionState(**response.data[0])

    async def update_state(self, state_id: str, **changes: Any) -> Optional[ExecutionState]:
        """Partial update of a state"""
        changes["updated_at"] = datetime.now()
        response = self.client.table(STATES_TABLE).update(
            _state_to_row(changes)
        ).eq("id", state_id).execute()
        if response.data:
            return ExecutionState(**response.data[0])
        return None

    async def delete_state(self, state_id: str) -> bool:
        """Delete state"""
        response = self.client.table(STATES_TABLE).delete().eq("id", state_id).execute()
        return len(response.data) > 0 if response.data else False

    async def list_due_states(self, now: datetime) -> List[ExecutionState]:
        """Delayed states whose resume_at has passed"""
        response = self.client.table(STATES_TABLE).select("*").eq(
            "status", ExecutionStatus.DELAYED.value
        ).lte("resume_at", now.isoformat()).execute()
        return [ExecutionState(**s) for s in response.data] if response.data else []

    # ==================== FLOWS ====================

    async def get_flow(self, flow_id: str, tenant_id: str) -> Optional[Flow]:
        """
        Get flow by ID.

        Raises:
            GraphValidationError: stored flow_data is not a valid graph
        """
        response = self.client.table(FLOWS_TABLE).select("*").eq(
            "id", flow_id
        ).eq("tenant_id", tenant_id).limit(1).execute()
        if not response.data:
            return None

        try:
            return _flow_from_row(response.data[0])
        except ValidationError as e:
            raise GraphValidationError(
                "Invalid flow definition",
                [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()],
                flow_id=flow_id
            ) from e

    async def list_flows(self, tenant_id: str) -> List[Flow]:
        """List tenant flows, skipping rows that do not validate"""
        response = self.client.table(FLOWS_TABLE).select("*").eq(
            "tenant_id", tenant_id
        ).order("updated_at", desc=True).execute()

        flows = []
        for row in response.data or []:
            try:
                flows.append(_flow_from_row(row))
            except ValidationError as e:
                logger.warning(f"Skipping invalid flow {row.get('id')} for tenant {tenant_id}: {e}")
        return flows

    # ==================== CONTACTS / CHANNELS ====================

    async def update_contact_tags(
        self,
        tenant_id: str,
        contact_id: str,
        add: Iterable[str] = (),
        remove: Iterable[str] = ()
    ) -> Set[str]:
        """Add/remove contact tags"""
        add, remove = list(add), list(remove)

        if add:
            self.client.table(CONTACT_TAGS_TABLE).upsert(
                [{"tenant_id": tenant_id, "contact_id": contact_id, "tag": tag} for tag in add],
                on_conflict="tenant_id,contact_id,tag"
            ).execute()

        if remove:
            self.client.table(CONTACT_TAGS_TABLE).delete().eq(
                "tenant_id", tenant_id
            ).eq("contact_id", contact_id).in_("tag", remove).execute()

        response = self.client.table(CONTACT_TAGS_TABLE).select("tag").eq(
            "tenant_id", tenant_id
        ).eq("contact_id", contact_id).execute()
        return {row["tag"] for row in response.data} if response.data else set()

    async def list_channels(self) -> List[ChannelConfig]:
        """List active WhatsApp instances"""
        response = self.client.table(CHANNELS_TABLE).select("*").eq("active", True).execute()
        return [ChannelConfig(**c) for c in response.data] if response.data else []
