"""
Execution state - the persisted, resumable progress of one contact through one flow
"""
from enum import Enum
from typing import Optional, Any, Dict
from datetime import datetime
from pydantic import BaseModel, Field, field_validator


class ExecutionStatus(str, Enum):
    """Where a conversation is parked between inbound messages"""
    ADVANCING = "advancing"
    AWAITING_INPUT = "awaiting_input"
    DELAYED = "delayed"


class ExecutionState(BaseModel):
    """One live conversation per (tenant, contact)"""

    model_config = {"extra": "ignore"}

    id: str
    tenant_id: str
    contact_id: str
    active_flow_id: str
    current_node_id: Optional[str] = None
    variables: Dict[str, Any] = Field(default_factory=dict)
    status: ExecutionStatus = ExecutionStatus.ADVANCING
    resume_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @field_validator("id", "tenant_id", "active_flow_id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @field_validator("variables", mode="before")
    @classmethod
    def default_variables(cls, value: Any) -> Any:
        return value or {}

    @property
    def is_delayed(self) -> bool:
        return self.status == ExecutionStatus.DELAYED

    def is_due(self, now: datetime) -> bool:
        """Check if a delayed conversation should resume"""
        return self.is_delayed and self.resume_at is not None and self.resume_at <= now
