"""
Channel configuration - which UAZAPI instance serves which tenant
"""
from typing import Any, Optional
from pydantic import BaseModel, field_validator


class ChannelConfig(BaseModel):
    """One WhatsApp instance connected for a tenant"""

    model_config = {"extra": "ignore"}

    tenant_id: str
    instance_token: str
    instance_name: Optional[str] = None
    server_url: Optional[str] = None
    active: bool = True

    @field_validator("tenant_id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value
