"""
Flow routes - validation for the flow editor and conversation reset
"""
import logging
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from ...flow.validator import FlowValidator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["flows"])


class FlowValidationRequest(BaseModel):
    """Flow definition as saved by the editor"""
    flow_id: Optional[str] = None
    nodes: list[dict[str, Any]] = Field(default_factory=list)
    edges: list[dict[str, Any]] = Field(default_factory=list)


@router.post("/flows/validate")
async def validate_flow(body: FlowValidationRequest):
    """
    Load and lint a flow definition.

    Returns 422 with the problem list when the engine would refuse it.
    """
    report = FlowValidator.validate({"nodes": body.nodes, "edges": body.edges}, flow_id=body.flow_id)

    if not report.is_valid:
        raise HTTPException(status_code=422, detail=report.to_dict())

    return report.to_dict()


@router.delete("/states/{tenant_id}/{contact_id}")
async def end_conversation(tenant_id: str, contact_id: str, request: Request):
    """End a contact's conversation from outside the flow"""
    ended = await request.app.state.engine.end_conversation(tenant_id, contact_id)
    if not ended:
        raise HTTPException(status_code=404, detail="No active conversation")

    return {"status": "ended", "tenant_id": tenant_id, "contact_id": contact_id}
