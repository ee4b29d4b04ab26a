"""
Webhook routes for UAZAPI inbound messages
"""
import logging
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, BackgroundTasks, Request

from ...flow.engine import FlowEngine
from ...models.message import InboundMessage
from ...models.webhook import WebhookPayload, parse_webhook

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhook"])


def _instance_token(webhook: WebhookPayload, payload: dict[str, Any]) -> Optional[str]:
    """Instance token from the top level, or from the `instance` block of global webhooks"""
    if webhook.token:
        return webhook.token
    instance = payload.get("instance")
    if isinstance(instance, dict):
        return instance.get("token")
    return None


async def run_engine(engine: FlowEngine, tenant_id: str, inbound: InboundMessage) -> None:
    """Process one message outside the request cycle"""
    try:
        result = await engine.process_message(tenant_id, inbound)
        logger.info(f"[{inbound.contact_id}] {result}")
    except Exception as e:
        logger.exception(f"[{inbound.contact_id}] error processing message for tenant {tenant_id}: {e}")


@router.post("/webhook")
async def receive_webhook(
    request: Request,
    payload: dict[str, Any],
    background_tasks: BackgroundTasks
):
    """
    Receive webhook from UAZAPI.

    Only inbound, one-to-one message events reach the engine; the tenant is
    resolved from the instance token and the turn runs in the background.
    """
    webhook = parse_webhook(payload)

    logger.debug(
        f"Parsed webhook: EventType={webhook.EventType}, is_message={webhook.is_message_event}, "
        f"is_inbound={webhook.is_inbound}, sender={webhook.sender_phone}, text={webhook.message_text[:50]}"
    )

    if not webhook.is_message_event:
        return {"status": "ignored", "reason": "not a message event"}

    if not webhook.is_inbound:
        return {"status": "ignored", "reason": "outbound message"}

    if webhook.is_group:
        return {"status": "ignored", "reason": "group message"}

    registry = request.app.state.registry
    tenant_id = registry.tenant_for_token(_instance_token(webhook, payload))
    if tenant_id is None:
        logger.warning(f"Webhook with unknown instance token from {webhook.instanceName}")
        raise HTTPException(status_code=401, detail="Unknown instance token")

    inbound = webhook.to_inbound()
    if inbound is None:
        return {"status": "ignored", "reason": "no sender"}

    background_tasks.add_task(run_engine, request.app.state.engine, tenant_id, inbound)

    return {"status": "received", "tenant_id": tenant_id, "contact_id": inbound.contact_id}
