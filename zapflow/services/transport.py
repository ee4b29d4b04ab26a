"""
Messaging transport - delivers engine payloads to the WhatsApp channel via UAZAPI
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional, Any, Dict

import httpx

from ..core.config import settings
from ..flow.errors import MessageDeliveryError
from ..models.message import (
    OutboundPayload, TextPayload, ButtonsPayload, ListPayload, MediaPayload
)

logger = logging.getLogger(__name__)


class MessagingTransport(ABC):
    """Channel the engine sends prompts and messages through"""

    @abstractmethod
    async def send(self, contact_id: str, payload: OutboundPayload) -> Dict[str, Any]:
        """
        Deliver one payload.

        Raises:
            MessageDeliveryError: when the channel rejects the message
        """

    async def close(self) -> None:
        """Release channel resources"""


class UazapiTransport(MessagingTransport):
    """UAZAPI instance bound to one tenant"""

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 30,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = (base_url or settings.UAZAPI_SERVER).rstrip("/")
        self.token = token or settings.UAZAPI_TOKEN
        self.timeout = timeout
        self._client = client

    def _get_headers(self) -> dict[str, str]:
        """Get request headers with instance token"""
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "token": self.token or ""
        }

    def _format_phone(self, phone: str) -> str:
        """Format phone number for UAZAPI (Brazilian format)"""
        clean = "".join(filter(str.isdigit, phone.split("@")[0]))

        # Add Brazil code if not present
        if not clean.startswith("55") and len(clean) <= 11:
            clean = "55" + clean

        return clean

    def _build_request(self, contact_id: str, payload: OutboundPayload) -> tuple[str, dict[str, Any]]:
        number = self._format_phone(contact_id)

        if isinstance(payload, TextPayload):
            return "/send/text", {"number": number, "text": payload.text}

        if isinstance(payload, MediaPayload):
            body: dict[str, Any] = {
                "number": number,
                "type": "ptt" if payload.ptt else payload.media_type,
                "file": payload.url,
            }
            if payload.caption:
                body["text"] = payload.caption
            if payload.file_name:
                body["docName"] = payload.file_name
            if payload.mime_type:
                body["mimetype"] = payload.mime_type
            return "/send/media", body

        if isinstance(payload, ButtonsPayload):
            body = {
                "number": number,
                "type": "button",
                "text": payload.text,
                "choices": [f"{button.title}|{button.id}" for button in payload.buttons],
            }
            if payload.footer:
                body["footerText"] = payload.footer
            return "/send/menu", body

        if isinstance(payload, ListPayload):
            choices: list[str] = []
            for section in payload.sections:
                if section.title:
                    choices.append(f"[{section.title}]")
                for row in section.rows:
                    entry = f"{row.title}|{row.id}"
                    if row.description:
                        entry = f"{entry}|{row.description}"
                    choices.append(entry)
            body = {
                "number": number,
                "type": "list",
                "text": payload.text,
                "listButton": payload.button_text,
                "choices": choices,
            }
            if payload.footer:
                body["footerText"] = payload.footer
            return "/send/menu", body

        raise MessageDeliveryError(f"Unsupported payload kind: {type(payload).__name__}")

    async def send(self, contact_id: str, payload: OutboundPayload) -> Dict[str, Any]:
        if not self.token:
            raise MessageDeliveryError("UAZAPI token not configured")

        path, body = self._build_request(contact_id, payload)
        url = f"{self.base_url}{path}"

        try:
            if self._client is not None:
                response = await self._client.post(url, json=body, headers=self._get_headers(), timeout=self.timeout)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(url, json=body, headers=self._get_headers(), timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.error(f"Error sending WhatsApp {payload.kind} to {contact_id}: {e}")
            raise MessageDeliveryError(f"UAZAPI request failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"UAZAPI error: {response.status_code} - {response.text}")
            raise MessageDeliveryError(
                f"HTTP {response.status_code}: {response.text}",
                status=response.status_code
            )

        data = response.json() if response.content else {}
        logger.debug(f"Sent {payload.kind} to {contact_id} via {path}")
        return {
            "success": True,
            "message_id": data.get("key", {}).get("id") if isinstance(data, dict) else None,
            "data": data
        }

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
