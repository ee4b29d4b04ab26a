"""
UAZAPI webhook payload parser

Message events arrive in this shape:
{
  "EventType": "messages",
  "instanceName": "instance-name",
  "owner": "558596681498",
  "token": "...",
  "chat": {...},
  "message": {
    "chatid": "558599673669@s.whatsapp.net",
    "sender_pn": "558599673669@s.whatsapp.net",
    "senderName": "Name",
    "text": "Hello",
    "messageType": "conversation",
    "buttonOrListid": "btn-1",
    "fromMe": false,
    "isGroup": false
  }
}
"""
from typing import Optional, Any
from pydantic import BaseModel, ConfigDict

from .message import InboundMessage


class WebhookPayload(BaseModel):
    """UAZAPI webhook payload - permissive, only the fields the engine reads are typed"""

    model_config = ConfigDict(extra="allow")

    EventType: Optional[str] = None
    event: Optional[str] = None
    BaseUrl: Optional[str] = None
    instanceName: Optional[str] = None
    owner: Optional[str] = None
    token: Optional[str] = None

    message: Optional[dict] = None
    chat: Optional[dict] = None

    @property
    def is_message_event(self) -> bool:
        """Check if this is a message event"""
        kind = self.EventType or self.event
        if kind:
            return kind.lower() in ["messages", "message", "messages.upsert"]
        return bool(self.message)

    @property
    def is_inbound(self) -> bool:
        """Check if message was sent by the contact"""
        if not self.message:
            return False
        return not self.message.get("fromMe", True)

    @property
    def is_group(self) -> bool:
        if not self.message:
            return False
        if self.message.get("isGroup"):
            return True
        chatid = self.message.get("chatid") or ""
        return chatid.endswith("@g.us")

    @property
    def sender_phone(self) -> Optional[str]:
        """Extract sender phone number"""
        if self.message:
            for key in ("sender_pn", "chatid"):
                jid = self.message.get(key)
                if jid:
                    return extract_phone_from_jid(jid)

            sender = self.message.get("sender")
            if sender and "@s.whatsapp.net" in sender:
                return extract_phone_from_jid(sender)

        if self.chat:
            wa_chatid = self.chat.get("wa_chatid")
            if wa_chatid:
                return extract_phone_from_jid(wa_chatid)

        return None

    @property
    def sender_name(self) -> Optional[str]:
        if self.message and self.message.get("senderName"):
            return self.message["senderName"]
        if self.chat:
            return self.chat.get("name") or self.chat.get("wa_name")
        return None

    @property
    def message_text(self) -> str:
        """Extract message text content"""
        if not self.message:
            return ""

        text = self.message.get("text")
        if text:
            return text

        content = self.message.get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, dict):
            return content.get("text") or content.get("selectedDisplayText") or ""

        return self.message.get("body") or ""

    @property
    def reply_id(self) -> Optional[str]:
        """Id of the button or list row the contact selected"""
        if not self.message:
            return None

        reply = self.message.get("buttonOrListid")
        if reply:
            return reply

        content = self.message.get("content")
        if isinstance(content, dict):
            return (
                content.get("selectedButtonID")
                or content.get("selectedButtonId")
                or content.get("selectedRowId")
            )
        return None

    @property
    def message_type(self) -> str:
        if not self.message:
            return "text"
        raw = (self.message.get("messageType") or self.message.get("type") or "text").lower()
        type_mapping = {
            "conversation": "text",
            "extendedtextmessage": "text",
            "chat": "text",
            "buttonsresponsemessage": "text",
            "listresponsemessage": "text",
            "templatebuttonreplymessage": "text",
            "imagemessage": "image",
            "videomessage": "video",
            "audiomessage": "audio",
            "ptt": "audio",
            "documentmessage": "document",
            "stickermessage": "sticker",
            "locationmessage": "location",
        }
        return type_mapping.get(raw, raw)

    @property
    def message_id(self) -> Optional[str]:
        if self.message:
            return self.message.get("messageid") or self.message.get("id")
        return None

    def to_inbound(self) -> Optional[InboundMessage]:
        """Normalize into the engine's inbound message, None if not addressable"""
        phone = self.sender_phone
        if not phone:
            return None
        return InboundMessage(
            contact_id=phone,
            text=self.message_text,
            reply_id=self.reply_id,
            message_type=self.message_type,
            sender_name=self.sender_name,
            message_id=self.message_id,
        )


def parse_webhook(payload: dict[str, Any]) -> WebhookPayload:
    """Parse raw webhook payload into WebhookPayload model"""
    return WebhookPayload(**payload)


def extract_phone_from_jid(jid: str) -> str:
    """Extract phone number from WhatsApp JID"""
    # JID format: 5511999999999@s.whatsapp.net or 5511999999999:12@s.whatsapp.net
    return jid.split("@")[0].split(":")[0].replace("+", "").replace("-", "").replace(" ", "")
