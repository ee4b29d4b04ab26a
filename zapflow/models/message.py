"""
Message models - inbound messages and outbound channel payloads
"""
from typing import Optional, List, Union, Literal, Annotated
from pydantic import BaseModel, Field


# ============ OUTBOUND ============

class TextPayload(BaseModel):
    """Plain text message"""
    kind: Literal["text"] = "text"
    text: str


class ButtonChoice(BaseModel):
    id: str
    title: str


class ButtonsPayload(BaseModel):
    """Reply-button prompt"""
    kind: Literal["buttons"] = "buttons"
    text: str
    buttons: List[ButtonChoice] = Field(default_factory=list)
    header: Optional[str] = None
    footer: Optional[str] = None


class ListChoice(BaseModel):
    id: str
    title: str
    description: Optional[str] = None


class ListChoiceSection(BaseModel):
    title: str = ""
    rows: List[ListChoice] = Field(default_factory=list)


class ListPayload(BaseModel):
    """Option-list prompt"""
    kind: Literal["list"] = "list"
    text: str
    button_text: str = "Menu"
    sections: List[ListChoiceSection] = Field(default_factory=list)
    title: Optional[str] = None
    footer: Optional[str] = None


class MediaPayload(BaseModel):
    """Media with optional caption"""
    kind: Literal["media"] = "media"
    media_type: str = "image"  # image, video, audio, document
    url: str
    caption: Optional[str] = None
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    ptt: bool = False


OutboundPayload = Annotated[
    Union[TextPayload, ButtonsPayload, ListPayload, MediaPayload],
    Field(discriminator="kind")
]


# ============ INBOUND ============

class InboundMessage(BaseModel):
    """Normalized inbound message handed to the engine"""

    contact_id: str
    text: str = ""
    # Id of the selected button / list row, when the channel reports one
    reply_id: Optional[str] = None
    message_type: str = "text"
    sender_name: Optional[str] = None
    message_id: Optional[str] = None

    @property
    def is_text(self) -> bool:
        return self.message_type == "text" or bool(self.text)
