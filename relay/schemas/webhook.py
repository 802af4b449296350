"""WhatsApp Cloud API webhook payloads (only the fields the relay reads)."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class TextContent(BaseModel):
    body: Optional[str] = None


class ImageContent(BaseModel):
    id: Optional[str] = None
    caption: Optional[str] = None
    mime_type: Optional[str] = None


class DocumentContent(BaseModel):
    id: Optional[str] = None
    filename: Optional[str] = None
    caption: Optional[str] = None


class LocationContent(BaseModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    name: Optional[str] = None
    address: Optional[str] = None


class InteractiveReply(BaseModel):
    id: Optional[str] = None
    title: Optional[str] = None


class InteractiveContent(BaseModel):
    type: Optional[str] = None
    button_reply: Optional[InteractiveReply] = None
    list_reply: Optional[InteractiveReply] = None


class InboundMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(alias="from")
    id: str
    timestamp: Optional[str] = None
    type: str = "unknown"
    text: Optional[TextContent] = None
    image: Optional[ImageContent] = None
    audio: Optional[dict[str, Any]] = None
    video: Optional[dict[str, Any]] = None
    document: Optional[DocumentContent] = None
    location: Optional[LocationContent] = None
    interactive: Optional[InteractiveContent] = None


class ContactProfile(BaseModel):
    name: Optional[str] = None


class Contact(BaseModel):
    wa_id: Optional[str] = None
    profile: Optional[ContactProfile] = None


class StatusUpdate(BaseModel):
    id: Optional[str] = None
    status: Optional[str] = None
    recipient_id: Optional[str] = None
    timestamp: Optional[str] = None


class ChangeValue(BaseModel):
    messaging_product: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    contacts: list[Contact] = Field(default_factory=list)
    messages: list[InboundMessage] = Field(default_factory=list)
    statuses: list[StatusUpdate] = Field(default_factory=list)


class Change(BaseModel):
    field: Optional[str] = None
    value: ChangeValue = Field(default_factory=ChangeValue)


class Entry(BaseModel):
    id: Optional[str] = None
    changes: list[Change] = Field(default_factory=list)


class WhatsAppWebhook(BaseModel):
    object: Optional[str] = None
    entry: list[Entry] = Field(default_factory=list)

    def message_changes(self) -> list[ChangeValue]:
        """Values of `messages` changes; other objects and fields are ignored."""
        if self.object != "whatsapp_business_account":
            return []
        return [change.value for entry in self.entry for change in entry.changes if change.field == "messages"]

