"""
WA Sender webhook models
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

MESSAGE_EVENTS = ("messages.received", "messages.upsert", "messages-personal.received")

MEDIA_MESSAGE_TYPES = {
    "imageMessage": "image",
    "audioMessage": "audio",
    "videoMessage": "video",
    "documentMessage": "document",
    "stickerMessage": "sticker",
}


class MessageKey(BaseModel):
    """Message key: chat id and direction"""
    id: Optional[str] = None
    remote_jid: str = Field(..., alias="remoteJid")
    from_me: bool = Field(default=False, alias="fromMe")

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class WAMessage(BaseModel):
    """Single message carried by a WA Sender event"""
    id: Optional[str] = None
    key: MessageKey
    push_name: Optional[str] = Field(default=None, alias="pushName")
    message: Dict[str, Any] = Field(default_factory=dict)
    message_timestamp: Optional[int] = Field(default=None, alias="messageTimestamp")

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    @property
    def event_id(self) -> Optional[str]:
        return self.id or self.key.id

    @property
    def message_type(self) -> str:
        for field_name, kind in MEDIA_MESSAGE_TYPES.items():
            if self.message.get(field_name):
                return kind
        return "text"

    @property
    def text(self) -> Optional[str]:
        """Plain text, extended text, or the caption of a media message."""
        if self.message.get("conversation"):
            return self.message["conversation"]

        extended = self.message.get("extendedTextMessage") or {}
        if extended.get("text"):
            return extended["text"]

        for field_name in MEDIA_MESSAGE_TYPES:
            media = self.message.get(field_name) or {}
            if isinstance(media, dict) and media.get("caption"):
                return media["caption"]
        return None

    @property
    def media_url(self) -> Optional[str]:
        for field_name in MEDIA_MESSAGE_TYPES:
            media = self.message.get(field_name)
            if isinstance(media, dict) and media.get("url"):
                return media["url"]
        return None


class WebhookData(BaseModel):
    messages: Optional[WAMessage] = None

    model_config = ConfigDict(extra="allow")


class WAWebhookPayload(BaseModel):
    """Complete WA Sender webhook payload"""
    event: str
    data: WebhookData = Field(default_factory=WebhookData)

    model_config = ConfigDict(extra="allow")

    @property
    def is_message_event(self) -> bool:
        return self.event in MESSAGE_EVENTS and self.data.messages is not None


class WebhookResponse(BaseModel):
    """Standard webhook response"""
    success: bool = True
