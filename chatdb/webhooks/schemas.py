"""Pydantic schemas for API responses and webhook payloads."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from chatdb import __version__


class WebhookEvent(str, Enum):
    """Types of webhook events."""

    MESSAGE_RECEIVED = "message.received"
    MESSAGE_SENT = "message.sent"


class AttachmentSchema(BaseModel):
    """An attachment as stored in chat.db, with its resolved path."""

    model_config = ConfigDict(from_attributes=True)

    filename: str = Field(..., description="Filename as stored in chat.db")
    name: str = Field(..., description="Base name of the file")
    path: str = Field(..., description="Absolute path on this Mac")
    exists: bool = Field(..., description="Whether the file was on disk when read")
    mime_type: str | None = None
    transfer_name: str | None = None
    total_bytes: int | None = None


class MessageSchema(BaseModel):
    """A message record."""

    model_config = ConfigDict(from_attributes=True)

    rowid: int
    guid: str
    text: str | None = Field(None, description="Plain text or decoded attributedBody")
    date: int = Field(..., description="Raw chat.db timestamp")
    sent_at: datetime
    is_from_me: bool
    service: str
    handle_id: int | None = None
    handle: str | None = Field(None, description="Sender phone number or email")
    chat_id: int | None = None
    display_name: str | None = None
    chat_identifier: str | None = None
    attachments: list[AttachmentSchema] = Field(default_factory=list)


class ConversationSchema(BaseModel):
    """A chat with its message count and last activity."""

    model_config = ConfigDict(from_attributes=True)

    chat_id: int
    chat_identifier: str
    service_name: str
    display_name: str | None = None
    guid: str | None = None
    message_count: int = 0
    last_message_date: int | None = None
    last_message_at: datetime | None = None


class TailBatchSchema(BaseModel):
    """New messages from one live-tail step, plus the watermark to resume from."""

    model_config = ConfigDict(from_attributes=True)

    messages: list[MessageSchema]
    watermark: int


class MessageEvent(BaseModel):
    """Payload posted to the webhook for each new message."""

    event: WebhookEvent
    message: MessageSchema
    watermark: int = Field(..., description="Watermark after the batch this message arrived in")


class SendMessageRequest(BaseModel):
    """Request to send a message. Exactly one of recipient or chat_guid is used."""

    recipient: str | None = Field(None, description="Phone number or email")
    chat_guid: str | None = Field(None, description="chat.guid of an existing chat")
    text: str = Field(..., description="Message content to send")


class SendMessageResponse(BaseModel):
    """Response after attempting to send a message."""

    success: bool
    error: str | None = Field(None, description="Error message if failed")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    version: str = __version__
    chat_db_path: str
    chat_db_accessible: bool
    chat_db_status: str
    max_rowid: int | None = None
    forwarder: dict
