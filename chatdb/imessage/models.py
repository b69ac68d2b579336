"""Data models for records read from chat.db."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import PurePosixPath


@dataclass
class Attachment:
    """A file attached to a message."""

    filename: str  # As stored, e.g. "~/Library/Messages/Attachments/.../IMG_1234.heic"
    path: str  # Stored filename with the home alias expanded
    exists: bool  # Checked when the row was read
    mime_type: str | None = None
    transfer_name: str | None = None  # Apple's internal transfer name
    total_bytes: int | None = None

    @property
    def name(self) -> str:
        """Base name of the file."""
        return PurePosixPath(self.filename).name or self.filename

    @property
    def is_image(self) -> bool:
        return (self.mime_type or "").startswith("image/")

    def __repr__(self) -> str:
        return f"<Attachment {self.name} ({self.mime_type or 'unknown type'})>"


@dataclass
class Message:
    """A single message row joined with its chat and sender handle."""

    rowid: int
    guid: str
    text: str | None  # Plain text, or decoded attributedBody when text is NULL
    date: int  # Raw chat.db value
    sent_at: datetime
    is_from_me: bool
    service: str
    handle_id: int | None = None
    handle: str | None = None  # Sender phone/email
    chat_id: int | None = None
    display_name: str | None = None
    chat_identifier: str | None = None
    attachments: list[Attachment] = field(default_factory=list)

    @property
    def is_imessage(self) -> bool:
        return self.service == "iMessage"

    @property
    def has_attachments(self) -> bool:
        return len(self.attachments) > 0

    def __repr__(self) -> str:
        direction = "→" if self.is_from_me else "←"
        text = self.text or ""
        preview = text[:50] + "..." if len(text) > 50 else text
        attach_str = f" +{len(self.attachments)} attachments" if self.attachments else ""
        return f"<Message {self.rowid} {direction} {self.handle or 'unknown'} [{self.service}]: {preview!r}{attach_str}>"


@dataclass
class Conversation:
    """A chat with aggregates computed at query time."""

    chat_id: int
    chat_identifier: str
    service_name: str
    display_name: str | None = None
    guid: str | None = None
    message_count: int = 0
    last_message_date: int | None = None  # Raw chat.db value
    last_message_at: datetime | None = None

    @property
    def title(self) -> str:
        return self.display_name or self.chat_identifier


class TailState(Enum):
    """State of a live-tail cursor."""

    IDLE = "idle"
    POLLING = "polling"


@dataclass
class TailBatch:
    """Messages found by one live-tail poll, and the watermark after it."""

    messages: list[Message]
    watermark: int

    def __len__(self) -> int:
        return len(self.messages)
