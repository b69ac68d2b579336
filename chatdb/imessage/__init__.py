"""Access to the macOS Messages database (chat.db)."""

from chatdb.imessage.body import decode_attributed_body
from chatdb.imessage.formatting import format_message
from chatdb.imessage.models import Attachment, Conversation, Message, TailBatch, TailState
from chatdb.imessage.reader import Archive, ArchiveAccessError, open_archive
from chatdb.imessage.sender import MessageSender, SendResponse, SendResult
from chatdb.imessage.tail import LiveTail
from chatdb.imessage.timestamps import from_absolute, to_absolute

__all__ = [
    "Archive",
    "ArchiveAccessError",
    "Attachment",
    "Conversation",
    "LiveTail",
    "Message",
    "MessageSender",
    "SendResponse",
    "SendResult",
    "TailBatch",
    "TailState",
    "decode_attributed_body",
    "format_message",
    "from_absolute",
    "open_archive",
    "to_absolute",
]
