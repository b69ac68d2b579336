"""One-line text rendering of messages."""

from datetime import datetime

from chatdb.imessage.models import Attachment, Message

MAX_TEXT_LENGTH = 120


def local_time(dt: datetime) -> datetime:
    """Convert to local time; clamped dates at the edge of the range stay in UTC."""
    try:
        return dt.astimezone()
    except OverflowError:
        return dt


def _describe(attachment: Attachment) -> str:
    return f"{attachment.name} ({attachment.mime_type or 'unknown type'})"


def format_body(msg: Message) -> str:
    """Text (truncated), an attachment summary, or a placeholder."""
    if msg.text:
        if len(msg.text) > MAX_TEXT_LENGTH:
            return msg.text[:MAX_TEXT_LENGTH] + "..."
        return msg.text

    if len(msg.attachments) == 1:
        return f"[attachment: {_describe(msg.attachments[0])}]"
    if msg.attachments:
        return f"[attachments: {', '.join(_describe(a) for a in msg.attachments)}]"

    return "[no text / unknown attachment]"


def format_message(msg: Message) -> str:
    """
    Render a message as a single line:

        [2025-01-15 10:00:00] ← Family Chat (+15551234567): Hello everyone!
    """
    timestamp = local_time(msg.sent_at).strftime("%Y-%m-%d %H:%M:%S")
    direction = "→" if msg.is_from_me else "←"
    sender = "me" if msg.is_from_me else (msg.handle or "unknown")
    chat = msg.display_name or msg.chat_identifier or msg.handle or "unknown"
    return f"[{timestamp}] {direction} {chat} ({sender}): {format_body(msg)}"
