"""Webhook forwarding and JSON schemas."""

from chatdb.webhooks.client import WebhookClient
from chatdb.webhooks.schemas import (
    ConversationSchema,
    MessageEvent,
    MessageSchema,
    SendMessageRequest,
    SendMessageResponse,
    TailBatchSchema,
)

__all__ = [
    "WebhookClient",
    "ConversationSchema",
    "MessageEvent",
    "MessageSchema",
    "SendMessageRequest",
    "SendMessageResponse",
    "TailBatchSchema",
]
