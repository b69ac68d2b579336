"""HTTP client for forwarding live-tail messages to a webhook."""

import logging

import httpx

from chatdb import __version__
from chatdb.config import settings
from chatdb.imessage.models import Message, TailBatch
from chatdb.webhooks.schemas import MessageEvent, MessageSchema, WebhookEvent

logger = logging.getLogger(__name__)


class WebhookClient:
    """
    Posts new messages to a configured URL.

    Usage:
        client = WebhookClient("http://localhost:9000/hook")
        tail.start(on_batch=client.forward_batch)
    """

    def __init__(
        self,
        url: str | None = None,
        secret: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            url: Webhook URL (defaults to settings)
            secret: Sent in the X-Chatdb-Secret header (defaults to settings)
            timeout: Request timeout in seconds
            transport: Custom httpx transport (for testing)
        """
        self.url = url or settings.webhook_url
        self.secret = secret or settings.webhook_secret
        self.timeout = timeout
        self.transport = transport
        self._client: httpx.AsyncClient | None = None
        self.delivered = 0
        self.failed = 0

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self.transport,
                headers={
                    "Content-Type": "application/json",
                    "X-Chatdb-Secret": self.secret,
                    "User-Agent": f"chatdb/{__version__}",
                },
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def forward_message(self, message: Message, watermark: int) -> bool:
        """
        Post one message to the webhook.

        Returns:
            True if the server answered 2xx, False otherwise
        """
        event = MessageEvent(
            event=WebhookEvent.MESSAGE_SENT if message.is_from_me else WebhookEvent.MESSAGE_RECEIVED,
            message=MessageSchema.model_validate(message),
            watermark=watermark,
        )

        try:
            client = await self._get_client()
            response = await client.post(self.url, json=event.model_dump(mode="json"))
        except httpx.TimeoutException:
            logger.error(f"Timeout forwarding message {message.guid} to {self.url}")
            return False
        except httpx.HTTPError as e:
            logger.error(f"Error forwarding message {message.guid}: {e}")
            return False

        if response.is_success:
            logger.info(f"Forwarded message {message.rowid} (id={message.guid})")
            return True

        logger.error(f"Failed to forward message {message.guid}: HTTP {response.status_code} - {response.text}")
        return False

    async def forward_batch(self, batch: TailBatch) -> int:
        """Forward every message in a live-tail batch. Returns how many were delivered."""
        delivered = 0
        for message in batch.messages:
            if await self.forward_message(message, batch.watermark):
                delivered += 1
        self.delivered += delivered
        self.failed += len(batch.messages) - delivered
        return delivered

    def get_stats(self) -> dict:
        return {"url": self.url, "delivered": self.delivered, "failed": self.failed}
