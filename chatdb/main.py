"""
chatdb - read-only HTTP API over the Messages database.

Serves recent messages, search, chat listings and per-chat history from
chat.db, a polling endpoint for new messages, and an authenticated send
endpoint. When CHATDB_WEBHOOK_URL is set, new messages are also pushed to
that URL as they arrive.

Run with:
    uvicorn chatdb.main:app --host 127.0.0.1 --port 8080
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import Depends, FastAPI, Header, HTTPException, Query, status

from chatdb import __version__
from chatdb.config import settings
from chatdb.imessage import Archive, ArchiveAccessError, LiveTail, MessageSender, open_archive
from chatdb.webhooks import (
    ConversationSchema,
    MessageSchema,
    SendMessageRequest,
    SendMessageResponse,
    TailBatchSchema,
    WebhookClient,
)
from chatdb.webhooks.schemas import HealthResponse

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Global state
_archive: Archive | None = None
_sender: MessageSender | None = None
_forwarder: WebhookClient | None = None
_tail: LiveTail | None = None


async def _start_forwarding():
    """Tail chat.db on a dedicated connection and push new messages to the webhook."""
    global _forwarder, _tail

    try:
        tail_archive = open_archive()
    except ArchiveAccessError as e:
        logger.error(f"Webhook forwarding disabled: {e}")
        return

    _forwarder = WebhookClient()
    _tail = LiveTail(tail_archive)
    _tail.start(on_batch=_forwarder.forward_batch)
    logger.info(f"Forwarding new messages to {settings.webhook_url}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown logic."""
    global _archive, _sender, _forwarder, _tail

    logger.info(f"Starting chatdb on {settings.host}:{settings.port} (chat.db at {settings.chat_db_path})")
    _sender = MessageSender()

    if settings.webhook_url:
        await _start_forwarding()

    yield

    logger.info("Shutting down chatdb...")

    if _tail:
        _tail.stop()
        _tail.archive.close()
        _tail = None

    if _forwarder:
        await _forwarder.close()
        _forwarder = None

    if _archive:
        _archive.close()
        _archive = None

    logger.info("chatdb stopped")


app = FastAPI(
    title="chatdb",
    description="Read-only access to the macOS Messages database",
    version=__version__,
    lifespan=lifespan,
)


# --- Dependencies ---

def get_archive() -> Archive:
    """Open chat.db on first use; 503 if it can't be read."""
    global _archive
    if _archive is None:
        try:
            _archive = open_archive()
        except ArchiveAccessError as e:
            logger.error(str(e))
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return _archive


def get_sender() -> MessageSender:
    if _sender is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Message sender not initialized",
        )
    return _sender


async def verify_secret(
    x_chatdb_secret: str | None = Header(None, alias="X-Chatdb-Secret"),
):
    """Verify the shared secret for endpoints that act on the user's behalf."""
    if not x_chatdb_secret or x_chatdb_secret != settings.webhook_secret:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing X-Chatdb-Secret header",
        )


# --- Health ---

@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Report whether chat.db is readable and how forwarding is doing."""
    try:
        archive = get_archive()
        max_rowid = archive.max_rowid()
        db_ok, db_status = True, "ok"
    except HTTPException as e:
        max_rowid, db_ok, db_status = None, False, str(e.detail)

    return HealthResponse(
        status="healthy" if db_ok else "unhealthy",
        chat_db_path=str(settings.chat_db_path),
        chat_db_accessible=db_ok,
        chat_db_status=db_status,
        max_rowid=max_rowid,
        forwarder={
            "enabled": bool(settings.webhook_url),
            "running": _tail.is_running if _tail else False,
            "watermark": _tail.watermark if _tail else None,
            **(_forwarder.get_stats() if _forwarder else {}),
        },
    )


@app.get("/ping")
async def ping():
    """Simple ping endpoint. Returns 200 if server is up."""
    return {"pong": True}


# --- Messages ---

@app.get("/messages/recent", response_model=list[MessageSchema])
async def recent_messages(
    limit: int = Query(settings.default_limit, ge=1),
    archive: Archive = Depends(get_archive),
):
    """Most recent messages across all chats, newest first."""
    return [MessageSchema.model_validate(m) for m in archive.recent(limit)]


@app.get("/messages/search", response_model=list[MessageSchema])
async def search_messages(
    q: str = Query(..., min_length=1),
    limit: int = Query(50, ge=1),
    archive: Archive = Depends(get_archive),
):
    """Case-insensitive substring search over message text, newest first."""
    return [MessageSchema.model_validate(m) for m in archive.search(q, limit)]


@app.get("/messages/new", response_model=TailBatchSchema)
async def new_messages(
    after: int | None = Query(None, ge=0, description="Watermark from the previous call"),
    chat_id: int | None = None,
    participant: list[str] | None = Query(None),
    start: datetime | None = None,
    end: datetime | None = None,
    archive: Archive = Depends(get_archive),
):
    """
    One live-tail step: messages with ROWID > after, oldest first, with the
    same chat, participant and [start, end) filters as chat history.

    Without ``after`` nothing is returned and the watermark is the current
    maximum ROWID, so the next call reports only messages arriving after it.
    """
    tail = LiveTail(
        archive,
        watermark=after,
        chat_id=chat_id,
        participants=participant,
        start=start,
        end=end,
    )
    return TailBatchSchema.model_validate(tail.poll())


# --- Chats ---

@app.get("/chats", response_model=list[ConversationSchema])
async def list_chats(
    limit: int | None = Query(None, ge=1),
    archive: Archive = Depends(get_archive),
):
    """Chats ordered by most recent activity."""
    return [ConversationSchema.model_validate(c) for c in archive.list_conversations(limit)]


@app.get("/chats/{chat_id}", response_model=ConversationSchema)
async def get_chat(chat_id: int, archive: Archive = Depends(get_archive)):
    conversation = archive.get_conversation(chat_id)
    if conversation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Chat {chat_id} not found")
    return ConversationSchema.model_validate(conversation)


@app.get("/chats/{chat_id}/messages", response_model=list[MessageSchema])
async def chat_history(
    chat_id: int,
    limit: int = Query(settings.default_limit, ge=1),
    participant: list[str] | None = Query(None),
    start: datetime | None = None,
    end: datetime | None = None,
    archive: Archive = Depends(get_archive),
):
    """Messages in one chat, newest first, optionally filtered by sender and [start, end)."""
    messages = archive.history(chat_id, limit, participants=participant, start=start, end=end)
    return [MessageSchema.model_validate(m) for m in messages]


# --- Send ---

@app.post(
    "/send",
    response_model=SendMessageResponse,
    dependencies=[Depends(verify_secret)],
)
async def send_message(request: SendMessageRequest, sender: MessageSender = Depends(get_sender)):
    """
    Send a message to a handle or an existing chat.

    Requires X-Chatdb-Secret header for authentication.
    """
    if request.chat_guid:
        response = await sender.send_to_chat(request.chat_guid, request.text)
    elif request.recipient:
        response = await sender.send(request.recipient, request.text)
    else:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Either recipient or chat_guid is required",
        )

    return SendMessageResponse(success=response.success, error=response.error)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "chatdb.main:app",
        host=settings.host,
        port=settings.port,
    )
