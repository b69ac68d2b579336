"""
Live tail - follow chat.db for new messages.

Messages keeps writing to chat.db while we read it and there is no change
notification, so the tail polls for rows with a ROWID above the last one it
delivered (the watermark).

Each poll runs inside its own read transaction. Without that, a long-lived
connection can keep reading an old snapshot of the WAL and never see new
rows even though the file keeps changing on disk.
"""

import asyncio
import logging
import sqlite3
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable, Sequence

from chatdb.config import settings
from chatdb.imessage.models import Message, TailBatch, TailState
from chatdb.imessage.reader import Archive

logger = logging.getLogger(__name__)


def _unique(messages: list[Message]) -> list[Message]:
    seen: set[int] = set()
    unique = []
    for msg in messages:
        if msg.rowid not in seen:
            seen.add(msg.rowid)
            unique.append(msg)
    return unique


class LiveTail:
    """
    Incremental cursor over new messages.

    Usage:
        tail = LiveTail(archive)
        batch = tail.poll()          # one step
        async for batch in tail.follow():
            for msg in batch.messages:
                print(msg)
    """

    def __init__(
        self,
        archive: Archive,
        watermark: int | None = None,
        poll_interval: float | None = None,
        chat_id: int | None = None,
        participants: Sequence[str] | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ):
        """
        Initialize the cursor.

        Args:
            archive: Open archive to poll
            watermark: Highest ROWID already seen; defaults to the current
                maximum so only messages arriving from now on are reported
            poll_interval: Seconds between polls in follow()
            chat_id, participants, start, end: Same filters as Archive.history
        """
        self.archive = archive
        self.poll_interval = settings.poll_interval if poll_interval is None else poll_interval
        self.chat_id = chat_id
        self.participants = list(participants) if participants else None
        self.start = start
        self.end = end
        self.watermark = archive.max_rowid() if watermark is None else watermark
        self.state = TailState.IDLE
        self._running = False
        self._task: asyncio.Task | None = None

    def poll(self) -> TailBatch:
        """
        Fetch every message newer than the watermark, oldest first.

        The watermark moves to the highest ROWID in the batch, so gaps in
        ROWIDs are fine. A message linked to several chats is reported once,
        with the lowest chat_id it is joined to. Database errors propagate.
        """
        self.state = TailState.POLLING
        try:
            with self.archive.read_transaction():
                messages = self.archive.messages_after(
                    self.watermark,
                    chat_id=self.chat_id,
                    participants=self.participants,
                    start=self.start,
                    end=self.end,
                )
        finally:
            self.state = TailState.IDLE

        messages = _unique(messages)

        if messages:
            self.watermark = max(self.watermark, max(m.rowid for m in messages))
            logger.debug(f"Tail found {len(messages)} new messages, watermark={self.watermark}")

        return TailBatch(messages=messages, watermark=self.watermark)

    async def follow(self) -> AsyncIterator[TailBatch]:
        """Poll forever, yielding non-empty batches. Stop by breaking out or cancelling."""
        while True:
            batch = self.poll()
            if batch.messages:
                yield batch
            await asyncio.sleep(self.poll_interval)

    async def _run(self, on_batch: Callable[[TailBatch], Awaitable[None]]):
        """Background loop used by start()."""
        logger.info(f"Starting live tail at ROWID={self.watermark}, polling every {self.poll_interval}s")

        while self._running:
            try:
                batch = self.poll()
                if batch.messages:
                    try:
                        await on_batch(batch)
                    except Exception as e:
                        logger.error(f"Error in batch callback: {e}")
            except sqlite3.Error as e:
                logger.error(f"Database error while polling: {e}")

            await asyncio.sleep(self.poll_interval)

    def start(self, on_batch: Callable[[TailBatch], Awaitable[None]]) -> None:
        """Run the tail as a background task, calling ``on_batch`` for each batch."""
        if self._running:
            logger.warning("Live tail already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run(on_batch))

    def stop(self) -> None:
        """Stop the background task."""
        logger.info(f"Stopping live tail at ROWID={self.watermark}")
        self._running = False
        if self._task:
            self._task.cancel()
            self._task = None

    @property
    def is_running(self) -> bool:
        return self._running
