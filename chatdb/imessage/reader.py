"""
Read-only queries over the Messages database (chat.db).

All queries go through a single read-only connection. The connection runs in
autocommit mode so the only transactions are the explicit read transactions
opened by ``Archive.read_transaction`` (used by the live tail).

Requirements:
- Full Disk Access must be granted to the Python process
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Sequence

from chatdb.config import settings
from chatdb.imessage.attachments import resolve_attachment_path
from chatdb.imessage.body import decode_attributed_body
from chatdb.imessage.models import Attachment, Conversation, Message
from chatdb.imessage.timestamps import from_absolute, to_absolute

logger = logging.getLogger(__name__)


class ArchiveAccessError(Exception):
    """The Messages database could not be opened or read."""


MESSAGE_SELECT = """
    SELECT
        m.ROWID AS rowid,
        m.guid,
        m.text,
        m.attributedBody AS attributed_body,
        m.handle_id,
        m.service,
        m.date,
        m.is_from_me,
        cmj.chat_id,
        c.display_name,
        c.chat_identifier,
        h.id AS handle
    FROM message m
    LEFT JOIN chat_message_join cmj ON cmj.message_id = m.ROWID
    LEFT JOIN chat c ON c.ROWID = cmj.chat_id
    LEFT JOIN handle h ON h.ROWID = m.handle_id
"""

CONVERSATION_SELECT = """
    SELECT
        c.ROWID AS chat_id,
        c.guid,
        c.display_name,
        c.chat_identifier,
        c.service_name,
        COUNT(m.ROWID) AS message_count,
        MAX(m.date) AS last_message_date
    FROM chat c
    LEFT JOIN chat_message_join cmj ON cmj.chat_id = c.ROWID
    LEFT JOIN message m ON m.ROWID = cmj.message_id
"""

ATTACHMENT_SELECT = """
    SELECT
        maj.message_id,
        a.filename,
        a.mime_type,
        a.transfer_name,
        a.total_bytes
    FROM message_attachment_join maj
    INNER JOIN attachment a ON a.ROWID = maj.attachment_id
    WHERE maj.message_id IN ({placeholders})
    ORDER BY maj.message_id, a.ROWID
"""


def _column(row: Mapping[str, Any], key: str) -> Any:
    """Read an optional column from a sqlite3.Row or dict."""
    return row[key] if key in row.keys() else None


def escape_like(term: str) -> str:
    """Escape LIKE wildcards so the term matches literally (used with ESCAPE '\\')."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def build_attachment(row: Mapping[str, Any]) -> Attachment:
    """Build an Attachment from an attachment row, resolving its path now."""
    path, exists = resolve_attachment_path(row["filename"])
    return Attachment(
        filename=row["filename"],
        path=path,
        exists=exists,
        mime_type=_column(row, "mime_type"),
        transfer_name=_column(row, "transfer_name"),
        total_bytes=_column(row, "total_bytes"),
    )


def group_attachments(rows: Iterable[Mapping[str, Any]]) -> dict[int, list[Attachment]]:
    """Group attachment rows by message ROWID, skipping rows without a filename."""
    grouped: dict[int, list[Attachment]] = {}
    for row in rows:
        if not row["filename"]:
            continue
        grouped.setdefault(row["message_id"], []).append(build_attachment(row))
    return grouped


def build_message(row: Mapping[str, Any], attachments: list[Attachment] | None = None) -> Message:
    """
    Turn a message row into a Message.

    Plain text wins; the attributedBody BLOB is only decoded when the text
    column is empty.
    """
    text = row["text"] or decode_attributed_body(_column(row, "attributed_body"))
    date = row["date"] or 0
    return Message(
        rowid=row["rowid"],
        guid=row["guid"],
        text=text or None,
        date=date,
        sent_at=to_absolute(date),
        is_from_me=bool(row["is_from_me"]),
        service=row["service"] or "",
        handle_id=_column(row, "handle_id"),
        handle=_column(row, "handle"),
        chat_id=_column(row, "chat_id"),
        display_name=_column(row, "display_name"),
        chat_identifier=_column(row, "chat_identifier"),
        attachments=list(attachments or []),
    )


def build_messages(
    rows: Iterable[Mapping[str, Any]],
    attachment_rows: Iterable[Mapping[str, Any]] = (),
) -> list[Message]:
    """Combine message rows with their attachment rows. Order of ``rows`` is kept."""
    by_message = group_attachments(attachment_rows)
    return [build_message(row, by_message.get(row["rowid"])) for row in rows]


def build_conversation(row: Mapping[str, Any]) -> Conversation:
    last_date = row["last_message_date"]
    return Conversation(
        chat_id=row["chat_id"],
        chat_identifier=row["chat_identifier"],
        service_name=row["service_name"],
        display_name=row["display_name"],
        guid=_column(row, "guid"),
        message_count=row["message_count"] or 0,
        last_message_date=last_date,
        last_message_at=to_absolute(last_date) if last_date is not None else None,
    )


def _filter_clause(
    chat_id: int | None = None,
    participants: Sequence[str] | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> tuple[list[str], list[Any]]:
    """Build WHERE conditions shared by history and the live tail."""
    conditions: list[str] = []
    params: list[Any] = []

    if chat_id is not None:
        conditions.append("cmj.chat_id = ?")
        params.append(chat_id)

    if participants:
        placeholders = ", ".join("?" * len(participants))
        conditions.append(f"h.id IN ({placeholders})")
        params.extend(participants)

    # Half-open range [start, end)
    if start is not None:
        conditions.append("m.date >= ?")
        params.append(from_absolute(start))
    if end is not None:
        conditions.append("m.date < ?")
        params.append(from_absolute(end))

    return conditions, params


class Archive:
    """
    Read-only access to chat.db.

    Usage:
        with open_archive() as archive:
            for msg in archive.recent(10):
                print(msg)
    """

    def __init__(self, conn: sqlite3.Connection, path: Path | None = None):
        self.conn = conn
        self.path = path

    def __enter__(self) -> "Archive":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.conn.close()

    @contextmanager
    def read_transaction(self) -> Iterator[None]:
        """
        Run the enclosed queries in a fresh read transaction.

        Starting the transaction right before the query and ending it right
        after makes SQLite take a new snapshot, so rows committed by Messages
        since the previous read are visible.
        """
        self.conn.execute("BEGIN")
        try:
            yield
        except BaseException:
            self.conn.execute("ROLLBACK")
            raise
        self.conn.execute("COMMIT")

    def _fetch_messages(self, sql: str, params: Sequence[Any]) -> list[Message]:
        rows = self.conn.execute(sql, params).fetchall()
        return build_messages(rows, self._fetch_attachment_rows([row["rowid"] for row in rows]))

    def _fetch_attachment_rows(self, message_ids: list[int]) -> list[sqlite3.Row]:
        """Load attachment rows for a batch of messages in one query."""
        if not message_ids:
            return []
        placeholders = ", ".join("?" * len(message_ids))
        return self.conn.execute(ATTACHMENT_SELECT.format(placeholders=placeholders), message_ids).fetchall()

    def max_rowid(self) -> int:
        """Get the highest message ROWID in the database."""
        result = self.conn.execute("SELECT MAX(ROWID) FROM message").fetchone()[0]
        return result or 0

    def recent(self, limit: int) -> list[Message]:
        """The ``limit`` most recent messages, newest first."""
        sql = f"{MESSAGE_SELECT} ORDER BY m.date DESC, m.ROWID DESC LIMIT ?"
        return self._fetch_messages(sql, (limit,))

    def search(self, term: str, limit: int) -> list[Message]:
        """
        Case-insensitive substring search over the text column, newest first.

        Only ``message.text`` is matched. Messages whose body lives solely in
        attributedBody are not searched.
        """
        sql = f"""
            {MESSAGE_SELECT}
            WHERE m.text LIKE ? ESCAPE '\\'
            ORDER BY m.date DESC, m.ROWID DESC
            LIMIT ?
        """
        return self._fetch_messages(sql, (f"%{escape_like(term)}%", limit))

    def history(
        self,
        chat_id: int,
        limit: int,
        participants: Sequence[str] | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Message]:
        """
        Messages in one chat, newest first.

        Args:
            chat_id: chat ROWID
            limit: maximum number of messages
            participants: only messages whose sender handle is one of these
            start: include messages at or after this instant
            end: include messages strictly before this instant
        """
        conditions, params = _filter_clause(chat_id, participants, start, end)
        sql = f"""
            {MESSAGE_SELECT}
            WHERE {" AND ".join(conditions)}
            ORDER BY m.date DESC, m.ROWID DESC
            LIMIT ?
        """
        return self._fetch_messages(sql, (*params, limit))

    def messages_after(
        self,
        watermark: int,
        chat_id: int | None = None,
        participants: Sequence[str] | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Message]:
        """All messages with ROWID > watermark, oldest first."""
        conditions, params = _filter_clause(chat_id, participants, start, end)
        conditions.insert(0, "m.ROWID > ?")
        sql = f"""
            {MESSAGE_SELECT}
            WHERE {" AND ".join(conditions)}
            ORDER BY m.ROWID ASC, cmj.chat_id ASC
        """
        return self._fetch_messages(sql, (watermark, *params))

    def list_conversations(self, limit: int | None = None) -> list[Conversation]:
        """Chats ordered by most recent activity; chats without messages come last."""
        sql = f"""
            {CONVERSATION_SELECT}
            GROUP BY c.ROWID
            ORDER BY last_message_date IS NULL, last_message_date DESC, c.ROWID
        """
        params: tuple = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        return [build_conversation(row) for row in self.conn.execute(sql, params)]

    def get_conversation(self, chat_id: int) -> Conversation | None:
        sql = f"{CONVERSATION_SELECT} WHERE c.ROWID = ? GROUP BY c.ROWID"
        row = self.conn.execute(sql, (chat_id,)).fetchone()
        return build_conversation(row) if row else None


def connect_readonly(db_path: Path) -> sqlite3.Connection:
    """Create a read-only, autocommit connection to chat.db."""
    uri = f"{db_path.resolve().as_uri()}?mode=ro"
    conn = sqlite3.connect(uri, uri=True, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def open_archive(db_path: Path | str | None = None) -> Archive:
    """
    Open chat.db read-only and check that it can actually be read.

    Raises:
        ArchiveAccessError: the file is missing, unreadable (usually missing
            Full Disk Access) or not a Messages database
    """
    path = Path(db_path) if db_path else settings.chat_db_path
    if not path.exists():
        raise ArchiveAccessError(
            f"Messages database not found at {path}. "
            "Ensure Messages app has been used and Full Disk Access is enabled."
        )

    conn = None
    try:
        conn = connect_readonly(path)
        conn.execute("SELECT 1 FROM message LIMIT 1").fetchall()
    except sqlite3.Error as e:
        if conn is not None:
            conn.close()
        raise ArchiveAccessError(f"Cannot read Messages database at {path}: {e}") from e

    logger.debug(f"Opened {path} read-only")
    return Archive(conn, path)
