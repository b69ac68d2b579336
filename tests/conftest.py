"""
Pytest configuration and shared fixtures.

Tests run against a file-backed SQLite database that mirrors the parts of
the chat.db schema chatdb reads. The database is seeded through a separate
writer connection, the same way Messages writes to the real file while we
read it.
"""

import sqlite3
from datetime import datetime, timezone
from pathlib import Path

import pytest

from chatdb.imessage.reader import open_archive
from chatdb.imessage.timestamps import from_absolute

SCHEMA = """
    CREATE TABLE handle (
        ROWID INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT NOT NULL,
        service TEXT
    );

    CREATE TABLE chat (
        ROWID INTEGER PRIMARY KEY AUTOINCREMENT,
        guid TEXT,
        display_name TEXT,
        chat_identifier TEXT NOT NULL,
        service_name TEXT NOT NULL
    );

    CREATE TABLE message (
        ROWID INTEGER PRIMARY KEY AUTOINCREMENT,
        guid TEXT NOT NULL,
        text TEXT,
        attributedBody BLOB,
        handle_id INTEGER DEFAULT 0,
        service TEXT,
        date INTEGER NOT NULL,
        is_from_me INTEGER NOT NULL DEFAULT 0,
        cache_has_attachments INTEGER DEFAULT 0
    );

    CREATE TABLE attachment (
        ROWID INTEGER PRIMARY KEY AUTOINCREMENT,
        filename TEXT,
        mime_type TEXT,
        transfer_name TEXT,
        total_bytes INTEGER DEFAULT 0
    );

    CREATE TABLE chat_message_join (
        chat_id INTEGER NOT NULL,
        message_id INTEGER NOT NULL
    );

    CREATE TABLE message_attachment_join (
        message_id INTEGER NOT NULL,
        attachment_id INTEGER NOT NULL
    );
"""

# Prefix of a real typedstream attributedBody, up to the NSString payload marker
ATTRIBUTED_BODY_PREFIX = (
    b"\x04\x0bstreamtyped\x81\xe8\x03\x84\x01@\x84\x84\x84\x12NSAttributedString\x00"
    b"\x84\x84\x08NSObject\x00\x85\x92\x84\x84\x84\x08NSString\x01\x94\x84\x01+"
)
ATTRIBUTED_BODY_SUFFIX = b"\x86\x84\x02iI\x01\x05\x92\x84\x84\x84\x0cNSDictionary\x00\x94\x84\x01i\x01\x92\x86\x86"


def make_attributed_body(text: str) -> bytes:
    """Build an attributedBody BLOB carrying ``text``."""
    payload = text.encode("utf-8")
    if len(payload) < 0x80:
        length = bytes([len(payload)])
    else:
        length = b"\x81" + len(payload).to_bytes(2, "little")
    return ATTRIBUTED_BODY_PREFIX + length + payload + ATTRIBUTED_BODY_SUFFIX


def apple_ns(iso: str) -> int:
    """Apple nanoseconds for an ISO-8601 UTC timestamp."""
    return from_absolute(datetime.fromisoformat(iso).replace(tzinfo=timezone.utc))


T1 = apple_ns("2025-01-15T10:00:00")
T2 = apple_ns("2025-01-15T10:05:00")
T3 = apple_ns("2025-01-15T10:10:00")
T4 = apple_ns("2025-01-15T11:00:00")


def insert_message(
    conn: sqlite3.Connection,
    guid: str,
    date: int,
    text: str | None = None,
    handle_id: int = 0,
    service: str = "iMessage",
    is_from_me: bool = False,
    chat_id: int | None = None,
    attributed_body: bytes | None = None,
) -> int:
    """Insert a message (and its chat link) and return its ROWID."""
    cursor = conn.execute(
        "INSERT INTO message (guid, text, attributedBody, handle_id, service, date, is_from_me) "
        "VALUES (?, ?, ?, ?, ?, ?, ?)",
        (guid, text, attributed_body, handle_id, service, date, int(is_from_me)),
    )
    rowid = cursor.lastrowid
    if chat_id is not None:
        conn.execute("INSERT INTO chat_message_join (chat_id, message_id) VALUES (?, ?)", (chat_id, rowid))
    return rowid


def seed_basic_data(conn: sqlite3.Connection) -> None:
    """Two chats with two messages each, plus one chat with no messages."""
    conn.executescript(
        """
        INSERT INTO handle (ROWID, id) VALUES (1, '+15551234567');
        INSERT INTO handle (ROWID, id) VALUES (2, '+15559876543');

        INSERT INTO chat (ROWID, guid, display_name, chat_identifier, service_name)
            VALUES (1, 'iMessage;+;chat123', 'Family Chat', 'chat123', 'iMessage');
        INSERT INTO chat (ROWID, guid, display_name, chat_identifier, service_name)
            VALUES (2, 'SMS;-;+15559876543', NULL, '+15559876543', 'SMS');
        INSERT INTO chat (ROWID, guid, display_name, chat_identifier, service_name)
            VALUES (3, 'iMessage;-;quiet@example.com', NULL, 'quiet@example.com', 'iMessage');
        """
    )

    insert_message(conn, "guid-1", T1, "Hello everyone!", handle_id=1, chat_id=1)
    insert_message(conn, "guid-2", T2, "Hey there", handle_id=0, is_from_me=True, chat_id=1)
    insert_message(conn, "guid-3", T3, None, handle_id=2, service="SMS", chat_id=2)
    insert_message(conn, "guid-4", T4, "Dinner tonight?", handle_id=2, service="SMS", chat_id=2)

    # Two attachments on the NULL-text message
    conn.executescript(
        """
        INSERT INTO attachment (ROWID, filename, mime_type, transfer_name, total_bytes)
            VALUES (1, '~/Library/Messages/Attachments/IMG_001.heic', 'image/heic', 'IMG_001.heic', 1024);
        INSERT INTO attachment (ROWID, filename, mime_type, transfer_name, total_bytes)
            VALUES (2, '~/Library/Messages/Attachments/IMG_002.jpg', 'image/jpeg', 'IMG_002.jpg', 2048);
        INSERT INTO message_attachment_join (message_id, attachment_id) VALUES (3, 1);
        INSERT INTO message_attachment_join (message_id, attachment_id) VALUES (3, 2);
        """
    )


@pytest.fixture
def db_path(tmp_path) -> Path:
    """An empty chat.db with the Messages schema."""
    path = tmp_path / "chat.db"
    conn = sqlite3.connect(path)
    conn.executescript(SCHEMA)
    conn.close()
    return path


@pytest.fixture
def writer(db_path):
    """Autocommit read-write connection, standing in for Messages."""
    conn = sqlite3.connect(db_path, isolation_level=None)
    yield conn
    conn.close()


@pytest.fixture
def seeded_db(db_path, writer) -> Path:
    seed_basic_data(writer)
    return db_path


@pytest.fixture
def archive(seeded_db):
    """Read-only archive over the seeded database."""
    archive = open_archive(seeded_db)
    yield archive
    archive.close()


@pytest.fixture
def empty_archive(db_path):
    archive = open_archive(db_path)
    yield archive
    archive.close()
