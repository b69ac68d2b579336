"""
chatdb CLI - read, search and tail the Messages database from a terminal.

Text output is one line per message in chronological order; --json prints
the records instead.
"""

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from chatdb.config import settings
from chatdb.imessage import (
    Archive,
    ArchiveAccessError,
    LiveTail,
    Message,
    MessageSender,
    format_message,
    open_archive,
)
from chatdb.imessage.formatting import local_time
from chatdb.webhooks.schemas import ConversationSchema, MessageSchema

app = typer.Typer(
    name="chatdb",
    help="Read, search and tail the macOS Messages database",
    no_args_is_help=True,
)

console = Console(highlight=False, emoji=False)
err_console = Console(stderr=True, highlight=False, emoji=False)

DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S"]

FULL_DISK_ACCESS_HINT = (
    "Make sure your terminal app has Full Disk Access in "
    "System Settings > Privacy & Security."
)


@app.callback()
def main(
    ctx: typer.Context,
    db: Optional[Path] = typer.Option(None, "--db", help="Path to chat.db (defaults to ~/Library/Messages/chat.db)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, settings.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    ctx.obj = {"db": db}


def _open(ctx: typer.Context) -> Archive:
    db_path = ctx.obj.get("db") if ctx.obj else None
    try:
        return open_archive(db_path)
    except ArchiveAccessError as e:
        err_console.print(f"[red]Error:[/red] {e}", soft_wrap=True)
        err_console.print(FULL_DISK_ACCESS_HINT, soft_wrap=True)
        raise typer.Exit(1)


def _local(dt: Optional[datetime]) -> Optional[datetime]:
    """Dates typed on the command line are local time."""
    return dt.astimezone() if dt is not None and dt.tzinfo is None else dt


def _print_messages(messages: list[Message], as_json: bool) -> None:
    """Print newest-first query results in chronological order."""
    chronological = list(reversed(messages))
    if as_json:
        payload = [MessageSchema.model_validate(m).model_dump(mode="json") for m in chronological]
        console.print_json(json.dumps(payload, ensure_ascii=False))
        return

    if not chronological:
        console.print("No messages found.")
        return
    for msg in chronological:
        console.print(format_message(msg), markup=False, soft_wrap=True)


@app.command()
def recent(
    ctx: typer.Context,
    limit: int = typer.Option(settings.default_limit, "--limit", "-n", min=1, help="Number of messages"),
    as_json: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """Show the most recent messages across all chats."""
    with _open(ctx) as archive:
        _print_messages(archive.recent(limit), as_json)


@app.command()
def search(
    ctx: typer.Context,
    term: str = typer.Argument(..., help="Text to look for (case-insensitive)"),
    limit: int = typer.Option(50, "--limit", "-n", min=1, help="Maximum results"),
    as_json: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """Search message text."""
    with _open(ctx) as archive:
        _print_messages(archive.search(term, limit), as_json)


@app.command()
def chats(
    ctx: typer.Context,
    limit: Optional[int] = typer.Option(None, "--limit", "-n", min=1, help="Maximum chats"),
    as_json: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """List chats, most recently active first."""
    with _open(ctx) as archive:
        conversations = archive.list_conversations(limit)

    if as_json:
        payload = [ConversationSchema.model_validate(c).model_dump(mode="json") for c in conversations]
        console.print_json(json.dumps(payload, ensure_ascii=False))
        return

    if not conversations:
        console.print("No chats found.")
        return
    for conv in conversations:
        last = local_time(conv.last_message_at).strftime("%Y-%m-%d %H:%M") if conv.last_message_at else "never"
        console.print(
            f"{conv.chat_id:>6}  {conv.title}  [{conv.service_name}]  "
            f"{conv.message_count} messages, last {last}",
            markup=False,
            soft_wrap=True,
        )


@app.command()
def history(
    ctx: typer.Context,
    chat_id: int = typer.Argument(..., help="Chat ID (see `chatdb chats`)"),
    limit: int = typer.Option(settings.default_limit, "--limit", "-n", min=1, help="Number of messages"),
    participant: Optional[list[str]] = typer.Option(None, "--participant", "-p", help="Only messages from this handle (repeatable)"),
    start: Optional[datetime] = typer.Option(None, "--start", formats=DATE_FORMATS, help="Include messages at or after (local time)"),
    end: Optional[datetime] = typer.Option(None, "--end", formats=DATE_FORMATS, help="Include messages before (local time)"),
    as_json: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """Show messages from one chat."""
    with _open(ctx) as archive:
        messages = archive.history(
            chat_id,
            limit,
            participants=participant,
            start=_local(start),
            end=_local(end),
        )
    _print_messages(messages, as_json)


async def _follow(tail: LiveTail, as_json: bool) -> None:
    async for batch in tail.follow():
        for msg in batch.messages:
            if as_json:
                record = MessageSchema.model_validate(msg).model_dump(mode="json")
                console.print(json.dumps({"message": record, "watermark": batch.watermark}, ensure_ascii=False), markup=False, soft_wrap=True)
            else:
                console.print(format_message(msg), markup=False, soft_wrap=True)


@app.command()
def watch(
    ctx: typer.Context,
    chat_id: Optional[int] = typer.Option(None, "--chat", help="Only this chat"),
    participant: Optional[list[str]] = typer.Option(None, "--participant", "-p", help="Only messages from this handle (repeatable)"),
    since_rowid: Optional[int] = typer.Option(None, "--since-rowid", min=0, help="Resume after this ROWID instead of starting at the newest message"),
    start: Optional[datetime] = typer.Option(None, "--start", formats=DATE_FORMATS, help="Only messages dated at or after (local time)"),
    end: Optional[datetime] = typer.Option(None, "--end", formats=DATE_FORMATS, help="Only messages dated before (local time)"),
    interval: float = typer.Option(settings.poll_interval, "--interval", min=0.01, help="Seconds between polls"),
    as_json: bool = typer.Option(False, "--json", help="Output one JSON object per line"),
) -> None:
    """Print new messages as they arrive. Stop with Ctrl-C."""
    with _open(ctx) as archive:
        tail = LiveTail(
            archive,
            watermark=since_rowid,
            poll_interval=interval,
            chat_id=chat_id,
            participants=participant,
            start=_local(start),
            end=_local(end),
        )
        err_console.print(f"Watching for new messages after ROWID {tail.watermark}...")
        try:
            asyncio.run(_follow(tail, as_json))
        except KeyboardInterrupt:
            err_console.print(f"Stopped at ROWID {tail.watermark}")


@app.command()
def send(
    recipient: Optional[str] = typer.Argument(None, help="Phone number or email"),
    text: Optional[str] = typer.Argument(None, help="Message text"),
    chat_guid: Optional[str] = typer.Option(None, "--chat", help="Send to an existing chat by its GUID instead"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Send a file instead of text"),
) -> None:
    """Send a message through the Messages app (best effort)."""
    sender = MessageSender()

    if chat_guid:
        message_text = text if text is not None else recipient
        response = asyncio.run(sender.send_to_chat(chat_guid, message_text or ""))
    elif file is not None:
        response = asyncio.run(sender.send_file(recipient or "", file))
    else:
        response = asyncio.run(sender.send(recipient or "", text or ""))

    if not response.success:
        err_console.print(f"[red]Send failed:[/red] {response.error}", soft_wrap=True)
        raise typer.Exit(1)
    console.print("Sent.")


@app.command()
def serve(
    host: str = typer.Option(settings.host, help="Bind address"),
    port: int = typer.Option(settings.port, help="Port"),
) -> None:
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run("chatdb.main:app", host=host, port=port)


if __name__ == "__main__":
    app()
