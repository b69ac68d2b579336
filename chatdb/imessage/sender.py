"""
Message sender - send messages via AppleScript.

Uses macOS's `osascript` command to drive the Messages app. Sending is best
effort: Messages gives no delivery confirmation through AppleScript, so a
successful result only means the script ran.
"""

import asyncio
import logging
import shutil
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from chatdb.config import settings

logger = logging.getLogger(__name__)


class SendResult(Enum):
    """Result of a send attempt."""

    SUCCESS = "success"
    FAILED = "failed"
    INVALID_RECIPIENT = "invalid_recipient"


@dataclass
class SendResponse:
    """Response from a send attempt."""

    result: SendResult
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.result == SendResult.SUCCESS


def escape_applescript(text: str) -> str:
    """Escape backslashes and double quotes for an AppleScript string literal."""
    return text.replace("\\", "\\\\").replace('"', '\\"')


def _payload(text: str | None = None, file_path: str | None = None) -> tuple[str, str]:
    """Return (setup lines, send expression) for a text or file payload."""
    if file_path is not None:
        return f'    set theFile to POSIX file "{escape_applescript(file_path)}"\n', "theFile"
    return "", f'"{escape_applescript(text or "")}"'


def build_buddy_script(recipient: str, text: str | None = None, file_path: str | None = None) -> str:
    """Send to a phone number or email via the iMessage account (Ventura+)."""
    setup, payload = _payload(text, file_path)
    return (
        'tell application "Messages"\n'
        "    set targetService to 1st account whose service type = iMessage\n"
        f'    set targetBuddy to participant "{escape_applescript(recipient)}" of targetService\n'
        f"{setup}"
        f"    send {payload} to targetBuddy\n"
        "end tell"
    )


def build_buddy_script_fallback(recipient: str, text: str | None = None, file_path: str | None = None) -> str:
    """Older macOS versions use 'service' and 'buddy' instead of 'account' and 'participant'."""
    setup, payload = _payload(text, file_path)
    return (
        'tell application "Messages"\n'
        "    set targetService to 1st service whose service type = iMessage\n"
        f'    set targetBuddy to buddy "{escape_applescript(recipient)}" of targetService\n'
        f"{setup}"
        f"    send {payload} to targetBuddy\n"
        "end tell"
    )


def build_chat_script(chat_guid: str, text: str | None = None, file_path: str | None = None) -> str:
    """Send to an existing chat (works for group chats) by its chat.guid."""
    setup, payload = _payload(text, file_path)
    return (
        'tell application "Messages"\n'
        f'    set targetChat to chat id "{escape_applescript(chat_guid)}"\n'
        f"{setup}"
        f"    send {payload} to targetChat\n"
        "end tell"
    )


class MessageSender:
    """
    Send iMessages/SMS via AppleScript.

    Usage:
        sender = MessageSender()
        response = await sender.send("+15551234567", "Hello!")
        if response.success:
            print("Message sent!")
    """

    def __init__(self, timeout: float | None = None, staging_dir: Path | None = None):
        """
        Initialize the sender.

        Args:
            timeout: Maximum seconds to wait for AppleScript to complete
            staging_dir: Where files are copied before being sent
        """
        self.timeout = settings.send_timeout if timeout is None else timeout
        self.staging_dir = Path(staging_dir or settings.staging_dir)

    async def _run_applescript(self, script: str) -> tuple[int, str, str]:
        """
        Execute an AppleScript and return (returncode, stdout, stderr).
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                "osascript",
                "-e",
                script,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            logger.error("osascript not found; sending requires macOS")
            return (1, "", "osascript not found")

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            logger.error(f"AppleScript timed out after {self.timeout}s")
            return (1, "", "Timeout")

        return (
            proc.returncode or 0,
            stdout.decode("utf-8").strip(),
            stderr.decode("utf-8").strip(),
        )

    def _failure(self, target: str, error_msg: str) -> SendResponse:
        logger.error(f"Failed to send to {target}: {error_msg}")
        if "buddy" in error_msg.lower() or "participant" in error_msg.lower():
            return SendResponse(
                result=SendResult.INVALID_RECIPIENT,
                error=f"Could not find recipient {target}. Ensure they have iMessage enabled.",
            )
        return SendResponse(result=SendResult.FAILED, error=error_msg)

    async def _send_to_buddy(self, recipient: str, text: str | None = None, file_path: str | None = None) -> SendResponse:
        returncode, _, stderr = await self._run_applescript(build_buddy_script(recipient, text, file_path))
        if returncode == 0:
            logger.info(f"Successfully sent to {recipient}")
            return SendResponse(result=SendResult.SUCCESS)

        logger.warning(f"Primary send failed: {stderr}, trying fallback...")

        returncode, _, stderr = await self._run_applescript(build_buddy_script_fallback(recipient, text, file_path))
        if returncode == 0:
            logger.info(f"Successfully sent to {recipient} (fallback)")
            return SendResponse(result=SendResult.SUCCESS)

        return self._failure(recipient, stderr or "Unknown AppleScript error")

    async def send(self, recipient: str, text: str) -> SendResponse:
        """
        Send a text message to a phone number or email.

        Args:
            recipient: Handle, e.g. "+15551234567" or "user@icloud.com"
            text: Message content to send
        """
        if not recipient:
            return SendResponse(result=SendResult.INVALID_RECIPIENT, error="Recipient is required")
        if not text:
            return SendResponse(result=SendResult.FAILED, error="Message text is required")

        logger.info(f"Sending message to {recipient}: {text[:50]}...")
        return await self._send_to_buddy(recipient, text=text)

    async def send_to_chat(self, chat_guid: str, text: str) -> SendResponse:
        """Send a text message to an existing chat, identified by chat.guid."""
        if not chat_guid:
            return SendResponse(result=SendResult.INVALID_RECIPIENT, error="Chat GUID is required")
        if not text:
            return SendResponse(result=SendResult.FAILED, error="Message text is required")

        logger.info(f"Sending message to chat {chat_guid}: {text[:50]}...")
        returncode, _, stderr = await self._run_applescript(build_chat_script(chat_guid, text=text))
        if returncode == 0:
            logger.info(f"Successfully sent to chat {chat_guid}")
            return SendResponse(result=SendResult.SUCCESS)
        return self._failure(chat_guid, stderr or "Unknown AppleScript error")

    def stage_file(self, file_path: Path) -> Path:
        """
        Copy a file into the staging directory.

        Messages is sandboxed and can fail to read files from arbitrary
        locations, so attachments are sent from a copy under ``staging_dir``.
        """
        target_dir = self.staging_dir / uuid.uuid4().hex[:12]
        target_dir.mkdir(parents=True, exist_ok=True)
        staged = target_dir / file_path.name
        shutil.copy2(file_path, staged)
        logger.debug(f"Staged {file_path} -> {staged}")
        return staged

    async def send_file(self, recipient: str, file_path: str | Path) -> SendResponse:
        """
        Send a file attachment to a phone number or email.

        Args:
            recipient: Handle, e.g. "+15551234567"
            file_path: Path to the file to send
        """
        if not recipient:
            return SendResponse(result=SendResult.INVALID_RECIPIENT, error="Recipient is required")

        path = Path(file_path).expanduser()
        if not path.exists():
            return SendResponse(result=SendResult.FAILED, error=f"File not found: {file_path}")
        if not path.is_file():
            return SendResponse(result=SendResult.FAILED, error=f"Path is not a file: {file_path}")

        try:
            staged = self.stage_file(path)
        except OSError as e:
            return SendResponse(result=SendResult.FAILED, error=f"Could not stage file: {e}")

        logger.info(f"Sending attachment to {recipient}: {path.name}")
        return await self._send_to_buddy(recipient, file_path=str(staged.absolute()))
