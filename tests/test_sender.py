"""
Tests for the AppleScript sender.

osascript is never executed; ``_run_applescript`` is replaced by a fake that
records the scripts and replays canned results.
"""

import asyncio

import pytest

from chatdb.imessage.sender import (
    MessageSender,
    SendResult,
    build_buddy_script,
    build_chat_script,
    escape_applescript,
)


class FakeOsascript:
    def __init__(self, *results):
        self.results = list(results) or [(0, "", "")]
        self.scripts = []

    async def __call__(self, script):
        self.scripts.append(script)
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


@pytest.fixture
def sender(tmp_path):
    return MessageSender(timeout=1.0, staging_dir=tmp_path / "outbox")


def install(monkeypatch, sender, *results) -> FakeOsascript:
    fake = FakeOsascript(*results)
    monkeypatch.setattr(sender, "_run_applescript", fake)
    return fake


class TestScripts:
    def test_escape_quotes_and_backslashes(self):
        assert escape_applescript('say "hi" \\o/') == 'say \\"hi\\" \\\\o/'

    def test_buddy_script_text(self):
        script = build_buddy_script("+15551234567", text='He said "yes"')
        assert 'participant "+15551234567" of targetService' in script
        assert 'send "He said \\"yes\\"" to targetBuddy' in script

    def test_buddy_script_file(self):
        script = build_buddy_script("+15551234567", file_path="/tmp/out/IMG 1.jpg")
        assert 'set theFile to POSIX file "/tmp/out/IMG 1.jpg"' in script
        assert "send theFile to targetBuddy" in script

    def test_chat_script(self):
        script = build_chat_script("iMessage;+;chat123", text="hello")
        assert 'set targetChat to chat id "iMessage;+;chat123"' in script
        assert 'send "hello" to targetChat' in script


class TestSend:
    def test_success(self, sender, monkeypatch):
        fake = install(monkeypatch, sender, (0, "", ""))
        response = asyncio.run(sender.send("+15551234567", "Hello!"))

        assert response.success
        assert response.error is None
        assert len(fake.scripts) == 1
        assert "participant" in fake.scripts[0]

    def test_falls_back_to_buddy_syntax(self, sender, monkeypatch):
        fake = install(monkeypatch, sender, (1, "", "syntax error"), (0, "", ""))
        response = asyncio.run(sender.send("+15551234567", "Hello!"))

        assert response.success
        assert len(fake.scripts) == 2
        assert 'buddy "+15551234567"' in fake.scripts[1]

    def test_unknown_recipient(self, sender, monkeypatch):
        install(monkeypatch, sender, (1, "", "Can't get buddy id \"nobody\"."))
        response = asyncio.run(sender.send("nobody", "Hello!"))

        assert response.result == SendResult.INVALID_RECIPIENT
        assert "nobody" in response.error

    def test_other_failure(self, sender, monkeypatch):
        install(monkeypatch, sender, (1, "", "Messages got an error: not authorized"))
        response = asyncio.run(sender.send("+15551234567", "Hello!"))

        assert response.result == SendResult.FAILED
        assert response.error == "Messages got an error: not authorized"

    def test_empty_stderr(self, sender, monkeypatch):
        install(monkeypatch, sender, (1, "", ""))
        response = asyncio.run(sender.send("+15551234567", "Hello!"))
        assert response.error == "Unknown AppleScript error"

    def test_requires_recipient(self, sender, monkeypatch):
        fake = install(monkeypatch, sender)
        response = asyncio.run(sender.send("", "Hello!"))

        assert response.result == SendResult.INVALID_RECIPIENT
        assert fake.scripts == []

    def test_requires_text(self, sender, monkeypatch):
        fake = install(monkeypatch, sender)
        response = asyncio.run(sender.send("+15551234567", ""))

        assert response.result == SendResult.FAILED
        assert fake.scripts == []


class TestSendToChat:
    def test_success(self, sender, monkeypatch):
        fake = install(monkeypatch, sender)
        response = asyncio.run(sender.send_to_chat("iMessage;+;chat123", "hi all"))

        assert response.success
        assert 'chat id "iMessage;+;chat123"' in fake.scripts[0]

    def test_no_fallback(self, sender, monkeypatch):
        fake = install(monkeypatch, sender, (1, "", "Can't get chat id"))
        response = asyncio.run(sender.send_to_chat("iMessage;+;missing", "hi"))

        assert response.result == SendResult.FAILED
        assert len(fake.scripts) == 1

    def test_requires_guid(self, sender, monkeypatch):
        install(monkeypatch, sender)
        response = asyncio.run(sender.send_to_chat("", "hi"))
        assert response.result == SendResult.INVALID_RECIPIENT


class TestSendFile:
    def test_stages_copy_and_sends_it(self, sender, monkeypatch, tmp_path):
        source = tmp_path / "photo.jpg"
        source.write_bytes(b"jpeg bytes")
        fake = install(monkeypatch, sender)

        response = asyncio.run(sender.send_file("+15551234567", source))

        assert response.success
        staged = list((tmp_path / "outbox").glob("*/photo.jpg"))
        assert len(staged) == 1
        assert staged[0].read_bytes() == b"jpeg bytes"
        assert f'POSIX file "{staged[0]}"' in fake.scripts[0]
        assert source.exists()

    def test_missing_file(self, sender, monkeypatch, tmp_path):
        fake = install(monkeypatch, sender)
        response = asyncio.run(sender.send_file("+15551234567", tmp_path / "nope.jpg"))

        assert response.result == SendResult.FAILED
        assert "File not found" in response.error
        assert fake.scripts == []

    def test_directory_rejected(self, sender, monkeypatch, tmp_path):
        install(monkeypatch, sender)
        response = asyncio.run(sender.send_file("+15551234567", tmp_path))
        assert "not a file" in response.error

    def test_requires_recipient(self, sender, monkeypatch, tmp_path):
        source = tmp_path / "photo.jpg"
        source.write_bytes(b"x")
        install(monkeypatch, sender)
        response = asyncio.run(sender.send_file("", source))
        assert response.result == SendResult.INVALID_RECIPIENT


class TestRunApplescript:
    def test_missing_osascript(self, sender, monkeypatch):
        async def no_binary(*args, **kwargs):
            raise FileNotFoundError("osascript")

        monkeypatch.setattr(asyncio, "create_subprocess_exec", no_binary)

        assert asyncio.run(sender._run_applescript("return 1")) == (1, "", "osascript not found")
