"""Resolve attachment paths stored in chat.db."""

import os
from pathlib import Path

HOME_ALIAS = "~"


def expand_home(filename: str) -> str:
    """
    Replace a leading ``~`` with the current user's home directory.

    chat.db stores paths like "~/Library/Messages/Attachments/ab/12/IMG_1234.heic".
    Only the current user's alias ("~" or a "~/" prefix) is substituted;
    "~user" forms and anything else are left alone.
    """
    if filename == HOME_ALIAS or filename.startswith(HOME_ALIAS + "/"):
        return str(Path.home()) + filename[len(HOME_ALIAS):]
    return filename


def resolve_attachment_path(filename: str) -> tuple[str, bool]:
    """Return the absolute path for a stored filename and whether it exists right now."""
    path = expand_home(filename)
    return path, os.path.exists(path)
