"""chatdb - read, search and tail the macOS Messages database."""

__version__ = "0.1.0"
