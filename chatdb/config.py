"""Configuration settings for chatdb."""

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Settings loaded from environment variables (prefix CHATDB_) or .env."""

    # Messages database on macOS
    chat_db_path: Path = Path.home() / "Library" / "Messages" / "chat.db"

    # Live-tail polling interval (seconds)
    poll_interval: float = 0.25

    # Default row limit for history queries
    default_limit: int = 25

    # API server settings
    host: str = "127.0.0.1"
    port: int = 8080

    # Logging level
    log_level: str = "INFO"

    # Where to forward live-tail messages (empty disables forwarding)
    webhook_url: str = ""

    # Shared secret sent with webhooks and required by POST /send
    webhook_secret: str = "change-me"

    # Maximum seconds to wait for osascript
    send_timeout: float = 30.0

    # Files are copied here before sending; Messages can't read arbitrary paths
    staging_dir: Path = Path.home() / "Pictures" / "chatdb-outbox"

    model_config = {
        "env_prefix": "CHATDB_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
