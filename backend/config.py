"""
ClipRelay - Configuration Module
"""
import os
from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings

# Compute paths at module level for consistency
_BASE_DIR = Path(__file__).parent.parent

# Data directory: use CLIPRELAY_DATA_DIR env var, or default to ~/.cliprelay
_DATA_DIR = Path(os.environ.get("CLIPRELAY_DATA_DIR", Path.home() / ".cliprelay"))
_DATABASE_PATH = _DATA_DIR / "cliprelay.db"


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "ClipRelay"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Paths
    BASE_DIR: Path = _BASE_DIR
    DATA_DIR: Path = _DATA_DIR

    # Database
    # sqlite+aiosqlite -> status-flip claiming, postgresql+asyncpg -> FOR UPDATE SKIP LOCKED
    DATABASE_URL: str = f"sqlite+aiosqlite:///{_DATABASE_PATH}"

    # Download engines ("none" disables a slot)
    DOWNLOAD_ENGINE: str = "tikwm"
    DOWNLOAD_ENGINE_FALLBACK_1: str = "ytdlp"
    DOWNLOAD_ENGINE_FALLBACK_2: str = "none"
    TIKWM_API_URL: str = "https://www.tikwm.com/api/"
    DOWNLOAD_TIMEOUT: float = 30.0

    # Outbox dispatcher
    OUTBOX_POLL_INTERVAL: float = 2.0  # seconds
    OUTBOX_BATCH_SIZE: int = 10
    OUTBOX_LOCK_TIMEOUT: int = 300  # seconds before a PROCESSING claim can be reclaimed
    OUTBOX_UNKNOWN_EVENT_POLICY: str = "mark_processed"  # mark_processed, retain

    # Job queue
    QUEUE_POLL_INTERVAL: float = 5.0
    QUEUE_BATCH_SIZE: int = 5
    QUEUE_MAX_ATTEMPTS: int = 3

    # Notifier
    NOTIFIER_HISTORY_LIMIT: int = 10
    NOTIFIER_MAX_ATTACHMENT_BYTES: int = 25 * 1024 * 1024
    NOTIFIER_MAX_IMAGES: int = 4
    NOTIFIER_FOOTER_TEXT: str = "ClipRelay"

    # Retry
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY: float = 1.0
    RETRY_BACKOFF: bool = True

    # Discord
    DISCORD_BOT_TOKEN: Optional[str] = None
    DISCORD_GUILD_ID: Optional[str] = None
    DISCORD_CATEGORY_ID: Optional[str] = None
    DISCORD_API_BASE: str = "https://discord.com/api/v10"

    # Creator watcher
    WATCHER_ENABLED: bool = False
    WATCHER_CHECK_INTERVAL: int = 60  # seconds between due-creator scans
    WATCHER_MAX_CONCURRENT_CHECKS: int = 3
    WATCHER_CREATOR_INTERVAL: int = 15  # minutes between checks of one creator

    # API Settings
    API_HOST: str = "127.0.0.1"
    API_PORT: int = 8890

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
