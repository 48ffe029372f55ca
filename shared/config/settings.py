from dataclasses import dataclass
from typing import List, Optional
import os
import logging
from dotenv import load_dotenv

from shared.constants import (
    EDIT_HARD_CAP,
    EDIT_MIN_INTERVAL_SECONDS,
    EDIT_SOFT_CAP,
    EDIT_WINDOW_SECONDS,
    ERROR_RENDER_RETRY_DELAY_SECONDS,
    IDLE_BASE_INTERVAL_SECONDS,
    STREAM_UPDATE_INTERVAL_SECONDS,
    TYPING_INTERVAL_SECONDS,
)

load_dotenv()

logger = logging.getLogger(__name__)


@dataclass
class TelegramConfig:
    """Telegram bot configuration"""

    token: str
    allowed_user_ids: List[int]

    @classmethod
    def from_env(cls) -> "TelegramConfig":
        token = os.getenv("TELEGRAM_TOKEN")
        if not token:
            raise ValueError("TELEGRAM_TOKEN is required")

        allowed_ids_str = os.getenv("ALLOWED_USER_IDS", "")
        allowed_user_ids = [
            int(id.strip()) for id in allowed_ids_str.split(",") if id.strip()
        ]

        if not allowed_user_ids:
            logger.warning(
                "⚠️  SECURITY WARNING: ALLOWED_USER_IDS is not set or empty! "
                "Bot will be accessible to ALL Telegram users."
            )

        return cls(token=token, allowed_user_ids=allowed_user_ids)


@dataclass
class DatabaseConfig:
    """Database configuration"""

    path: str = "./data/bot.db"

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        return cls(path=os.getenv("DATABASE_PATH", "./data/bot.db"))


@dataclass
class StreamingConfig:
    """Timings and limits of the streaming engine (seconds)"""

    chunk_source: Optional[str] = None
    default_model: str = "unknown"
    update_interval: float = STREAM_UPDATE_INTERVAL_SECONDS
    idle_interval: float = IDLE_BASE_INTERVAL_SECONDS
    typing_interval: float = TYPING_INTERVAL_SECONDS
    error_retry_delay: float = ERROR_RENDER_RETRY_DELAY_SECONDS
    edit_window: float = EDIT_WINDOW_SECONDS
    edit_soft_cap: int = EDIT_SOFT_CAP
    edit_hard_cap: int = EDIT_HARD_CAP
    edit_min_interval: float = EDIT_MIN_INTERVAL_SECONDS

    @classmethod
    def from_env(cls) -> "StreamingConfig":
        return cls(
            chunk_source=os.getenv("CHUNK_SOURCE") or None,
            default_model=os.getenv("DEFAULT_MODEL", "unknown"),
            update_interval=float(os.getenv("STREAM_UPDATE_INTERVAL", str(STREAM_UPDATE_INTERVAL_SECONDS))),
            idle_interval=float(os.getenv("STREAM_IDLE_INTERVAL", str(IDLE_BASE_INTERVAL_SECONDS))),
            typing_interval=float(os.getenv("TYPING_INTERVAL", str(TYPING_INTERVAL_SECONDS))),
            error_retry_delay=float(os.getenv("ERROR_RETRY_DELAY", str(ERROR_RENDER_RETRY_DELAY_SECONDS))),
            edit_window=float(os.getenv("EDIT_WINDOW", str(EDIT_WINDOW_SECONDS))),
            edit_soft_cap=int(os.getenv("EDIT_SOFT_CAP", str(EDIT_SOFT_CAP))),
            edit_hard_cap=int(os.getenv("EDIT_HARD_CAP", str(EDIT_HARD_CAP))),
            edit_min_interval=float(os.getenv("EDIT_MIN_INTERVAL", str(EDIT_MIN_INTERVAL_SECONDS))),
        )


@dataclass
class Settings:
    """Application settings"""

    telegram: TelegramConfig
    database: DatabaseConfig
    streaming: StreamingConfig
    debug: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            telegram=TelegramConfig.from_env(),
            database=DatabaseConfig.from_env(),
            streaming=StreamingConfig.from_env(),
            debug=os.getenv("DEBUG", "false").lower() == "true",
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


def get_settings() -> Settings:
    """
    Get application settings from environment.

    Call once in main() and pass the result via DI.
    """
    return Settings.from_env()
