# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Application configuration using pydantic-settings.
"""

import logging

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Compaction safeguard settings.

    Attributes:
        APP_NAME (str): Display name used in log records.
        DEBUG (bool): Whether to enable debug logging.
        LOG_LEVEL (str): Log level applied by ``configure_logging``.
        DEFAULT_CONTEXT_WINDOW_TOKENS (int): Context window assumed when
            neither the session runtime nor the active model provides one.
        DEFAULT_RESERVE_TOKENS (int): Tokens kept free for the summary itself
            when the compaction event does not specify a reserve.
        SUMMARY_MAX_CHARS_PER_MESSAGE (int): Per-message character cap used
            when serialising history for the bundled summarizer.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    APP_NAME: str = "Compaction Safeguard"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Context window
    DEFAULT_CONTEXT_WINDOW_TOKENS: int = 200_000
    DEFAULT_RESERVE_TOKENS: int = 16_384

    # Bundled summarizer
    SUMMARY_MAX_CHARS_PER_MESSAGE: int = 2_000

    def get_log_level(self) -> int:
        """Resolve the numeric log level.

        Returns:
            int: ``logging.DEBUG`` when ``DEBUG`` is set, otherwise the level
                named by ``LOG_LEVEL`` (``INFO`` if the name is unknown).
        """
        if self.DEBUG:
            return logging.DEBUG
        level = logging.getLevelName(self.LOG_LEVEL.upper())
        return level if isinstance(level, int) else logging.INFO


def configure_logging() -> None:
    """Apply ``LOG_LEVEL`` to the package logger for host processes."""
    logging.getLogger("compaction_safeguard").setLevel(settings.get_log_level())


settings = Settings()
