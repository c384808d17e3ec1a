"""Centralized application configuration using Pydantic Settings (v2).

This module exposes a single, cached `settings` instance that reads from:
- Real environment variables (highest precedence)
- `.env` files at the repository root: .env, .env.local, .env.dev/.env.test/.env.prod
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

EnvName = Literal["dev", "test", "prod"]
LogLevelName = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class Settings(BaseSettings):
    """Typed application configuration loaded from env and `.env` files.

    Attributes
    ----------
    environment : EnvName
        Runtime environment flag; maps from `TEXTVIZ_ENV`.
    log_level : LogLevelName
        Global log level string; maps from `LOG_LEVEL`.
    google_api_key : Optional[str]
        Credential for the hosted Gemini models. Maps from
        `GOOGLE_GENERATIVE_AI_API_KEY`. Generation routes refuse to start
        without it.
    instructions_model / visualization_model : str
        Registry aliases (or concrete model ids) for the two generation stages.
    api_tokens : str
        Static bearer tokens for the session service, ``"token=user,token2=user2"``.
    recording_max_seconds : float
        Ceiling applied to every canvas recording, whatever the animation length.
    """

    environment: EnvName = Field(default="dev", alias="TEXTVIZ_ENV")
    log_level: LogLevelName = Field(default="INFO", alias="LOG_LEVEL")
    google_api_key: str | None = Field(default=None, alias="GOOGLE_GENERATIVE_AI_API_KEY")

    instructions_model: str = Field(default="instructions", alias="TEXTVIZ_INSTRUCTIONS_MODEL")
    visualization_model: str = Field(
        default="visualization", alias="TEXTVIZ_VISUALIZATION_MODEL"
    )
    request_timeout_seconds: float = Field(default=120.0, alias="TEXTVIZ_REQUEST_TIMEOUT")

    prompt_log_path: Path = Field(
        default=Path("artifacts") / "prompt_log.sqlite3", alias="TEXTVIZ_PROMPT_LOG_PATH"
    )
    api_tokens: str = Field(default="", alias="TEXTVIZ_API_TOKENS")
    cli_user: str = Field(default="local", alias="TEXTVIZ_CLI_USER")

    recording_fps: int = Field(default=30, alias="TEXTVIZ_RECORDING_FPS")
    recording_max_seconds: float = Field(default=22.0, alias="TEXTVIZ_RECORDING_MAX_SECONDS")
    recording_dir: Path = Field(
        default=Path("artifacts") / "recordings", alias="TEXTVIZ_RECORDING_DIR"
    )
    viewport_width: int = Field(default=1280, alias="TEXTVIZ_VIEWPORT_WIDTH")
    viewport_height: int = Field(default=800, alias="TEXTVIZ_VIEWPORT_HEIGHT")

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local", ".env.dev", ".env.test", ".env.prod"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def is_dev(self) -> bool:
        """Return True if running in the development environment."""
        return self.environment == "dev"

    @property
    def is_test(self) -> bool:
        """Return True if running in the test environment."""
        return self.environment == "test"

    @property
    def is_prod(self) -> bool:
        """Return True if running in the production environment."""
        return self.environment == "prod"

    def log_level_numeric(self) -> int:
        """Return the numeric logging level corresponding to `self.log_level`."""
        return getattr(logging, self.log_level, logging.INFO)

    def token_map(self) -> dict[str, str]:
        """Parse `api_tokens` into a ``{token: user_id}`` mapping.

        Malformed entries (no ``=`` or an empty side) are skipped.
        """
        out: dict[str, str] = {}
        for item in self.api_tokens.split(","):
            token, sep, user_id = item.strip().partition("=")
            if sep and token.strip() and user_id.strip():
                out[token.strip()] = user_id.strip()
        return out


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Create and cache a `Settings` instance.

    We keep this behind an LRU cache so tests can force a rebuild via
    `load_settings.cache_clear()` after mutating `os.environ`.
    """
    os.environ.setdefault("TEXTVIZ_ENV", "dev")
    return Settings()


# Export a ready-to-use singleton (import-time read of env / .env files).
settings: Settings = load_settings()


def get_logger(name: str = "textviz") -> logging.Logger:
    """Return a process-global logger configured to the current `LOG_LEVEL`."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
        )
        logger.addHandler(handler)
    logger.setLevel(load_settings().log_level_numeric())
    logger.propagate = False
    return logger
