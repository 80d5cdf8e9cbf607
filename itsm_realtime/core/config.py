"""
ITSM Realtime Settings

Loaded from the environment, with an optional `.env` file at the repo root.
`.env` is ignored when APP_ENV is "test" or "ci".
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    _app_env = (os.getenv("APP_ENV") or "").strip().lower()
    _env_files = (
        []
        if _app_env in {"test", "ci"}
        else [str(Path(__file__).resolve().parents[2] / ".env")]
    )

    model_config = SettingsConfigDict(
        env_file=_env_files,
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # --- App ---
    app_name: str = Field(default="itsm-realtime", alias="APP_NAME")
    app_env: str = Field(default="dev", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    cors_allow_origins: List[str] = Field(default=["*"], alias="CORS_ALLOW_ORIGINS")

    # --- Auth ---
    jwt_secret: SecretStr = Field(default=SecretStr("change-me"), alias="JWT_SECRET")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    jwt_expiration_hours: int = Field(default=24, gt=0, alias="JWT_EXPIRATION_HOURS")

    # --- WebSocket ---
    ws_send_buffer_size: int = Field(default=256, ge=1, alias="WS_SEND_BUFFER_SIZE")
    ws_write_wait: float = Field(default=10.0, gt=0, alias="WS_WRITE_WAIT")
    ws_pong_wait: float = Field(default=60.0, gt=0, alias="WS_PONG_WAIT")
    ws_max_message_size: int = Field(default=512 * 1024, gt=0, alias="WS_MAX_MESSAGE_SIZE")

    @property
    def ws_ping_period(self) -> float:
        # Must stay below the pong wait so the client sees traffic in time
        return self.ws_pong_wait * 9 / 10


@lru_cache
def get_settings() -> Settings:
    return Settings()
