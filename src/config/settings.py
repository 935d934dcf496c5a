"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    # Connection address handed back by /setup
    public_base_url: str = Field(
        default="localhost:3000",
        description="Host (and optional port) the carrier connects to, without scheme.",
    )
    public_ws_scheme: Literal["ws", "wss"] = Field(default="wss")

    # Protocol timing
    close_grace_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Delay between a stop/transfer acknowledgement and channel teardown.",
    )

    # Housekeeping
    token_ttl_seconds: float = Field(
        default=300.0,
        gt=0.0,
        description="Unused admission tokens expire after this many seconds.",
    )
    sweep_interval_seconds: float = Field(default=60.0, gt=0.0)
    session_retention_seconds: float | None = Field(
        default=None,
        description="If set, ended sessions older than this are evicted from memory.",
    )

    # Audio sink
    audio_sink_backend: Literal["file", "memory"] = Field(default="file")
    audio_dir: Path = Field(default=Path("./audio_data"))

    @field_validator("audio_dir")
    @classmethod
    def ensure_audio_dir(cls, value: Path) -> Path:
        value.mkdir(parents=True, exist_ok=True)
        return value

    @field_validator("public_base_url")
    @classmethod
    def strip_scheme(cls, value: str) -> str:
        for prefix in ("https://", "http://", "wss://", "ws://"):
            value = value.removeprefix(prefix)
        return value.rstrip("/")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
