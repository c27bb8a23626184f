"""Configuration management for sessiondeck."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated
import logging
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class SessionDeckSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    log_level: str = Field(default="INFO", validation_alias="SESSIONDECK_LOG_LEVEL")
    mode_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(), validation_alias="SESSIONDECK_MODE_PATHS"
    )
    default_cols: int = Field(default=80, validation_alias="SESSIONDECK_DEFAULT_COLS")
    default_rows: int = Field(default=24, validation_alias="SESSIONDECK_DEFAULT_ROWS")
    output_buffer: int = Field(default=0, validation_alias="SESSIONDECK_OUTPUT_BUFFER")
    server_name: str = Field(default="sessiondeck", validation_alias="SESSIONDECK_SERVER_NAME")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "SESSIONDECK_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("mode_paths", mode="before")
    @classmethod
    def _parse_mode_paths(cls, value):
        if value is None or value == "":
            return ()
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts)
        raise TypeError("SESSIONDECK_MODE_PATHS must be a list of paths or a path-separated string")

    @field_validator("default_cols", "default_rows")
    @classmethod
    def _validate_geometry(cls, value: int) -> int:
        if value < 1:
            raise ValueError("Terminal geometry must be >= 1")
        return value

    @field_validator("output_buffer")
    @classmethod
    def _validate_output_buffer(cls, value: int) -> int:
        if value < 0:
            raise ValueError("SESSIONDECK_OUTPUT_BUFFER must be >= 0 (0 means unbounded)")
        return value


@lru_cache(maxsize=1)
def get_settings() -> SessionDeckSettings:
    """Return cached settings instance."""

    settings = SessionDeckSettings()
    settings.mode_paths = tuple(path.expanduser().resolve() for path in settings.mode_paths)
    return settings


def configure_logging(level: str) -> None:
    """Configure root logging for processes embedding sessiondeck."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


__all__ = ["SessionDeckSettings", "configure_logging", "get_settings"]
