"""Configuration from environment variables and an optional .env file."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import click
from dotenv import load_dotenv

DEFAULT_DB_PATH = Path.home() / ".stemmy" / "stemmy.db"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 7788
DEFAULT_STALE_CHECK_SECONDS = 60

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise click.ClickException(f"{name} must be an integer, got '{raw}'")


@dataclass
class Config:
    db_path: Path = DEFAULT_DB_PATH
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    api_url: str = field(default="")
    stale_check_seconds: int = DEFAULT_STALE_CHECK_SECONDS
    log_level: str = "INFO"

    def __post_init__(self):
        if not self.api_url:
            self.api_url = f"http://{self.host}:{self.port}"

    def validate(self) -> None:
        if self.stale_check_seconds < 1:
            raise click.ClickException("STEMMY_STALE_CHECK_SECONDS must be at least 1")
        if not 0 < self.port < 65536:
            raise click.ClickException(f"Invalid STEMMY_PORT: {self.port}")
        if self.log_level not in LOG_LEVELS:
            raise click.ClickException(
                f"Invalid STEMMY_LOG_LEVEL '{self.log_level}'. Valid options: {', '.join(LOG_LEVELS)}"
            )


def get_config(env_file: Path | None = None) -> Config:
    """Build and validate config. A .env file never overrides real env vars."""
    load_dotenv(env_file or Path.cwd() / ".env")

    config = Config(
        db_path=Path(os.environ.get("STEMMY_DB", str(DEFAULT_DB_PATH))).expanduser(),
        host=os.environ.get("STEMMY_HOST", DEFAULT_HOST),
        port=_int_env("STEMMY_PORT", DEFAULT_PORT),
        api_url=os.environ.get("STEMMY_API_URL", ""),
        stale_check_seconds=_int_env("STEMMY_STALE_CHECK_SECONDS", DEFAULT_STALE_CHECK_SECONDS),
        log_level=os.environ.get("STEMMY_LOG_LEVEL", "INFO").upper(),
    )
    config.validate()
    return config
