"""
TIPs Tracker — Centralized configuration.

Loads all settings from .env and validates required keys.
Pure core modules never import this; services and the bot do.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # SQLite
    DATABASE_PATH: str = "data/tips.db"

    # Security
    ALLOWED_USER_IDS: list[int] = []

    # "Today" for the bot and reminders
    TIMEZONE: str = "UTC"
    REMINDER_CHECK_SECONDS: int = 60

    # Subscriptions
    GRACE_PERIOD_DAYS: int = 16

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("REMINDER_CHECK_SECONDS", "GRACE_PERIOD_DAYS", mode="before")
    @classmethod
    def parse_positive(cls, v: str | int) -> int:
        value = int(v)
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/tips.db"),
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        TIMEZONE=os.getenv("TIMEZONE", "UTC"),
        REMINDER_CHECK_SECONDS=os.getenv("REMINDER_CHECK_SECONDS", "60"),
        GRACE_PERIOD_DAYS=os.getenv("GRACE_PERIOD_DAYS", "16"),
    )


# Singleton, imported as:
#   from src.config import settings
settings = _load_settings()
