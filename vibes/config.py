"""
Vibes Assistant — Centralized configuration.

Loads all settings from .env and validates required keys.
Every other module imports the `settings` singleton from here.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from apscheduler.triggers.cron import CronTrigger
from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

logger = logging.getLogger(__name__)

# Load .env from project root (one level up from vibes/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)

DEFAULT_MORNING_CRON = "0 6 * * *"
DEFAULT_EVENING_CRON = "0 18 * * *"


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str
    TELEGRAM_WEBHOOK_URL: str = ""   # empty → long polling
    TELEGRAM_SECRET_TOKEN: str = ""

    # LLM: provider-agnostic (gemini, anthropic, openai, cohere)
    LLM_PROVIDER: str = "gemini"
    LLM_MODEL: str = ""          # empty → smart default per provider
    LLM_API_KEY: str

    # Audio: OpenAI Whisper (transcription only)
    OPENAI_API_KEY: str = ""

    # Google Calendar OAuth web client
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    GOOGLE_REDIRECT_URI: str = ""
    GOOGLE_APPLICATION_NAME: str = "Vibes"

    # SQLite
    DATABASE_PATH: str = "data/vibes.db"

    # Checkups (cron expressions, evaluated in UTC)
    MORNING_CHECKUP_CRON: str = DEFAULT_MORNING_CRON
    EVENING_CHECKUP_CRON: str = DEFAULT_EVENING_CRON
    ACTIVE_USER_WINDOW_DAYS: int = 7

    # HTTP server
    HOST: str = "0.0.0.0"
    PORT: int = 8080

    @field_validator("MORNING_CHECKUP_CRON", "EVENING_CHECKUP_CRON", mode="before")
    @classmethod
    def parse_cron(cls, v: str, info) -> str:
        default = (
            DEFAULT_MORNING_CRON
            if info.field_name == "MORNING_CHECKUP_CRON"
            else DEFAULT_EVENING_CRON
        )
        if not v or not str(v).strip():
            return default
        try:
            CronTrigger.from_crontab(str(v).strip())
        except ValueError:
            logger.warning("Invalid %s=%r, using %r", info.field_name, v, default)
            return default
        return str(v).strip()

    @field_validator("ACTIVE_USER_WINDOW_DAYS", "PORT", mode="before")
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")
    llm_api_key = os.getenv("LLM_API_KEY", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    if not llm_api_key or llm_api_key.startswith("your-"):
        print("ERROR: LLM_API_KEY is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        TELEGRAM_WEBHOOK_URL=os.getenv("TELEGRAM_WEBHOOK_URL", ""),
        TELEGRAM_SECRET_TOKEN=os.getenv("TELEGRAM_SECRET_TOKEN", ""),
        LLM_PROVIDER=os.getenv("LLM_PROVIDER", "gemini"),
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        LLM_API_KEY=llm_api_key,
        OPENAI_API_KEY=os.getenv("OPENAI_API_KEY", ""),
        GOOGLE_CLIENT_ID=os.getenv("GOOGLE_CLIENT_ID", ""),
        GOOGLE_CLIENT_SECRET=os.getenv("GOOGLE_CLIENT_SECRET", ""),
        GOOGLE_REDIRECT_URI=os.getenv("GOOGLE_REDIRECT_URI", ""),
        GOOGLE_APPLICATION_NAME=os.getenv("GOOGLE_APPLICATION_NAME", "Vibes"),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/vibes.db"),
        MORNING_CHECKUP_CRON=os.getenv("MORNING_CHECKUP_CRON", DEFAULT_MORNING_CRON),
        EVENING_CHECKUP_CRON=os.getenv("EVENING_CHECKUP_CRON", DEFAULT_EVENING_CRON),
        ACTIVE_USER_WINDOW_DAYS=os.getenv("ACTIVE_USER_WINDOW_DAYS", "7"),
        HOST=os.getenv("HOST", "0.0.0.0"),
        PORT=os.getenv("PORT", "8080"),
    )


# Singleton, imported by all other modules as:
#   from vibes.config import settings
settings = _load_settings()
