"""
Purple OS — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (one level up from purple/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)

_HISTORY_MODES = ("full", "recent", "none")


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram (chat surface)
    TELEGRAM_BOT_TOKEN: str

    # LLM, provider-agnostic (gemini, anthropic, openai, cohere)
    LLM_PROVIDER: str = "gemini"
    LLM_MODEL: str = ""          # empty → smart default per provider
    LLM_API_KEY: str
    LLM_MAX_RETRIES: int = 2
    LLM_RETRY_BASE_DELAY: float = 0.5

    # Audio: OpenAI Whisper (transcription only)
    OPENAI_API_KEY: str = ""

    # SQLite
    DATABASE_PATH: str = "data/purple.db"

    # Security
    ALLOWED_USER_IDS: list[int] = []

    # Persona
    OWNER_NAME: str = "ILYASUU"
    TIMEZONE: str = "Asia/Jerusalem"

    # Context packet: "full" = total recall, "recent" = last N messages, "none"
    CONTEXT_HISTORY_MODE: str = "full"
    CONTEXT_HISTORY_LIMIT: int = 40
    CONTEXT_TASK_LIMIT: int = 10
    CONTEXT_WORKOUT_LIMIT: int = 5

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("CONTEXT_HISTORY_MODE", mode="before")
    @classmethod
    def parse_history_mode(cls, v: str) -> str:
        mode = (v or "full").strip().lower()
        if mode not in _HISTORY_MODES:
            raise ValueError(
                f"CONTEXT_HISTORY_MODE must be one of {', '.join(_HISTORY_MODES)}"
            )
        return mode


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
        LLM_PROVIDER=os.getenv("LLM_PROVIDER", "gemini"),
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        LLM_API_KEY=llm_api_key,
        LLM_MAX_RETRIES=os.getenv("LLM_MAX_RETRIES", "2"),
        LLM_RETRY_BASE_DELAY=os.getenv("LLM_RETRY_BASE_DELAY", "0.5"),
        OPENAI_API_KEY=os.getenv("OPENAI_API_KEY", ""),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/purple.db"),
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        OWNER_NAME=os.getenv("OWNER_NAME", "ILYASUU"),
        TIMEZONE=os.getenv("TIMEZONE", "Asia/Jerusalem"),
        CONTEXT_HISTORY_MODE=os.getenv("CONTEXT_HISTORY_MODE", "full"),
        CONTEXT_HISTORY_LIMIT=os.getenv("CONTEXT_HISTORY_LIMIT", "40"),
        CONTEXT_TASK_LIMIT=os.getenv("CONTEXT_TASK_LIMIT", "10"),
        CONTEXT_WORKOUT_LIMIT=os.getenv("CONTEXT_WORKOUT_LIMIT", "5"),
    )


# Singleton, imported by all other modules as:
#   from purple.config import settings
settings = _load_settings()
