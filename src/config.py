"""
Worklog — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
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

    # SQLite — ledgers, rollover state, local task table
    DATABASE_PATH: str = "data/worklog.db"

    # Task registry provider: "sqlite" | "supabase"
    TASK_REGISTRY_PROVIDER: str = "sqlite"
    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""

    # Calendar — "today" is always derived in this zone
    TIMEZONE: str = "Asia/Kolkata"
    WEEK_START_WEEKDAY: int = 0      # Monday

    # Rollover
    ROLLOVER_MAX_LOOKBACK_DAYS: int = 30
    ROLLOVER_HOUR: int = 0
    ACROSS_DAYS_HORIZON_DAYS: int = 14

    # Product rules
    SUNDAY_DEFAULT_ABSENT: bool = False
    SYNC_TASK_STATUS: bool = True
    TERMINAL_STATUSES: dict[str, list[str]] = {}

    # Telegram (only needed by the bot entry point)
    TELEGRAM_BOT_TOKEN: str = ""
    ALLOWED_USER_IDS: list[int] = []
    MEMBER_IDS: dict[int, str] = {}

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("MEMBER_IDS", mode="before")
    @classmethod
    def parse_member_ids(cls, v: str | dict) -> dict:
        """Parse "12345=uuid-a,67890=uuid-b" into {12345: "uuid-a", ...}."""
        if isinstance(v, dict):
            return v
        members: dict[int, str] = {}
        if isinstance(v, str):
            for pair in v.split(","):
                if "=" not in pair:
                    continue
                tg_id, member_id = pair.split("=", 1)
                members[int(tg_id.strip())] = member_id.strip()
        return members

    @field_validator("TERMINAL_STATUSES", mode="before")
    @classmethod
    def parse_terminal_statuses(cls, v: str | dict) -> dict:
        """Parse "creative=approved|done,web=completed|done"."""
        if isinstance(v, dict):
            return v
        table: dict[str, list[str]] = {}
        if isinstance(v, str):
            for entry in v.split(","):
                if "=" not in entry:
                    continue
                team, statuses = entry.split("=", 1)
                table[team.strip().lower()] = [
                    s.strip() for s in statuses.split("|") if s.strip()
                ]
        return table

    @field_validator("SUNDAY_DEFAULT_ABSENT", "SYNC_TASK_STATUS", mode="before")
    @classmethod
    def parse_flag(cls, v: str | bool) -> bool:
        if isinstance(v, bool):
            return v
        return str(v).strip().lower() in {"1", "true", "yes", "on"}

    @field_validator(
        "WEEK_START_WEEKDAY",
        "ROLLOVER_MAX_LOOKBACK_DAYS",
        "ROLLOVER_HOUR",
        "ACROSS_DAYS_HORIZON_DAYS",
        mode="before",
    )
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)


def _load_settings() -> Settings:
    """Load settings from environment, validating provider-specific keys."""
    provider = os.getenv("TASK_REGISTRY_PROVIDER", "sqlite").lower()
    supabase_url = os.getenv("SUPABASE_URL", "")
    supabase_key = os.getenv("SUPABASE_KEY", "")

    if provider == "supabase" and (not supabase_url or not supabase_key):
        print(
            "ERROR: SUPABASE_URL and SUPABASE_KEY must be set when "
            "TASK_REGISTRY_PROVIDER=supabase",
            file=sys.stderr,
        )
        sys.exit(1)

    return Settings(
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/worklog.db"),
        TASK_REGISTRY_PROVIDER=provider,
        SUPABASE_URL=supabase_url,
        SUPABASE_KEY=supabase_key,
        TIMEZONE=os.getenv("TIMEZONE", "Asia/Kolkata"),
        WEEK_START_WEEKDAY=os.getenv("WEEK_START_WEEKDAY", "0"),
        ROLLOVER_MAX_LOOKBACK_DAYS=os.getenv("ROLLOVER_MAX_LOOKBACK_DAYS", "30"),
        ROLLOVER_HOUR=os.getenv("ROLLOVER_HOUR", "0"),
        ACROSS_DAYS_HORIZON_DAYS=os.getenv("ACROSS_DAYS_HORIZON_DAYS", "14"),
        SUNDAY_DEFAULT_ABSENT=os.getenv("SUNDAY_DEFAULT_ABSENT", "false"),
        SYNC_TASK_STATUS=os.getenv("SYNC_TASK_STATUS", "true"),
        TERMINAL_STATUSES=os.getenv("TERMINAL_STATUSES", ""),
        TELEGRAM_BOT_TOKEN=os.getenv("TELEGRAM_BOT_TOKEN", ""),
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        MEMBER_IDS=os.getenv("MEMBER_IDS", ""),
    )


# Singleton — imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
