"""Environment-backed settings for the sync and backfill pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

DEFAULT_HTTP_TIMEOUT_SECONDS = 20.0
DEFAULT_CONTENT_REFRESH_DAYS = 7
USER_AGENT = "SkillStack (+https://github.com/skillstack/skillstack)"


@dataclass(frozen=True, slots=True)
class Settings:
    github_token: str
    supabase_url: str
    supabase_key: str
    http_timeout_seconds: float
    content_refresh_days: int
    log_level: str

    @property
    def has_github_token(self) -> bool:
        return bool(self.github_token)


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def get_settings() -> Settings:
    """Read settings from the process environment (and `.env`, if present)."""
    return Settings(
        github_token=os.getenv("GITHUB_TOKEN", "").strip(),
        supabase_url=os.getenv("SUPABASE_URL", "").strip(),
        supabase_key=os.getenv("SUPABASE_KEY", "").strip(),
        http_timeout_seconds=max(
            _float_env("SKILLSTACK_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT_SECONDS), 1.0
        ),
        content_refresh_days=max(
            _int_env("CONTENT_REFRESH_DAYS", DEFAULT_CONTENT_REFRESH_DAYS), 1
        ),
        log_level=os.getenv("SKILLSTACK_LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )
