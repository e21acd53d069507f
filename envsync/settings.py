"""Runtime settings for envsync.

Values come from environment variables (and an optional ``.env`` file in the
working directory). CLI flags override them.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_API_URL = "https://api.github.com"


class Settings(BaseSettings):
    """envsync runtime settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── GitHub ────────────────────────────────────────────────────────
    github_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GITHUB_TOKEN", "GH_TOKEN"),
    )
    api_url: str = Field(default=DEFAULT_API_URL, validation_alias="ENVSYNC_API_URL")

    # ── HTTP behaviour ────────────────────────────────────────────────
    timeout: float = Field(default=10.0, gt=0, validation_alias="ENVSYNC_TIMEOUT")
    max_retries: int = Field(default=3, ge=1, validation_alias="ENVSYNC_MAX_RETRIES")
    retry_wait: float = Field(default=1.0, ge=0, validation_alias="ENVSYNC_RETRY_WAIT")

    # ── Audit ─────────────────────────────────────────────────────────
    audit_dir: Optional[Path] = Field(default=None, validation_alias="ENVSYNC_AUDIT_DIR")


def get_settings() -> Settings:
    """Build settings from the current process environment."""
    return Settings()
