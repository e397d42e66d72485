"""
Central configuration for quill.
Uses Pydantic BaseSettings for type-safe configuration from environment variables.
"""

import os
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env relative to this file (quill/config.py → project root)
_ENV_FILE = Path(__file__).parent.parent / ".env"


def _load_env_file() -> None:
    """
    Load .env into os.environ, but only for keys that are currently unset
    or set to empty strings. This ensures .env values win over blank shell
    env vars (e.g. ANTHROPIC_API_KEY='') while still allowing explicit
    non-empty shell overrides.
    """
    if not _ENV_FILE.exists():
        return
    from dotenv import dotenv_values
    for key, value in dotenv_values(_ENV_FILE).items():
        if value and not os.environ.get(key):
            os.environ[key] = value


# Run at import time so Settings() sees the correct values
_load_env_file()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Anthropic
    anthropic_api_key: str
    model_agent: str = "claude-sonnet-4-5"
    anthropic_max_tokens: int = 4096

    # Environment
    structured_logging: bool = False
    data_dir: str = "./data"
    log_level: str = "INFO"
    default_timezone: str = "UTC"

    # HTTP server
    http_host: str = "0.0.0.0"
    http_port: int = 8080

    # ── Agent loop ──────────────────────────────────────────────────────────────
    agent_max_steps: int = 5
    claude_max_retries: int = 3
    claude_retry_base_delay: float = 2.0

    # ── Grounding context ───────────────────────────────────────────────────────
    context_note_limit: int = 20
    context_reminder_limit: int = 20
    context_todo_limit: int = 20
    context_preview_chars: int = 100

    # ── Rate limiting ───────────────────────────────────────────────────────────
    rate_limit_process: int = 10
    rate_limit_chat: int = 30
    rate_limit_window_ms: int = 60_000
    rate_limit_purge_interval: int = 300
    max_message_length: int = 10_000

    # ── Chat ────────────────────────────────────────────────────────────────────
    conversation_title_length: int = 50

    # ── Inbound email (Resend) ──────────────────────────────────────────────────
    email_webhook_secret: str = ""
    # Stored as a raw comma-string; exposed as a list via property
    email_allowed_senders_raw: str = ""
    resend_api_key: str = ""
    resend_api_base_url: str = "https://api.resend.com"
    resend_timeout: float = 15.0

    # ── Calendar tools (Composio) ───────────────────────────────────────────────
    composio_api_key: str = ""
    composio_base_url: str = "https://backend.composio.dev/api/v3"
    composio_timeout: float = 30.0

    @property
    def email_allowed_senders(self) -> list[str]:
        """Parse comma-separated sender addresses from the raw env string."""
        raw = self.email_allowed_senders_raw
        if not raw:
            return []
        return [x.strip().lower() for x in raw.split(",") if x.strip()]

    @model_validator(mode="after")
    def check_agent_steps(self) -> "Settings":
        if self.agent_max_steps < 1:
            self.agent_max_steps = 1
        return self

    @property
    def db_path(self) -> str:
        return os.path.join(self.data_dir, "quill.db")

    @property
    def logs_dir(self) -> str:
        return os.path.join(self.data_dir, "logs")


def get_settings() -> "Settings":
    """Return the application settings singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


_settings: Settings | None = None


class _SettingsProxy:
    """Lazy proxy so `from quill.config import settings` works without eager init."""
    def __getattr__(self, name):
        return getattr(get_settings(), name)


settings = _SettingsProxy()  # type: ignore[assignment]
