"""Configuration loaded from environment variables."""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_HOME = Path.home() / ".neuro"

GEMINI_ENDPOINT = "https://cloudcode-pa.googleapis.com/v1internal:generateContent"
TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"


@dataclass
class Config:
    """Runtime configuration for the context engine and its collaborators."""

    db_path: Path | None = None
    state_path: Path | None = None
    log_dir: Path | None = None

    # Context budget
    max_history_messages: int = 10_000
    max_context_tokens: int = 900_000
    compress_threshold: int = 800_000

    # Upstream model
    model: str = "gemini-3-pro-preview"
    endpoint: str = GEMINI_ENDPOINT
    token_endpoint: str = TOKEN_ENDPOINT
    client_id: str = ""
    client_secret: str = ""
    temperature: float = 0.9
    max_output_tokens: int = 65_536
    request_timeout: float = 120.0
    rate_limit_cooldown_ms: int = 60_000

    # Chat transport
    telegram_token: str | None = None
    admin_user_id: int | None = None

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = DEFAULT_HOME / "neuro.db"
        if self.state_path is None:
            self.state_path = DEFAULT_HOME / "state.db"
        if self.compress_threshold >= self.max_context_tokens:
            raise ValueError(
                "compress_threshold must be lower than max_context_tokens "
                f"({self.compress_threshold} >= {self.max_context_tokens})"
            )


def _optional_path(name: str) -> Path | None:
    value = os.getenv(name)
    return Path(value).expanduser() if value else None


def config_from_env() -> Config:
    """Load configuration from environment variables."""
    admin = os.getenv("ADMIN_USER_ID")

    return Config(
        db_path=_optional_path("NEURO_DB_PATH"),
        state_path=_optional_path("NEURO_STATE_PATH"),
        log_dir=_optional_path("NEURO_LOG_DIR"),
        max_history_messages=int(os.getenv("NEURO_MAX_HISTORY", "10000")),
        max_context_tokens=int(os.getenv("NEURO_MAX_CONTEXT_TOKENS", "900000")),
        compress_threshold=int(os.getenv("NEURO_COMPRESS_THRESHOLD", "800000")),
        model=os.getenv("GEMINI_MODEL", "gemini-3-pro-preview"),
        endpoint=os.getenv("GEMINI_ENDPOINT", GEMINI_ENDPOINT),
        token_endpoint=os.getenv("GOOGLE_TOKEN_ENDPOINT", TOKEN_ENDPOINT),
        client_id=os.getenv("GOOGLE_CLIENT_ID", ""),
        client_secret=os.getenv("GOOGLE_CLIENT_SECRET", ""),
        rate_limit_cooldown_ms=int(os.getenv("NEURO_RATE_LIMIT_COOLDOWN_MS", "60000")),
        telegram_token=os.getenv("TELEGRAM_TOKEN"),
        admin_user_id=int(admin) if admin else None,
    )


def accounts_from_env() -> list[dict[str, Any]]:
    """Read upstream account definitions from the environment.

    Accepts either ``GOOGLE_ACCOUNTS`` (a JSON array of objects with
    ``email``, ``refreshToken`` and optional ``projectId``) or the
    single-account variables ``GOOGLE_EMAIL``, ``GOOGLE_REFRESH_TOKEN``
    and ``GOOGLE_PROJECT_ID``.

    Returns:
        List of raw account dicts, empty if nothing is configured.
    """
    raw = os.getenv("GOOGLE_ACCOUNTS")
    if raw:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse GOOGLE_ACCOUNTS: {e}")
            return []
        if not isinstance(data, list):
            logger.error("GOOGLE_ACCOUNTS must be a JSON array")
            return []
        return [item for item in data if isinstance(item, dict)]

    refresh_token = os.getenv("GOOGLE_REFRESH_TOKEN")
    if refresh_token:
        return [
            {
                "email": os.getenv("GOOGLE_EMAIL", "default"),
                "refreshToken": refresh_token,
                "projectId": os.getenv("GOOGLE_PROJECT_ID"),
            }
        ]

    logger.warning("No GOOGLE_ACCOUNTS or GOOGLE_REFRESH_TOKEN found")
    return []
