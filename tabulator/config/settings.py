"""
Runtime Settings

All settings are loaded from environment variables.
A `.env` file at the project root is loaded first when present.
"""
import os
from decimal import Decimal
from pathlib import Path
from typing import List

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
ENV_FILE = PROJECT_ROOT / ".env"

load_dotenv(dotenv_path=ENV_FILE)


def get_int_env(key: str, default: int) -> int:
    """Get an integer value from environment variable."""
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


def get_list_env(key: str) -> List[str]:
    """Get a comma separated list from environment variable."""
    return [item.strip() for item in os.getenv(key, "").split(",") if item.strip()]


class Settings:
    """
    Application settings.

    Values are read once at import time; tests construct their own
    collaborators instead of mutating these.
    """

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Persistence
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./tabulator.db")

    # Broadcast: "memory" for a single worker, "redis" for multi-worker fan-out
    BROADCAST_BACKEND: str = os.getenv("BROADCAST_BACKEND", "memory").lower()
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # Identity tuple verification
    JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = get_int_env("ACCESS_TOKEN_EXPIRE_MINUTES", 720)

    # Draft auto-save
    DRAFT_DEBOUNCE_MS: int = get_int_env("DRAFT_DEBOUNCE_MS", 500)
    DRAFT_RATE_LIMIT: str = os.getenv("DRAFT_RATE_LIMIT", "240/minute")

    # Ranking
    TIE_TOLERANCE: Decimal = Decimal(os.getenv("TIE_TOLERANCE", "0.01"))

    # CORS
    ALLOWED_ORIGINS: List[str] = get_list_env("ALLOWED_ORIGINS")

    @property
    def draft_debounce_seconds(self) -> float:
        return self.DRAFT_DEBOUNCE_MS / 1000.0

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"


settings = Settings()
