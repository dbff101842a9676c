"""
Configuration for the Trend Terminal backend.

Settings are read once from the environment (and a local .env file) and then
passed explicitly to adapters and services. Nothing below this layer reads
os.environ directly.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


@dataclass
class Settings:
    """Runtime configuration for adapters, storage and the HTTP app."""

    # Platform credentials
    reddit_client_id: Optional[str] = None
    reddit_client_secret: Optional[str] = None
    reddit_user_agent: str = "TrendingFinder/1.0"
    youtube_api_key: Optional[str] = None
    x_bearer_token: Optional[str] = None

    # Embeddings
    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    embedding_model: str = "text-embedding-3-small"
    embedding_dimension: int = 1536

    # Storage
    db_path: str = "trends.sqlite3"

    # Fan-out
    platform_timeout_seconds: float = 8.0

    # App
    log_level: str = "INFO"
    port: int = 8000

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            load_env_file: If True, load a .env file first (python-dotenv)
        """
        if load_env_file:
            load_dotenv()

        return cls(
            reddit_client_id=os.environ.get("REDDIT_CLIENT_ID") or None,
            reddit_client_secret=os.environ.get("REDDIT_CLIENT_SECRET") or None,
            reddit_user_agent=os.environ.get("REDDIT_USER_AGENT", "TrendingFinder/1.0"),
            youtube_api_key=os.environ.get("YOUTUBE_API_KEY") or None,
            x_bearer_token=(
                os.environ.get("X_BEARER_TOKEN")
                or os.environ.get("TWITTER_BEARER_TOKEN")
                or None
            ),
            openai_api_key=os.environ.get("OPENAI_API_KEY") or None,
            openai_base_url=os.environ.get("OPENAI_BASE_URL", "https://api.openai.com/v1"),
            embedding_model=os.environ.get("EMBEDDING_MODEL", "text-embedding-3-small"),
            embedding_dimension=_env_int("EMBEDDING_DIMENSION", 1536),
            db_path=os.environ.get("DB_PATH", "trends.sqlite3"),
            platform_timeout_seconds=_env_float("PLATFORM_TIMEOUT_SECONDS", 8.0),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            port=_env_int("PORT", 8000),
        )


__all__ = ["Settings"]
