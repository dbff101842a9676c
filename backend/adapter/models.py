"""
Shared data models for adapters, storage and the search engine.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, field_validator


# Storage bounds for free-text fields
MAX_CONTENT_LENGTH = 2000
MAX_TITLE_LENGTH = 300
TRUNCATION_MARKER = "…"

DEFAULT_LIMIT = 50
MAX_LIMIT = 100

# Timeframe tokens -> lookback window. "all" has no window.
TIMEFRAME_DELTAS: Dict[str, timedelta] = {
    "1h": timedelta(hours=1),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "1y": timedelta(days=365),
}
VALID_TIMEFRAMES = list(TIMEFRAME_DELTAS.keys()) + ["all"]
DEFAULT_TIMEFRAME = "24h"


class Platform(str, Enum):
    """Supported content platforms."""
    REDDIT = "reddit"
    YOUTUBE = "youtube"
    TWITTER = "twitter"


# Accepted spellings -> canonical platform
PLATFORM_ALIASES: Dict[str, Platform] = {
    "reddit": Platform.REDDIT,
    "youtube": Platform.YOUTUBE,
    "yt": Platform.YOUTUBE,
    "twitter": Platform.TWITTER,
    "x": Platform.TWITTER,
}


def normalize_platform(token: str) -> Optional[Platform]:
    """Map a user-supplied platform token to a Platform, or None if unknown."""
    if isinstance(token, Platform):
        return token
    if not token:
        return None
    return PLATFORM_ALIASES.get(str(token).strip().lower())


def normalize_platforms(tokens: Iterable[str]) -> List[Platform]:
    """Normalize tokens, dropping unknown ones and duplicates (order kept)."""
    result: List[Platform] = []
    for token in tokens or []:
        platform = normalize_platform(token)
        if platform is not None and platform not in result:
            result.append(platform)
    return result


def truncate_text(value: Optional[str], max_length: int) -> Optional[str]:
    """Cut text to max_length characters, ending with the truncation marker."""
    if value is None or len(value) <= max_length:
        return value
    return value[: max_length - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_LIMIT
    return max(1, min(MAX_LIMIT, int(limit)))


def _new_id() -> str:
    return uuid.uuid4().hex


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ContentItem(BaseModel):
    """
    A piece of platform content normalized into one schema.

    Attributes:
        id: Internal identifier (system-assigned)
        platform_id: The platform's own id (post id, video id, tweet id)
        platform: Source platform
        author: Author handle / channel name
        content: Body text (required, non-empty)
        title: Optional title
        metrics: Engagement counters (keys vary by platform)
        link: Canonical URL to the content
        thumbnail: Optional image URL
        published_at: When the platform says the content was created
        ingested_at: When this system first stored it
        momentum_score: Popularity as of evaluation time (None until computed)
        embedding: Optional embedding vector
    """
    id: str = Field(default_factory=_new_id, description="Internal ID")
    platform_id: str = Field(min_length=1, description="Platform-native ID")
    platform: Platform = Field(description="Source platform")
    author: str = Field(default="unknown", description="Author handle")
    content: str = Field(min_length=1, description="Content body")
    title: Optional[str] = Field(default=None, description="Optional title")
    metrics: Dict[str, float] = Field(default_factory=dict, description="Engagement metrics")
    link: str = Field(default="", description="Canonical URL")
    thumbnail: Optional[str] = Field(default=None, description="Thumbnail URL")
    published_at: datetime = Field(description="Origin timestamp")
    ingested_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    momentum_score: Optional[float] = Field(default=None, description="Momentum score")
    embedding: Optional[List[float]] = Field(default=None, exclude=True)

    @field_validator("platform", mode="before")
    @classmethod
    def _normalize_platform(cls, value):
        platform = normalize_platform(value)
        if platform is None:
            raise ValueError(f"Unsupported platform: {value}")
        return platform

    @field_validator("content", mode="before")
    @classmethod
    def _strip_content(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("metrics", mode="before")
    @classmethod
    def _clean_metrics(cls, value):
        # Drop missing counters and clamp negatives to zero
        cleaned = {}
        for key, count in (value or {}).items():
            if count is None:
                continue
            cleaned[key] = max(0, count)
        return cleaned

    @field_validator("published_at", "ingested_at")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @property
    def natural_key(self) -> tuple:
        """The dedup / upsert key: (platform, platform_id)."""
        return (self.platform.value, self.platform_id)

    def truncated(self) -> "ContentItem":
        """Return a copy with content and title cut to their storage bounds."""
        return self.model_copy(update={
            "content": truncate_text(self.content, MAX_CONTENT_LENGTH),
            "title": truncate_text(self.title, MAX_TITLE_LENGTH),
        })

    def embedding_text(self) -> str:
        """Text used to embed this item (title + content)."""
        return " ".join(part for part in (self.title, self.content) if part)


class SearchOptions(BaseModel):
    """Options for one trend search."""
    keyword: str = Field(min_length=1, description="Search keyword")
    platforms: List[str] = Field(
        default_factory=lambda: [p.value for p in Platform],
        description="Requested platform tokens (aliases allowed)"
    )
    timeframe: str = Field(default=DEFAULT_TIMEFRAME, description="1h, 24h, 7d, 30d, 1y or all")
    lang: Optional[str] = Field(default=None)
    region: Optional[str] = Field(default=None)
    limit: int = Field(default=DEFAULT_LIMIT)
    user_id: Optional[str] = Field(default=None, description="Requester reference")

    @field_validator("limit", mode="before")
    @classmethod
    def _clamp_limit(cls, value):
        return clamp_limit(value)


class SearchSource(str, Enum):
    """Which retrieval tier produced a result."""
    VECTOR = "vector"
    LEXICAL = "lexical"
    LIVE = "live"


class SearchResult(BaseModel):
    """Response payload for a trend search."""
    keyword: str
    platforms: List[Platform]
    results: List[ContentItem]
    total_results: int
    search_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    source: SearchSource


class TrendQuery(BaseModel):
    """A write-once record of one search session."""
    id: str = Field(default_factory=_new_id)
    keyword: str
    platforms: List[Platform]
    timeframe: str
    lang: Optional[str] = None
    region: Optional[str] = None
    user_id: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("created_at")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


__all__ = [
    "Platform",
    "PLATFORM_ALIASES",
    "ContentItem",
    "SearchOptions",
    "SearchResult",
    "SearchSource",
    "TrendQuery",
    "normalize_platform",
    "normalize_platforms",
    "truncate_text",
    "clamp_limit",
    "MAX_CONTENT_LENGTH",
    "MAX_TITLE_LENGTH",
    "TRUNCATION_MARKER",
    "DEFAULT_LIMIT",
    "MAX_LIMIT",
    "TIMEFRAME_DELTAS",
    "VALID_TIMEFRAMES",
    "DEFAULT_TIMEFRAME",
]
