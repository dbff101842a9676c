"""
YouTube Data API v3 adapter.

Two calls per search: /search for matching video ids, then /videos for their
statistics.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from ..base import (
    PlatformAdapter,
    AdapterAuthenticationError,
    AdapterAPIError,
    format_iso,
    parse_iso,
    timeframe_start,
)
from ..models import ContentItem, Platform, SearchOptions
from ..rate_limiter import RateLimiter, RateLimitConfig

logger = logging.getLogger(__name__)

MAX_RESULTS = 50


def _to_int(value) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


class YouTubeAdapter(PlatformAdapter):
    """
    Adapter for the YouTube Data API v3.

    Usage:
        adapter = YouTubeAdapter(api_key="...")
        items = adapter.search("espresso", SearchOptions(keyword="espresso", timeframe="7d"))
    """

    BASE_URL = "https://www.googleapis.com/youtube/v3"

    platform = Platform.YOUTUBE
    rate_limit_category = "youtube_search"

    DEFAULT_RATE_LIMIT = RateLimitConfig(
        requests_per_window=100,
        window_seconds=60,
        strategy="sliding_window"
    )

    def __init__(
        self,
        api_key: Optional[str] = None,
        rate_limiter: Optional[RateLimiter] = None,
        skip_rate_limit: bool = False
    ):
        super().__init__(rate_limiter=rate_limiter, skip_rate_limit=skip_rate_limit)
        self.api_key = api_key or None

        if not self.api_key:
            logger.warning("No YouTube API key provided - YouTube adapter unavailable")

        if self.rate_limit_category not in self.rate_limiter.configs:
            self.rate_limiter.configure_limit(self.rate_limit_category, self.DEFAULT_RATE_LIMIT)

    def is_available(self) -> bool:
        return bool(self.api_key)

    def _get(self, path: str, params: dict) -> dict:
        self._wait_for_rate_limit()
        return self._request("GET", f"{self.BASE_URL}{path}", params={**params, "key": self.api_key})

    def _normalize_video(self, video: dict) -> Optional[ContentItem]:
        """Convert a /videos item into a ContentItem."""
        snippet = video.get("snippet") or {}
        if not video.get("id") or not snippet:
            return None

        published_at = parse_iso(snippet.get("publishedAt"))
        hours = (datetime.now(timezone.utc) - published_at).total_seconds() / 3600

        stats = video.get("statistics") or {}
        views = _to_int(stats.get("viewCount"))
        likes = _to_int(stats.get("likeCount"))
        comments = _to_int(stats.get("commentCount"))

        engagement = views + likes + comments
        momentum = engagement / hours if hours > 0 else engagement

        thumbnails = snippet.get("thumbnails") or {}
        thumbnail = (thumbnails.get("high") or thumbnails.get("medium") or {}).get("url")

        return ContentItem(
            platform_id=str(video["id"]),
            platform=Platform.YOUTUBE,
            author=snippet.get("channelTitle") or "unknown",
            content=(snippet.get("description") or "").strip() or "No description",
            title=snippet.get("title"),
            metrics={"views": views, "likes": likes, "comments": comments},
            link=f"https://www.youtube.com/watch?v={video['id']}",
            thumbnail=thumbnail,
            published_at=published_at,
            momentum_score=round(momentum, 2),
        )

    def search(self, keyword: str, options: SearchOptions) -> List[ContentItem]:
        """
        Search videos by view count within the timeframe.

        Raises:
            AdapterAuthenticationError: If not configured or the key is rejected
            AdapterRateLimitError: If quota or rate limit exceeded
            AdapterAPIError: If API returns an error
        """
        if not self.is_available():
            raise AdapterAuthenticationError("YouTube adapter not configured - set YOUTUBE_API_KEY")

        # YouTube has no "all" window in this adapter; unknown and "all" use 24h
        published_after = timeframe_start(options.timeframe) or timeframe_start("24h")

        search_data = self._get("/search", {
            "part": "snippet",
            "q": keyword,
            "type": "video",
            "order": "viewCount",
            "publishedAfter": format_iso(published_after),
            "maxResults": min(options.limit, MAX_RESULTS),
            "relevanceLanguage": options.lang or "en",
            "regionCode": (options.region or "US").upper(),
        })

        if "items" not in search_data:
            raise AdapterAPIError("Malformed YouTube search response: missing items")

        video_ids = [
            item["id"]["videoId"]
            for item in search_data["items"]
            if isinstance(item.get("id"), dict) and item["id"].get("videoId")
        ]
        if not video_ids:
            logger.info(f"No YouTube videos found for '{keyword}'")
            return []

        stats_data = self._get("/videos", {
            "part": "statistics,snippet,contentDetails",
            "id": ",".join(video_ids),
        })

        items = []
        for video in stats_data.get("items", []):
            item = self._normalize_video(video)
            if item is not None:
                items.append(item)

        logger.info(f"Fetched {len(items)} YouTube videos for '{keyword}'")
        return sorted(items, key=lambda i: i.momentum_score or 0, reverse=True)


__all__ = ["YouTubeAdapter"]
