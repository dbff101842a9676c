"""
X (Twitter) API adapter.

Searches posts with the Twitter API v2 Recent Search endpoint and normalizes
them into ContentItems.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from ..base import (
    PlatformAdapter,
    AdapterAuthenticationError,
    AdapterRateLimitError,
    AdapterAPIError,
    format_iso,
    parse_iso,
    timeframe_start,
)
from ..models import ContentItem, Platform, SearchOptions
from ..rate_limiter import RateLimiter, RateLimitConfig

logger = logging.getLogger(__name__)

# Recent search only covers the last 7 days
MAX_LOOKBACK = timedelta(days=7)


class XAdapter(PlatformAdapter):
    """
    Adapter for X (Twitter) API v2.

    Usage:
        adapter = XAdapter(bearer_token="...")
        items = adapter.search("ai", SearchOptions(keyword="ai", timeframe="24h"))
    """

    BASE_URL = "https://api.x.com/2"

    platform = Platform.TWITTER
    rate_limit_category = "x_search"

    # Internal rate limit - X API returns 429 when its real limit is hit
    DEFAULT_RATE_LIMIT = RateLimitConfig(
        requests_per_window=450,
        window_seconds=900,
        strategy="sliding_window"
    )

    def __init__(
        self,
        bearer_token: Optional[str] = None,
        rate_limiter: Optional[RateLimiter] = None,
        skip_rate_limit: bool = False
    ):
        """
        Initialize the X adapter.

        Args:
            bearer_token: X API bearer token
            rate_limiter: Optional shared rate limiter
            skip_rate_limit: If True, skip internal rate limiting (X API still enforces its own)
        """
        super().__init__(rate_limiter=rate_limiter, skip_rate_limit=skip_rate_limit)
        self.bearer_token = bearer_token or None

        if not self.bearer_token:
            logger.warning("No X bearer token provided - X adapter unavailable")

        self.headers = {
            "Authorization": f"Bearer {self.bearer_token}" if self.bearer_token else "",
        }

        if self.rate_limit_category not in self.rate_limiter.configs:
            self.rate_limiter.configure_limit(self.rate_limit_category, self.DEFAULT_RATE_LIMIT)

    def is_available(self) -> bool:
        return bool(self.bearer_token)

    def _get_time_bounds(self, timeframe: str) -> tuple[str, str]:
        """
        Start and end time bounds for a search.

        X API requires end_time to be at least 10 seconds before now, and
        start_time within the recent-search window.
        """
        now = datetime.now(timezone.utc)
        safe_end = now - timedelta(seconds=20)
        earliest = now - MAX_LOOKBACK + timedelta(minutes=1)

        start = timeframe_start(timeframe, now) or earliest
        start = max(start, earliest)

        return format_iso(start), format_iso(safe_end)

    def _parse_tweet(self, tweet: dict, users_map: Dict[str, dict]) -> Optional[ContentItem]:
        """Convert a raw tweet into a ContentItem (None if it has no text)."""
        text = (tweet.get("text") or "").strip()
        if not tweet.get("id") or not text:
            return None

        user = users_map.get(tweet.get("author_id"), {})
        username = user.get("username", "unknown")
        published_at = parse_iso(tweet.get("created_at"))

        public_metrics = tweet.get("public_metrics", {})
        likes = public_metrics.get("like_count", 0) or 0
        retweets = public_metrics.get("retweet_count", 0) or 0
        replies = public_metrics.get("reply_count", 0) or 0

        hours = (datetime.now(timezone.utc) - published_at).total_seconds() / 3600
        engagement = likes + retweets + replies
        momentum = engagement / hours if hours > 0 else engagement

        return ContentItem(
            platform_id=str(tweet["id"]),
            platform=Platform.TWITTER,
            author=username,
            content=text,
            metrics={"likes": likes, "retweets": retweets, "replies": replies},
            link=f"https://x.com/{username}/status/{tweet['id']}",
            published_at=published_at,
            momentum_score=round(momentum, 2),
        )

    def search(self, keyword: str, options: SearchOptions) -> List[ContentItem]:
        """
        Search recent posts matching a keyword.

        Returns:
            ContentItems sorted by momentum (highest first)

        Raises:
            AdapterAuthenticationError: If not configured or the token is rejected
            AdapterRateLimitError: If rate limit exceeded
            AdapterAPIError: If API returns an error
        """
        if not self.is_available():
            raise AdapterAuthenticationError("X adapter not configured - set X_BEARER_TOKEN")

        self._wait_for_rate_limit()

        query = keyword
        if "-is:retweet" not in query.lower():
            query = f"{query} -is:retweet"
        if options.lang and "lang:" not in query:
            query = f"{query} lang:{options.lang}"

        start_str, end_str = self._get_time_bounds(options.timeframe)
        params = {
            "query": query,
            "start_time": start_str,
            "end_time": end_str,
            "max_results": max(10, min(100, options.limit)),
            "tweet.fields": "id,text,created_at,author_id,public_metrics,lang",
            "expansions": "author_id",
            "user.fields": "username,name,verified",
        }

        data = self._request("GET", f"{self.BASE_URL}/tweets/search/recent", params=params, headers=self.headers)

        if not data.get("data"):
            logger.info(f"No posts found on X for query '{query}'")
            return []

        users_map = {user["id"]: user for user in data.get("includes", {}).get("users", [])}

        items = []
        for tweet in data["data"]:
            item = self._parse_tweet(tweet, users_map)
            if item is not None:
                items.append(item)

        logger.info(f"Fetched {len(items)} posts from X for query '{query}'")
        return sorted(items, key=lambda i: i.momentum_score or 0, reverse=True)


__all__ = ["XAdapter"]
