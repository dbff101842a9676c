"""
Reddit API adapter.

Authenticates with the OAuth client-credentials flow and searches a bounded
set of subreddits relevant to the keyword.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from ..base import (
    PlatformAdapter,
    AdapterAuthenticationError,
    AdapterAPIError,
)
from ..models import ContentItem, Platform, SearchOptions
from ..rate_limiter import RateLimiter, RateLimitConfig
from ..token import TokenState

logger = logging.getLogger(__name__)

MAX_SUBREDDITS_PER_QUERY = 6
MAX_GLOBAL_ITEMS = 100
MAX_PAGES_PER_SUB = 2
MAX_PAGE_SIZE = 50

# Reddit momentum: comments count double, minimum age of 15 minutes
COMMENT_WEIGHT = 2
MIN_AGE_HOURS = 0.25

DEFAULT_SUBREDDITS = ["all", "popular"]

KEYWORD_SUBREDDITS: Dict[str, List[str]] = {
    "ai": ["artificial", "MachineLearning", "OpenAI", "ChatGPT"],
    "coffee": ["Coffee", "barista", "espresso"],
    "tech": ["technology", "programming", "gadgets", "Futurology"],
    "gaming": ["gaming", "PCGaming", "PS5", "XboxSeriesX"],
    "crypto": ["CryptoCurrency", "Bitcoin", "ethereum"],
}

REDDIT_TIMEFRAMES = {
    "1h": "hour",
    "24h": "day",
    "7d": "week",
    "30d": "month",
    "1y": "year",
    "all": "all",
}


class RedditAdapter(PlatformAdapter):
    """
    Adapter for the Reddit OAuth API.

    The access token is cached per adapter instance in a TokenState.

    Usage:
        adapter = RedditAdapter(client_id="...", client_secret="...")
        items = adapter.search("coffee", SearchOptions(keyword="coffee"))
    """

    AUTH_URL = "https://www.reddit.com/api/v1/access_token"
    BASE_URL = "https://oauth.reddit.com"

    platform = Platform.REDDIT
    rate_limit_category = "reddit_search"

    DEFAULT_RATE_LIMIT = RateLimitConfig(
        requests_per_window=100,
        window_seconds=60,
        strategy="sliding_window"
    )

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        user_agent: str = "TrendingFinder/1.0",
        rate_limiter: Optional[RateLimiter] = None,
        skip_rate_limit: bool = False,
        token_state: Optional[TokenState] = None,
    ):
        super().__init__(rate_limiter=rate_limiter, skip_rate_limit=skip_rate_limit)
        self.client_id = client_id or None
        self.client_secret = client_secret or None
        self.user_agent = user_agent
        self.token_state = token_state or TokenState()

        if not self.is_available():
            logger.warning("Reddit client id/secret not provided - Reddit adapter unavailable")

        if self.rate_limit_category not in self.rate_limiter.configs:
            self.rate_limiter.configure_limit(self.rate_limit_category, self.DEFAULT_RATE_LIMIT)

    def is_available(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _fetch_access_token(self) -> Tuple[str, float]:
        """Exchange client credentials for an access token."""
        data = self._request(
            "POST",
            self.AUTH_URL,
            headers={"User-Agent": self.user_agent},
            data={"grant_type": "client_credentials"},
            auth=(self.client_id, self.client_secret),
        )
        token = data.get("access_token")
        if not token:
            raise AdapterAuthenticationError("Reddit token response did not include an access token")
        return token, float(data.get("expires_in", 3600))

    def _auth_headers(self) -> dict:
        token = self.token_state.get_or_refresh(self._fetch_access_token)
        return {"Authorization": f"Bearer {token}", "User-Agent": self.user_agent}

    def _get(self, path: str, params: dict) -> dict:
        """GET against the OAuth API, refreshing the token once on a 401."""
        try:
            return self._request("GET", f"{self.BASE_URL}{path}", params=params, headers=self._auth_headers())
        except AdapterAuthenticationError:
            self.token_state.invalidate()
            return self._request("GET", f"{self.BASE_URL}{path}", params=params, headers=self._auth_headers())

    def get_relevant_subreddits(self, keyword: str) -> List[str]:
        """Subreddits to search for a keyword, topic-specific ones first."""
        k = keyword.lower()
        hits = []
        for key, subs in KEYWORD_SUBREDDITS.items():
            if key in k:
                hits.extend(subs)

        result: List[str] = []
        for sub in hits + DEFAULT_SUBREDDITS:
            if sub not in result:
                result.append(sub)
        return result

    def _normalize_post(self, data: dict) -> Optional[ContentItem]:
        """Convert a raw Reddit post into a ContentItem, skipping meta/NSFW/ads."""
        if data.get("stickied") or data.get("is_meta") or data.get("over_18") or data.get("is_ad"):
            return None
        if not data.get("id"):
            return None

        created = data.get("created_utc") or data.get("created")
        published_at = datetime.fromtimestamp(float(created), tz=timezone.utc) if created else datetime.now(timezone.utc)
        hours = max(MIN_AGE_HOURS, (datetime.now(timezone.utc) - published_at).total_seconds() / 3600)

        upvotes = data.get("ups") or 0
        comments = data.get("num_comments") or 0
        momentum = round((upvotes + comments * COMMENT_WEIGHT) / hours, 2)

        title = (data.get("title") or "").strip()
        selftext = (data.get("selftext") or "").strip()
        content = selftext or title
        if not content:
            return None

        thumbnail = data.get("thumbnail")
        if not (isinstance(thumbnail, str) and thumbnail.startswith("http")):
            images = (data.get("preview") or {}).get("images") or []
            source_url = images[0].get("source", {}).get("url") if images else None
            thumbnail = source_url.replace("&amp;", "&") if source_url else None

        return ContentItem(
            platform_id=str(data["id"]),
            platform=Platform.REDDIT,
            author=data.get("author") or "unknown",
            content=content,
            title=title or None,
            metrics={"upvotes": upvotes, "comments": comments},
            link=f"https://reddit.com{data.get('permalink', '')}",
            thumbnail=thumbnail,
            published_at=published_at,
            momentum_score=momentum,
        )

    def _search_subreddit(self, keyword: str, subreddit: str, options: SearchOptions) -> List[ContentItem]:
        time_filter = REDDIT_TIMEFRAMES.get(options.timeframe, "day")
        per_page = min(options.limit, MAX_PAGE_SIZE)

        out: List[ContentItem] = []
        after = None

        for _ in range(MAX_PAGES_PER_SUB):
            self._wait_for_rate_limit()

            params = {
                "q": keyword,
                "sort": "new" if time_filter == "all" else "top",
                "limit": per_page,
                "restrict_sr": "on",
                "include_over_18": "false",
            }
            if time_filter != "all":
                params["t"] = time_filter
            if after:
                params["after"] = after

            data = self._get(f"/r/{subreddit}/search", params)
            listing = data.get("data")
            if not isinstance(listing, dict):
                raise AdapterAPIError(f"Malformed Reddit listing for r/{subreddit}")

            for child in listing.get("children", []):
                item = self._normalize_post(child.get("data") or {})
                if item is not None:
                    out.append(item)

            after = listing.get("after")
            if len(out) >= options.limit or not after:
                break

        return out

    def search(self, keyword: str, options: SearchOptions) -> List[ContentItem]:
        """
        Search relevant subreddits and return the top items by momentum.

        Raises:
            AdapterAuthenticationError: If not configured or authentication fails
            AdapterRateLimitError: If rate limit exceeded
            AdapterAPIError: If API returns an error
        """
        if not self.is_available():
            raise AdapterAuthenticationError("Reddit adapter not configured - set REDDIT_CLIENT_ID/REDDIT_CLIENT_SECRET")

        subreddits = self.get_relevant_subreddits(keyword)[:MAX_SUBREDDITS_PER_QUERY]

        items: List[ContentItem] = []
        seen = set()
        for subreddit in subreddits:
            for item in self._search_subreddit(keyword, subreddit, options):
                if item.platform_id not in seen:
                    seen.add(item.platform_id)
                    items.append(item)

            if len(items) >= MAX_GLOBAL_ITEMS:
                break

        logger.info(f"Fetched {len(items)} Reddit posts for '{keyword}' from {len(subreddits)} subreddits")
        items.sort(key=lambda i: i.momentum_score or 0, reverse=True)
        return items[:options.limit]


__all__ = ["RedditAdapter", "KEYWORD_SUBREDDITS", "REDDIT_TIMEFRAMES"]
