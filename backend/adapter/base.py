"""
Platform adapter contract and shared HTTP handling.

Every platform adapter exposes the same capability:
    name, is_available(), search(keyword, options) -> List[ContentItem]

Adapters raise AdapterError subclasses on failure. They never swallow their
own errors into empty results; the PlatformRegistry is the single place that
converts a failing platform into an empty list.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from .models import ContentItem, Platform, SearchOptions, TIMEFRAME_DELTAS
from .rate_limiter import RateLimiter

# Import monitoring (lazy to avoid circular imports)
_monitor = None

def _get_monitor():
    global _monitor
    if _monitor is None:
        try:
            from monitoring import monitor
            _monitor = monitor
        except ImportError:
            _monitor = None
    return _monitor

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 15


class AdapterError(Exception):
    """Base exception for platform adapter errors."""
    pass


class AdapterAuthenticationError(AdapterError):
    """Raised when credentials are missing, invalid or expired."""
    pass


class AdapterRateLimitError(AdapterError):
    """Raised when a platform rate limit is exceeded."""
    def __init__(self, message: str, reset_time: int = None, remaining: int = None, limit: int = None):
        super().__init__(message)
        self.reset_time = reset_time  # Unix timestamp when limit resets
        self.remaining = remaining    # Remaining requests in window
        self.limit = limit            # Total requests allowed in window


class AdapterAPIError(AdapterError):
    """Raised when a platform API returns an error or a malformed response."""
    def __init__(self, message: str, status_code: int = None, response_text: str = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_text = response_text


def format_iso(dt: datetime) -> str:
    """Format datetime as ISO 8601 with Z suffix."""
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_iso(value: Optional[str]) -> datetime:
    """Parse an ISO 8601 timestamp (Z suffix allowed); now() when missing."""
    if not value:
        return datetime.now(timezone.utc)
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def timeframe_start(timeframe: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Start of the platform query window for a timeframe token.

    Unknown tokens fall back to 24h; "all" returns None (no lower bound).
    """
    if timeframe == "all":
        return None
    now = now or datetime.now(timezone.utc)
    return now - TIMEFRAME_DELTAS.get(timeframe, TIMEFRAME_DELTAS["24h"])


class PlatformAdapter(ABC):
    """
    Base class for platform adapters.

    Subclasses set `platform` and `rate_limit_category`, and implement
    is_available() and search().
    """

    platform: Platform
    rate_limit_category: str = "default"

    def __init__(
        self,
        rate_limiter: Optional[RateLimiter] = None,
        skip_rate_limit: bool = False,
        request_timeout: int = DEFAULT_REQUEST_TIMEOUT,
    ):
        self.rate_limiter = rate_limiter or RateLimiter()
        self._skip_rate_limit = skip_rate_limit
        self.request_timeout = request_timeout
        self._rate_limit_status: Dict[str, Any] = {
            "limit": None,
            "remaining": None,
            "reset_time": None,
            "last_updated": None,
        }

    @property
    def name(self) -> str:
        return self.platform.value

    @abstractmethod
    def is_available(self) -> bool:
        """True only when the adapter's credentials are present."""

    @abstractmethod
    def search(self, keyword: str, options: SearchOptions) -> List[ContentItem]:
        """Search the platform and return normalized items."""

    async def search_async(self, keyword: str, options: SearchOptions) -> List[ContentItem]:
        """
        Async version of search.
        Runs the blocking HTTP calls in a thread pool to avoid blocking the event loop.
        """
        return await asyncio.to_thread(self.search, keyword, options)

    def get_rate_limit_status(self) -> dict:
        """Rate limit status from the last API response."""
        return self._rate_limit_status.copy()

    def _wait_for_rate_limit(self) -> None:
        if not self._skip_rate_limit:
            self.rate_limiter.wait_if_needed(self.rate_limit_category)

    def _update_rate_limit_status(self, response) -> None:
        """Update rate limit status from response headers, when the platform sends them."""
        headers = response.headers or {}

        reset = headers.get("x-rate-limit-reset") or headers.get("x-ratelimit-reset")
        remaining = headers.get("x-rate-limit-remaining") or headers.get("x-ratelimit-remaining")
        limit = headers.get("x-rate-limit-limit")

        if reset:
            self._rate_limit_status["reset_time"] = int(float(reset))
        if remaining:
            self._rate_limit_status["remaining"] = int(float(remaining))
        if limit:
            self._rate_limit_status["limit"] = int(float(limit))

        self._rate_limit_status["last_updated"] = datetime.now(timezone.utc)

        remaining = self._rate_limit_status["remaining"]
        if remaining is not None and remaining <= 5:
            logger.warning(f"{self.name} rate limit nearly exhausted: {remaining} requests remaining")
            mon = _get_monitor()
            if mon:
                from monitoring import EventType
                mon.activity.add_event(EventType.RATE_LIMIT_WARNING, platform=self.name, remaining=remaining)

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
        **kwargs,
    ) -> dict:
        """
        Perform an HTTP request and return the decoded JSON body.

        Raises:
            AdapterAuthenticationError: On 401/403
            AdapterRateLimitError: On 429
            AdapterAPIError: On other 4xx/5xx, timeouts, connection errors or bad JSON
        """
        try:
            start_time_ms = time.time() * 1000
            response = requests.request(
                method,
                url,
                params=params,
                headers=headers,
                timeout=self.request_timeout,
                **kwargs,
            )
            latency_ms = (time.time() * 1000) - start_time_ms

            self._update_rate_limit_status(response)

            mon = _get_monitor()
            if mon:
                mon.metrics.record_platform_call(self.name, latency_ms, error=response.status_code >= 400)

            if response.status_code in (401, 403):
                raise AdapterAuthenticationError(
                    f"{self.name} rejected credentials ({response.status_code})"
                )
            elif response.status_code == 429:
                reset_time = response.headers.get("x-rate-limit-reset")
                remaining = response.headers.get("x-rate-limit-remaining")
                limit = response.headers.get("x-rate-limit-limit")
                raise AdapterRateLimitError(
                    f"{self.name} rate limit exceeded",
                    reset_time=int(float(reset_time)) if reset_time else None,
                    remaining=int(float(remaining)) if remaining else None,
                    limit=int(float(limit)) if limit else None,
                )
            elif response.status_code >= 400:
                raise AdapterAPIError(
                    f"{self.name} API error: {response.status_code}",
                    status_code=response.status_code,
                    response_text=response.text,
                )

            return response.json()

        except requests.exceptions.Timeout:
            raise AdapterAPIError(f"{self.name} request timed out")
        except requests.exceptions.ConnectionError:
            raise AdapterAPIError(f"Failed to connect to {self.name}")
        except AdapterError:
            raise
        except ValueError as e:
            raise AdapterAPIError(f"{self.name} returned malformed JSON: {e}")
        except Exception as e:
            raise AdapterAPIError(f"Unexpected {self.name} error: {e}")


__all__ = [
    "PlatformAdapter",
    "AdapterError",
    "AdapterAuthenticationError",
    "AdapterRateLimitError",
    "AdapterAPIError",
    "format_iso",
    "parse_iso",
    "timeframe_start",
]
