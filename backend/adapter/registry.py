"""
Capability registry: one adapter per platform.

The registry is the only place where a failing platform is turned into an
empty result. Fan-out runs every requested adapter concurrently, each bounded
by its own timeout, and never lets one failure cancel the others.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, Iterable, List, Optional

from .base import PlatformAdapter
from .models import ContentItem, Platform, SearchOptions
from .rate_limiter import RateLimiter
from .reddit import RedditAdapter
from .x import XAdapter
from .youtube import YouTubeAdapter

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

DEFAULT_PLATFORM_TIMEOUT = 8.0


class PlatformRegistry:
    """
    Holds the adapter for each platform and fans searches out to them.

    Args:
        adapters: Platform -> adapter, in registration order
        timeout_seconds: Per-adapter timeout for one fan-out call
    """

    def __init__(
        self,
        adapters: Dict[Platform, PlatformAdapter],
        timeout_seconds: float = DEFAULT_PLATFORM_TIMEOUT,
    ):
        self.adapters = dict(adapters)
        self.timeout_seconds = timeout_seconds

    def get_adapter(self, platform: Platform) -> Optional[PlatformAdapter]:
        return self.adapters.get(platform)

    def available_platforms(self) -> List[Platform]:
        """Platforms whose adapter has credentials, in registration order."""
        return [p for p, adapter in self.adapters.items() if adapter.is_available()]

    def get_platform_status(self) -> Dict[str, Dict[str, bool]]:
        """Registration and credential status per known platform."""
        status = {}
        for platform in Platform:
            adapter = self.adapters.get(platform)
            status[platform.value] = {
                "available": adapter is not None,
                "configured": bool(adapter and adapter.is_available()),
            }
        return status

    async def _search_one(
        self,
        platform: Platform,
        keyword: str,
        options: SearchOptions,
    ) -> List[ContentItem]:
        adapter = self.adapters.get(platform)
        if adapter is None or not adapter.is_available():
            return []

        mon = _get_monitor()
        start = time.time()
        try:
            items = list(await asyncio.wait_for(
                adapter.search_async(keyword, options),
                timeout=self.timeout_seconds,
            ))
        except asyncio.TimeoutError:
            logger.warning(f"{platform.value} search for '{keyword}' timed out after {self.timeout_seconds}s")
            if mon:
                from monitoring import EventType
                mon.activity.add_event(
                    EventType.PLATFORM_ERROR, keyword=keyword,
                    platform=platform.value, error="timeout"
                )
            return []
        except Exception as e:
            logger.warning(f"{platform.value} search for '{keyword}' failed: {e}")
            if mon:
                from monitoring import EventType
                mon.activity.add_event(
                    EventType.PLATFORM_ERROR, keyword=keyword,
                    platform=platform.value, error=str(e)
                )
            return []

        if mon:
            from monitoring import EventType
            mon.activity.add_event(
                EventType.PLATFORM_CALL, keyword=keyword, platform=platform.value,
                items=len(items), latency_ms=round((time.time() - start) * 1000, 1)
            )
        return items

    async def fan_out_search(
        self,
        keyword: str,
        platforms: Iterable[Platform],
        options: SearchOptions,
    ) -> Dict[Platform, List[ContentItem]]:
        """
        Search the requested platforms concurrently.

        Unavailable or unregistered platforms map to [] without a call.
        Errors and timeouts map to [] as well.
        """
        requested: List[Platform] = []
        for platform in platforms:
            if platform not in requested:
                requested.append(platform)

        results = await asyncio.gather(
            *(self._search_one(p, keyword, options) for p in requested)
        )
        return dict(zip(requested, results))


def build_registry(settings, rate_limiter: Optional[RateLimiter] = None) -> PlatformRegistry:
    """
    Build the platform registry from injected settings.

    Args:
        settings: config.Settings with platform credentials
        rate_limiter: Shared rate limiter for all adapters
    """
    rate_limiter = rate_limiter or RateLimiter()

    adapters: Dict[Platform, PlatformAdapter] = {
        Platform.REDDIT: RedditAdapter(
            client_id=settings.reddit_client_id,
            client_secret=settings.reddit_client_secret,
            user_agent=settings.reddit_user_agent,
            rate_limiter=rate_limiter,
        ),
        Platform.YOUTUBE: YouTubeAdapter(
            api_key=settings.youtube_api_key,
            rate_limiter=rate_limiter,
        ),
        Platform.TWITTER: XAdapter(
            bearer_token=settings.x_bearer_token,
            rate_limiter=rate_limiter,
        ),
    }

    registry = PlatformRegistry(adapters, timeout_seconds=settings.platform_timeout_seconds)
    logger.info(f"Platform registry ready: available={[p.value for p in registry.available_platforms()]}")
    return registry


__all__ = ["PlatformRegistry", "build_registry", "DEFAULT_PLATFORM_TIMEOUT"]
