"""
Unit tests for the platform registry (availability and fan-out).
"""

import time
import pytest
from datetime import datetime, timezone, timedelta
from unittest.mock import Mock

from adapter.base import AdapterAPIError, PlatformAdapter
from adapter.models import ContentItem, Platform, SearchOptions
from adapter.reddit import RedditAdapter
from adapter.registry import PlatformRegistry, build_registry
from adapter.x import XAdapter
from adapter.youtube import YouTubeAdapter
from config import Settings


def make_item(platform, platform_id, momentum=1.0) -> ContentItem:
    return ContentItem(
        platform_id=platform_id,
        platform=platform,
        content=f"{platform.value} {platform_id}",
        published_at=datetime.now(timezone.utc) - timedelta(hours=1),
        momentum_score=momentum,
    )


class FakeAdapter(PlatformAdapter):
    """Adapter with canned behavior for fan-out tests."""

    def __init__(self, platform, items=None, error=None, delay=0.0, available=True):
        super().__init__(skip_rate_limit=True)
        self.platform = platform
        self.items = items or []
        self.error = error
        self.delay = delay
        self.available = available
        self.calls = 0

    def is_available(self) -> bool:
        return self.available

    def search(self, keyword, options):
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        return self.items


OPTIONS = SearchOptions(keyword="ai")


class TestAvailability:
    """Test available_platforms and get_platform_status."""

    def test_available_in_registration_order(self):
        registry = PlatformRegistry({
            Platform.YOUTUBE: FakeAdapter(Platform.YOUTUBE),
            Platform.REDDIT: FakeAdapter(Platform.REDDIT, available=False),
            Platform.TWITTER: FakeAdapter(Platform.TWITTER),
        })

        assert registry.available_platforms() == [Platform.YOUTUBE, Platform.TWITTER]

    def test_platform_status(self):
        registry = PlatformRegistry({
            Platform.REDDIT: FakeAdapter(Platform.REDDIT, available=False),
            Platform.TWITTER: FakeAdapter(Platform.TWITTER),
        })

        status = registry.get_platform_status()

        assert status["twitter"] == {"available": True, "configured": True}
        assert status["reddit"] == {"available": True, "configured": False}
        assert status["youtube"] == {"available": False, "configured": False}


class TestFanOut:
    """Test fan_out_search."""

    @pytest.mark.asyncio
    async def test_collects_each_platform(self):
        reddit = FakeAdapter(Platform.REDDIT, items=[make_item(Platform.REDDIT, "r1")])
        youtube = FakeAdapter(Platform.YOUTUBE, items=[make_item(Platform.YOUTUBE, "y1")])
        registry = PlatformRegistry({Platform.REDDIT: reddit, Platform.YOUTUBE: youtube})

        results = await registry.fan_out_search("ai", [Platform.REDDIT, Platform.YOUTUBE], OPTIONS)

        assert [i.platform_id for i in results[Platform.REDDIT]] == ["r1"]
        assert [i.platform_id for i in results[Platform.YOUTUBE]] == ["y1"]

    @pytest.mark.asyncio
    async def test_failing_adapter_isolated(self):
        reddit = FakeAdapter(Platform.REDDIT, error=AdapterAPIError("boom", status_code=500))
        youtube = FakeAdapter(Platform.YOUTUBE, items=[make_item(Platform.YOUTUBE, "y1")])
        registry = PlatformRegistry({Platform.REDDIT: reddit, Platform.YOUTUBE: youtube})

        results = await registry.fan_out_search("ai", [Platform.REDDIT, Platform.YOUTUBE], OPTIONS)

        assert results[Platform.REDDIT] == []
        assert len(results[Platform.YOUTUBE]) == 1

    @pytest.mark.asyncio
    async def test_unexpected_exception_isolated(self):
        registry = PlatformRegistry({Platform.REDDIT: FakeAdapter(Platform.REDDIT, error=KeyError("x"))})

        results = await registry.fan_out_search("ai", [Platform.REDDIT], OPTIONS)

        assert results == {Platform.REDDIT: []}

    @pytest.mark.asyncio
    async def test_malformed_result_isolated(self):
        reddit = FakeAdapter(Platform.REDDIT, items=[make_item(Platform.REDDIT, "r1")])
        youtube = FakeAdapter(Platform.YOUTUBE)
        youtube.search = Mock(return_value=None)
        registry = PlatformRegistry({Platform.REDDIT: reddit, Platform.YOUTUBE: youtube})

        results = await registry.fan_out_search("ai", [Platform.REDDIT, Platform.YOUTUBE], OPTIONS)

        assert results[Platform.YOUTUBE] == []
        assert [i.platform_id for i in results[Platform.REDDIT]] == ["r1"]

    @pytest.mark.asyncio
    async def test_timeout_isolated(self):
        slow = FakeAdapter(Platform.REDDIT, items=[make_item(Platform.REDDIT, "late")], delay=0.5)
        fast = FakeAdapter(Platform.TWITTER, items=[make_item(Platform.TWITTER, "t1")])
        registry = PlatformRegistry({Platform.REDDIT: slow, Platform.TWITTER: fast}, timeout_seconds=0.05)

        results = await registry.fan_out_search("ai", [Platform.REDDIT, Platform.TWITTER], OPTIONS)

        assert results[Platform.REDDIT] == []
        assert [i.platform_id for i in results[Platform.TWITTER]] == ["t1"]

    @pytest.mark.asyncio
    async def test_runs_concurrently(self):
        adapters = {
            p: FakeAdapter(p, items=[make_item(p, "1")], delay=0.3)
            for p in (Platform.REDDIT, Platform.YOUTUBE, Platform.TWITTER)
        }
        registry = PlatformRegistry(adapters)

        start = time.monotonic()
        await registry.fan_out_search("ai", list(adapters), OPTIONS)

        assert time.monotonic() - start < 0.8

    @pytest.mark.asyncio
    async def test_unavailable_and_unregistered_not_called(self):
        offline = FakeAdapter(Platform.REDDIT, available=False)
        registry = PlatformRegistry({Platform.REDDIT: offline})

        results = await registry.fan_out_search("ai", [Platform.REDDIT, Platform.YOUTUBE], OPTIONS)

        assert results == {Platform.REDDIT: [], Platform.YOUTUBE: []}
        assert offline.calls == 0


class TestBuildRegistry:
    """Test build_registry from settings."""

    def test_builds_all_adapters(self):
        settings = Settings(youtube_api_key="yt", x_bearer_token="x", platform_timeout_seconds=3.0)

        registry = build_registry(settings)

        assert isinstance(registry.get_adapter(Platform.REDDIT), RedditAdapter)
        assert isinstance(registry.get_adapter(Platform.YOUTUBE), YouTubeAdapter)
        assert isinstance(registry.get_adapter(Platform.TWITTER), XAdapter)
        assert registry.available_platforms() == [Platform.YOUTUBE, Platform.TWITTER]
        assert registry.timeout_seconds == 3.0

    def test_shared_rate_limiter(self):
        limiter = Mock()
        limiter.configs = {}

        registry = build_registry(Settings(), limiter)

        assert all(a.rate_limiter is limiter for a in registry.adapters.values())
