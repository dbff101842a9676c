"""
Unit tests for the core module (TrendSearchService, PersistenceWorker).
"""

import asyncio
import pytest
from datetime import datetime, timezone, timedelta
from unittest.mock import Mock, AsyncMock, patch

from adapter.base import PlatformAdapter, AdapterAPIError
from adapter.embeddings import EmbeddingAdapter, EmbeddingUnavailableError
from adapter.models import ContentItem, Platform, SearchOptions, SearchSource, TrendQuery, MAX_CONTENT_LENGTH
from adapter.registry import PlatformRegistry
from core import TrendSearchService, TrendSearchError, PersistenceWorker, PersistJob
from database import TrendStore, StoreError


def make_item(platform, platform_id, hours_ago=1.0, momentum=None, content=None, metrics=None) -> ContentItem:
    platform = Platform(platform)
    return ContentItem(
        platform_id=platform_id,
        platform=platform,
        content=content or f"ai content {platform.value} {platform_id}",
        metrics=metrics or {"likes": 10},
        published_at=datetime.now(timezone.utc) - timedelta(hours=hours_ago),
        momentum_score=momentum,
    )


class StubAdapter(PlatformAdapter):
    """Adapter returning canned items."""

    def __init__(self, platform, items=None, error=None, available=True):
        super().__init__(skip_rate_limit=True)
        self.platform = platform
        self.items = items or []
        self.error = error
        self.available = available
        self.calls = 0

    def is_available(self) -> bool:
        return self.available

    def search(self, keyword, options):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.items)


def make_embedder(vector=None, error=None):
    embedder = Mock()
    embedder.is_available.return_value = True
    if error:
        embedder.embed_async = AsyncMock(side_effect=error)
    else:
        embedder.embed_async = AsyncMock(return_value=vector or [1.0, 0.0])
    return embedder


def make_registry(reddit_items=None, youtube_items=None, twitter_items=None, reddit_error=None):
    return PlatformRegistry({
        Platform.REDDIT: StubAdapter(Platform.REDDIT, reddit_items, error=reddit_error),
        Platform.YOUTUBE: StubAdapter(Platform.YOUTUBE, youtube_items),
        Platform.TWITTER: StubAdapter(Platform.TWITTER, twitter_items),
    })


@pytest.fixture
def store(tmp_path):
    return TrendStore(tmp_path / "trends.sqlite3")


def adapter_calls(registry):
    return sum(a.calls for a in registry.adapters.values())


# ============================================================================
# Platform resolution
# ============================================================================

class TestResolvePlatforms:
    """Test platform normalization against availability."""

    def test_aliases_and_duplicates(self, store):
        service = TrendSearchService(make_registry(), store)

        assert service.resolve_platforms(["X", "twitter", "Reddit"]) == [Platform.TWITTER, Platform.REDDIT]

    def test_unknown_tokens_dropped(self, store):
        service = TrendSearchService(make_registry(), store)

        assert service.resolve_platforms(["tiktok", "youtube"]) == [Platform.YOUTUBE]

    def test_empty_intersection_means_all_available(self, store):
        registry = PlatformRegistry({
            Platform.REDDIT: StubAdapter(Platform.REDDIT),
            Platform.YOUTUBE: StubAdapter(Platform.YOUTUBE, available=False),
        })
        service = TrendSearchService(registry, store)

        assert service.resolve_platforms(["youtube"]) == [Platform.REDDIT]
        assert service.resolve_platforms(["tiktok"]) == [Platform.REDDIT]


# ============================================================================
# Retrieval tiers
# ============================================================================

class TestRetrievalTiers:
    """Test the vector -> lexical -> live decision."""

    @pytest.mark.asyncio
    async def test_vector_hit_returns_without_live_fetch(self, store):
        store.upsert_content(make_item("reddit", "stored", momentum=5.0), embedding=[1.0, 0.0])
        registry = make_registry(reddit_items=[make_item("reddit", "live")])
        worker = PersistenceWorker(store)
        service = TrendSearchService(registry, store, make_embedder([1.0, 0.0]), worker)

        result = await service.search_trends(SearchOptions(keyword="ai", platforms=["reddit"]))

        assert result.source == SearchSource.VECTOR
        assert [i.platform_id for i in result.results] == ["stored"]
        assert adapter_calls(registry) == 0
        assert worker.pending == 0

    @pytest.mark.asyncio
    async def test_vector_candidates_widened(self, store):
        service = TrendSearchService(make_registry(), store, make_embedder())

        with patch.object(store, "vector_search", wraps=store.vector_search) as spy:
            await service.search_trends(SearchOptions(keyword="ai", limit=5))

        assert spy.call_args.args[1] == 100

    @pytest.mark.asyncio
    async def test_vector_hit_filtered_to_empty_goes_live_without_lexical(self, store):
        # Stored item matches by vector and text, but is outside the timeframe
        store.upsert_content(make_item("reddit", "old", hours_ago=48), embedding=[1.0, 0.0])
        registry = make_registry(reddit_items=[make_item("reddit", "fresh")])
        service = TrendSearchService(registry, store, make_embedder([1.0, 0.0]))

        with patch.object(store, "lexical_search", wraps=store.lexical_search) as lexical:
            result = await service.search_trends(SearchOptions(keyword="ai", platforms=["reddit"], timeframe="24h"))

        assert result.source == SearchSource.LIVE
        assert [i.platform_id for i in result.results] == ["fresh"]
        lexical.assert_not_called()

    @pytest.mark.asyncio
    async def test_embedding_failure_degrades_to_lexical(self, store):
        store.upsert_content(make_item("reddit", "match", content="Latest AI tools", momentum=3.0))
        store.upsert_content(make_item("reddit", "other", content="Gardening tips", momentum=9.0))
        registry = make_registry(reddit_items=[make_item("reddit", "live")])
        service = TrendSearchService(registry, store, make_embedder(error=EmbeddingUnavailableError("down")))

        result = await service.search_trends(SearchOptions(keyword="ai tools", platforms=["reddit"]))

        assert result.source == SearchSource.LEXICAL
        assert [i.platform_id for i in result.results] == ["match"]
        assert adapter_calls(registry) == 0

    @pytest.mark.asyncio
    @patch("adapter.embeddings.requests.post")
    async def test_malformed_embedding_reply_degrades_to_lexical(self, mock_post, store):
        reply = Mock(status_code=200)
        reply.json.return_value = {"data": [{"embedding": None}]}
        mock_post.return_value = reply
        store.upsert_content(make_item("reddit", "match", content="AI tools roundup"))
        embedder = EmbeddingAdapter(api_key="sk-test", dimension=2)
        service = TrendSearchService(make_registry(), store, embedder)

        result = await service.search_trends(SearchOptions(keyword="ai tools", platforms=["reddit"]))

        assert result.source == SearchSource.LEXICAL
        assert [i.platform_id for i in result.results] == ["match"]

    @pytest.mark.asyncio
    async def test_unexpected_embedder_error_degrades_to_lexical(self, store):
        store.upsert_content(make_item("reddit", "match", content="AI tools roundup"))
        service = TrendSearchService(make_registry(), store, make_embedder(error=RuntimeError("socket closed")))

        result = await service.search_trends(SearchOptions(keyword="ai tools", platforms=["reddit"]))

        assert result.source == SearchSource.LEXICAL

    @pytest.mark.asyncio
    async def test_no_embedder_uses_lexical(self, store):
        store.upsert_content(make_item("youtube", "match", content="AI news"))
        service = TrendSearchService(make_registry(), store)

        result = await service.search_trends(SearchOptions(keyword="ai news"))

        assert result.source == SearchSource.LEXICAL

    @pytest.mark.asyncio
    async def test_lexical_miss_goes_live(self, store):
        registry = make_registry(twitter_items=[make_item("twitter", "t1")])
        service = TrendSearchService(registry, store)

        result = await service.search_trends(SearchOptions(keyword="ai", platforms=["x"]))

        assert result.source == SearchSource.LIVE
        assert [i.platform_id for i in result.results] == ["t1"]

    @pytest.mark.asyncio
    async def test_store_failure_degrades_to_live(self, store):
        registry = make_registry(reddit_items=[make_item("reddit", "r1")])
        service = TrendSearchService(registry, store, make_embedder())

        with patch.object(store, "vector_search", side_effect=StoreError("disk", operation="vector_search")):
            result = await service.search_trends(SearchOptions(keyword="ai", platforms=["reddit"]))

        assert result.source == SearchSource.LIVE
        assert len(result.results) == 1

    @pytest.mark.asyncio
    async def test_results_truncated_on_every_path(self, store):
        long_text = "ai " * 1500
        store.upsert_content(make_item("reddit", "long", content=long_text), embedding=[1.0, 0.0])
        service = TrendSearchService(make_registry(), store, make_embedder([1.0, 0.0]))
        vector_result = await service.search_trends(SearchOptions(keyword="ai", platforms=["reddit"]))

        registry = make_registry(youtube_items=[make_item("youtube", "live", content=long_text)])
        live_service = TrendSearchService(registry, store)
        live_result = await live_service.search_trends(SearchOptions(keyword="zzz", platforms=["youtube"]))

        assert len(vector_result.results[0].content) == MAX_CONTENT_LENGTH
        assert len(live_result.results[0].content) == MAX_CONTENT_LENGTH


# ============================================================================
# Live fetch
# ============================================================================

class TestLiveFetch:
    """Test live fetch ranking, isolation and dedup."""

    @pytest.mark.asyncio
    async def test_ranked_scenario(self, store):
        reddit = [make_item("reddit", f"r{n}", hours_ago=n + 1, metrics={"likes": 100 + n}) for n in range(12)]
        reddit[10] = make_item("reddit", "r-old", hours_ago=30)
        youtube = [make_item("youtube", f"y{n}", hours_ago=n + 0.5, metrics={"views": 50 * n}) for n in range(8)]
        twitter = [make_item("twitter", "t-excluded")]
        registry = make_registry(reddit_items=reddit, youtube_items=youtube, twitter_items=twitter)
        service = TrendSearchService(registry, store)

        result = await service.search_trends(SearchOptions(
            keyword="ai", platforms=["reddit", "youtube"], timeframe="24h", limit=10
        ))

        now = datetime.now(timezone.utc)
        scores = [i.momentum_score for i in result.results]
        assert result.source == SearchSource.LIVE
        assert len(result.results) <= 10
        assert result.total_results == len(result.results)
        assert scores == sorted(scores, reverse=True)
        assert all(now - i.published_at <= timedelta(hours=24) for i in result.results)
        assert {i.platform for i in result.results} <= {Platform.REDDIT, Platform.YOUTUBE}
        assert registry.adapters[Platform.TWITTER].calls == 0

    @pytest.mark.asyncio
    async def test_failing_platform_isolated(self, store):
        registry = make_registry(
            reddit_error=AdapterAPIError("reddit down", status_code=503),
            youtube_items=[make_item("youtube", "y1", momentum=1.0), make_item("youtube", "y2", momentum=7.0)],
        )
        service = TrendSearchService(registry, store)

        result = await service.search_trends(SearchOptions(keyword="ai", platforms=["reddit", "youtube"]))

        assert [i.platform_id for i in result.results] == ["y2", "y1"]

    @pytest.mark.asyncio
    async def test_duplicate_key_first_occurrence_kept(self, store):
        first = make_item("reddit", "dup", momentum=1.0, content="first copy")
        second = make_item("reddit", "dup", momentum=50.0, content="second copy")
        registry = make_registry(reddit_items=[first, second])
        worker = PersistenceWorker(store)
        service = TrendSearchService(registry, store, persistence=worker)

        result = await service.search_trends(SearchOptions(keyword="ai", platforms=["reddit"]))

        assert len(result.results) == 1
        assert result.results[0].content == "first copy"

        job = worker._queue.get_nowait()
        await worker.process_job(job)
        assert store.get_stats()["content_items"] == 1

    @pytest.mark.asyncio
    async def test_live_results_queued_for_persistence(self, store):
        registry = make_registry(reddit_items=[make_item("reddit", "r1")])
        worker = PersistenceWorker(store)
        service = TrendSearchService(registry, store, persistence=worker)

        await service.search_trends(SearchOptions(keyword="ai", platforms=["reddit"], user_id="u1"))

        assert worker.pending == 1
        job = worker._queue.get_nowait()
        assert job.query.keyword == "ai"
        assert job.query.user_id == "u1"
        assert job.query.platforms == [Platform.REDDIT]
        assert [i.platform_id for i in job.items] == ["r1"]

    @pytest.mark.asyncio
    async def test_persisted_keyword_is_trimmed(self, store):
        registry = make_registry(reddit_items=[make_item("reddit", "r1")])
        worker = PersistenceWorker(store)
        service = TrendSearchService(registry, store, persistence=worker)

        await service.search_trends(SearchOptions(keyword="  ai ", platforms=["reddit"]))
        await worker.process_job(worker._queue.get_nowait())

        assert store.top_keywords_in_window("7d") == ["ai"]

    @pytest.mark.asyncio
    async def test_unexpected_failure_wrapped(self, store):
        registry = make_registry()
        registry.fan_out_search = AsyncMock(side_effect=RuntimeError("loop exploded"))
        service = TrendSearchService(registry, store)

        with pytest.raises(TrendSearchError) as exc_info:
            await service.search_trends(SearchOptions(keyword="ai"))

        assert exc_info.value.keyword == "ai"
        assert isinstance(exc_info.value.__cause__, RuntimeError)


# ============================================================================
# Persistence
# ============================================================================

class TestPersistenceWorker:
    """Test PersistenceWorker."""

    def make_job(self, items, user_id=None):
        return PersistJob(
            query=TrendQuery(keyword="ai", platforms=[Platform.REDDIT], timeframe="24h", user_id=user_id),
            items=items,
        )

    @pytest.mark.asyncio
    async def test_process_job_stores_and_links(self, store):
        embedder = make_embedder([0.5, 0.5])
        worker = PersistenceWorker(store, embedder)
        job = self.make_job([make_item("reddit", "a"), make_item("reddit", "b")], user_id="u1")

        stored = await worker.process_job(job)

        assert stored == 2
        assert len(store.get_trend_content_ids(job.query.id)) == 2
        assert store.get_content_by_key(Platform.REDDIT, "a").embedding == [0.5, 0.5]
        assert [q.keyword for q in store.trend_history("u1")] == ["ai"]
        assert embedder.embed_async.await_count == 2

    @pytest.mark.asyncio
    async def test_existing_items_not_re_embedded(self, store):
        store.upsert_content(make_item("reddit", "a", metrics={"likes": 1}), embedding=[9.0, 9.0])
        embedder = make_embedder([0.5, 0.5])
        worker = PersistenceWorker(store, embedder)

        await worker.process_job(self.make_job([make_item("reddit", "a", metrics={"likes": 99})]))

        stored = store.get_content_by_key(Platform.REDDIT, "a")
        assert stored.metrics == {"likes": 99}
        assert stored.embedding == [9.0, 9.0]
        embedder.embed_async.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_embeds_truncated_text(self, store):
        embedder = make_embedder([0.5, 0.5])
        worker = PersistenceWorker(store, embedder)

        await worker.process_job(self.make_job([make_item("reddit", "long", content="word " * 2000)]))

        embedded_text = embedder.embed_async.await_args.args[0]
        assert len(embedded_text) <= MAX_CONTENT_LENGTH

    @pytest.mark.asyncio
    async def test_embedding_failure_stores_without_vector(self, store):
        worker = PersistenceWorker(store, make_embedder(error=EmbeddingUnavailableError("down")))

        assert await worker.process_job(self.make_job([make_item("reddit", "a")])) == 1
        assert store.get_content_by_key(Platform.REDDIT, "a").embedding is None

    @pytest.mark.asyncio
    async def test_item_failure_skipped(self, store):
        worker = PersistenceWorker(store)
        original = store.upsert_content

        def flaky(item, embedding=None):
            if item.platform_id == "bad":
                raise StoreError("constraint", operation="upsert_content")
            return original(item, embedding)

        with patch.object(store, "upsert_content", side_effect=flaky):
            stored = await worker.process_job(self.make_job([
                make_item("reddit", "bad"), make_item("reddit", "good"),
            ]))

        assert stored == 1
        assert store.exists_by_key(Platform.REDDIT, "good") is True

    @pytest.mark.asyncio
    async def test_upsert_idempotent_across_jobs(self, store):
        worker = PersistenceWorker(store)

        await worker.process_job(self.make_job([make_item("reddit", "a", content="original text")]))
        await worker.process_job(self.make_job([make_item("reddit", "a", content="edited text", metrics={"likes": 77})]))

        stored = store.get_content_by_key(Platform.REDDIT, "a")
        assert store.get_stats()["content_items"] == 1
        assert store.get_stats()["trend_queries"] == 2
        assert stored.content == "original text"
        assert stored.metrics == {"likes": 77}

    @pytest.mark.asyncio
    async def test_background_loop_drains_queue(self, store):
        worker = PersistenceWorker(store)
        await worker.start()
        try:
            assert worker.enqueue(self.make_job([make_item("reddit", "a")])) is True
            await asyncio.wait_for(worker.drain(), timeout=5)
        finally:
            await worker.stop()

        assert worker.is_running is False
        assert worker.jobs_processed == 1
        assert store.exists_by_key(Platform.REDDIT, "a") is True

    @pytest.mark.asyncio
    async def test_queue_full_drops_job(self, store):
        worker = PersistenceWorker(store, max_queue_size=1)

        assert worker.enqueue(self.make_job([])) is True
        assert worker.enqueue(self.make_job([])) is False


# ============================================================================
# Read passthroughs
# ============================================================================

class TestReadOperations:
    """Test trending, history and stored-content search."""

    @pytest.mark.asyncio
    async def test_trending_and_history(self, store):
        for keyword in ("ai", "ai", "coffee"):
            store.insert_trend_query(TrendQuery(keyword=keyword, platforms=[Platform.REDDIT], timeframe="24h", user_id="u1"))
        service = TrendSearchService(make_registry(), store)

        assert await service.get_trending_topics(limit=5) == ["ai", "coffee"]
        history = await service.get_user_search_history("u1", limit=2)
        assert len(history) == 2

    @pytest.mark.asyncio
    async def test_search_content_by_keyword(self, store):
        store.upsert_content(make_item("reddit", "v", content="vector match"), embedding=[1.0, 0.0])
        store.upsert_content(make_item("reddit", "l", content="lexical coffee"))

        vector_service = TrendSearchService(make_registry(), store, make_embedder([1.0, 0.0]))
        lexical_service = TrendSearchService(make_registry(), store)

        assert [i.platform_id for i in await vector_service.search_content_by_keyword("anything")] == ["v"]
        assert [i.platform_id for i in await lexical_service.search_content_by_keyword("coffee")] == ["l"]

    def test_platform_passthroughs(self, store):
        service = TrendSearchService(make_registry(), store)

        assert service.get_available_platforms() == [Platform.REDDIT, Platform.YOUTUBE, Platform.TWITTER]
        assert service.get_platform_status()["reddit"]["configured"] is True
