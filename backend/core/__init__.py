"""
Core services for Trend Terminal backend.
- TrendSearchService: decides per query where results come from
- PersistenceWorker: background queue that stores live results

Retrieval, one pass per request:
    INIT -> LOCAL_VECTOR -> (LOCAL_LEXICAL) -> LIVE_FETCH -> RETURN -> PERSIST

- A vector hit that filters to nothing goes straight to live fetch
- Lexical search runs only when the keyword could not be embedded
- Only live results are persisted, off the request path
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from adapter.embeddings import EmbeddingAdapter, EmbeddingUnavailableError
from adapter.models import (
    ContentItem,
    Platform,
    SearchOptions,
    SearchResult,
    SearchSource,
    TrendQuery,
    normalize_platforms,
)
from adapter.registry import PlatformRegistry
from aggregator import DedupScope, dedup_items, filter_and_rank
from database import TrendStore, DEFAULT_TRENDING_WINDOW

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

# Vector search always looks at a wide candidate set before filtering
MIN_VECTOR_CANDIDATES = 100

DEFAULT_QUEUE_SIZE = 1000


class TrendSearchError(Exception):
    """Raised when a search fails as a whole."""
    def __init__(self, message: str, keyword: str = None):
        super().__init__(message)
        self.keyword = keyword


@dataclass
class PersistJob:
    """One search session's live results, waiting to be stored."""
    query: TrendQuery
    items: List[ContentItem] = field(default_factory=list)


class PersistenceWorker:
    """
    Background service that stores live search results.

    Jobs are queued by the search path and drained by a single task. Failures
    are logged per item and never reach the caller.

    Usage:
        worker = PersistenceWorker(store, embedder)
        await worker.start()
        worker.enqueue(job)
        await worker.stop()
    """

    def __init__(
        self,
        store: TrendStore,
        embedder: Optional[EmbeddingAdapter] = None,
        max_queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        self.store = store
        self.embedder = embedder
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.jobs_processed = 0
        self.items_stored = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self):
        """Start the background persistence task."""
        if self._running:
            logger.warning("PersistenceWorker already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("PersistenceWorker started")

    async def stop(self):
        """Stop the background task. Jobs still queued are dropped."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._queue.qsize():
            logger.warning(f"PersistenceWorker stopped with {self._queue.qsize()} jobs pending")
        logger.info("PersistenceWorker stopped")

    def enqueue(self, job: PersistJob) -> bool:
        """
        Queue a job without waiting.

        Returns:
            False if the queue is full and the job was dropped
        """
        try:
            self._queue.put_nowait(job)
            return True
        except asyncio.QueueFull:
            logger.warning(f"Persistence queue full, dropping results for '{job.query.keyword}'")
            return False

    async def drain(self):
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def _run_loop(self):
        """Main persistence loop."""
        while self._running:
            job = await self._queue.get()
            try:
                await self.process_job(job)
            except Exception as e:
                logger.error(f"Error persisting results for '{job.query.keyword}': {e}")
            finally:
                self._queue.task_done()

    async def _embed_for_storage(self, item: ContentItem) -> Optional[List[float]]:
        if item.embedding is not None:
            return item.embedding
        if self.embedder is None or not self.embedder.is_available():
            return None
        try:
            return await self.embedder.embed_async(item.truncated().embedding_text())
        except EmbeddingUnavailableError as e:
            logger.debug(f"Storing {item.platform.value}/{item.platform_id} without embedding: {e}")
            return None

    async def process_job(self, job: PersistJob) -> int:
        """
        Store one session and its items.

        Args:
            job: Session record plus the items it returned

        Returns:
            Number of items stored (inserted or refreshed)
        """
        mon = _get_monitor()

        trend_id: Optional[str] = None
        try:
            trend_id = await asyncio.to_thread(self.store.insert_trend_query, job.query)
        except Exception as e:
            logger.error(f"Failed to record search session '{job.query.keyword}': {e}")
            if mon:
                from monitoring import EventType
                mon.activity.add_event(EventType.PERSIST_ERROR, keyword=job.query.keyword, error=str(e)[:200])

        scope = DedupScope()
        stored = 0
        for item in job.items:
            if not scope.add(item):
                continue

            try:
                exists = await asyncio.to_thread(self.store.exists_by_key, item.platform, item.platform_id)
                # Existing rows keep their stored embedding
                embedding = None if exists else await self._embed_for_storage(item)

                content_id = await asyncio.to_thread(self.store.upsert_content, item, embedding)
                if trend_id:
                    await asyncio.to_thread(self.store.link_trend_content, trend_id, content_id, item.platform)
                stored += 1
            except Exception as e:
                logger.warning(f"Failed to store {item.platform.value}/{item.platform_id}: {e}")
                if mon:
                    from monitoring import EventType
                    mon.activity.add_event(
                        EventType.PERSIST_ERROR, keyword=job.query.keyword,
                        platform=item.platform.value, error=str(e)[:200]
                    )

        self.jobs_processed += 1
        self.items_stored += stored
        logger.info(f"Persisted {stored}/{len(job.items)} items for '{job.query.keyword}'")

        if mon:
            from monitoring import EventType
            mon.metrics.record_persisted(stored, failed=len(scope) - stored)
            mon.activity.add_event(EventType.PERSISTED, keyword=job.query.keyword, items=stored)

        return stored

    def get_status(self) -> dict:
        return {
            "running": self._running,
            "pending": self.pending,
            "jobs_processed": self.jobs_processed,
            "items_stored": self.items_stored,
        }


class TrendSearchService:
    """
    Retrieval orchestrator.

    Answers from the local store when it has coverage and fetches live from
    the platforms otherwise. Live results are handed to the persistence
    worker and never awaited.
    """

    def __init__(
        self,
        registry: PlatformRegistry,
        store: TrendStore,
        embedder: Optional[EmbeddingAdapter] = None,
        persistence: Optional[PersistenceWorker] = None,
    ):
        self.registry = registry
        self.store = store
        self.embedder = embedder
        self.persistence = persistence

    def resolve_platforms(self, tokens: List[str]) -> List[Platform]:
        """
        Requested platforms intersected with the available ones.

        Unknown tokens and duplicates are dropped. An empty intersection
        means every available platform.
        """
        available = self.registry.available_platforms()
        requested = normalize_platforms(tokens)
        selected = [p for p in requested if p in available]
        return selected or available

    async def _embed_keyword(self, keyword: str) -> Optional[List[float]]:
        if self.embedder is None:
            return None
        try:
            return await self.embedder.embed_async(keyword)
        except Exception as e:
            if isinstance(e, EmbeddingUnavailableError):
                logger.info(f"No embedding for '{keyword}', using lexical search: {e}")
            else:
                logger.warning(f"Embedding '{keyword}' failed unexpectedly, using lexical search: {e}")
            mon = _get_monitor()
            if mon:
                from monitoring import EventType
                mon.activity.add_event(EventType.EMBEDDING_ERROR, keyword=keyword, error=str(e)[:200])
            return None

    async def _search_store(
        self,
        keyword: str,
        embedding: Optional[List[float]],
        platforms: List[Platform],
        options: SearchOptions,
    ) -> Optional[tuple]:
        """
        Try the local store. Returns (items, source) or None for no coverage.
        """
        try:
            if embedding is not None:
                candidates = await asyncio.to_thread(
                    self.store.vector_search, embedding, max(options.limit, MIN_VECTOR_CANDIDATES)
                )
                ranked = filter_and_rank(candidates, platforms, options.timeframe, options.limit)
                if ranked:
                    return ranked, SearchSource.VECTOR
                # Vector hits outside the filters go live, no lexical retry
                logger.debug(f"Vector search for '{keyword}': {len(candidates)} candidates, none qualify")
                return None

            matches = await asyncio.to_thread(self.store.lexical_search, keyword, options.limit)
            ranked = filter_and_rank(matches, platforms, options.timeframe, options.limit)
            if ranked:
                return ranked, SearchSource.LEXICAL
            return None

        except Exception as e:
            logger.warning(f"Local store search for '{keyword}' failed, fetching live: {e}")
            return None

    async def _fetch_live(
        self,
        keyword: str,
        platforms: List[Platform],
        options: SearchOptions,
    ) -> List[ContentItem]:
        by_platform = await self.registry.fan_out_search(keyword, platforms, options)

        flattened: List[ContentItem] = []
        for platform in platforms:
            flattened.extend(by_platform.get(platform, []))

        unique = dedup_items(flattened)
        if len(unique) < len(flattened):
            logger.debug(f"Dropped {len(flattened) - len(unique)} duplicate items for '{keyword}'")

        return filter_and_rank(unique, platforms, options.timeframe, options.limit)

    def _schedule_persist(self, options: SearchOptions, platforms: List[Platform], items: List[ContentItem]):
        if self.persistence is None:
            return
        record = TrendQuery(
            keyword=options.keyword.strip(),
            platforms=platforms,
            timeframe=options.timeframe,
            lang=options.lang,
            region=options.region,
            user_id=options.user_id,
        )
        self.persistence.enqueue(PersistJob(query=record, items=list(items)))

    async def search_trends(self, options: SearchOptions) -> SearchResult:
        """
        Search for trending content about a keyword.

        Args:
            options: Keyword, platforms, timeframe, limit and requester

        Returns:
            SearchResult sorted by momentum, with the tier that produced it

        Raises:
            TrendSearchError: If the search fails as a whole
        """
        keyword = options.keyword.strip()
        start = time.time()

        try:
            platforms = self.resolve_platforms(options.platforms)
            embedding = await self._embed_keyword(keyword)

            local = await self._search_store(keyword, embedding, platforms, options)
            if local is not None:
                items, source = local
            else:
                items = await self._fetch_live(keyword, platforms, options)
                source = SearchSource.LIVE
                self._schedule_persist(options, platforms, items)

            results = [item.truncated() for item in items]
            result = SearchResult(
                keyword=keyword,
                platforms=platforms,
                results=results,
                total_results=len(results),
                search_time=datetime.now(timezone.utc),
                source=source,
            )
        except Exception as e:
            logger.error(f"Search for '{keyword}' failed: {e}")
            raise TrendSearchError(f"Search for '{keyword}' failed: {e}", keyword=keyword) from e

        latency_ms = (time.time() - start) * 1000
        logger.info(f"Search '{keyword}' -> {result.total_results} results from {source.value} ({latency_ms:.0f}ms)")

        mon = _get_monitor()
        if mon:
            from monitoring import EventType
            mon.metrics.record_search(source.value, latency_ms)
            mon.activity.add_event(
                EventType.SEARCH, keyword=keyword, source=source.value,
                results=result.total_results, platforms=[p.value for p in platforms]
            )

        return result

    async def get_trending_topics(self, limit: int = 10, window: str = DEFAULT_TRENDING_WINDOW) -> List[str]:
        """Most searched keywords in the window."""
        return await asyncio.to_thread(self.store.top_keywords_in_window, window, limit)

    async def get_user_search_history(self, user_id: str, limit: int = 20) -> List[TrendQuery]:
        """A user's past searches, newest first."""
        return await asyncio.to_thread(self.store.trend_history, user_id, limit)

    async def search_content_by_keyword(self, keyword: str, limit: int = 10) -> List[ContentItem]:
        """
        Search stored content only (no live fetch).

        Uses vector similarity when the keyword can be embedded, else lexical.
        """
        embedding = await self._embed_keyword(keyword)
        if embedding is not None:
            return await asyncio.to_thread(self.store.vector_search, embedding, limit)
        return await asyncio.to_thread(self.store.lexical_search, keyword, limit)

    def get_platform_status(self) -> Dict[str, Dict[str, bool]]:
        return self.registry.get_platform_status()

    def get_available_platforms(self) -> List[Platform]:
        return self.registry.available_platforms()


__all__ = [
    "TrendSearchService",
    "TrendSearchError",
    "PersistenceWorker",
    "PersistJob",
    "MIN_VECTOR_CANDIDATES",
]
