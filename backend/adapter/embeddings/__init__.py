"""
Embedding provider for keyword and content vectors.

Talks to any OpenAI-compatible /embeddings endpoint. Failures are raised as
EmbeddingUnavailableError so callers can fall back to lexical search.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Optional

import requests

from ..rate_limiter import RateLimiter, RateLimitConfig

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

DEFAULT_MODEL = "text-embedding-3-small"
DEFAULT_DIMENSION = 1536
DEFAULT_BASE_URL = "https://api.openai.com/v1"


class EmbeddingUnavailableError(Exception):
    """Raised when no embedding could be produced for a text."""
    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class EmbeddingAdapter:
    """
    Adapter for an OpenAI-compatible embeddings API.

    Usage:
        embedder = EmbeddingAdapter(api_key="...")
        vector = embedder.embed("espresso machines")
    """

    rate_limit_category = "embeddings"

    DEFAULT_RATE_LIMIT = RateLimitConfig(
        requests_per_window=3000,
        window_seconds=60,
        strategy="token_bucket"
    )

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        dimension: int = DEFAULT_DIMENSION,
        rate_limiter: Optional[RateLimiter] = None,
        request_timeout: int = 15,
    ):
        self.api_key = api_key or None
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.dimension = dimension
        self.request_timeout = request_timeout
        self.rate_limiter = rate_limiter or RateLimiter()

        if self.rate_limit_category not in self.rate_limiter.configs:
            self.rate_limiter.configure_limit(self.rate_limit_category, self.DEFAULT_RATE_LIMIT)

        if not self.api_key:
            logger.warning("No embedding API key provided - vector search disabled, lexical fallback only")

    @property
    def is_live(self) -> bool:
        """True if real embedding calls will be made."""
        return self.api_key is not None

    def is_available(self) -> bool:
        return self.is_live

    def _record(self, latency_ms: float, error: bool) -> None:
        mon = _get_monitor()
        if mon:
            mon.metrics.record_embedding_call(latency_ms, error=error)

    def embed(self, text: str) -> List[float]:
        """
        Embed a single text.

        Raises:
            EmbeddingUnavailableError: On empty text, missing key, HTTP failure
                or a vector of the wrong dimension
        """
        text = (text or "").strip()
        if not text:
            raise EmbeddingUnavailableError("Cannot embed empty text")
        if not self.is_live:
            raise EmbeddingUnavailableError("Embedding provider not configured - set OPENAI_API_KEY")

        self.rate_limiter.wait_if_needed(self.rate_limit_category)

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        payload = {"model": self.model, "input": text}

        start_time_ms = time.time() * 1000
        try:
            response = requests.post(
                f"{self.base_url}/embeddings",
                json=payload,
                headers=headers,
                timeout=self.request_timeout,
            )
        except requests.exceptions.RequestException as e:
            self._record((time.time() * 1000) - start_time_ms, error=True)
            raise EmbeddingUnavailableError(f"Embedding request failed: {e}")

        latency_ms = (time.time() * 1000) - start_time_ms

        if response.status_code >= 400:
            self._record(latency_ms, error=True)
            raise EmbeddingUnavailableError(
                f"Embedding API error: {response.status_code}",
                status_code=response.status_code,
            )

        try:
            vector = [float(v) for v in response.json()["data"][0]["embedding"]]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            self._record(latency_ms, error=True)
            raise EmbeddingUnavailableError(f"Malformed embedding response: {e}")

        if len(vector) != self.dimension:
            self._record(latency_ms, error=True)
            raise EmbeddingUnavailableError(
                f"Embedding has dimension {len(vector)}, expected {self.dimension}"
            )

        self._record(latency_ms, error=False)
        return vector

    async def embed_async(self, text: str) -> List[float]:
        """
        Async version of embed.
        Runs the blocking HTTP call in a thread pool to avoid blocking the event loop.
        """
        return await asyncio.to_thread(self.embed, text)


__all__ = ["EmbeddingAdapter", "EmbeddingUnavailableError", "DEFAULT_MODEL", "DEFAULT_DIMENSION"]
