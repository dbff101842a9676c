"""
Rate limiter shared by the platform and embedding adapters.

Each adapter owns a category (e.g. "reddit_search", "youtube_search"); limits
are configured per category with a sliding window, fixed window or token
bucket strategy. Adapters run in worker threads during fan-out, so all state
changes happen under a lock. Sleeping happens outside the lock.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Literal, Optional

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    """Configuration for a specific rate limit."""
    requests_per_window: int
    window_seconds: int
    strategy: Literal["sliding_window", "fixed_window", "token_bucket"] = "sliding_window"


class RateLimiter:
    """
    Per-category rate limiter.

    - sliding_window: at most N requests in any trailing window
    - fixed_window: at most N requests per aligned window
    - token_bucket: N tokens refilled evenly over the window
    """

    def __init__(self):
        self.sliding_windows: Dict[str, List[float]] = defaultdict(list)
        self.fixed_windows: Dict[str, tuple[int, int]] = {}
        self.token_buckets: Dict[str, float] = {}
        self.last_refill: Dict[str, float] = {}
        self.configs: Dict[str, RateLimitConfig] = {}
        self._lock = threading.Lock()

    def configure_limit(self, category: str, config: RateLimitConfig) -> None:
        """Configure rate limiting for a specific category."""
        with self._lock:
            self.configs[category] = config
            if config.strategy == "token_bucket":
                self.token_buckets[category] = config.requests_per_window
                self.last_refill[category] = time.time()

        logger.info(f"Configured rate limit for {category}: {config.requests_per_window} req/{config.window_seconds}s ({config.strategy})")

    def wait_if_needed(self, category: str = "default") -> None:
        """
        Block until a request in this category is allowed, then record it.

        Unconfigured categories are allowed through.
        """
        config = self.configs.get(category)
        if config is None:
            logger.debug(f"No rate limit configured for category '{category}', allowing request")
            return

        while True:
            with self._lock:
                if config.strategy == "sliding_window":
                    wait_time = self._acquire_sliding_window(category, config)
                elif config.strategy == "fixed_window":
                    wait_time = self._acquire_fixed_window(category, config)
                else:
                    wait_time = self._acquire_token_bucket(category, config)

            if wait_time <= 0:
                return

            logger.info(f"Rate limiting {category}: waiting {wait_time:.2f} seconds")
            time.sleep(wait_time)

    def _acquire_sliding_window(self, category: str, config: RateLimitConfig) -> float:
        """Record the request and return 0, or return how long to wait."""
        current_time = time.time()
        window_times = self.sliding_windows[category]
        window_times[:] = [t for t in window_times if current_time - t < config.window_seconds]

        if len(window_times) >= config.requests_per_window:
            return config.window_seconds - (current_time - min(window_times))

        window_times.append(current_time)
        return 0.0

    def _acquire_fixed_window(self, category: str, config: RateLimitConfig) -> float:
        current_time = time.time()
        window_start = int(current_time / config.window_seconds) * config.window_seconds

        stored_window, count = self.fixed_windows.get(category, (window_start, 0))
        if stored_window != window_start:
            count = 0

        if count >= config.requests_per_window:
            return (window_start + config.window_seconds) - current_time

        self.fixed_windows[category] = (window_start, count + 1)
        return 0.0

    def _acquire_token_bucket(self, category: str, config: RateLimitConfig) -> float:
        current_time = time.time()
        refill_rate = config.requests_per_window / config.window_seconds  # tokens per second

        time_passed = current_time - self.last_refill.get(category, current_time)
        tokens = self.token_buckets.get(category, config.requests_per_window)
        tokens = min(config.requests_per_window, tokens + time_passed * refill_rate)
        self.last_refill[category] = current_time

        if tokens < 1:
            self.token_buckets[category] = tokens
            return (1 - tokens) / refill_rate

        self.token_buckets[category] = tokens - 1
        return 0.0

    def get_remaining_requests(self, category: str, time_window_seconds: Optional[int] = None) -> int:
        """
        Estimated remaining requests for a category in the given time window.

        Unconfigured categories report infinity.
        """
        if category not in self.configs:
            return float('inf')

        config = self.configs[category]
        window_seconds = time_window_seconds or config.window_seconds

        with self._lock:
            if config.strategy == "sliding_window":
                current_time = time.time()
                recent_times = [t for t in self.sliding_windows[category] if current_time - t < window_seconds]
                return max(0, config.requests_per_window - len(recent_times))

            if config.strategy == "token_bucket":
                return max(0, int(self.token_buckets.get(category, config.requests_per_window)))

            current_window = int(time.time() / config.window_seconds) * config.window_seconds
            stored_window, count = self.fixed_windows.get(category, (current_window, 0))
            if stored_window != current_window:
                return config.requests_per_window
            return max(0, config.requests_per_window - count)


def create_platform_limiter() -> RateLimiter:
    """
    Create a rate limiter with the documented public limits for each platform.

    - Reddit OAuth: 100 requests per minute per client
    - YouTube Data API: quota based; search is throttled to 100/min locally
    - X API v2 recent search (app-only): 450 requests per 15 minutes
    - Embeddings: 3000 requests per minute
    """
    limiter = RateLimiter()
    limiter.configure_limit("reddit_search", RateLimitConfig(100, 60, "sliding_window"))
    limiter.configure_limit("youtube_search", RateLimitConfig(100, 60, "sliding_window"))
    limiter.configure_limit("x_search", RateLimitConfig(450, 900, "sliding_window"))
    limiter.configure_limit("embeddings", RateLimitConfig(3000, 60, "token_bucket"))
    return limiter


__all__ = ["RateLimiter", "RateLimitConfig", "create_platform_limiter"]
