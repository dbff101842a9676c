"""
Monitoring and observability module for Trend Terminal.

Provides real-time metrics and insights for:
- HTTP request latency and errors
- Searches per retrieval source (vector, lexical, live)
- Platform API calls, latency and errors
- Embedding calls and background persistence
- Activity feed keyed by search keyword
"""

from __future__ import annotations

import time
import logging
from datetime import datetime, timezone, timedelta
from typing import Dict, List, Any, Optional
from dataclasses import dataclass
from collections import deque, Counter, defaultdict
from enum import Enum

import numpy as np

logger = logging.getLogger(__name__)

# Keep only the most recent latencies per series
MAX_LATENCY_SAMPLES = 1000

# Limiter usage (percent) at which a category is flagged
USAGE_WARNING_PCT = 80
USAGE_CRITICAL_PCT = 95

# Component status -> severity, worst wins
STATUS_SEVERITY = {"healthy": 0, "unknown": 1, "warning": 2, "error": 3}
OVERALL_BY_SEVERITY = {0: "healthy", 1: "unknown", 2: "warning", 3: "degraded"}


class EventType(str, Enum):
    """Types of system events."""
    SEARCH = "search"
    PLATFORM_CALL = "platform_call"
    PLATFORM_ERROR = "platform_error"
    EMBEDDING_ERROR = "embedding_error"
    PERSISTED = "persisted"
    PERSIST_ERROR = "persist_error"
    RATE_LIMIT_WARNING = "rate_limit_warning"


@dataclass
class SystemEvent:
    """A recorded system event, tied to the keyword being searched if any."""
    timestamp: datetime
    event_type: EventType
    keyword: Optional[str]
    details: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "keyword": self.keyword,
            "details": self.details,
            "age_seconds": round((datetime.now(timezone.utc) - self.timestamp).total_seconds(), 3),
        }


class LatencySeries:
    """Bounded window of latency samples in milliseconds."""

    def __init__(self, max_samples: int = MAX_LATENCY_SAMPLES):
        self._samples: deque = deque(maxlen=max_samples)

    def add(self, latency_ms: float) -> None:
        self._samples.append(latency_ms)

    def __len__(self) -> int:
        return len(self._samples)

    def summary(self) -> Dict[str, float]:
        if not self._samples:
            return {"p50": 0.0, "p95": 0.0, "p99": 0.0, "avg": 0.0}
        values = np.fromiter(self._samples, dtype=float)
        p50, p95, p99 = np.percentile(values, [50, 95, 99])
        return {
            "p50": round(float(p50), 2),
            "p95": round(float(p95), 2),
            "p99": round(float(p99), 2),
            "avg": round(float(values.mean()), 2),
        }


def _error_rate(errors: int, calls: int) -> str:
    return f"{errors / calls:.1%}" if calls else "0.0%"


def _format_duration(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


class MetricsCollector:
    """
    Counters and latency windows for every stage of a search.

    Tracks:
    - Request counts per endpoint
    - Searches per retrieval source
    - Platform call latency and errors
    - Embedding and persistence counts
    """

    def __init__(self):
        self._start_time = time.time()

        self._requests: Counter = Counter()
        self._request_errors: Counter = Counter()
        self._request_latency: Dict[str, LatencySeries] = defaultdict(LatencySeries)

        self._searches: Counter = Counter()
        self._search_latency = LatencySeries()

        self._platform_calls: Counter = Counter()
        self._platform_errors: Counter = Counter()
        self._platform_latency: Dict[str, LatencySeries] = defaultdict(LatencySeries)

        self._embedding_calls = 0
        self._embedding_errors = 0
        self._embedding_latency = LatencySeries()

        self._items_persisted = 0
        self._persist_failures = 0

    def record_request(self, endpoint: str, latency_ms: float, error: bool = False) -> None:
        """Record an API request."""
        self._requests[endpoint] += 1
        self._request_latency[endpoint].add(latency_ms)
        if error:
            self._request_errors[endpoint] += 1

    def record_search(self, source: str, latency_ms: float) -> None:
        """Record a completed search and the tier that answered it."""
        self._searches[source] += 1
        self._search_latency.add(latency_ms)

    def record_platform_call(self, platform: str, latency_ms: float, error: bool = False) -> None:
        """Record one adapter call made during fan-out."""
        self._platform_calls[platform] += 1
        self._platform_latency[platform].add(latency_ms)
        if error:
            self._platform_errors[platform] += 1

    def record_embedding_call(self, latency_ms: float, error: bool = False) -> None:
        self._embedding_calls += 1
        self._embedding_latency.add(latency_ms)
        if error:
            self._embedding_errors += 1

    def record_persisted(self, count: int, failed: int = 0) -> None:
        """Record items stored by the persistence worker."""
        self._items_persisted += count
        self._persist_failures += failed

    def get_metrics(self) -> Dict[str, Any]:
        """Snapshot of all counters."""
        uptime = time.time() - self._start_time

        platforms = {
            platform: {
                "calls": calls,
                "errors": self._platform_errors[platform],
                "error_rate": _error_rate(self._platform_errors[platform], calls),
                "latency_ms": self._platform_latency[platform].summary(),
            }
            for platform, calls in self._platform_calls.items()
        }

        return {
            "uptime_seconds": int(uptime),
            "uptime_human": _format_duration(uptime),
            "requests": {
                "total": sum(self._requests.values()),
                "by_endpoint": dict(self._requests),
                "errors": dict(self._request_errors),
            },
            "searches": {
                "total": sum(self._searches.values()),
                "by_source": dict(self._searches),
                "latency_ms": self._search_latency.summary(),
            },
            "platforms": platforms,
            "embeddings": {
                "calls": self._embedding_calls,
                "errors": self._embedding_errors,
                "error_rate": _error_rate(self._embedding_errors, self._embedding_calls),
                "latency_ms": self._embedding_latency.summary(),
            },
            "persistence": {
                "items_persisted": self._items_persisted,
                "failures": self._persist_failures,
            },
        }


class ActivityFeed:
    """
    Recent system events for live monitoring.

    Bounded; the oldest events fall off once max_events is reached.
    """

    def __init__(self, max_events: int = 500):
        self.max_events = max_events
        self._events: deque = deque(maxlen=max_events)

    def add_event(self, event_type: EventType, keyword: Optional[str] = None, **details) -> None:
        self._events.append(SystemEvent(
            timestamp=datetime.now(timezone.utc),
            event_type=event_type,
            keyword=keyword,
            details=details,
        ))

    def get_recent(
        self,
        limit: int = 50,
        event_type: Optional[EventType] = None,
        keyword: Optional[str] = None,
    ) -> List[Dict]:
        """Newest events first, optionally filtered by type and keyword."""
        selected = []
        # Events are appended in time order
        for event in reversed(self._events):
            if event_type and event.event_type != event_type:
                continue
            if keyword and (event.keyword or "").lower() != keyword.lower():
                continue
            selected.append(event.to_dict())
            if len(selected) >= limit:
                break
        return selected

    def get_event_counts(self, since_minutes: int = 5) -> Dict[str, int]:
        """Event counts by type over the last N minutes."""
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=since_minutes)
        counts = Counter(e.event_type.value for e in self._events if e.timestamp >= cutoff)
        return dict(counts)


class SystemMonitor:
    """
    Central monitoring hub: metrics, activity and component health.
    """

    def __init__(self):
        self.metrics = MetricsCollector()
        self.activity = ActivityFeed()
        self._component_status: Dict[str, Dict[str, Any]] = {}

    def set_component_status(
        self,
        component: str,
        status: str,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        """Set status for a component (healthy, warning, error)."""
        self._component_status[component] = {
            "status": status,
            "last_updated": datetime.now(timezone.utc).isoformat(),
            "details": details or {},
        }

    def get_health_status(self) -> Dict[str, Any]:
        """Overall health is the worst component status."""
        severity = max(
            (STATUS_SEVERITY.get(c.get("status"), 1) for c in self._component_status.values()),
            default=1,
        )
        return {
            "status": OVERALL_BY_SEVERITY[severity],
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "components": self._component_status,
        }

    def get_dashboard_data(self) -> Dict[str, Any]:
        return {
            "health": self.get_health_status(),
            "metrics": self.metrics.get_metrics(),
            "recent_activity": self.activity.get_recent(limit=20),
            "event_counts_5m": self.activity.get_event_counts(since_minutes=5),
        }


# Global monitor instance
monitor = SystemMonitor()


def _usage_level(usage_pct: float) -> str:
    if usage_pct >= USAGE_CRITICAL_PCT:
        return "critical"
    if usage_pct >= USAGE_WARNING_PCT:
        return "warning"
    return "ok"


def get_rate_limit_status(rate_limiter) -> Dict[str, Any]:
    """
    Usage per limiter category (reddit_search, youtube_search, x_search, embeddings).

    Args:
        rate_limiter: RateLimiter instance

    Returns:
        Category -> limit, window, remaining and usage level
    """
    status = {}
    for category, config in rate_limiter.configs.items():
        limit = config.requests_per_window
        remaining = rate_limiter.get_remaining_requests(category)
        used = max(0, limit - remaining)
        usage_pct = used / limit * 100 if limit > 0 else 0.0

        status[category] = {
            "limit": limit,
            "window_seconds": config.window_seconds,
            "strategy": config.strategy,
            "remaining": remaining,
            "used": used,
            "usage_percent": f"{usage_pct:.1f}%",
            "status": _usage_level(usage_pct),
        }
    return status


__all__ = [
    "SystemMonitor",
    "MetricsCollector",
    "ActivityFeed",
    "LatencySeries",
    "EventType",
    "SystemEvent",
    "monitor",
    "get_rate_limit_status",
]
