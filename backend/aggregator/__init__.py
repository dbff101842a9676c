"""
Aggregator module for Trend Terminal.

Ranking primitives shared by every retrieval path:
- Momentum: engagement per hour since publication
- Timeframe cutoffs
- Filter-and-rank (cutoff, platform filter, momentum sort, limit)
- Session dedup by natural key (platform, platform_id)

Everything here is pure: inputs are never mutated, items that need a score
are returned as copies.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set, Tuple

from adapter.models import (
    ContentItem,
    Platform,
    TIMEFRAME_DELTAS,
    clamp_limit,
)

logger = logging.getLogger(__name__)

# Lower bound on item age so brand-new items don't divide by zero
MIN_AGE_HOURS = 1e-4


def calculate_momentum_score(
    published_at: datetime,
    metrics: Dict[str, Optional[float]],
    now: Optional[datetime] = None,
) -> float:
    """
    Engagement per hour since publication, rounded to 2 decimals.

    Args:
        published_at: When the content was published
        metrics: Engagement counters; None values count as 0
        now: Evaluation time (defaults to current UTC time)

    Returns:
        Non-negative momentum score
    """
    now = now or datetime.now(timezone.utc)
    if published_at.tzinfo is None:
        published_at = published_at.replace(tzinfo=timezone.utc)

    hours = max(MIN_AGE_HOURS, (now - published_at).total_seconds() / 3600)
    engagement = sum(max(0, value or 0) for value in (metrics or {}).values())
    return round(engagement / hours, 2)


def ensure_momentum(item: ContentItem, now: Optional[datetime] = None) -> ContentItem:
    """Return the item with a momentum score, computing one only if missing."""
    if item.momentum_score is not None:
        return item
    score = calculate_momentum_score(item.published_at, item.metrics, now)
    return item.model_copy(update={"momentum_score": score})


def get_timeframe_cutoff(timeframe: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Earliest allowed published_at for a timeframe.

    "all" and unrecognized timeframes have no cutoff (None).
    """
    delta = TIMEFRAME_DELTAS.get(timeframe)
    if delta is None:
        return None
    now = now or datetime.now(timezone.utc)
    return now - delta


def filter_and_rank(
    items: Iterable[ContentItem],
    platforms: Iterable[Platform],
    timeframe: str,
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[ContentItem]:
    """
    Apply the timeframe cutoff and platform filter, then sort by momentum.

    The sort is stable, so items with equal momentum keep their input order.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = get_timeframe_cutoff(timeframe, now)
    allowed = set(platforms)

    kept = []
    for item in items:
        if cutoff is not None and item.published_at < cutoff:
            continue
        if item.platform not in allowed:
            continue
        kept.append(ensure_momentum(item, now))

    kept.sort(key=lambda i: i.momentum_score, reverse=True)
    return kept[:clamp_limit(limit)]


class DedupScope:
    """
    Natural keys seen within one unit of work (a live fetch or a persist job).

    Created per unit of work and discarded at its end; nothing is shared
    across requests.
    """

    def __init__(self):
        self._seen: Set[Tuple[str, str]] = set()

    def add(self, item: ContentItem) -> bool:
        """Record the item's key. Returns False if it was already seen."""
        key = item.natural_key
        if key in self._seen:
            return False
        self._seen.add(key)
        return True

    def __contains__(self, item: ContentItem) -> bool:
        return item.natural_key in self._seen

    def __len__(self) -> int:
        return len(self._seen)


def dedup_items(items: Iterable[ContentItem], scope: Optional[DedupScope] = None) -> List[ContentItem]:
    """Drop repeated natural keys, keeping the first occurrence."""
    if scope is None:
        scope = DedupScope()
    return [item for item in items if scope.add(item)]


__all__ = [
    "calculate_momentum_score",
    "ensure_momentum",
    "get_timeframe_cutoff",
    "filter_and_rank",
    "DedupScope",
    "dedup_items",
    "MIN_AGE_HOURS",
]
