"""
FastAPI routes for Trend Terminal backend.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from adapter.models import (
    Platform,
    SearchOptions,
    SearchResult,
    TrendQuery,
    VALID_TIMEFRAMES,
    DEFAULT_TIMEFRAME,
    clamp_limit,
)
from core import TrendSearchService, TrendSearchError
from monitoring import monitor, get_rate_limit_status, EventType

logger = logging.getLogger(__name__)

# Router for API endpoints
router = APIRouter(prefix="/api/v1", tags=["Trend Terminal"])


# ============================================================================
# Request/Response Models
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: datetime
    platforms: Dict[str, Dict[str, bool]]
    available_platforms: List[Platform]


class TrendsResponse(BaseModel):
    """Search response envelope."""
    success: bool = True
    data: SearchResult


class TrendingData(BaseModel):
    topics: List[str]
    count: int


class TrendingResponse(BaseModel):
    success: bool = True
    data: TrendingData


class PlatformStatusData(BaseModel):
    platforms: Dict[str, Dict[str, bool]]
    available: List[Platform]


class PlatformStatusResponse(BaseModel):
    success: bool = True
    data: PlatformStatusData


class HistoryData(BaseModel):
    user_id: str
    searches: List[TrendQuery]
    count: int


class HistoryResponse(BaseModel):
    success: bool = True
    data: HistoryData


def _error_response(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, "message": message},
    )


# ============================================================================
# Dependency Injection - these get set by the main app
# ============================================================================

_search_service: Optional[TrendSearchService] = None
_rate_limiter = None


def set_dependencies(search_service: TrendSearchService, rate_limiter=None):
    """Set the service dependencies (called from main app)."""
    global _search_service, _rate_limiter
    _search_service = search_service
    _rate_limiter = rate_limiter


def get_search_service() -> TrendSearchService:
    if _search_service is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return _search_service


# ============================================================================
# Routes
# ============================================================================

@router.get("/health", response_model=HealthResponse)
async def health_check(service: TrendSearchService = Depends(get_search_service)):
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        platforms=service.get_platform_status(),
        available_platforms=service.get_available_platforms(),
    )


@router.get("/trends", response_model=TrendsResponse, tags=["Trends"])
async def search_trends(
    q: str = Query(..., min_length=1, description="Keyword to search"),
    platforms: Optional[str] = Query(default=None, description="Comma-separated platforms (reddit,youtube,twitter)"),
    timeframe: str = Query(default=DEFAULT_TIMEFRAME, description="1h, 24h, 7d, 30d, 1y or all"),
    lang: Optional[str] = Query(default=None, min_length=2, max_length=2, description="ISO 639-1 language"),
    region: Optional[str] = Query(default=None, min_length=2, max_length=2, description="ISO 3166-1 region"),
    limit: Optional[int] = Query(default=None, description="Max results (clamped to 1-100, default 50)"),
    user_id: Optional[str] = Query(default=None, description="Requester id for search history"),
    service: TrendSearchService = Depends(get_search_service),
):
    """
    Search trending content for a keyword across platforms.

    Served from the local store when it has matching recent content,
    otherwise fetched live from the requested platforms.
    """
    keyword = q.strip()
    if not keyword:
        raise HTTPException(status_code=400, detail="Query parameter 'q' must not be blank")

    if timeframe not in VALID_TIMEFRAMES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid timeframe. Valid options: {VALID_TIMEFRAMES}"
        )

    requested = [p.strip() for p in platforms.split(",") if p.strip()] if platforms else [p.value for p in Platform]

    options = SearchOptions(
        keyword=keyword,
        platforms=requested,
        timeframe=timeframe,
        lang=lang.lower() if lang else None,
        region=region.upper() if region else None,
        limit=clamp_limit(limit),
        user_id=user_id,
    )

    try:
        result = await service.search_trends(options)
    except TrendSearchError as e:
        return _error_response(500, "Failed to search trends", str(e))

    return TrendsResponse(data=result)


@router.get("/trending", response_model=TrendingResponse, tags=["Trends"])
async def get_trending(
    limit: int = Query(default=10, ge=1, le=50, description="Number of keywords"),
    service: TrendSearchService = Depends(get_search_service),
):
    """Most searched keywords over the last 7 days."""
    try:
        topics = await service.get_trending_topics(limit=limit)
    except Exception as e:
        logger.error(f"Failed to get trending topics: {e}")
        return _error_response(500, "Failed to get trending topics", str(e))

    return TrendingResponse(data=TrendingData(topics=topics, count=len(topics)))


@router.get("/platforms/status", response_model=PlatformStatusResponse, tags=["Trends"])
async def get_platforms_status(service: TrendSearchService = Depends(get_search_service)):
    """Which platforms are registered and have credentials."""
    return PlatformStatusResponse(
        data=PlatformStatusData(
            platforms=service.get_platform_status(),
            available=service.get_available_platforms(),
        )
    )


@router.get("/users/{user_id}/history", response_model=HistoryResponse, tags=["Trends"])
async def get_user_history(
    user_id: str,
    limit: int = Query(default=20, ge=1, le=100, description="Number of searches"),
    service: TrendSearchService = Depends(get_search_service),
):
    """A user's past searches, newest first."""
    try:
        searches = await service.get_user_search_history(user_id, limit=limit)
    except Exception as e:
        logger.error(f"Failed to get history for user {user_id}: {e}")
        return _error_response(500, "Failed to get user history", str(e))

    return HistoryResponse(data=HistoryData(user_id=user_id, searches=searches, count=len(searches)))


# ============================================================================
# Monitoring & Observability
# ============================================================================

@router.get("/monitor/dashboard", tags=["Monitoring"])
async def get_dashboard():
    """
    Full monitoring dashboard data.

    Returns all metrics, health status, and recent activity in one call.
    """
    return monitor.get_dashboard_data()


@router.get("/monitor/rate-limits", tags=["Monitoring"])
async def get_rate_limits():
    """Current usage vs limits for each platform and the embedding provider."""
    if _rate_limiter is None:
        return {"error": "Rate limiter not configured", "categories": {}}

    status = get_rate_limit_status(_rate_limiter)

    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "categories": status,
        "summary": {
            "total_categories": len(status),
            "critical": sum(1 for s in status.values() if s["status"] == "critical"),
            "warning": sum(1 for s in status.values() if s["status"] == "warning"),
            "ok": sum(1 for s in status.values() if s["status"] == "ok"),
        }
    }


@router.get("/monitor/activity", tags=["Monitoring"])
async def get_activity_feed(
    limit: int = Query(default=50, ge=1, le=200, description="Number of events"),
    event_type: Optional[str] = Query(default=None, description="Filter by event type"),
    keyword: Optional[str] = Query(default=None, description="Filter by search keyword"),
) -> Dict[str, Any]:
    """
    Recent system events: searches, platform calls and errors,
    persistence and rate limit warnings.
    """
    filter_type = None
    if event_type:
        try:
            filter_type = EventType(event_type)
        except ValueError:
            valid_types = [e.value for e in EventType]
            raise HTTPException(
                status_code=400,
                detail=f"Invalid event_type. Valid options: {valid_types}"
            )

    return {
        "events": monitor.activity.get_recent(limit=limit, event_type=filter_type, keyword=keyword),
        "event_counts_5m": monitor.activity.get_event_counts(since_minutes=5),
        "available_types": [e.value for e in EventType],
    }


__all__ = ["router", "set_dependencies", "get_search_service"]
