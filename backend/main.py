"""
Trend Terminal Backend - Main FastAPI Application

Run with:
    uvicorn main:app --reload --port 8000
"""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from adapter.embeddings import EmbeddingAdapter
from adapter.rate_limiter import create_platform_limiter
from adapter.registry import build_registry
from api import router, set_dependencies
from config import Settings
from core import PersistenceWorker, TrendSearchService
from database import TrendStore
from monitoring import monitor

settings = Settings.from_env()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Global services (initialized on startup)
persistence_worker: PersistenceWorker = None
search_service: TrendSearchService = None


class RequestMonitoringMiddleware(BaseHTTPMiddleware):
    """Middleware to monitor FastAPI requests."""

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path in ["/", "/docs", "/redoc", "/openapi.json"]:
            return await call_next(request)

        start_time = time.time()
        endpoint = request.url.path.replace("/api/v1", "") or "/"

        try:
            response = await call_next(request)
        except Exception:
            monitor.metrics.record_request(endpoint, (time.time() - start_time) * 1000, error=True)
            raise

        latency_ms = (time.time() - start_time) * 1000
        monitor.metrics.record_request(endpoint, latency_ms, error=response.status_code >= 500)
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan - setup and teardown.
    """
    global persistence_worker, search_service

    logger.info("Starting Trend Terminal backend...")

    rate_limiter = create_platform_limiter()
    registry = build_registry(settings, rate_limiter)

    embedder = EmbeddingAdapter(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        model=settings.embedding_model,
        dimension=settings.embedding_dimension,
        rate_limiter=rate_limiter,
    )

    store = TrendStore(settings.db_path)

    persistence_worker = PersistenceWorker(store, embedder)
    search_service = TrendSearchService(
        registry=registry,
        store=store,
        embedder=embedder,
        persistence=persistence_worker,
    )

    set_dependencies(search_service, rate_limiter)

    # Log adapter status
    for platform, status in registry.get_platform_status().items():
        if status["configured"]:
            logger.info(f"✓ {platform} adapter configured")
        else:
            logger.warning(f"⚠ {platform} adapter not configured")
        monitor.set_component_status(
            f"{platform}_adapter",
            "healthy" if status["configured"] else "warning",
            status,
        )

    if embedder.is_live:
        logger.info(f"✓ Embeddings live ({settings.embedding_model})")
    else:
        logger.warning("⚠ Embeddings not live - set OPENAI_API_KEY (lexical search only)")
    monitor.set_component_status(
        "embeddings",
        "healthy" if embedder.is_live else "warning",
        {"live": embedder.is_live, "model": settings.embedding_model},
    )

    monitor.set_component_status("database", "healthy", {"path": settings.db_path})

    await persistence_worker.start()
    monitor.set_component_status("persistence_worker", "healthy", {"running": True})

    logger.info("📊 Monitoring available at /api/v1/monitor/*")
    logger.info("Trend Terminal backend ready!")

    yield  # Application runs here

    # Shutdown
    logger.info("Shutting down Trend Terminal backend...")
    if persistence_worker:
        await persistence_worker.stop()
    logger.info("Goodbye!")


# Create FastAPI app
app = FastAPI(
    title="Trend Terminal API",
    description="Trend retrieval and ranking across Reddit, YouTube and X",
    version="1.0.0",
    lifespan=lifespan,
)

# Request monitoring middleware
app.add_middleware(RequestMonitoringMiddleware)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router)


# Root endpoint
@app.get("/")
async def root():
    return {"name": "Trend Terminal API", "version": "1.0.0", "docs": "/docs"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=True,
    )
