"""FastAPI application factory for Equine Agent."""

from datetime import UTC, datetime
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from equine_agent.ingestion.cache import TTLCache
from equine_agent.ingestion.crawler import RateLimiter
from equine_agent.ingestion.registry import SourceRegistry, get_default_registry
from equine_agent.ingestion.scheduler import Scheduler

# Load .env file from project root
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)


def create_app(
    registry: SourceRegistry | None = None,
    scheduler: Scheduler | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    The registry, cache, rate limiter and scheduler are built here and
    kept on ``app.state`` so every request shares them.

    Args:
        registry: Source registry (the default registry when omitted)
        scheduler: Pre-built scheduler, e.g. one with a stubbed fetcher
    """
    app = FastAPI(
        title="Equine Agent",
        description="Harvests and reconciles horse competition, ranking and pedigree data",
        version="0.1.0",
    )

    if registry is None:
        registry = scheduler.registry if scheduler is not None else get_default_registry()
    if scheduler is None:
        settings = registry.global_config
        cache = TTLCache(
            default_ttl=settings.cache_ttl_seconds,
            max_entries=settings.cache_max_entries,
        )
        scheduler = Scheduler.from_registry(registry, cache=cache, rate_limiter=RateLimiter())

    app.state.registry = registry
    app.state.scheduler = scheduler
    app.state.cache = scheduler.cache
    app.state.rate_limiter = scheduler.fetcher.rate_limiter

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "timestamp": datetime.now(UTC).isoformat()}

    # Include routers (import here to avoid circular imports)
    from equine_agent.web.routes import scrape

    app.include_router(scrape.router)

    return app


# Application instance
app = create_app()
