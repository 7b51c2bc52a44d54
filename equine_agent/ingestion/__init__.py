"""
Equine Agent Harvesting Framework
=================================

This package provides the pipeline for harvesting horse competition,
ranking and identity records from federation, show-management,
pedigree and studbook sites.

Pipeline Stages:
1. Rate limit - Per-source sliding one-minute window
2. Fetch - Ordered endpoint fallback with retries and backoff
3. Extract - Declarative adapter plans turn pages into raw records
4. Normalize - ISO dates, centimetre heights, result status, USD amounts
5. Resolve - Cross-source identity resolution with confidence scoring
6. Aggregate - Concurrent sources folded into one report, failures isolated
"""

from equine_agent.ingestion.registry import (
    SourceRegistry,
    SourceDescriptor,
    RateLimitConfig,
    GlobalConfig,
    IdentityResolutionConfig,
    get_default_registry,
    reset_default_registry,
)
from equine_agent.ingestion.errors import (
    HarvestError,
    RateLimitWait,
    EndpointError,
    EndpointTimeout,
    EndpointHTTPError,
    EndpointFailure,
    SourceUnavailable,
    ExtractionEmpty,
    NormalizationError,
    IdentityAmbiguous,
)
from equine_agent.ingestion.crawler import (
    Fetcher,
    FetchAttempt,
    FetchResult,
    RateLimiter,
    RobotsChecker,
)
from equine_agent.ingestion.extractor import Extractor
from equine_agent.ingestion.normalizer import (
    Normalizer,
    normalize_date,
    normalize_earnings,
    normalize_height,
    normalize_status,
)
from equine_agent.ingestion.resolver import (
    IdentityResolver,
    Resolution,
    reduce_identities,
)
from equine_agent.ingestion.cache import TTLCache
from equine_agent.ingestion.orchestrator import (
    RowError,
    SourceOrchestrator,
    SourceOutcome,
)
from equine_agent.ingestion.scheduler import (
    AggregateReport,
    Scheduler,
    SourceError,
)
from equine_agent.ingestion.jobs import (
    harvest_sources,
    enqueue_harvest,
    get_job_status,
    run_harvest_sync,
    JobResult,
    JobStatus,
)

__all__ = [
    # Registry
    "SourceRegistry",
    "SourceDescriptor",
    "RateLimitConfig",
    "GlobalConfig",
    "IdentityResolutionConfig",
    "get_default_registry",
    "reset_default_registry",
    # Errors
    "HarvestError",
    "RateLimitWait",
    "EndpointError",
    "EndpointTimeout",
    "EndpointHTTPError",
    "EndpointFailure",
    "SourceUnavailable",
    "ExtractionEmpty",
    "NormalizationError",
    "IdentityAmbiguous",
    # Crawler
    "Fetcher",
    "FetchAttempt",
    "FetchResult",
    "RateLimiter",
    "RobotsChecker",
    # Extraction and normalization
    "Extractor",
    "Normalizer",
    "normalize_date",
    "normalize_earnings",
    "normalize_height",
    "normalize_status",
    # Resolver
    "IdentityResolver",
    "Resolution",
    "reduce_identities",
    # Cache
    "TTLCache",
    # Orchestration
    "RowError",
    "SourceOrchestrator",
    "SourceOutcome",
    "AggregateReport",
    "Scheduler",
    "SourceError",
    # Jobs
    "harvest_sources",
    "enqueue_harvest",
    "get_job_status",
    "run_harvest_sync",
    "JobResult",
    "JobStatus",
]
