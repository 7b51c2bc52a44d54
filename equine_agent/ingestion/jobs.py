"""
Background Jobs Module
======================

Defines arq tasks for running harvests in the background.
Uses Redis as the job queue backend.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from arq import create_pool
from arq.connections import RedisSettings
from arq.jobs import Job
from arq.jobs import JobStatus as ArqJobStatus

from equine_agent.ingestion.registry import get_default_registry
from equine_agent.ingestion.scheduler import AggregateReport, Scheduler

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    """Status of a harvest job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class JobResult:
    """Result of a harvest job."""

    job_id: str
    sources: list[str]
    kinds: list[str]
    status: JobStatus
    started_at: datetime | None = None
    completed_at: datetime | None = None
    counts: dict[str, int] = field(default_factory=dict)
    identity_actions: dict[str, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    report: dict[str, Any] | None = None
    duration_seconds: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "job_id": self.job_id,
            "sources": self.sources,
            "kinds": self.kinds,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "counts": self.counts,
            "identity_actions": self.identity_actions,
            "errors": self.errors,
            "report": self.report,
            "duration_seconds": self.duration_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobResult:
        """Rebuild a result from its serialized form."""
        return cls(
            job_id=data["job_id"],
            sources=list(data.get("sources", [])),
            kinds=list(data.get("kinds", [])),
            status=JobStatus(data["status"]),
            started_at=datetime.fromisoformat(data["started_at"]) if data.get("started_at") else None,
            completed_at=datetime.fromisoformat(data["completed_at"]) if data.get("completed_at") else None,
            counts=dict(data.get("counts", {})),
            identity_actions=dict(data.get("identity_actions", {})),
            errors=list(data.get("errors", [])),
            report=data.get("report"),
            duration_seconds=data.get("duration_seconds"),
        )


def get_redis_settings() -> RedisSettings:
    """Get Redis connection settings from environment."""
    return RedisSettings(
        host=os.environ.get("REDIS_HOST", "localhost"),
        port=int(os.environ.get("REDIS_PORT", "6379")),
        database=int(os.environ.get("REDIS_DB", "0")),
    )


def _status_for(report: AggregateReport) -> JobStatus:
    if report.cancelled:
        return JobStatus.PARTIAL
    if not report.outcomes:
        return JobStatus.FAILED if report.source_errors else JobStatus.COMPLETED
    if report.source_errors:
        return JobStatus.PARTIAL
    return JobStatus.COMPLETED


async def harvest_sources(
    ctx: dict[str, Any],
    source_names: list[str] | None = None,
    kinds: list[str] | None = None,
    params: dict[str, str] | None = None,
    timeout: float | None = None,
    scheduler: Scheduler | None = None,
) -> dict[str, Any]:
    """
    Main harvest task.

    Runs the scheduler over the selected sources and kinds and returns
    the job result with the full aggregate report.

    Args:
        ctx: arq context (contains Redis connection)
        source_names: Sources to harvest (all enabled when omitted)
        kinds: Record kinds to harvest (each source's kinds when omitted)
        params: Request parameters passed to every source
        timeout: Overall deadline in seconds
        scheduler: Scheduler to use instead of one built from the default registry

    Returns:
        JobResult as dictionary
    """
    job_id = ctx.get("job_id", str(uuid4()))
    result = JobResult(
        job_id=job_id,
        sources=list(source_names or []),
        kinds=list(kinds or []),
        status=JobStatus.RUNNING,
        started_at=datetime.now(UTC),
    )

    try:
        if scheduler is None:
            scheduler = Scheduler.from_registry(get_default_registry())
        logger.info(f"Harvest job {job_id} starting")
        report = await scheduler.run_all(
            source_names=source_names,
            kinds=kinds,
            params=params,
            timeout=timeout,
        )
        result.status = _status_for(report)
        result.sources = list(report.sources)
        result.counts = report.counts
        result.identity_actions = dict(report.identity_actions)
        result.errors = [f"{e.source}: {e.message}" for e in report.source_errors]
        result.report = report.to_dict()
    except Exception as e:
        logger.exception(f"Harvest job failed: {e}")
        result.status = JobStatus.FAILED
        result.errors.append(str(e))
    finally:
        result.completed_at = datetime.now(UTC)
        if result.started_at and result.completed_at:
            result.duration_seconds = (result.completed_at - result.started_at).total_seconds()

    return result.to_dict()


async def run_harvest_sync(
    source_names: list[str] | None = None,
    kinds: list[str] | None = None,
    params: dict[str, str] | None = None,
    timeout: float | None = None,
    scheduler: Scheduler | None = None,
) -> JobResult:
    """
    Run a harvest in-process (without arq).

    Useful for CLI commands with --sync flag.

    Returns:
        JobResult
    """
    ctx: dict[str, Any] = {"job_id": str(uuid4())}
    result_dict = await harvest_sources(ctx, source_names, kinds, params, timeout, scheduler)
    return JobResult.from_dict(result_dict)


async def enqueue_harvest(
    source_names: list[str] | None = None,
    kinds: list[str] | None = None,
    params: dict[str, str] | None = None,
    timeout: float | None = None,
) -> str:
    """
    Enqueue a harvest job for async processing.

    Returns:
        Job ID
    """
    redis = await create_pool(get_redis_settings())
    job = await redis.enqueue_job("harvest_sources", source_names, kinds, params, timeout)
    await redis.close()
    return job.job_id


async def get_job_status(job_id: str) -> dict[str, Any] | None:
    """
    Get the status of a harvest job.

    Args:
        job_id: Job ID to look up

    Returns:
        Job info dict, or None if not found
    """
    redis = await create_pool(get_redis_settings())
    try:
        job = Job(job_id, redis)
        status = await job.status()
        if status == ArqJobStatus.not_found:
            return None
        info = await job.result_info()
    finally:
        await redis.close()

    return {
        "job_id": job_id,
        "status": status.value,
        "result": info.result if info else None,
    }


class WorkerSettings:
    """arq worker settings."""

    functions = [harvest_sources]
    redis_settings = get_redis_settings()
    max_jobs = 5
    job_timeout = 3600  # 1 hour
    keep_result = 86400  # 24 hours
