"""
Harvest Scheduler Module
========================

Runs many sources concurrently under a global concurrency ceiling and
folds their outcomes into one AggregateReport. One source failing,
timing out or being cancelled never affects the others, and nothing
escapes ``run_all``: every failure becomes a report entry.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Mapping

from equine_agent.core.enums import ErrorScope, OutcomeStatus, RecordKind
from equine_agent.core.schema import (
    ExcludedRow,
    NormalizedAnimal,
    NormalizedEvent,
    NormalizedRanking,
    NormalizedResult,
)
from equine_agent.ingestion.cache import TTLCache
from equine_agent.ingestion.crawler import Fetcher, RateLimiter
from equine_agent.ingestion.extractor import Extractor
from equine_agent.ingestion.normalizer import Normalizer
from equine_agent.ingestion.orchestrator import SourceOrchestrator, SourceOutcome
from equine_agent.ingestion.registry import SourceDescriptor, SourceRegistry
from equine_agent.ingestion.resolver import IdentityResolver, reduce_identities

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceError:
    """An error attributed to a source (and, where known, a kind and row)."""

    source: str
    message: str
    kind: RecordKind | None = None
    scope: ErrorScope = ErrorScope.SOURCE
    row_index: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "kind": self.kind.value if self.kind else None,
            "scope": self.scope.value,
            "row_index": self.row_index,
            "message": self.message,
        }


@dataclass
class AggregateReport:
    """Combined output of one scheduler run."""

    animals: list[NormalizedAnimal] = field(default_factory=list)
    results: list[NormalizedResult] = field(default_factory=list)
    events: list[NormalizedEvent] = field(default_factory=list)
    rankings: list[NormalizedRanking] = field(default_factory=list)
    excluded: list[ExcludedRow] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)
    errors: list[SourceError] = field(default_factory=list)
    outcomes: list[SourceOutcome] = field(default_factory=list)
    identity_actions: dict[str, int] = field(default_factory=dict)
    cancelled: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    @property
    def counts(self) -> dict[str, int]:
        """Number of records by kind."""
        return {
            RecordKind.ANIMALS.value: len(self.animals),
            RecordKind.RESULTS.value: len(self.results),
            RecordKind.EVENTS.value: len(self.events),
            RecordKind.RANKINGS.value: len(self.rankings),
        }

    @property
    def source_errors(self) -> list[SourceError]:
        """Errors that failed a whole source (or source/kind pair)."""
        return [e for e in self.errors if e.scope == ErrorScope.SOURCE]

    @property
    def success(self) -> bool:
        """True when no source failed outright."""
        return not self.source_errors and not self.cancelled

    def records_for(self, kind: RecordKind) -> list[Any]:
        return {
            RecordKind.ANIMALS: self.animals,
            RecordKind.RESULTS: self.results,
            RecordKind.EVENTS: self.events,
            RecordKind.RANKINGS: self.rankings,
        }[kind]

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return {
            "counts": self.counts,
            "sources": list(self.sources),
            "animals": [a.model_dump(mode="json") for a in self.animals],
            "results": [r.model_dump(mode="json") for r in self.results],
            "events": [e.model_dump(mode="json") for e in self.events],
            "rankings": [r.model_dump(mode="json") for r in self.rankings],
            "excluded": [x.model_dump(mode="json") for x in self.excluded],
            "errors": [e.to_dict() for e in self.errors],
            "outcomes": [o.summary() for o in self.outcomes],
            "identity_actions": dict(self.identity_actions),
            "cancelled": self.cancelled,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class Scheduler:
    """
    Fans a harvest out across sources.

    Each source runs as its own task; at most ``max_concurrency`` sources
    are in flight at once, independent of each source's rate limit.
    After all tasks finish, identities are resolved once, single-threaded,
    with sources taken in configuration order.
    """

    def __init__(
        self,
        registry: SourceRegistry,
        fetcher: Fetcher,
        extractor: Extractor,
        normalizer: Normalizer,
        resolver: IdentityResolver,
        cache: TTLCache | None = None,
        max_concurrency: int = 4,
        cache_ttl: float | None = None,
    ) -> None:
        self.registry = registry
        self.fetcher = fetcher
        self.extractor = extractor
        self.normalizer = normalizer
        self.resolver = resolver
        self.cache = cache
        self.max_concurrency = max(1, max_concurrency)
        self.cache_ttl = cache_ttl

    @classmethod
    def from_registry(
        cls,
        registry: SourceRegistry,
        cache: TTLCache | None = None,
        rate_limiter: RateLimiter | None = None,
        fetcher: Fetcher | None = None,
    ) -> Scheduler:
        """
        Build a scheduler with components configured from the registry.

        Args:
            registry: Loaded source registry
            cache: Shared cache; one is created from the global settings if omitted
            rate_limiter: Shared rate limiter; created from source budgets if omitted
            fetcher: Fetcher to use instead of one built from the global settings
        """
        settings = registry.global_config
        if rate_limiter is None:
            rate_limiter = RateLimiter()
        for source in registry.list_sources():
            rate_limiter.register(source.name, source.rate_limit.requests_per_minute)
        if cache is None:
            cache = TTLCache(
                default_ttl=settings.cache_ttl_seconds,
                max_entries=settings.cache_max_entries,
            )
        if fetcher is None:
            fetcher = Fetcher(
                rate_limiter=rate_limiter,
                user_agent=settings.user_agent,
                timeout=settings.request_timeout,
                max_retries=settings.max_retries,
                backoff_base=settings.backoff_base_seconds,
                respect_robots=settings.respect_robots,
            )
        return cls(
            registry=registry,
            fetcher=fetcher,
            extractor=Extractor.from_registry(registry),
            normalizer=Normalizer(settings.currency_rates),
            resolver=IdentityResolver.from_config(registry.identity_resolution),
            cache=cache,
            max_concurrency=settings.max_concurrency,
            cache_ttl=settings.cache_ttl_seconds,
        )

    def orchestrator_for(
        self,
        source: SourceDescriptor,
        resolve_locally: bool = False,
    ) -> SourceOrchestrator:
        """Orchestrator for one source sharing this scheduler's components."""
        return SourceOrchestrator(
            descriptor=source,
            fetcher=self.fetcher,
            extractor=self.extractor,
            normalizer=self.normalizer,
            cache=self.cache,
            cache_ttl=self.cache_ttl,
            resolver=self.resolver if resolve_locally else None,
        )

    async def run_all(
        self,
        source_names: list[str] | None = None,
        kinds: list[RecordKind | str] | None = None,
        params: Mapping[str, str] | None = None,
        timeout: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> AggregateReport:
        """
        Harvest every selected source and aggregate the outcomes.

        Args:
            source_names: Sources to run (all enabled sources when omitted)
            kinds: Record kinds to harvest (each source's kinds when omitted)
            params: Request parameters passed to every source
            timeout: Overall deadline in seconds
            cancel_event: When set, pending sources are cancelled

        Returns:
            AggregateReport; never raises
        """
        report = AggregateReport()
        selected_kinds = [RecordKind.parse(k) for k in kinds] if kinds else None
        runnable = self._select_sources(report, source_names, selected_kinds, params)

        semaphore = asyncio.Semaphore(self.max_concurrency)
        outcomes: list[SourceOutcome] = []

        async def run_source(source: SourceDescriptor, source_kinds: list[RecordKind]) -> None:
            async with semaphore:
                orchestrator = self.orchestrator_for(source)
                for kind in source_kinds:
                    # Kept as each kind finishes so a cancelled source keeps its finished kinds
                    outcomes.append(await orchestrator.run(kind, params))

        tasks: dict[asyncio.Task, str] = {
            asyncio.create_task(run_source(source, source_kinds), name=f"harvest:{source.name}"): source.name
            for source, source_kinds in runnable
        }

        await self._wait(report, tasks, timeout, cancel_event)
        self._collect(report, outcomes)
        self._reduce(report)
        report.completed_at = datetime.now(UTC)
        logger.info(
            f"Harvest finished: {report.counts}, {len(report.source_errors)} source errors"
        )
        return report

    def _select_sources(
        self,
        report: AggregateReport,
        source_names: list[str] | None,
        kinds: list[RecordKind] | None,
        params: Mapping[str, str] | None = None,
    ) -> list[tuple[SourceDescriptor, list[RecordKind]]]:
        if source_names:
            candidates = []
            for name in source_names:
                source = self.registry.get_source(name)
                if source is None:
                    report.errors.append(SourceError(name, f"Unknown source '{name}'"))
                    continue
                candidates.append(source)
        else:
            candidates = self.registry.list_sources()

        runnable = []
        for source in candidates:
            if not source.enabled:
                if source_names:
                    report.errors.append(
                        SourceError(source.name, "Source is disabled", scope=ErrorScope.NOTE)
                    )
                continue
            if source.requires_auth:
                report.errors.append(
                    SourceError(
                        source.name,
                        "Source requires authentication; skipped",
                        scope=ErrorScope.NOTE,
                    )
                )
                continue
            if kinds is None:
                source_kinds = source.kinds
            else:
                source_kinds = [k for k in kinds if source.supports(k)]
                for kind in kinds:
                    if not source.supports(kind) and source_names:
                        report.errors.append(
                            SourceError(
                                source.name,
                                f"Source does not supply {kind.value}",
                                kind=kind,
                                scope=ErrorScope.NOTE,
                            )
                        )
            source_kinds = self._renderable_kinds(report, source, source_kinds, params)
            if source_kinds:
                runnable.append((source, source_kinds))
        return runnable

    def _renderable_kinds(
        self,
        report: AggregateReport,
        source: SourceDescriptor,
        source_kinds: list[RecordKind],
        params: Mapping[str, str] | None,
    ) -> list[RecordKind]:
        """Drop kinds whose endpoints all need parameters nobody supplied."""
        ready = []
        for kind in source_kinds:
            missing = source.missing_params(kind, params)
            if missing:
                report.errors.append(
                    SourceError(
                        source.name,
                        f"{kind.value} needs parameter(s) {', '.join(missing)}; skipped",
                        kind=kind,
                        scope=ErrorScope.NOTE,
                    )
                )
                continue
            ready.append(kind)
        return ready

    async def _wait(
        self,
        report: AggregateReport,
        tasks: dict[asyncio.Task, str],
        timeout: float | None,
        cancel_event: asyncio.Event | None,
    ) -> None:
        if not tasks:
            return
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None
        pending: set[asyncio.Future] = set(tasks)
        cancel_waiter = asyncio.ensure_future(cancel_event.wait()) if cancel_event else None

        try:
            while pending:
                remaining = None if deadline is None else deadline - loop.time()
                if remaining is not None and remaining <= 0:
                    self._cancel(report, tasks, pending, "Harvest timed out")
                    break
                waiting = pending | ({cancel_waiter} if cancel_waiter else set())
                done, _ = await asyncio.wait(
                    waiting, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                )
                if cancel_waiter is not None and cancel_waiter in done:
                    self._cancel(report, tasks, pending, "Harvest cancelled")
                    break
                for task in done:
                    pending.discard(task)
                    if task.cancelled():
                        report.errors.append(SourceError(tasks[task], "Source run was cancelled"))
                    elif task.exception() is not None:
                        report.errors.append(
                            SourceError(tasks[task], f"Unexpected error: {task.exception()}")
                        )
        finally:
            if cancel_waiter is not None and not cancel_waiter.done():
                cancel_waiter.cancel()

        if report.cancelled:
            # Let cancelled tasks unwind before reading their partial output
            await asyncio.gather(*tasks, return_exceptions=True)

    def _cancel(
        self,
        report: AggregateReport,
        tasks: dict[asyncio.Task, str],
        pending: set[asyncio.Future],
        reason: str,
    ) -> None:
        report.cancelled = True
        for task in pending:
            task.cancel()
            report.errors.append(SourceError(tasks[task], f"{reason} before the source finished"))
        logger.warning(f"{reason}; {len(pending)} source(s) cancelled")

    def _collect(self, report: AggregateReport, outcomes: list[SourceOutcome]) -> None:
        for outcome in outcomes:
            report.outcomes.append(outcome)
            if outcome.source not in report.sources:
                report.sources.append(outcome.source)
            report.events.extend(outcome.events)
            report.excluded.extend(outcome.excluded)
            if outcome.status == OutcomeStatus.HARD_FAILURE:
                report.errors.append(
                    SourceError(outcome.source, outcome.error or "Source failed", kind=outcome.kind)
                )
            for row_error in outcome.row_errors:
                report.errors.append(
                    SourceError(
                        outcome.source,
                        row_error.message,
                        kind=outcome.kind,
                        scope=ErrorScope.ROW,
                        row_index=row_error.row_index,
                    )
                )
            for note in outcome.notes:
                report.errors.append(
                    SourceError(outcome.source, note, kind=outcome.kind, scope=ErrorScope.NOTE)
                )

    def _reduce(self, report: AggregateReport) -> None:
        """Resolve identities across sources, in configuration order."""
        order = {source.name: i for i, source in enumerate(self.registry.list_sources())}
        ordered = sorted(report.outcomes, key=lambda o: order.get(o.source, len(order)))

        animals = [animal for outcome in ordered for animal in outcome.animals]
        references = [ref for outcome in ordered for ref in outcome.references]
        reduction = reduce_identities(self.resolver, animals, references)

        report.animals = reduction.identities
        report.results = [r for r in reduction.linked if isinstance(r, NormalizedResult)]
        report.rankings = [r for r in reduction.linked if isinstance(r, NormalizedRanking)]
        report.identity_actions = dict(
            Counter(resolution.action.value for resolution in reduction.resolutions)
        )
        for resolution in reduction.resolutions:
            if resolution.warning is not None:
                source = resolution.identity.sources[0] if resolution.identity.sources else ""
                report.errors.append(
                    SourceError(source, str(resolution.warning), scope=ErrorScope.NOTE)
                )
