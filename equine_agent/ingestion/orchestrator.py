"""
Source Orchestrator Module
==========================

Drives one source through one harvesting run for one record kind:

    Idle -> Fetching -> Extracting -> Normalizing -> Resolving -> Done

Only an exhausted fetch is a hard failure. Empty extraction and bad
rows are recorded on the outcome and the run carries on.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Mapping

from pydantic import ValidationError

from equine_agent.core.enums import OrchestrationState, OutcomeStatus, RecordKind
from equine_agent.core.schema import (
    ExcludedRow,
    NormalizedAnimal,
    NormalizedEvent,
    NormalizedRanking,
    NormalizedResult,
)
from equine_agent.ingestion.cache import TTLCache
from equine_agent.ingestion.crawler import FetchAttempt, Fetcher
from equine_agent.ingestion.errors import ExtractionEmpty, NormalizationError, SourceUnavailable
from equine_agent.ingestion.extractor import Extractor
from equine_agent.ingestion.normalizer import Normalizer
from equine_agent.ingestion.registry import SourceDescriptor
from equine_agent.ingestion.resolver import IdentityResolver, Resolution, reduce_identities

logger = logging.getLogger(__name__)

WITHDRAWAL_REASON = "pre-start withdrawal"


@dataclass(frozen=True)
class RowError:
    """A row that could not be normalized."""

    row_index: int
    message: str


@dataclass
class SourceOutcome:
    """Everything one source produced for one record kind."""

    source: str
    kind: RecordKind
    status: OutcomeStatus = OutcomeStatus.SUCCESS
    animals: list[NormalizedAnimal] = field(default_factory=list)
    results: list[NormalizedResult] = field(default_factory=list)
    events: list[NormalizedEvent] = field(default_factory=list)
    rankings: list[NormalizedRanking] = field(default_factory=list)
    references: list[tuple[NormalizedResult | NormalizedRanking, NormalizedAnimal]] = field(
        default_factory=list
    )
    resolutions: list[Resolution] = field(default_factory=list)
    excluded: list[ExcludedRow] = field(default_factory=list)
    row_errors: list[RowError] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    error: str | None = None
    failure: SourceUnavailable | None = None
    attempts: list[FetchAttempt] = field(default_factory=list)
    from_cache: bool = False
    rows_extracted: int = 0
    transitions: list[OrchestrationState] = field(
        default_factory=lambda: [OrchestrationState.IDLE]
    )
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    @property
    def state(self) -> OrchestrationState:
        """Current state of the run."""
        return self.transitions[-1]

    def transition(self, state: OrchestrationState) -> None:
        self.transitions.append(state)

    @property
    def records(self) -> list[Any]:
        """All normalized records of the outcome's kind."""
        return {
            RecordKind.ANIMALS: self.animals,
            RecordKind.RESULTS: self.results,
            RecordKind.EVENTS: self.events,
            RecordKind.RANKINGS: self.rankings,
        }[self.kind]

    @property
    def resolved(self) -> bool:
        """True once results and rankings point at identities."""
        return not self.references

    def summary(self) -> dict[str, Any]:
        """Short description for reports and logs."""
        return {
            "source": self.source,
            "kind": self.kind.value,
            "status": self.status.value,
            "records": len(self.records),
            "rows_extracted": self.rows_extracted,
            "excluded": len(self.excluded),
            "row_errors": len(self.row_errors),
            "attempts": len(self.attempts),
            "from_cache": self.from_cache,
            "error": self.error,
            "notes": list(self.notes),
            "transitions": [s.value for s in self.transitions],
        }


class SourceOrchestrator:
    """
    Runs the fetch/extract/normalize/resolve pipeline for one source.

    Page bodies are cached per (source, kind, params); failures are never
    cached. With a resolver, identities are resolved locally (single
    source calls); without one, identity candidates are left on the
    outcome for the Scheduler's cross-source reduction.
    """

    def __init__(
        self,
        descriptor: SourceDescriptor,
        fetcher: Fetcher,
        extractor: Extractor,
        normalizer: Normalizer,
        cache: TTLCache | None = None,
        cache_ttl: float | None = None,
        resolver: IdentityResolver | None = None,
    ) -> None:
        self.descriptor = descriptor
        self.fetcher = fetcher
        self.extractor = extractor
        self.normalizer = normalizer
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.resolver = resolver

    async def run(
        self,
        kind: RecordKind | str,
        params: Mapping[str, str] | None = None,
    ) -> SourceOutcome:
        """
        Harvest one record kind from the source.

        Args:
            kind: Record kind to harvest
            params: Request parameters (override descriptor defaults)

        Returns:
            SourceOutcome; never raises except on task cancellation
        """
        kind = RecordKind.parse(kind)
        outcome = SourceOutcome(source=self.descriptor.name, kind=kind)
        try:
            await self._run(outcome, kind, params or {})
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"{self.descriptor.name}/{kind.value}: unexpected error")
            outcome.status = OutcomeStatus.HARD_FAILURE
            outcome.error = f"Unexpected error: {e}"
        if outcome.state != OrchestrationState.DONE:
            outcome.transition(OrchestrationState.DONE)
        outcome.completed_at = datetime.now(UTC)
        return outcome

    async def run_kinds(
        self,
        kinds: list[RecordKind | str] | None = None,
        params: Mapping[str, str] | None = None,
    ) -> list[SourceOutcome]:
        """Harvest several record kinds one after another (all supported kinds by default)."""
        selected = [RecordKind.parse(k) for k in kinds] if kinds else self.descriptor.kinds
        outcomes = []
        for kind in selected:
            outcomes.append(await self.run(kind, params))
        return outcomes

    async def _run(
        self,
        outcome: SourceOutcome,
        kind: RecordKind,
        params: Mapping[str, str],
    ) -> None:
        source = self.descriptor
        request_params = {**source.default_params, **{k: str(v) for k, v in params.items()}}

        outcome.transition(OrchestrationState.FETCHING)
        body = await self._fetch(outcome, kind, request_params)
        if body is None:
            outcome.status = OutcomeStatus.HARD_FAILURE
            outcome.transition(OrchestrationState.DONE)
            return

        outcome.transition(OrchestrationState.EXTRACTING)
        raw_records = list(self.extractor.extract(source.name, kind, body, request_params))
        outcome.rows_extracted = len(raw_records)
        if not raw_records:
            outcome.notes.append(str(ExtractionEmpty(source.name, kind.value)))

        outcome.transition(OrchestrationState.NORMALIZING)
        self._normalize(outcome, raw_records)

        outcome.transition(OrchestrationState.RESOLVING)
        if self.resolver is not None:
            self._resolve_locally(outcome)

        if outcome.row_errors or not raw_records:
            outcome.status = OutcomeStatus.PARTIAL_FAILURE
        outcome.transition(OrchestrationState.DONE)
        logger.info(
            f"{source.name}/{kind.value}: {len(outcome.records)} records, "
            f"{len(outcome.excluded)} excluded, {len(outcome.row_errors)} row errors"
        )

    async def _fetch(
        self,
        outcome: SourceOutcome,
        kind: RecordKind,
        params: Mapping[str, str],
    ) -> str | None:
        source = self.descriptor
        cache_key = TTLCache.make_key(source.name, kind, params)
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                outcome.from_cache = True
                return cached

        result = await self.fetcher.fetch(
            source.name,
            source.endpoints_for(kind),
            params,
            timeout=source.request_timeout,
            headers=source.headers,
        )
        outcome.attempts = list(result.attempts)
        if result.error is not None:
            outcome.failure = result.error
            outcome.error = str(result.error)
            logger.warning(outcome.error)
            return None

        if self.cache is not None:
            self.cache.set(cache_key, result.body, self.cache_ttl)
        return result.body

    def _normalize(self, outcome: SourceOutcome, raw_records: list) -> None:
        adapter = self.extractor.adapter_for(outcome.source)
        id_registry = adapter.id_registry(outcome.source) if adapter else outcome.source.lower()

        for raw in raw_records:
            if self.normalizer.is_excluded(raw):
                outcome.excluded.append(
                    ExcludedRow(
                        source=raw.source,
                        kind=raw.kind,
                        row_index=raw.row_index,
                        animal_name=raw.get("name") or "",
                        raw_status=raw.get("status") or raw.get("placing") or "",
                        reason=WITHDRAWAL_REASON,
                    )
                )
                continue

            problems = adapter.validate_record(raw) if adapter else []
            if problems:
                outcome.row_errors.append(RowError(raw.row_index, "; ".join(problems)))
                continue

            try:
                record = self.normalizer.normalize(raw)
            except (NormalizationError, ValidationError, ValueError) as e:
                logger.debug(f"{outcome.source}: row {raw.row_index} dropped: {e}")
                outcome.row_errors.append(RowError(raw.row_index, str(e)))
                continue
            if record is None:
                continue

            if isinstance(record, NormalizedAnimal):
                outcome.animals.append(record)
            elif isinstance(record, NormalizedResult):
                outcome.results.append(record)
            elif isinstance(record, NormalizedEvent):
                outcome.events.append(record)
            elif isinstance(record, NormalizedRanking):
                outcome.rankings.append(record)

            if isinstance(record, (NormalizedResult, NormalizedRanking)):
                candidate = self.normalizer.candidate_for(record, id_registry)
                if candidate is not None:
                    outcome.references.append((record, candidate))

    def _resolve_locally(self, outcome: SourceOutcome) -> None:
        reduction = reduce_identities(self.resolver, outcome.animals, outcome.references)
        outcome.animals = reduction.identities
        outcome.resolutions = reduction.resolutions
        outcome.results = [r for r in reduction.linked if isinstance(r, NormalizedResult)]
        outcome.rankings = [r for r in reduction.linked if isinstance(r, NormalizedRanking)]
        outcome.references = []
        for resolution in reduction.resolutions:
            if resolution.warning is not None:
                outcome.notes.append(str(resolution.warning))
