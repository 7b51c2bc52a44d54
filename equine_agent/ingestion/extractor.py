"""
Field Extraction Module
=======================

Turns fetched page bodies into RawRecords by applying the declarative
extraction plan of the source's adapter. Extraction is lazy and pure:
no I/O, no normalization, no suspension.
"""

from __future__ import annotations

import logging
from typing import Iterator, Mapping

from bs4 import BeautifulSoup

from equine_agent.core.enums import RecordKind
from equine_agent.ingestion.adapters import BaseAdapter, ExtractionPlan, RawRecord, get_adapter
from equine_agent.ingestion.registry import SourceRegistry

logger = logging.getLogger(__name__)


class Extractor:
    """
    Applies adapter extraction plans to page bodies.

    Holds one adapter per source name. A source without an adapter, or a
    kind its adapter has no plan for, yields no records.
    """

    def __init__(self, adapters: Mapping[str, BaseAdapter] | None = None) -> None:
        self._adapters: dict[str, BaseAdapter] = dict(adapters or {})

    @classmethod
    def from_registry(cls, registry: SourceRegistry) -> Extractor:
        """Build an extractor with the configured adapter of every source."""
        adapters: dict[str, BaseAdapter] = {}
        for source in registry.list_sources():
            adapter = get_adapter(source.adapter)
            if adapter is None:
                logger.warning(f"Source '{source.name}' uses unknown adapter '{source.adapter}'")
                continue
            adapters[source.name] = adapter
        return cls(adapters)

    def register(self, source_name: str, adapter: BaseAdapter) -> None:
        """Attach an adapter to a source name."""
        self._adapters[source_name] = adapter

    def adapter_for(self, source_name: str) -> BaseAdapter | None:
        """Adapter attached to a source, if any."""
        return self._adapters.get(source_name)

    def plan_for(self, source_name: str, kind: RecordKind) -> ExtractionPlan | None:
        """Extraction plan for a source and kind, if any."""
        adapter = self._adapters.get(source_name)
        if adapter is None:
            return None
        return adapter.plan_for(kind)

    def extract(
        self,
        source_name: str,
        kind: RecordKind,
        body: str,
        params: Mapping[str, str] | None = None,
    ) -> Iterator[RawRecord]:
        """
        Extract raw records from a page body.

        Args:
            source_name: Name of the source the body came from
            kind: Kind of record the page lists
            body: Page body (HTML)
            params: Request parameters, used for plan parameter defaults

        Yields:
            One RawRecord per non-empty row, in document order
        """
        adapter = self._adapters.get(source_name)
        if adapter is None:
            logger.debug(f"No adapter for source '{source_name}'")
            return
        plan = adapter.plan_for(kind)
        if plan is None:
            logger.debug(f"Adapter '{adapter.ADAPTER_NAME}' has no plan for {kind.value}")
            return
        if not body or not body.strip():
            return

        soup = BeautifulSoup(body, "html.parser")
        defaults = self._defaults(soup, plan, params or {})
        id_registry = adapter.id_registry(source_name)

        for row_selector in plan.row_selectors:
            rows = [self._read_row(row, plan) for row in soup.select(row_selector)]
            if not any(rows):
                continue
            for index, values in enumerate(rows):
                if not values:
                    logger.debug(f"{source_name}: dropping empty row {index}")
                    continue
                fields = {**defaults, **values}
                yield RawRecord(
                    source=source_name,
                    kind=kind,
                    row_index=index,
                    fields=fields,
                    id_registry=id_registry,
                )
            return

    @staticmethod
    def _read_row(row, plan: ExtractionPlan) -> dict[str, str]:
        values: dict[str, str] = {}
        for rule in plan.fields:
            value = rule.apply(row)
            if value:
                values[rule.name] = value
        return values

    @staticmethod
    def _defaults(
        soup: BeautifulSoup, plan: ExtractionPlan, params: Mapping[str, str]
    ) -> dict[str, str]:
        defaults: dict[str, str] = {}
        for field_name, param_name in plan.param_fields.items():
            value = params.get(param_name)
            if value:
                defaults[field_name] = str(value).strip()
        # Page values are more specific than request parameters
        for rule in plan.page_fields:
            value = rule.apply(soup)
            if value:
                defaults[rule.name] = value
        return defaults
