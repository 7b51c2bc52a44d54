"""
Adapter Base Module
===================

Defines the building blocks of source-specific adapters.
Adapters are declarative: each one publishes an extraction plan per
record kind (row selectors plus per-field rules) instead of
hand-written parsing code. The Extractor applies the plans.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any, Mapping

import soupsieve

from equine_agent.core.enums import RecordKind

# Closed set of field names a RawRecord can carry
KNOWN_FIELDS: frozenset[str] = frozenset(
    {
        "name",
        "breed",
        "country",
        "dob",
        "sex",
        "height",
        "height_unit",
        "color",
        "sire",
        "dam",
        "external_id",
        "placing",
        "status",
        "faults",
        "time",
        "earnings",
        "currency",
        "event",
        "class_name",
        "class_height",
        "date",
        "venue",
        "location",
        "start_date",
        "end_date",
        "discipline",
        "rider",
        "rank",
        "points",
        "year",
    }
)


def _check_field(name: str) -> None:
    if name not in KNOWN_FIELDS:
        raise ValueError(f"Unknown record field: {name!r}")


def _check_selectors(selectors: tuple[str, ...]) -> None:
    """Compile each selector so a bad plan fails when it is declared."""
    for selector in selectors:
        try:
            soupsieve.compile(selector)
        except soupsieve.SelectorSyntaxError as e:
            raise ValueError(f"Invalid selector {selector!r}: {e}") from e


@dataclass(frozen=True)
class FieldRule:
    """
    How to read one field from a row.

    Selectors are CSS selectors relative to the row, tried in order; the
    first one producing a non-empty value wins. ``attr`` reads an
    attribute instead of the element text, and ``pattern`` keeps only a
    regex match (the first group when the pattern has one).
    """

    name: str
    selectors: tuple[str, ...]
    attr: str | None = None
    pattern: str | None = None

    def __post_init__(self) -> None:
        _check_field(self.name)
        if isinstance(self.selectors, str):
            object.__setattr__(self, "selectors", (self.selectors,))
        if not self.selectors:
            raise ValueError(f"Field rule {self.name!r} has no selectors")
        _check_selectors(self.selectors)
        if self.pattern is not None:
            re.compile(self.pattern)

    def apply(self, node: Any) -> str | None:
        """
        Read the field from a BeautifulSoup node.

        Returns:
            The stripped value, or None when no selector matched
        """
        for selector in self.selectors:
            element = node.select_one(selector)
            if element is None:
                continue
            if self.attr:
                raw = element.get(self.attr)
                if isinstance(raw, list):
                    raw = " ".join(raw)
            else:
                raw = element.get_text(" ", strip=True)
            value = self._clean(raw)
            if value:
                return value
        return None

    def _clean(self, raw: str | None) -> str | None:
        if raw is None:
            return None
        value = " ".join(str(raw).split())
        if self.pattern is None:
            return value or None
        match = re.search(self.pattern, value)
        if match is None:
            return None
        captured = match.group(1) if match.groups() else match.group(0)
        return captured.strip() or None


@dataclass(frozen=True)
class ExtractionPlan:
    """
    Declarative description of how one kind of page is turned into rows.

    Attributes:
        row_selectors: Selectors for record rows, tried in order; the first
            producing at least one non-empty row wins
        fields: Rules applied to every row
        page_fields: Rules applied once to the whole page, used as defaults
            for rows that lack the field (e.g. the horse name of a detail page)
        param_fields: Record field -> request parameter, used as defaults
            when neither the row nor the page supplies the field
    """

    row_selectors: tuple[str, ...]
    fields: tuple[FieldRule, ...]
    page_fields: tuple[FieldRule, ...] = ()
    param_fields: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.row_selectors:
            raise ValueError("Extraction plan needs at least one row selector")
        _check_selectors(self.row_selectors)
        for name in self.param_fields:
            _check_field(name)
        object.__setattr__(self, "param_fields", MappingProxyType(dict(self.param_fields)))

    @property
    def field_names(self) -> list[str]:
        """Names of the fields read from rows."""
        return [rule.name for rule in self.fields]


@dataclass(frozen=True)
class RawRecord:
    """
    One extracted row: known field names mapped to optional strings.

    Reading a field outside KNOWN_FIELDS raises KeyError.
    """

    source: str
    kind: RecordKind
    row_index: int
    fields: Mapping[str, str | None]
    id_registry: str = ""
    fetched_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        for name in self.fields:
            _check_field(name)
        full = {name: None for name in KNOWN_FIELDS}
        full.update(self.fields)
        object.__setattr__(self, "fields", MappingProxyType(full))

    def get(self, name: str) -> str | None:
        """Value of a known field, or None when the row did not carry it."""
        if name not in KNOWN_FIELDS:
            raise KeyError(name)
        return self.fields[name]

    def __getitem__(self, name: str) -> str | None:
        return self.get(name)

    def present(self) -> dict[str, str]:
        """Only the fields with a value."""
        return {k: v for k, v in self.fields.items() if v}


class BaseAdapter:
    """
    Base class for source-specific adapters.

    Subclasses set ``PLANS`` (record kind -> ExtractionPlan) and the
    registry key under which their identifiers are filed.
    """

    # Adapter identification (override in subclasses)
    ADAPTER_NAME: str = "base"
    ADAPTER_VERSION: str = "1.0.0"

    # Registry key for external identifiers found on this source
    ID_REGISTRY: str = ""

    PLANS: Mapping[RecordKind, ExtractionPlan] = {}

    def __init__(self, config: dict[str, Any] | None = None) -> None:
        """
        Initialize the adapter.

        Args:
            config: Optional custom configuration from sources.yaml
        """
        self.config = config or {}

    def plan_for(self, kind: RecordKind) -> ExtractionPlan | None:
        """Extraction plan for a record kind, or None when unsupported."""
        return self.PLANS.get(kind)

    @property
    def kinds(self) -> list[RecordKind]:
        """Record kinds this adapter can extract."""
        return list(self.PLANS.keys())

    def id_registry(self, source_name: str) -> str:
        """Registry key for identifiers; defaults to the source name."""
        return self.ID_REGISTRY or source_name.lower()

    def validate_record(self, record: RawRecord) -> list[str]:
        """
        Validate an extracted record.

        Override this method to add adapter-specific validation.

        Args:
            record: Extracted record to validate

        Returns:
            List of validation error messages (empty if valid)
        """
        errors = []

        if record.kind in (RecordKind.ANIMALS, RecordKind.RESULTS, RecordKind.RANKINGS):
            if not record.get("name"):
                errors.append("Missing horse name")
        elif record.kind == RecordKind.EVENTS and not record.get("name"):
            errors.append("Missing event name")

        year = record.get("year")
        if year:
            try:
                year_val = int(year)
                if year_val < 1900 or year_val > 2100:
                    errors.append(f"Invalid year: {year}")
            except ValueError:
                errors.append(f"Invalid year format: {year}")

        return errors

    def get_info(self) -> dict[str, str]:
        """Get adapter information."""
        return {
            "name": self.ADAPTER_NAME,
            "version": self.ADAPTER_VERSION,
            "class": self.__class__.__name__,
            "kinds": ", ".join(k.value for k in self.kinds),
        }
