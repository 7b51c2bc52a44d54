"""
Show Results Adapter
====================

Generic plans for show-management portals and series sites (national
federations, HITS, WEC, LGCT and similar). These sites publish results
and calendars as either class-annotated blocks or plain tables with a
header row; both layouts are covered.
"""

from __future__ import annotations

from equine_agent.core.enums import RecordKind
from equine_agent.ingestion.adapters.base import BaseAdapter, ExtractionPlan, FieldRule


def _rule(name: str, *selectors: str, **kwargs: str) -> FieldRule:
    return FieldRule(name, selectors, **kwargs)


class ShowResultsAdapter(BaseAdapter):
    """Adapter for class results and calendars of show and series sites."""

    ADAPTER_NAME = "show_results"
    ADAPTER_VERSION = "1.0.0"

    PLANS = {
        RecordKind.RESULTS: ExtractionPlan(
            row_selectors=(
                ".result-row",
                ".competition-result",
                "table.results tbody tr",
                "table.results-table tbody tr",
                "table.class-results tbody tr",
            ),
            fields=(
                _rule("placing", ".placing", ".place", ".pos", "td:nth-of-type(1)"),
                _rule("name", ".horse-name", ".horse", "td:nth-of-type(2)"),
                _rule("rider", ".rider-name", ".rider", "td:nth-of-type(3)"),
                _rule("country", ".nation", ".country", ".flag", "td:nth-of-type(4)"),
                _rule("faults", ".faults", ".penalties", "td:nth-of-type(5)"),
                _rule("time", ".time", "td:nth-of-type(6)"),
                _rule("earnings", ".prize-money", ".earnings", ".money", "td:nth-of-type(7)"),
                _rule("status", ".status", ".irm"),
                _rule("event", ".event-name", ".show-name"),
                _rule("class_name", ".class-name"),
                _rule("class_height", ".height", ".class-height"),
                _rule("date", ".date"),
                _rule("currency", ".currency"),
            ),
            page_fields=(
                _rule("event", ".event-title", "h1"),
                _rule("class_name", ".class-title", "h2"),
                _rule("date", ".class-date", ".event-date"),
            ),
            param_fields={"event": "event", "class_name": "class_name", "date": "date"},
        ),
        RecordKind.EVENTS: ExtractionPlan(
            row_selectors=(
                ".event-card",
                ".show-row",
                "table.calendar tbody tr",
                "table.shows-table tbody tr",
            ),
            fields=(
                _rule("name", ".event-name", ".show-name", ".title", "td:nth-of-type(1)"),
                _rule("venue", ".venue", "td:nth-of-type(2)"),
                _rule("location", ".location", ".city", "td:nth-of-type(3)"),
                _rule("start_date", ".start-date", ".date", "td:nth-of-type(4)"),
                _rule("end_date", ".end-date", "td:nth-of-type(5)"),
                _rule("discipline", ".discipline", "td:nth-of-type(6)"),
            ),
        ),
    }
