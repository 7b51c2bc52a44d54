"""
USEF Adapter
============

Extraction plans for the US Equestrian Federation site (www.usef.org).
Pages mix class-annotated markup with plain tables, so each field tries
the class selector first and the column position second.
"""

from __future__ import annotations

from equine_agent.core.enums import RecordKind
from equine_agent.ingestion.adapters.base import BaseAdapter, ExtractionPlan, FieldRule


def _rule(name: str, css_class: str, column: int, **kwargs: str) -> FieldRule:
    return FieldRule(name, (f".{css_class}", f"td:nth-of-type({column})"), **kwargs)


class USEFAdapter(BaseAdapter):
    """Adapter for USEF competition results, shows, horse search and rankings."""

    ADAPTER_NAME = "usef"
    ADAPTER_VERSION = "1.0.0"
    ID_REGISTRY = "usef"

    PLANS = {
        RecordKind.RESULTS: ExtractionPlan(
            row_selectors=("table.results-table tbody tr", ".result-row"),
            fields=(
                _rule("placing", "placing", 1),
                _rule("name", "horse-name", 2),
                _rule("rider", "rider-name", 3),
                _rule("faults", "faults", 4),
                _rule("time", "time", 5),
                _rule("earnings", "earnings", 6),
                _rule("event", "event-name", 7),
                _rule("class_name", "class-name", 8),
                _rule("date", "date", 9),
                FieldRule("status", (".status",)),
                FieldRule("country", (".country", ".nation")),
            ),
        ),
        RecordKind.EVENTS: ExtractionPlan(
            row_selectors=("table.shows-table tbody tr", ".show-row"),
            fields=(
                _rule("name", "show-name", 1),
                _rule("venue", "venue", 2),
                _rule("location", "location", 3),
                _rule("start_date", "start-date", 4),
                _rule("end_date", "end-date", 5),
                FieldRule("discipline", (".discipline",)),
            ),
        ),
        RecordKind.ANIMALS: ExtractionPlan(
            row_selectors=("table.horse-search-results tbody tr", ".horse-result"),
            fields=(
                _rule("name", "horse-name", 1),
                _rule("breed", "breed", 2),
                _rule("country", "country", 3),
                _rule("dob", "dob", 4),
                _rule("sex", "sex", 5),
                _rule("color", "color", 6),
                _rule("height", "height", 7),
                FieldRule("external_id", ("a",), attr="href", pattern=r"/horses?/(\d+)"),
            ),
        ),
        RecordKind.RANKINGS: ExtractionPlan(
            row_selectors=("table.rankings-table tbody tr", ".ranking-row"),
            fields=(
                _rule("rank", "rank", 1, pattern=r"(\d+)"),
                _rule("name", "horse-name", 2),
                _rule("rider", "rider-name", 3),
                _rule("points", "points", 4),
            ),
            param_fields={"discipline": "discipline", "year": "year"},
        ),
    }
