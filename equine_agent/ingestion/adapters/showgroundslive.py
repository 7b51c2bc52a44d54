"""
ShowGroundsLive Adapter
=======================

Extraction plans for ShowGroundsLive (www.showgroundslive.com), the
show-management portal used by most North American hunter/jumper shows.
"""

from __future__ import annotations

from equine_agent.core.enums import RecordKind
from equine_agent.ingestion.adapters.base import BaseAdapter, ExtractionPlan, FieldRule


def _rule(name: str, classes: tuple[str, ...], column: int | None = None) -> FieldRule:
    selectors = tuple(f".{c}" for c in classes)
    if column is not None:
        selectors += (f"td:nth-of-type({column})",)
    return FieldRule(name, selectors)


class ShowGroundsLiveAdapter(BaseAdapter):
    """Adapter for ShowGroundsLive results, class results, shows and horse search."""

    ADAPTER_NAME = "showgroundslive"
    ADAPTER_VERSION = "1.0.0"
    ID_REGISTRY = "sgl"

    PLANS = {
        RecordKind.RESULTS: ExtractionPlan(
            row_selectors=(
                "table.results-table tbody tr",
                ".result-row",
                ".competition-result",
                "table.class-results tbody tr",
                ".class-result",
            ),
            fields=(
                _rule("placing", ("placing", "place"), 1),
                _rule("name", ("horse-name", "horse"), 2),
                _rule("rider", ("rider-name", "rider"), 3),
                _rule("faults", ("faults", "fault"), 4),
                _rule("time", ("time", "jump-off-time"), 5),
                _rule("earnings", ("earnings", "prize-money", "money"), 6),
                _rule("event", ("event-name", "show-name"), 7),
                _rule("class_name", ("class-name", "class"), 8),
                _rule("date", ("date", "competition-date"), 9),
                _rule("class_height", ("height", "jump-height"), 10),
                _rule("status", ("status",)),
                _rule("country", ("country", "nation")),
            ),
            param_fields={"event": "show_name"},
        ),
        RecordKind.EVENTS: ExtractionPlan(
            row_selectors=("table.shows-table tbody tr", ".show-row", ".event-card"),
            fields=(
                _rule("name", ("show-name", "event-name"), 1),
                _rule("venue", ("venue",), 2),
                _rule("location", ("location", "city"), 3),
                _rule("start_date", ("start-date", "date"), 4),
                _rule("end_date", ("end-date", "end"), 5),
                _rule("discipline", ("discipline",)),
            ),
        ),
        RecordKind.ANIMALS: ExtractionPlan(
            row_selectors=(
                "table.search-results tbody tr",
                ".search-result",
                ".horse-result",
            ),
            fields=(
                _rule("name", ("horse-name", "name"), 1),
                _rule("breed", ("breed",), 2),
                _rule("country", ("country",), 3),
                _rule("dob", ("dob", "birth-date"), 4),
                _rule("sex", ("sex", "gender"), 5),
                _rule("color", ("color",), 6),
                _rule("height", ("height",), 7),
            ),
        ),
    }
