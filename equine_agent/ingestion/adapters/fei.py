"""
FEI Adapter
===========

Extraction plans for the FEI database (data.fei.org). The site is an
ASP.NET application; record tables are GridViews with predictable ids.
"""

from __future__ import annotations

from equine_agent.core.enums import RecordKind
from equine_agent.ingestion.adapters.base import BaseAdapter, ExtractionPlan, FieldRule

_GRID = "table#ctl00_ContentPlaceHolder1_{}"


def _cell(n: int) -> str:
    return f"td:nth-of-type({n})"


def _labelled(label: str) -> str:
    """Value cell that follows a label cell on the horse detail page."""
    return f'td:-soup-contains("{label}") + td'


class FEIAdapter(BaseAdapter):
    """Adapter for FEI world rankings, horse records, results and calendar."""

    ADAPTER_NAME = "fei"
    ADAPTER_VERSION = "1.0.0"
    ID_REGISTRY = "fei"

    PLANS = {
        RecordKind.RANKINGS: ExtractionPlan(
            row_selectors=(f"{_GRID.format('gvRanking')} tbody tr", "table.ranking tbody tr"),
            fields=(
                FieldRule("rank", (_cell(1),), pattern=r"(\d+)"),
                FieldRule("name", (_cell(2),)),
                FieldRule("external_id", (f"{_cell(2)} a",), attr="href", pattern=r"horseId=(\w+)"),
                FieldRule("rider", (_cell(3),)),
                FieldRule("country", (_cell(4),)),
                FieldRule("points", (_cell(5),)),
            ),
            param_fields={"year": "year", "discipline": "discipline"},
        ),
        RecordKind.ANIMALS: ExtractionPlan(
            # Search result grid first, then the single-horse detail layout
            row_selectors=(
                f"{_GRID.format('gvHorses')} tbody tr",
                'body:has(td:-soup-contains("Date of Birth"))',
            ),
            fields=(
                FieldRule("name", ("h1", ".horse-name", f"{_cell(1)} a", _cell(1))),
                FieldRule(
                    "external_id",
                    (f"{_cell(1)} a",),
                    attr="href",
                    pattern=r"horseId=(\w+)",
                ),
                FieldRule("breed", (_labelled("Breed"), _cell(2))),
                FieldRule("country", (_labelled("Country"), _cell(3))),
                FieldRule("dob", (_labelled("Date of Birth"), _cell(4))),
                FieldRule("sex", (_labelled("Sex"),)),
                FieldRule("color", (_labelled("Colour"),)),
                FieldRule("height", (_labelled("Height"),)),
                FieldRule("sire", (_labelled("Sire"),)),
                FieldRule("dam", (_labelled("Dam"),)),
            ),
            param_fields={"external_id": "fei_id"},
        ),
        RecordKind.RESULTS: ExtractionPlan(
            row_selectors=(f"{_GRID.format('gvResults')} tbody tr",),
            fields=(
                FieldRule("date", (_cell(1),)),
                FieldRule("event", (_cell(2),)),
                FieldRule("class_name", (_cell(3),)),
                FieldRule("placing", (_cell(4),)),
                FieldRule("faults", (_cell(5),)),
                FieldRule("time", (_cell(6),)),
                FieldRule("earnings", (_cell(7),)),
                FieldRule("status", (_cell(8),)),
            ),
            # Results live on the horse detail page; the horse is the page
            page_fields=(
                FieldRule("name", ("h1", ".horse-name")),
                FieldRule("country", (_labelled("Country"),)),
            ),
            param_fields={"external_id": "fei_id", "name": "horse_name"},
        ),
        RecordKind.EVENTS: ExtractionPlan(
            row_selectors=(f"{_GRID.format('gvEvents')} tbody tr",),
            fields=(
                FieldRule("start_date", (_cell(1),)),
                FieldRule("name", (_cell(2),)),
                FieldRule("venue", (_cell(3),)),
                FieldRule("location", (_cell(4),)),
                FieldRule("discipline", (_cell(5),)),
            ),
        ),
    }
