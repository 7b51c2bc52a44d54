"""
Pedigree Adapter
================

Generic plans for pedigree databases and studbook horse pages. A horse
page carries one animal: its name as a heading, a label/value table of
particulars and the sire and dam as the first generation of a pedigree
table. Search pages list several animals as table rows.
"""

from __future__ import annotations

from equine_agent.core.enums import RecordKind
from equine_agent.ingestion.adapters.base import BaseAdapter, ExtractionPlan, FieldRule


def _labelled(*labels: str) -> tuple[str, ...]:
    selectors: list[str] = []
    for label in labels:
        selectors.append(f'td:-soup-contains("{label}") + td')
        selectors.append(f'th:-soup-contains("{label}") + td')
        selectors.append(f'dt:-soup-contains("{label}") + dd')
    return tuple(selectors)


class PedigreeAdapter(BaseAdapter):
    """Adapter for pedigree database and studbook animal pages."""

    ADAPTER_NAME = "pedigree"
    ADAPTER_VERSION = "1.0.0"

    PLANS = {
        RecordKind.ANIMALS: ExtractionPlan(
            row_selectors=(
                "table.search-results tbody tr",
                ".horse-result",
                ".horse-profile",
                "body:has(table.pedigree)",
            ),
            fields=(
                FieldRule("name", (".horse-name", "h1", "td:nth-of-type(1) a", "td:nth-of-type(1)")),
                FieldRule("external_id", (".registration", ".ueln") + _labelled("Registration", "UELN")),
                FieldRule("breed", (".breed",) + _labelled("Breed", "Studbook")),
                FieldRule("country", (".country",) + _labelled("Country")),
                FieldRule("dob", (".dob", ".birth-date") + _labelled("Foaled", "Date of Birth", "Born")),
                FieldRule("sex", (".sex", ".gender") + _labelled("Sex", "Gender")),
                FieldRule("color", (".color", ".colour") + _labelled("Colour", "Color")),
                FieldRule("height", (".height",) + _labelled("Height")),
                FieldRule("sire", (".sire", "table.pedigree td.sire") + _labelled("Sire")),
                FieldRule("dam", (".dam", "table.pedigree td.dam") + _labelled("Dam")),
            ),
            param_fields={"name": "name"},
        ),
    }
