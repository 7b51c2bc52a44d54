"""Enums for harvested equine records."""

from enum import Enum


class RecordKind(str, Enum):
    """Kind of record a source can supply."""

    ANIMALS = "animals"
    RESULTS = "results"
    EVENTS = "events"
    RANKINGS = "rankings"

    @classmethod
    def parse(cls, value: "str | RecordKind") -> "RecordKind":
        """Parse a kind name, accepting the 'horses' and 'pedigrees' aliases."""
        if isinstance(value, RecordKind):
            return value
        key = value.strip().lower()
        key = KIND_ALIASES.get(key, key)
        return cls(key)


KIND_ALIASES: dict[str, str] = {
    "horses": "animals",
    "horse": "animals",
    "pedigrees": "animals",
    "pedigree": "animals",
    "result": "results",
    "event": "events",
    "shows": "events",
    "ranking": "rankings",
}


class SourceType(str, Enum):
    """Category of an external source."""

    FEDERATION = "federation"
    SHOW_MANAGEMENT = "show_management"
    PEDIGREE = "pedigree"
    SERIES = "series"
    STUDBOOK = "studbook"


class ResultStatus(str, Enum):
    """Closed set of competition result statuses."""

    PLACED = "Placed"
    DID_NOT_PLACE = "DidNotPlace"
    RETIRED = "Retired"
    ELIMINATED = "Eliminated"
    WITHDRAWN = "Withdrawn"


class OrchestrationState(str, Enum):
    """States a source passes through during one orchestration run."""

    IDLE = "idle"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    NORMALIZING = "normalizing"
    RESOLVING = "resolving"
    DONE = "done"


class OutcomeStatus(str, Enum):
    """Terminal status of a source run."""

    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    HARD_FAILURE = "hard_failure"


class ResolutionAction(str, Enum):
    """Action taken by the identity resolver for a candidate."""

    CREATED = "created"
    MERGED = "merged"
    LINKED_LOW_CONFIDENCE = "linked_low_confidence"


class ErrorScope(str, Enum):
    """Where an error in an aggregate report applies."""

    SOURCE = "source"
    ROW = "row"
    NOTE = "note"
