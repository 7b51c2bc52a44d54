"""Canonical Pydantic v2 models for harvested equine records.

These models are the normalized schema every source is converted into:
- NormalizedAnimal (identity candidate, mutated only by identity merges)
- NormalizedResult, NormalizedEvent, NormalizedRanking (immutable records)
- ExcludedRow (audit side channel for withdrawn entries)
"""

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from equine_agent.core.enums import RecordKind, ResultStatus


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


class NormalizedAnimal(BaseModel):
    """
    Canonical animal identity candidate.

    External identifiers are keyed by registry (e.g. "fei", "usef",
    "kwpn"), one identifier per registry.
    """

    identity_id: str = ""
    name: str
    breed: str = ""
    country: str = ""
    dob: str = ""
    sex: str = ""
    height_cm: int = 0
    color: str = ""
    sire_name: str = ""
    dam_name: str = ""
    external_ids: dict[str, str] = Field(default_factory=dict)
    sources: list[str] = Field(default_factory=list)
    merge_key: str = ""
    identity_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    linked_identity_ids: list[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def name_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name cannot be empty")
        return v.strip()


class NormalizedResult(BaseModel):
    """One competition placing for one animal in one class."""

    model_config = ConfigDict(frozen=True)

    result_id: str
    animal_id: str = ""
    animal_name: str
    animal_country: str = ""
    animal_external_id: str = ""
    rider_name: str = ""
    event_name: str = ""
    class_name: str = ""
    class_date: str = ""
    class_height_cm: int = 0
    placing: int | None = None
    status: ResultStatus
    faults: float = 0.0
    time_seconds: float = 0.0
    earnings_usd: float = 0.0
    source: str
    result_raw_status: str = ""

    @model_validator(mode="after")
    def placing_matches_status(self) -> "NormalizedResult":
        if self.status == ResultStatus.WITHDRAWN and self.placing is not None:
            raise ValueError("a withdrawn entry cannot carry a placing")
        if self.status == ResultStatus.PLACED and self.placing is None:
            raise ValueError("a placed result requires a placing")
        if self.placing is not None and self.placing < 1:
            raise ValueError(f"placing must be positive, got {self.placing}")
        return self


class NormalizedEvent(BaseModel):
    """A competition event (show) as published by a federation or organiser."""

    model_config = ConfigDict(frozen=True)

    event_id: str
    name: str
    venue: str = ""
    location: str = ""
    start_date: str = ""
    end_date: str = ""
    discipline: str = ""
    federation: str


class NormalizedRanking(BaseModel):
    """A ranking list position."""

    model_config = ConfigDict(frozen=True)

    animal_id: str = ""
    animal_name: str
    animal_external_id: str = ""
    rider_name: str = ""
    nation: str = ""
    rank_position: int
    points: float = 0.0
    year: int | None = None
    discipline: str = ""
    source: str


class ExcludedRow(BaseModel):
    """A row deliberately kept out of the normalized output (pre-start withdrawal)."""

    model_config = ConfigDict(frozen=True)

    source: str
    kind: RecordKind
    row_index: int
    animal_name: str = ""
    raw_status: str = ""
    reason: str
    excluded_at: datetime = Field(default_factory=_utc_now)


NormalizedRecord = NormalizedAnimal | NormalizedResult | NormalizedEvent | NormalizedRanking
