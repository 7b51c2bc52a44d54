"""
Harvest Error Taxonomy
======================

Errors below the source boundary (extraction, normalization, identity) are
recovered locally and reported as notes on the source outcome. Only
SourceUnavailable marks a whole source as failed, and even that is turned
into a report entry by the scheduler.
"""

from __future__ import annotations

from dataclasses import dataclass


class HarvestError(Exception):
    """Base class for all harvesting errors."""


class RateLimitWait(HarvestError):
    """
    A deliberate suspension by the rate limiter.

    Never raised by the pipeline; exists so the taxonomy can be
    referenced in notes and logs.
    """


class EndpointError(HarvestError):
    """A single failed attempt against one endpoint."""

    def __init__(self, url: str, message: str) -> None:
        super().__init__(f"{url}: {message}")
        self.url = url
        self.message = message


class EndpointTimeout(EndpointError):
    """An attempt exceeded its per-attempt timeout."""


class EndpointHTTPError(EndpointError):
    """An attempt got a transport error or a non-2xx response."""

    def __init__(self, url: str, message: str, status_code: int | None = None) -> None:
        super().__init__(url, message)
        self.status_code = status_code


@dataclass(frozen=True)
class EndpointFailure:
    """Why one endpoint of a fallback chain was given up on."""

    url: str
    attempts: int
    reason: str

    def __str__(self) -> str:
        return f"{self.url} ({self.attempts} attempt(s)): {self.reason}"


class SourceUnavailable(HarvestError):
    """Every endpoint of a fallback chain was exhausted."""

    def __init__(self, source: str, failures: list[EndpointFailure]) -> None:
        self.source = source
        self.failures = list(failures)
        if self.failures:
            detail = "; ".join(str(f) for f in self.failures)
        else:
            detail = "no endpoints configured"
        super().__init__(f"Source '{source}' unavailable: {detail}")

    @property
    def reasons(self) -> list[str]:
        """One failure reason per endpoint, in priority order."""
        return [f.reason for f in self.failures]


class ExtractionEmpty(HarvestError):
    """No selector of an extraction plan matched any row."""

    def __init__(self, source: str, kind: str) -> None:
        super().__init__(f"No rows extracted for '{source}' {kind}")
        self.source = source
        self.kind = kind


class NormalizationError(HarvestError):
    """A single row could not be normalized; the row is dropped."""

    def __init__(self, message: str, source: str = "", row_index: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.source = source
        self.row_index = row_index


class IdentityAmbiguous(HarvestError):
    """A candidate could not reach the merge threshold and became a new identity."""

    def __init__(self, name: str, score: float) -> None:
        super().__init__(f"Identity for '{name}' below merge threshold ({score:.2f})")
        self.name = name
        self.score = score
