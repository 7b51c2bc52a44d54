"""
Web Crawler Module
==================

Provides per-source rate limiting and HTTP fetching with ordered
endpoint fallback, bounded retries, exponential backoff and optional
robots.txt compliance.
"""

from __future__ import annotations

import asyncio
import logging
import string
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Awaitable, Callable, Mapping
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser

import httpx

from equine_agent.ingestion.errors import (
    EndpointError,
    EndpointFailure,
    EndpointHTTPError,
    EndpointTimeout,
    SourceUnavailable,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]

WINDOW_SECONDS = 60.0


class RateLimiter:
    """
    Sliding-window rate limiter keyed by source name.

    Each source has a budget of requests per 60-second window. When the
    window is full, the caller is suspended until the oldest grant leaves
    it. Waiters on one source are served in arrival order; sources never
    block each other.
    """

    def __init__(
        self,
        budgets: Mapping[str, int] | None = None,
        window_seconds: float = WINDOW_SECONDS,
        clock: Clock | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        self.window_seconds = window_seconds
        self._budgets: dict[str, int] = dict(budgets or {})
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._grants: dict[str, deque[float]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def register(self, source: str, requests_per_minute: int) -> None:
        """Set (or replace) the budget for a source."""
        self._budgets[source] = requests_per_minute

    def budget(self, source: str) -> int | None:
        """Budget for a source, or None when the source is unlimited."""
        budget = self._budgets.get(source)
        if budget is None or budget <= 0:
            return None
        return budget

    def grants(self, source: str) -> list[float]:
        """Timestamps of grants still inside the window, oldest first."""
        window = self._grants.get(source)
        if not window:
            return []
        self._evict(window, self._clock())
        return list(window)

    def _evict(self, window: deque[float], now: float) -> None:
        while window and now - window[0] >= self.window_seconds:
            window.popleft()

    async def acquire(self, source: str) -> None:
        """
        Suspend until the source's budget permits one more request.

        Never raises. Sources without a positive budget are unlimited.
        """
        budget = self.budget(source)
        if budget is None:
            return

        lock = self._locks.setdefault(source, asyncio.Lock())
        window = self._grants.setdefault(source, deque())

        async with lock:
            now = self._clock()
            self._evict(window, now)
            if len(window) >= budget:
                oldest = window[0]
                wake_at = oldest + self.window_seconds
                wait = wake_at - now
                logger.debug(f"Rate limit reached for {source}, waiting {wait:.2f}s")
                await self._sleep(max(wait, 0.0))
                # The oldest grant has left the window; grants() may already have evicted it
                if window and window[0] == oldest:
                    window.popleft()
                now = max(self._clock(), wake_at)
                self._evict(window, now)
            window.append(now)


class RobotsChecker:
    """
    Per-domain robots.txt policy, fetched once and kept for the process.

    Each domain has its own lock, so a slow robots.txt on one host never
    holds up another. A robots.txt fetch counts against the rate budget
    of the source that triggered it.
    """

    def __init__(
        self,
        user_agent: str,
        rate_limiter: RateLimiter | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.user_agent = user_agent
        self.rate_limiter = rate_limiter
        self.timeout = timeout
        self._policies: dict[str, RobotFileParser | None] = {}
        self._domain_locks: dict[str, asyncio.Lock] = {}

    async def _load_policy(self, source: str | None, scheme: str, domain: str) -> RobotFileParser | None:
        if self.rate_limiter is not None and source is not None:
            await self.rate_limiter.acquire(source)

        robots_url = f"{scheme}://{domain}/robots.txt"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    robots_url,
                    headers={"User-Agent": self.user_agent},
                    follow_redirects=True,
                )
        except httpx.HTTPError as e:
            logger.warning(f"robots.txt unreachable for {domain}, allowing: {e}")
            return None

        if response.status_code != 200:
            # No policy published
            return None
        policy = RobotFileParser()
        policy.parse(response.text.splitlines())
        return policy

    async def is_allowed(self, url: str, source: str | None = None) -> bool:
        """
        Check a URL against its domain's robots.txt.

        Args:
            url: Full URL to check
            source: Source whose rate budget pays for a first robots.txt fetch

        Returns:
            True when allowed or when the domain publishes no policy
        """
        parsed = urlparse(url)
        domain = parsed.netloc

        lock = self._domain_locks.setdefault(domain, asyncio.Lock())
        async with lock:
            if domain not in self._policies:
                self._policies[domain] = await self._load_policy(
                    source, parsed.scheme or "https", domain
                )

        policy = self._policies[domain]
        return policy is None or policy.can_fetch(self.user_agent, url)

    def clear_cache(self) -> None:
        """Forget every fetched policy."""
        self._policies.clear()


@dataclass(frozen=True)
class FetchAttempt:
    """Outcome of a single HTTP attempt against one endpoint."""

    url: str
    attempt: int
    ok: bool
    status_code: int | None = None
    error: str | None = None


@dataclass
class FetchResult:
    """Result of fetching one logical request through a fallback chain."""

    source: str
    body: str = ""
    url: str | None = None
    attempts: list[FetchAttempt] = field(default_factory=list)
    error: SourceUnavailable | None = None
    fetched_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def success(self) -> bool:
        """Check if some endpoint produced a body."""
        return self.error is None and self.url is not None

    def raise_for_error(self) -> str:
        """Return the body, or raise the SourceUnavailable error."""
        if self.error is not None:
            raise self.error
        return self.body


def template_placeholders(template: str) -> set[str]:
    """Names of the ``{placeholder}`` fields in an endpoint template."""
    return {name for _, name, _, _ in string.Formatter().parse(template) if name}


def render_endpoint(template: str, params: Mapping[str, str]) -> str:
    """
    Fill ``{placeholder}`` fields of an endpoint template.

    Parameters not consumed by a placeholder are appended to the query
    string. A placeholder with no value raises KeyError.
    """
    names = template_placeholders(template)
    url = template.format_map({name: params[name] for name in names})
    extra = {k: v for k, v in params.items() if k not in names and v != ""}
    if not extra:
        return url
    return str(httpx.URL(url).copy_merge_params(extra))


class Fetcher:
    """
    HTTP fetcher with endpoint fallback, retries and rate limiting.

    Endpoints are tried strictly in priority order. Each endpoint gets up
    to ``max_retries`` attempts with exponential backoff between them
    before the next endpoint is tried. Every attempt first passes through
    the rate limiter for its source.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter | None = None,
        user_agent: str = "EquineAgent/0.1",
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        respect_robots: bool = True,
        sleep: Sleep | None = None,
    ) -> None:
        self.rate_limiter = rate_limiter or RateLimiter()
        self.user_agent = user_agent
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_base = backoff_base
        self.respect_robots = respect_robots
        self._sleep = sleep or asyncio.sleep
        self._robots_checker = (
            RobotsChecker(user_agent, rate_limiter=self.rate_limiter) if respect_robots else None
        )

    def backoff_delay(self, attempt: int) -> float:
        """Delay after a failed attempt (0-based): base, 2*base, 4*base, ..."""
        return self.backoff_base * (2**attempt)

    async def fetch(
        self,
        source: str,
        endpoints: list[str],
        params: Mapping[str, str] | None = None,
        timeout: float | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> FetchResult:
        """
        Fetch one logical request through an ordered fallback chain.

        Args:
            source: Source name, used for rate limiting
            endpoints: URL templates in priority order
            params: Values for template placeholders and query parameters
            timeout: Per-attempt timeout in seconds
            headers: Extra headers required by the source

        Returns:
            FetchResult with the body of the first successful endpoint, or
            a SourceUnavailable error listing one reason per endpoint
        """
        params = dict(params or {})
        timeout = timeout if timeout is not None else self.timeout
        request_headers = {"User-Agent": self.user_agent, **(headers or {})}

        result = FetchResult(source=source)
        failures: list[EndpointFailure] = []

        for template in endpoints:
            try:
                url = render_endpoint(template, params)
            except KeyError as e:
                failures.append(EndpointFailure(template, 0, f"missing parameter {e}"))
                continue

            if self._robots_checker and not await self._robots_checker.is_allowed(url, source):
                failures.append(EndpointFailure(url, 0, "Disallowed by robots.txt"))
                continue

            last_error: EndpointError | None = None
            for attempt in range(self.max_retries):
                await self.rate_limiter.acquire(source)
                try:
                    status_code, body = await self._get(url, request_headers, timeout)
                except EndpointError as e:
                    last_error = e
                    result.attempts.append(
                        FetchAttempt(
                            url=url,
                            attempt=attempt + 1,
                            ok=False,
                            status_code=getattr(e, "status_code", None),
                            error=e.message,
                        )
                    )
                    logger.warning(
                        f"{source}: {e} (attempt {attempt + 1}/{self.max_retries})"
                    )
                    if attempt < self.max_retries - 1:
                        await self._sleep(self.backoff_delay(attempt))
                    continue

                result.attempts.append(
                    FetchAttempt(url=url, attempt=attempt + 1, ok=True, status_code=status_code)
                )
                result.body = body
                result.url = url
                return result

            failures.append(
                EndpointFailure(url, self.max_retries, last_error.message if last_error else "")
            )
            logger.info(f"{source}: giving up on {url}, trying next endpoint")

        result.error = SourceUnavailable(source, failures)
        return result

    async def _get(
        self, url: str, headers: Mapping[str, str], timeout: float
    ) -> tuple[int, str]:
        """Issue one GET, translating failures into endpoint errors."""
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.get(url, headers=dict(headers), follow_redirects=True)
        except httpx.TimeoutException:
            raise EndpointTimeout(url, f"Timeout after {timeout}s") from None
        except httpx.HTTPError as e:
            raise EndpointHTTPError(url, str(e) or type(e).__name__) from e

        if not 200 <= response.status_code < 300:
            raise EndpointHTTPError(
                url, f"HTTP {response.status_code}", status_code=response.status_code
            )
        return response.status_code, response.text
