"""Tests for the ingestion crawler module."""

import asyncio

import httpx
import pytest
import respx

from equine_agent.ingestion.crawler import (
    FetchAttempt,
    Fetcher,
    FetchResult,
    RateLimiter,
    RobotsChecker,
    render_endpoint,
)
from equine_agent.ingestion.errors import EndpointFailure, SourceUnavailable


class FakeClock:
    """Manually advanced monotonic clock whose sleep moves time forward."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class TestRateLimiter:
    """Tests for the sliding-window RateLimiter."""

    @pytest.mark.asyncio
    async def test_grants_within_budget_are_immediate(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter({"FEI": 3}, clock=clock, sleep=clock.sleep)

        for _ in range(3):
            await limiter.acquire("FEI")

        assert clock.sleeps == []
        assert limiter.grants("FEI") == [0.0, 0.0, 0.0]

    @pytest.mark.asyncio
    async def test_waits_for_oldest_grant_to_leave_window(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter({"FEI": 2}, clock=clock, sleep=clock.sleep)

        await limiter.acquire("FEI")
        clock.now = 10.0
        await limiter.acquire("FEI")
        clock.now = 20.0
        await limiter.acquire("FEI")

        # Third grant waits until the first (t=0) is 60s old
        assert clock.sleeps == [40.0]
        assert clock.now == 60.0
        assert limiter.grants("FEI") == [10.0, 60.0]

    @pytest.mark.asyncio
    async def test_window_never_exceeds_budget(self) -> None:
        clock = FakeClock()
        budget = 5
        limiter = RateLimiter({"USEF": budget}, clock=clock, sleep=clock.sleep)

        granted: list[float] = []
        for i in range(23):
            clock.now += 3.7 if i % 4 else 0.0
            await limiter.acquire("USEF")
            granted.append(limiter.grants("USEF")[-1])

        assert len(granted) == 23
        assert len(clock.sleeps) <= 23
        for t in granted:
            in_window = [g for g in granted if t <= g < t + limiter.window_seconds]
            assert len(in_window) <= budget

    @pytest.mark.asyncio
    async def test_full_window_sleeps_once_per_grant(self) -> None:
        clock = FakeClock(start=0.1)
        limiter = RateLimiter({"FEI": 1}, clock=clock, sleep=clock.sleep)

        for _ in range(4):
            clock.now += 0.3
            await limiter.acquire("FEI")

        # Rounding in wake_at - now must not turn into a chain of tiny sleeps
        assert len(clock.sleeps) == 3
        assert len(limiter.grants("FEI")) == 1

    @pytest.mark.asyncio
    async def test_sources_are_independent(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter({"FEI": 1, "USEF": 1}, clock=clock, sleep=clock.sleep)

        await limiter.acquire("FEI")
        await limiter.acquire("USEF")

        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_unregistered_source_is_unlimited(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter(clock=clock, sleep=clock.sleep)

        for _ in range(100):
            await limiter.acquire("anything")

        assert clock.sleeps == []
        assert limiter.budget("anything") is None

    def test_register_replaces_budget(self) -> None:
        limiter = RateLimiter({"FEI": 10})
        limiter.register("FEI", 60)
        assert limiter.budget("FEI") == 60


class TestRenderEndpoint:
    """Tests for endpoint template rendering."""

    def test_fills_placeholders(self) -> None:
        url = render_endpoint("https://data.fei.org/Ranking/Search.aspx?rankingCode=WS{year}", {"year": "2024"})
        assert url == "https://data.fei.org/Ranking/Search.aspx?rankingCode=WS2024"

    def test_appends_unused_params(self) -> None:
        url = render_endpoint("https://data.fei.org/Ranking/Search.aspx", {"year": "2024"})
        assert url == "https://data.fei.org/Ranking/Search.aspx?year=2024"

    def test_skips_empty_params(self) -> None:
        url = render_endpoint("https://example.com/results", {"event": ""})
        assert url == "https://example.com/results"

    def test_missing_placeholder_raises(self) -> None:
        with pytest.raises(KeyError):
            render_endpoint("https://example.com/{fei_id}", {})


class TestFetchResult:
    """Tests for the FetchResult dataclass."""

    def test_success(self) -> None:
        result = FetchResult(source="FEI", body="<html/>", url="https://example.com")
        assert result.success is True
        assert result.raise_for_error() == "<html/>"

    def test_failure_raises(self) -> None:
        error = SourceUnavailable("FEI", [EndpointFailure("https://example.com", 3, "HTTP 503")])
        result = FetchResult(source="FEI", error=error)
        assert result.success is False
        with pytest.raises(SourceUnavailable):
            result.raise_for_error()


class TestFetcher:
    """Tests for the Fetcher fallback and retry loop."""

    @pytest.fixture
    def clock(self) -> FakeClock:
        return FakeClock()

    @pytest.fixture
    def fetcher(self, clock: FakeClock) -> Fetcher:
        return Fetcher(
            rate_limiter=RateLimiter(clock=clock, sleep=clock.sleep),
            max_retries=3,
            backoff_base=1.0,
            respect_robots=False,
            sleep=clock.sleep,
        )

    @pytest.mark.asyncio
    @respx.mock
    async def test_first_endpoint_success(self, fetcher: Fetcher) -> None:
        respx.get("https://a.example/rankings").mock(return_value=httpx.Response(200, text="<table/>"))

        result = await fetcher.fetch("FEI", ["https://a.example/rankings", "https://b.example/rankings"])

        assert result.success
        assert result.body == "<table/>"
        assert result.url == "https://a.example/rankings"
        assert result.attempts == [
            FetchAttempt(url="https://a.example/rankings", attempt=1, ok=True, status_code=200)
        ]

    @pytest.mark.asyncio
    @respx.mock
    async def test_retries_then_succeeds(self, fetcher: Fetcher, clock: FakeClock) -> None:
        respx.get("https://a.example/rankings").mock(
            side_effect=[
                httpx.Response(503),
                httpx.Response(503),
                httpx.Response(200, text="ok"),
            ]
        )

        result = await fetcher.fetch("FEI", ["https://a.example/rankings"])

        assert result.success
        assert [a.ok for a in result.attempts] == [False, False, True]
        assert clock.sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    @respx.mock
    async def test_falls_back_to_next_endpoint(self, fetcher: Fetcher, clock: FakeClock) -> None:
        respx.get("https://a.example/rankings").mock(return_value=httpx.Response(500))
        respx.get("https://b.example/rankings").mock(return_value=httpx.Response(200, text="fallback"))

        result = await fetcher.fetch("FEI", ["https://a.example/rankings", "https://b.example/rankings"])

        assert result.body == "fallback"
        assert result.url == "https://b.example/rankings"
        assert len(result.attempts) == 4
        # Backoff only between attempts on the same endpoint
        assert clock.sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    @respx.mock
    async def test_exhaustion_reports_every_endpoint(self, fetcher: Fetcher) -> None:
        endpoints = [
            "https://a.example/results",
            "https://b.example/results",
            "https://c.example/results",
        ]
        respx.get(endpoints[0]).mock(return_value=httpx.Response(503))
        respx.get(endpoints[1]).mock(side_effect=httpx.ReadTimeout("slow"))
        respx.get(endpoints[2]).mock(side_effect=httpx.ConnectError("refused"))

        result = await fetcher.fetch("USEF", endpoints)

        assert not result.success
        assert len(result.attempts) == len(endpoints) * fetcher.max_retries
        assert isinstance(result.error, SourceUnavailable)
        assert len(result.error.reasons) == len(endpoints)
        assert result.error.reasons[0] == "HTTP 503"
        assert result.error.reasons[1].startswith("Timeout")
        assert [f.url for f in result.error.failures] == endpoints
        assert result.attempts[0].status_code == 503

    @pytest.mark.asyncio
    async def test_missing_parameter_skips_endpoint(self, fetcher: Fetcher) -> None:
        result = await fetcher.fetch("FEI", ["https://a.example/horse/{fei_id}"])

        assert not result.success
        assert result.attempts == []
        assert "missing parameter" in result.error.reasons[0]

    @pytest.mark.asyncio
    async def test_no_endpoints(self, fetcher: Fetcher) -> None:
        result = await fetcher.fetch("FEI", [])
        assert "no endpoints configured" in str(result.error)

    @pytest.mark.asyncio
    @respx.mock
    async def test_each_attempt_passes_rate_limiter(self, clock: FakeClock) -> None:
        limiter = RateLimiter({"FEI": 2}, clock=clock, sleep=clock.sleep)
        fetcher = Fetcher(
            rate_limiter=limiter,
            max_retries=3,
            backoff_base=0.0,
            respect_robots=False,
            sleep=clock.sleep,
        )
        respx.get("https://a.example/x").mock(return_value=httpx.Response(500))

        await fetcher.fetch("FEI", ["https://a.example/x"])

        # Third attempt had to wait for the window
        assert max(clock.sleeps) == pytest.approx(60.0)

    @pytest.mark.asyncio
    @respx.mock
    async def test_sends_user_agent_and_source_headers(self, fetcher: Fetcher) -> None:
        route = respx.get("https://a.example/x").mock(return_value=httpx.Response(200, text="ok"))

        await fetcher.fetch("FEI", ["https://a.example/x"], headers={"Accept-Language": "en"})

        request = route.calls.last.request
        assert request.headers["User-Agent"] == fetcher.user_agent
        assert request.headers["Accept-Language"] == "en"

    def test_backoff_delay(self) -> None:
        fetcher = Fetcher(backoff_base=1.0, respect_robots=False)
        assert [fetcher.backoff_delay(i) for i in range(3)] == [1.0, 2.0, 4.0]


class TestRobots:
    """Tests for robots.txt compliance."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_disallowed_endpoint_is_skipped(self) -> None:
        respx.get("https://blocked.example/robots.txt").mock(
            return_value=httpx.Response(200, text="User-agent: *\nDisallow: /")
        )
        page = respx.get("https://blocked.example/results").mock(return_value=httpx.Response(200))
        fetcher = Fetcher(respect_robots=True, backoff_base=0.0)

        result = await fetcher.fetch("Blocked", ["https://blocked.example/results"])

        assert not result.success
        assert result.error.reasons == ["Disallowed by robots.txt"]
        assert not page.called

    def test_robots_flag(self) -> None:
        assert Fetcher(respect_robots=True)._robots_checker is not None
        assert Fetcher(respect_robots=False)._robots_checker is None

    @pytest.mark.asyncio
    async def test_slow_domain_does_not_hold_up_others(self) -> None:
        class GatedChecker(RobotsChecker):
            def __init__(self) -> None:
                super().__init__("EquineAgent/test")
                self.gate = asyncio.Event()

            async def _load_policy(self, source, scheme, domain):
                if domain == "slow.example":
                    await self.gate.wait()
                return None

        checker = GatedChecker()
        slow = asyncio.create_task(checker.is_allowed("https://slow.example/results", "Slow"))
        await asyncio.sleep(0)

        assert await asyncio.wait_for(checker.is_allowed("https://fast.example/results", "Fast"), 1.0)
        assert not slow.done()

        checker.gate.set()
        assert await slow

    @pytest.mark.asyncio
    @respx.mock
    async def test_robots_fetch_uses_source_budget(self) -> None:
        robots = respx.get("https://club.example/robots.txt").mock(return_value=httpx.Response(404))
        respx.get("https://club.example/results").mock(return_value=httpx.Response(200, text="ok"))
        clock = FakeClock()
        limiter = RateLimiter({"Club": 10}, clock=clock, sleep=clock.sleep)
        fetcher = Fetcher(rate_limiter=limiter, respect_robots=True, backoff_base=0.0)

        await fetcher.fetch("Club", ["https://club.example/results"])
        await fetcher.fetch("Club", ["https://club.example/results"])

        # One robots.txt fetch plus two page fetches
        assert robots.call_count == 1
        assert len(limiter.grants("Club")) == 3
