"""Tests for web routes."""

import pytest
from fastapi.testclient import TestClient

from equine_agent.ingestion.crawler import Fetcher, FetchResult
from equine_agent.ingestion.errors import EndpointFailure, SourceUnavailable
from equine_agent.ingestion.registry import SourceRegistry
from equine_agent.ingestion.scheduler import Scheduler
from equine_agent.web.app import create_app

RESULTS_HTML = """
<h1>Hickstead Derby Meeting</h1>
<table class="results"><tbody>
  <tr><td>1</td><td>Thunder</td><td>Jane Rider</td><td>FRA</td><td>0</td><td>71.2</td><td>$5,000</td></tr>
  <tr><td>WD</td><td>Ghost</td><td>John Rider</td><td>GBR</td><td></td><td></td><td></td></tr>
</tbody></table>
"""


class RecordingFetcher(Fetcher):
    """Serves a canned page per source and records the parameters it was given."""

    def __init__(self, pages: dict[str, str]) -> None:
        super().__init__(respect_robots=False)
        self.pages = pages
        self.params: list[dict] = []

    async def fetch(self, source, endpoints, params=None, timeout=None, headers=None) -> FetchResult:
        self.params.append(dict(params or {}))
        if source not in self.pages:
            failure = EndpointFailure(endpoints[0], 3, "HTTP 503")
            return FetchResult(source=source, error=SourceUnavailable(source, [failure]))
        return FetchResult(source=source, body=self.pages[source], url=endpoints[0])


@pytest.fixture
def registry() -> SourceRegistry:
    registry = SourceRegistry()
    registry.load_dict(
        {
            "sources": [
                {
                    "name": "Local Show",
                    "adapter": "show_results",
                    "endpoints": {"results": ["https://local.example/results"]},
                },
                {
                    "name": "Mirror Show",
                    "adapter": "show_results",
                    "endpoints": {"results": ["https://mirror.example/results"]},
                },
                {
                    "name": "Members Only",
                    "adapter": "pedigree",
                    "requires_auth": True,
                    "endpoints": {"animals": ["https://members.example/horse/{name}"]},
                },
            ]
        }
    )
    return registry


@pytest.fixture
def fetcher() -> RecordingFetcher:
    return RecordingFetcher({"Local Show": RESULTS_HTML})


@pytest.fixture
def client(registry: SourceRegistry, fetcher: RecordingFetcher) -> TestClient:
    scheduler = Scheduler.from_registry(registry, fetcher=fetcher)
    return TestClient(create_app(registry, scheduler))


class TestHealth:
    """Tests for the health check."""

    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestScrapeRoute:
    """Tests for single-source scrapes."""

    def test_scrape_results(self, client: TestClient, fetcher: RecordingFetcher) -> None:
        response = client.get("/scrape/Local Show/results", params={"class_name": "Derby"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["count"] == 1
        thunder = body["data"][0]
        assert thunder["animal_name"] == "Thunder"
        assert thunder["placing"] == 1
        assert thunder["status"] == "Placed"
        assert thunder["earnings_usd"] == 5000.0
        assert thunder["event_name"] == "Hickstead Derby Meeting"
        assert thunder["animal_id"].startswith("horse_")
        assert [row["animal_name"] for row in body["excluded"]] == ["Ghost"]
        assert fetcher.params == [{"class_name": "Derby"}]

    def test_scrape_is_case_insensitive_on_source(self, client: TestClient) -> None:
        response = client.get("/scrape/local show/results")
        assert response.json()["success"] is True

    def test_unknown_source(self, client: TestClient) -> None:
        response = client.get("/scrape/Nowhere/results")
        assert response.status_code == 404

    def test_unknown_kind(self, client: TestClient) -> None:
        response = client.get("/scrape/Local Show/foals")
        assert response.status_code == 404

    def test_unsupported_kind(self, client: TestClient) -> None:
        response = client.get("/scrape/Local Show/rankings")
        assert response.status_code == 404
        assert "does not supply rankings" in response.json()["detail"]

    def test_auth_source(self, client: TestClient, fetcher: RecordingFetcher) -> None:
        response = client.get("/scrape/Members Only/animals", params={"name": "thunder"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["count"] == 0
        assert "requires authentication" in body["error"]
        assert fetcher.params == []

    def test_unavailable_source(self, client: TestClient) -> None:
        response = client.get("/scrape/Mirror Show/results")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["data"] == []
        assert "unavailable" in body["error"]


class TestReportRoute:
    """Tests for the aggregate report."""

    def test_report(self, client: TestClient) -> None:
        response = client.get("/report")

        assert response.status_code == 200
        body = response.json()
        assert body["counts"]["results"] == 1
        assert [e["source"] for e in body["errors"] if e["scope"] == "source"] == ["Mirror Show"]
        assert any(e["source"] == "Members Only" and e["scope"] == "note" for e in body["errors"])
        assert len(body["animals"]) == 1

    def test_report_selected_sources(self, client: TestClient, fetcher: RecordingFetcher) -> None:
        response = client.get("/report", params={"sources": "Local Show", "kinds": "results", "date": "2024-06-20"})

        body = response.json()
        assert body["sources"] == ["Local Show"]
        assert fetcher.params == [{"date": "2024-06-20"}]

    def test_report_unknown_kind(self, client: TestClient) -> None:
        response = client.get("/report", params={"kinds": "foals"})
        assert response.status_code == 400


class TestSourcesRoute:
    """Tests for the source table."""

    def test_list_sources(self, client: TestClient) -> None:
        response = client.get("/sources")

        assert response.status_code == 200
        names = [s["name"] for s in response.json()["sources"]]
        assert names == ["Local Show", "Mirror Show", "Members Only"]
