from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from jobsync.core.config import Settings
from jobsync.jobs.discovery import run_discovery_tick
from jobsync.services.repository import RepositoryError
from jobsync.services.store import InMemoryRepository
from jobsync.sources.probes import GreenhouseProbe, LeverProbe, ProbeCompany, ProbeResult


class FakeProbe:
    def __init__(self, name: str, hits: dict[str, ProbeResult] | None = None) -> None:
        self.name = name
        self.hits = hits or {}
        self.queries: list[str] = []

    async def probe(self, query: str) -> ProbeResult:
        self.queries.append(query)
        hit = self.hits.get(query)
        if hit is not None:
            return hit
        return ProbeResult(found=False, source=self.name, error=f"company not found on {self.name}")


def _hit(source: str, slug: str, *, remote: int, total: int) -> ProbeResult:
    return ProbeResult(
        found=True,
        source=source,
        company=ProbeCompany(slug=slug, name=slug.title(), job_count=total, remote_job_count=remote),
        jobs=[{"title": f"Remote role {index}", "url": f"https://jobs.example/{index}"} for index in range(remote)],
    )


def _settings(**overrides: Any) -> Settings:
    return Settings(otel_enabled=False, **overrides)


def _seed(repo: InMemoryRepository, slugs: list[str]) -> None:
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    for index, slug in enumerate(slugs):
        repo.add_potential_company(slug, added_at=base + timedelta(minutes=index))


def test_discovery_records_first_backend_hit() -> None:
    repo = InMemoryRepository()
    _seed(repo, ["stripe"])
    greenhouse = FakeProbe("Greenhouse")
    lever = FakeProbe("Lever", {"stripe": _hit("Lever", "stripe", remote=12, total=30)})

    result = asyncio.run(run_discovery_tick(repo, probes=[greenhouse, lever], settings=_settings()))

    assert result["success"] is True
    assert [company["slug"] for company in result["discovered"]] == ["stripe"]
    assert result["not_found"] == []
    company = repo.discovered_companies["stripe"]
    assert company["source"] == "Lever"
    assert company["remote_job_count"] == 12
    assert company["job_count"] == 30
    assert company["sample_jobs"] == ["Remote role 0", "Remote role 1", "Remote role 2"]
    candidate = repo.potential_companies["stripe"]
    assert candidate["status"] == "discovered"
    assert candidate["check_count"] == 1
    assert greenhouse.queries == ["stripe"]


def test_discovery_stops_probing_after_first_hit() -> None:
    repo = InMemoryRepository()
    _seed(repo, ["airbnb"])
    greenhouse = FakeProbe("Greenhouse", {"airbnb": _hit("Greenhouse", "airbnb", remote=2, total=5)})
    lever = FakeProbe("Lever", {"airbnb": _hit("Lever", "airbnb", remote=9, total=9)})

    result = asyncio.run(run_discovery_tick(repo, probes=[greenhouse, lever], settings=_settings()))

    assert result["discovered"][0]["source"] == "Greenhouse"
    assert lever.queries == []
    assert repo.discovered_companies["airbnb"]["source"] == "Greenhouse"


def test_unmatched_candidate_stays_in_the_pool() -> None:
    repo = InMemoryRepository()
    _seed(repo, ["nobody"])
    probes = [FakeProbe("Greenhouse"), FakeProbe("Lever")]

    async def run() -> tuple[dict[str, Any], list[dict[str, Any]]]:
        result = await run_discovery_tick(repo, probes=probes, settings=_settings())
        return result, await repo.list_candidate_pool()

    result, pool = asyncio.run(run())
    assert result["not_found"] == ["nobody"]
    assert repo.potential_companies["nobody"]["status"] == "not_found"
    assert [row["slug"] for row in pool] == ["nobody"]


def test_discovery_window_advances_cursor() -> None:
    repo = InMemoryRepository()
    slugs = ["a-co", "b-co", "c-co", "d-co"]
    _seed(repo, slugs)
    probe = FakeProbe("Greenhouse")

    result = asyncio.run(run_discovery_tick(repo, probes=[probe], settings=_settings(discovery_window_size=3)))

    assert probe.queries == ["a-co", "b-co", "c-co"]
    assert result["next_index"] == 3
    assert result["wrapped_around"] is False
    assert repo.cursors["discovery"]["last_processed_index"] == 3


def test_already_discovered_company_is_not_overwritten() -> None:
    repo = InMemoryRepository()
    _seed(repo, ["stripe"])
    repo.discovered_companies["stripe"] = {
        "slug": "stripe",
        "name": "Stripe",
        "source": "Greenhouse",
        "status": "active",
        "job_count": 1,
        "remote_job_count": 1,
        "sample_jobs": [],
    }
    probe = FakeProbe("Lever", {"stripe": _hit("Lever", "stripe", remote=4, total=4)})

    result = asyncio.run(run_discovery_tick(repo, probes=[probe], settings=_settings()))

    assert result["discovered"][0]["inserted"] is False
    assert repo.discovered_companies["stripe"]["source"] == "Greenhouse"
    assert repo.potential_companies["stripe"]["status"] == "discovered"


class FlakyRepository(InMemoryRepository):
    async def insert_discovered_company(self, **fields: Any) -> bool:
        raise RepositoryError("connection lost")


def test_storage_error_releases_candidate() -> None:
    repo = FlakyRepository()
    _seed(repo, ["stripe"])
    probe = FakeProbe("Greenhouse", {"stripe": _hit("Greenhouse", "stripe", remote=1, total=1)})

    result = asyncio.run(run_discovery_tick(repo, probes=[probe], settings=_settings()))

    assert result["success"] is True
    assert result["not_found"] == ["stripe"]
    assert repo.potential_companies["stripe"]["status"] == "not_found"


def test_empty_pool_completes() -> None:
    repo = InMemoryRepository()
    _seed(repo, ["done"])
    repo.potential_companies["done"]["status"] = "discovered"

    result = asyncio.run(run_discovery_tick(repo, probes=[FakeProbe("Greenhouse")], settings=_settings()))

    assert result["success"] is True
    assert result["discovered"] == []
    assert result["not_found"] == []
    assert repo.sync_runs[result["sync_id"]]["status"] == "completed"


def test_greenhouse_lookup_counts_remote_jobs() -> None:
    seen: list[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        return httpx.Response(
            200,
            json={
                "jobs": [
                    {"title": "Staff Engineer", "absolute_url": "https://x/1", "location": {"name": "Remote - US"}},
                    {"title": "Office Manager", "absolute_url": "https://x/2", "location": {"name": "Dublin"}},
                ]
            },
        )

    async def run() -> ProbeResult:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await GreenhouseProbe(client=client).probe("Acme Corp!")

    result = asyncio.run(run())
    assert seen == ["/v1/boards/acme-corp/jobs"]
    assert result.found is True
    assert result.company is not None
    assert result.company.slug == "acme-corp"
    assert (result.company.job_count, result.company.remote_job_count) == (2, 1)
    assert result.jobs == [{"title": "Staff Engineer", "url": "https://x/1"}]


def test_lever_lookup_reports_missing_board() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"ok": False})

    async def run() -> ProbeResult:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await LeverProbe(client=client, max_retries=0).probe("Some Company")

    result = asyncio.run(run())
    assert result.found is False
    assert result.error == "company not found on Lever"


class CrashingProbe(FakeProbe):
    async def probe(self, query: str) -> ProbeResult:
        self.queries.append(query)
        if query == "broken":
            raise RuntimeError("unexpected payload shape")
        return await super().probe(query)


def test_unexpected_backend_error_releases_candidate() -> None:
    repo = InMemoryRepository()
    _seed(repo, ["broken", "stripe"])
    probe = CrashingProbe("Greenhouse", {"stripe": _hit("Greenhouse", "stripe", remote=2, total=2)})

    result = asyncio.run(run_discovery_tick(repo, probes=[probe], settings=_settings()))

    assert result["success"] is True
    assert result["not_found"] == ["broken"]
    assert [company["slug"] for company in result["discovered"]] == ["stripe"]
    assert repo.potential_companies["broken"]["status"] == "not_found"
    assert "broken" in [row["slug"] for row in asyncio.run(repo.list_candidate_pool())]
    assert any(entry["level"] == "error" and "broken" in entry["message"] for entry in result["logs"])


def test_redirect_loop_counts_as_not_found() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.TooManyRedirects("Exceeded maximum allowed redirects.", request=request)

    async def run(repo: InMemoryRepository) -> dict[str, Any]:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            probes = [GreenhouseProbe(client=client, max_retries=0), LeverProbe(client=client, max_retries=0)]
            return await run_discovery_tick(repo, probes=probes, settings=_settings())

    repo = InMemoryRepository()
    _seed(repo, ["loopy"])

    result = asyncio.run(run(repo))

    assert result["success"] is True
    assert result["not_found"] == ["loopy"]
    assert repo.potential_companies["loopy"]["status"] == "not_found"


def test_board_without_remote_jobs_is_not_recorded() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "api.lever.co":
            return httpx.Response(200, json=[{"text": "Barista", "categories": {"location": "Paris"}}])
        return httpx.Response(
            200,
            json={"jobs": [{"title": "Office Manager", "absolute_url": "https://x/2", "location": {"name": "Dublin"}}]},
        )

    async def run(repo: InMemoryRepository) -> tuple[ProbeResult, dict[str, Any]]:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            probes = [GreenhouseProbe(client=client), LeverProbe(client=client)]
            direct = await probes[0].probe("onsite-co")
            return direct, await run_discovery_tick(repo, probes=probes, settings=_settings())

    repo = InMemoryRepository()
    _seed(repo, ["onsite-co"])

    direct, result = asyncio.run(run(repo))

    assert direct.found is False
    assert direct.error == "board has 1 job(s) but none remote"
    assert result["discovered"] == []
    assert result["not_found"] == ["onsite-co"]
    assert repo.discovered_companies == {}
