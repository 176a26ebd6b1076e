from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from fastapi.testclient import TestClient

import jobsync.jobs.prune as prune_module
import jobsync.jobs.sync as sync_module
from jobsync.main import app
from jobsync.services.repository import get_repository
from jobsync.services.store import InMemoryRepository
from jobsync.sources.base import RawPosting


class FakeFeed:
    name = "RemoteOK"
    kind = "aggregator"

    def __init__(self, postings: list[RawPosting]) -> None:
        self.postings = postings

    async def fetch(self, company_filter=None, *, log=None, job_offset=None, limit=None):
        yield list(self.postings)


class ExplodingRepository(InMemoryRepository):
    async def ensure_categories(self, categories: list[dict[str, Any]]) -> int:
        raise RuntimeError("categories table is missing")


@pytest.fixture
def repo() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def client(repo: InMemoryRepository, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    feed = FakeFeed(
        [
            RawPosting(title="Support Engineer", source_url="https://remoteok.com/jobs/1", source_name="RemoteOK"),
            RawPosting(title="Growth Marketer", source_url="https://remoteok.com/jobs/2", source_name="RemoteOK"),
        ]
    )
    monkeypatch.setattr(sync_module, "build_sources", lambda settings: {"RemoteOK": feed})
    monkeypatch.setattr(prune_module, "build_sources", lambda settings: {"RemoteOK": feed})
    app.dependency_overrides[get_repository] = lambda: repo
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_sync_tick_endpoint_runs_one_tick(client: TestClient, repo: InMemoryRepository) -> None:
    response = client.post("/sync/tick", json={"max_jobs_per_company": 5})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["added"] == 2
    assert body["total_items"] == 1
    assert len(repo.postings) == 2

    run = client.get(f"/sync/{body['sync_id']}")
    assert run.status_code == 200
    assert run.json()["status"] == "completed"
    assert run.json()["stats"]["added"] == 2


def test_sync_tick_accepts_empty_body(client: TestClient) -> None:
    response = client.post("/sync/tick")
    assert response.status_code == 200
    assert response.json()["processed_items"] == 1


def test_unknown_sync_run_is_404(client: TestClient) -> None:
    response = client.get("/sync/999")
    assert response.status_code == 404


def test_failed_tick_returns_500_with_logs(monkeypatch: pytest.MonkeyPatch) -> None:
    broken = ExplodingRepository()
    monkeypatch.setattr(sync_module, "build_sources", lambda settings: {})
    app.dependency_overrides[get_repository] = lambda: broken
    try:
        response = TestClient(app).post("/sync/tick", json={})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "categories table is missing"
    assert body["logs"][-1]["level"] == "error"
    assert broken.sync_runs[body["sync_id"]]["status"] == "failed"


def test_discovery_endpoint_with_empty_pool(client: TestClient) -> None:
    response = client.post("/sync/discovery")
    assert response.status_code == 200
    assert response.json()["discovered"] == []


def test_deduplicate_endpoint_dry_run(client: TestClient, repo: InMemoryRepository) -> None:
    repo.add_posting(title="Site Reliability Engineer", company="Acme", source_name="Lever", source_url="https://a/1")
    repo.add_posting(title="Site Reliability Engineer", company="Acme", source_name="Lever", source_url="https://a/2")

    response = client.post("/jobs/deduplicate", json={"dry_run": True, "criteria": ["title", "company"]})

    assert response.status_code == 200
    assert response.json()["duplicates_found"] == 1
    assert len(repo.postings) == 2


def test_deduplicate_rejects_unknown_criteria(client: TestClient) -> None:
    response = client.post("/jobs/deduplicate", json={"criteria": ["location"]})
    assert response.status_code == 422


def test_prune_endpoint_by_staleness(client: TestClient, repo: InMemoryRepository) -> None:
    old = datetime.now(timezone.utc) - timedelta(days=45)
    repo.add_posting(title="Old job", source_name="Lever", source_url="https://a/old", created_at=old, updated_at=old)
    repo.add_posting(title="New job", source_name="Lever", source_url="https://a/new")

    response = client.post("/jobs/prune", json={"dry_run": False, "stale_days": 30})

    assert response.status_code == 200
    body = response.json()
    assert body["strategy"] == "staleness"
    assert body["jobs_deleted"] == 1
    assert [row["title"] for row in repo.postings.values()] == ["New job"]


def test_prune_endpoint_live_check(client: TestClient, repo: InMemoryRepository) -> None:
    repo.add_posting(title="Still listed", source_name="RemoteOK", source_url="https://remoteok.com/jobs/1")
    repo.add_posting(title="Filled", source_name="RemoteOK", source_url="https://remoteok.com/jobs/99")

    response = client.post("/jobs/prune", json={"dry_run": True})

    assert response.status_code == 200
    body = response.json()
    assert body["strategy"] == "live_check"
    assert [row["title"] for row in body["orphaned"]] == ["Filled"]
    assert len(repo.postings) == 2
