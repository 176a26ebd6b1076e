from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from jobsync.core.config import Settings
from jobsync.jobs.dedupe import (
    PostingSnapshot,
    deduplicate,
    find_duplicate_clusters,
    normalize_criteria,
    score_pair,
    similarity,
)
from jobsync.services.store import InMemoryRepository


def _snapshot(posting_id: int, title: str, company: str | None = "Acme", **fields) -> PostingSnapshot:
    return PostingSnapshot(
        id=posting_id,
        title=title,
        company=company,
        description=fields.get("description"),
        pay_range=fields.get("pay_range"),
    )


def _settings() -> Settings:
    return Settings(otel_enabled=False)


def test_similarity_scores_token_overlap() -> None:
    assert similarity("Senior Backend Engineer", "senior backend engineer") == 100
    assert similarity("Senior Python Developer", "Senior Python Developer (Remote)") == 75
    assert similarity("a b c d e", "a b c d e f") == 83
    assert similarity("Designer", "") == 0
    assert similarity(None, None) == 100


def test_pair_must_clear_every_threshold() -> None:
    left = _snapshot(1, "Staff Data Engineer", "Acme")
    right = _snapshot(2, "Staff Data Engineer", "Globex")

    pair = score_pair(left, right)

    assert pair.scores == {"title": 100, "company": 0}
    assert pair.average == 50
    assert pair.is_duplicate is False


def test_missing_company_is_not_scored() -> None:
    pair = score_pair(_snapshot(1, "Staff Data Engineer", None), _snapshot(2, "staff data engineer", "Acme"))

    assert pair.scores == {"title": 100}
    assert pair.is_duplicate is True
    assert pair.reasons == ["title match (100%)"]


def test_description_and_salary_criteria_gate_matches() -> None:
    left = _snapshot(1, "QA Engineer", description="Own test automation for payments", pay_range="$90k - $110k")
    right = _snapshot(2, "QA Engineer", description="Own test automation for payments", pay_range="$95k - $120k")

    assert score_pair(left, right, criteria=("title", "company", "description")).is_duplicate is True
    salary_pair = score_pair(left, right, criteria=("title", "salary"))
    assert salary_pair.scores["salary"] == 0
    assert salary_pair.is_duplicate is False


def test_clusters_keep_earliest_and_do_not_overlap() -> None:
    postings = [
        _snapshot(1, "Frontend Engineer"),
        _snapshot(2, "Backend Engineer"),
        _snapshot(3, "frontend engineer"),
        _snapshot(4, "Frontend Engineer"),
        _snapshot(5, "Backend Engineer"),
    ]

    clusters = find_duplicate_clusters(postings)

    assert [(cluster.anchor.id, [row.id for row in cluster.duplicates]) for cluster in clusters] == [
        (1, [3, 4]),
        (2, [5]),
    ]
    assert clusters == find_duplicate_clusters(postings)


def test_normalize_criteria_rejects_unknown_names() -> None:
    assert normalize_criteria(None) == ("title", "company")
    assert normalize_criteria(["Title", "salary", "title"]) == ("title", "salary")
    with pytest.raises(ValueError):
        normalize_criteria(["location"])


def _seed(repo: InMemoryRepository) -> None:
    base = datetime(2026, 3, 1, tzinfo=timezone.utc)
    rows = [
        ("Senior Rust Engineer", "Acme", "https://a.example/1"),
        ("Senior Rust Engineer", "Acme", "https://b.example/1"),
        ("Product Designer", "Acme", "https://a.example/2"),
        ("senior rust engineer", "ACME", "https://c.example/1"),
    ]
    for index, (title, company, url) in enumerate(rows):
        repo.add_posting(
            id=index + 1,
            title=title,
            company=company,
            source_name="Greenhouse",
            source_url=url,
            created_at=base + timedelta(hours=index),
        )


def test_dry_run_reports_without_deleting() -> None:
    repo = InMemoryRepository()
    _seed(repo)

    result = asyncio.run(deduplicate(repo, dry_run=True, settings=_settings()))

    assert result["success"] is True
    assert result["duplicates_found"] == 2
    assert result["duplicates_removed"] == 0
    assert result["groups"][0]["keep_id"] == 1
    assert result["groups"][0]["remove_ids"] == [2, 4]
    assert len(repo.postings) == 4
    assert repo.duplicate_pairs == []


def test_live_run_deletes_duplicates_and_records_pairs() -> None:
    repo = InMemoryRepository()
    _seed(repo)

    result = asyncio.run(deduplicate(repo, dry_run=False, settings=_settings()))

    assert result["duplicates_removed"] == 2
    assert sorted(repo.postings) == [1, 3]
    assert [(pair["job_id_1"], pair["job_id_2"], pair["resolved"]) for pair in repo.duplicate_pairs] == [
        (1, 2, True),
        (1, 4, True),
    ]
    assert repo.duplicate_pairs[0]["similarity_score"] == 100


def test_unknown_criterion_fails_the_run() -> None:
    repo = InMemoryRepository()
    _seed(repo)

    result = asyncio.run(deduplicate(repo, dry_run=False, criteria=["location"], settings=_settings()))

    assert result["success"] is False
    assert "location" in result["error"]
    assert len(repo.postings) == 4
