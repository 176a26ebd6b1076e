import asyncio

import pytest

from jobsync.services.store import InMemoryRepository
from jobsync.worker import build_parser, run_task


def test_parser_defaults_to_dry_run() -> None:
    args = build_parser().parse_args(["prune", "--stale-days", "30", "--sources", "Lever", "RemoteOK"])
    assert args.task == "prune"
    assert args.live is False
    assert args.stale_days == 30
    assert args.sources == ["Lever", "RemoteOK"]


def test_parser_rejects_unknown_task() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(["scrape"])


def test_dedupe_task_runs_against_repository() -> None:
    repo = InMemoryRepository()
    repo.add_posting(title="Account Executive", company="Initech", source_name="Lever", source_url="https://a/1")
    repo.add_posting(title="Account Executive", company="Initech", source_name="Lever", source_url="https://a/2")
    args = build_parser().parse_args(["dedupe", "--live", "--criteria", "title", "company"])

    result = asyncio.run(run_task(args, repo))

    assert result["success"] is True
    assert result["duplicates_removed"] == 1
    assert len(repo.postings) == 1


def test_reap_task_reports_failed_runs() -> None:
    result = asyncio.run(run_task(build_parser().parse_args(["reap"]), InMemoryRepository()))
    assert result == {"success": True, "failed_runs": []}
