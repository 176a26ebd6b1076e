"""Run one engine task per invocation; an external scheduler supplies the cadence."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import Any

from opentelemetry import trace

from jobsync.core.config import get_settings
from jobsync.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from jobsync.jobs.dedupe import deduplicate
from jobsync.jobs.discovery import run_discovery_tick
from jobsync.jobs.prune import prune
from jobsync.jobs.run_reaper import fail_stuck_runs
from jobsync.jobs.sync import run_sync_tick
from jobsync.services.repository import PostgresRepository, get_repository

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

TASKS = ("sync", "discovery", "dedupe", "prune", "reap", "init-db")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a single job sync engine task.")
    parser.add_argument("task", choices=TASKS)
    parser.add_argument("--sources", nargs="+", help="Restrict sync/prune to these source names")
    parser.add_argument("--no-update", action="store_true", help="Do not update postings that already exist")
    parser.add_argument("--no-add", action="store_true", help="Do not insert new postings")
    parser.add_argument("--max-jobs", type=int, default=None, help="Per-company posting cap for one tick")
    parser.add_argument("--live", action="store_true", help="Apply dedupe/prune deletions (default is dry run)")
    parser.add_argument(
        "--criteria",
        nargs="+",
        choices=["title", "company", "description", "salary"],
        default=None,
        help="Dedupe criteria (default: title company)",
    )
    parser.add_argument("--stale-days", type=int, default=None, help="Prune by staleness instead of live-check")
    return parser


async def run_task(args: argparse.Namespace, repository: PostgresRepository) -> dict[str, Any]:
    if args.task == "sync":
        return await run_sync_tick(
            repository,
            sources=args.sources,
            update_existing=not args.no_update,
            add_new=not args.no_add,
            max_jobs_per_company=args.max_jobs,
        )
    if args.task == "discovery":
        return await run_discovery_tick(repository)
    if args.task == "dedupe":
        return await deduplicate(repository, dry_run=not args.live, criteria=args.criteria)
    if args.task == "prune":
        return await prune(repository, dry_run=not args.live, sources=args.sources, stale_days=args.stale_days)
    if args.task == "reap":
        return await fail_stuck_runs(repository)
    await repository.apply_schema()
    return {"success": True, "schema": "applied"}


async def main_async(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging()
    telemetry_runtime = setup_telemetry(settings)
    repository = get_repository()
    try:
        with tracer.start_as_current_span(f"worker.{args.task}"):
            result = await run_task(args, repository)
    finally:
        await repository.close()
        shutdown_telemetry(telemetry_runtime)

    summary = {key: value for key, value in result.items() if key != "logs"}
    print(json.dumps(summary, indent=2, default=str))
    if not result.get("success", False):
        logger.error("task %s failed: %s", args.task, result.get("error"))
        return 1
    return 0


def main() -> None:
    raise SystemExit(asyncio.run(main_async()))


if __name__ == "__main__":
    main()
