from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
import logging
from typing import Any

from opentelemetry import trace

from jobsync.core.config import Settings, get_settings
from jobsync.jobs.ledger import RunLog
from jobsync.jobs.worklist import build_worklist
from jobsync.sources.base import JobSource, SourceFetchError
from jobsync.sources.registry import build_sources, resolve_source, seed_companies

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

PRUNE_TYPE = "prune"


def stale_cutoff(stale_days: int, *, now: datetime | None = None) -> datetime:
    current = now or datetime.now(timezone.utc)
    return current - timedelta(days=max(1, stale_days))


async def prune(
    repository: Any,
    *,
    dry_run: bool = True,
    sources: list[str] | None = None,
    stale_days: int | None = None,
    job_sources: Mapping[str, JobSource] | None = None,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Remove orphaned postings (live-check) or, with ``stale_days``, stale ones."""
    settings = settings or get_settings()
    run = RunLog(repository, PRUNE_TYPE, flush_interval_seconds=settings.run_log_flush_interval_seconds)
    strategy = "staleness" if stale_days is not None else "live_check"
    with tracer.start_as_current_span("prune.run") as span:
        span.set_attribute("prune.strategy", strategy)
        try:
            await run.start()
            if dry_run:
                run.log("Running in DRY RUN mode (no deletions)", "warning")
            else:
                run.log("Running in LIVE mode (jobs will be deleted)")

            if stale_days is not None:
                targets = await _find_stale(repository, run, settings, sources, stale_days, now)
            else:
                targets = await _find_orphans(
                    repository,
                    run,
                    settings,
                    sources,
                    job_sources if job_sources is not None else build_sources(settings),
                )

            deleted = 0
            if targets and not dry_run:
                deleted = await _delete_in_batches(repository, run, [row["id"] for row in targets], settings)
                run.log(f"Deleted {deleted} job(s)", "success")
            elif targets:
                run.log(f"DRY RUN: would delete {len(targets)} job(s)", "warning")
            else:
                run.log("Nothing to prune", "success")

            run.stats.update({"jobs_to_delete": len(targets), "deleted": deleted})
            await run.complete(total_items=len(targets))
            return {
                "success": True,
                "sync_id": run.run_id,
                "dry_run": dry_run,
                "strategy": strategy,
                "jobs_to_delete": len(targets),
                "jobs_deleted": deleted,
                "orphaned": targets,
                "logs": list(run.entries),
            }
        except Exception as exc:
            logger.exception("prune failed")
            await run.fail(str(exc))
            return run.failure(str(exc))


async def _find_stale(
    repository: Any,
    run: RunLog,
    settings: Settings,
    sources: list[str] | None,
    stale_days: int,
    now: datetime | None,
) -> list[dict[str, Any]]:
    cutoff = stale_cutoff(stale_days, now=now)
    run.log(f"Looking for jobs not updated in {stale_days} day(s) (before {cutoff.isoformat()})")
    rows = await repository.list_stale_postings(
        updated_before=cutoff,
        sources=sources or None,
        limit=settings.prune_row_limit,
    )
    if len(rows) >= settings.prune_row_limit:
        run.log(
            f"Row limit of {settings.prune_row_limit} reached; remaining stale jobs wait for the next run",
            "warning",
        )
    return [
        {
            "id": row["id"],
            "title": row.get("title"),
            "source_name": row.get("source_name"),
            "updated_at": _isoformat(row.get("updated_at")),
        }
        for row in rows
    ]


async def _find_orphans(
    repository: Any,
    run: RunLog,
    settings: Settings,
    sources: list[str] | None,
    job_sources: Mapping[str, JobSource],
) -> list[dict[str, Any]]:
    stored_sources = await repository.list_posting_sources()
    if sources:
        wanted = {name.lower() for name in sources}
        stored_sources = [name for name in stored_sources if name.lower() in wanted]

    orphaned: list[dict[str, Any]] = []
    for source_name in stored_sources:
        source = resolve_source(job_sources, source_name)
        if source is None:
            run.log(f"Source {source_name} is not registered; skipping", "warning")
            continue

        stored = await repository.list_postings_by_source(source_name)
        run.log(f"Checking {source_name} ({len(stored)} jobs)")
        try:
            live_urls = await _collect_live_urls(repository, source, settings)
        except SourceFetchError as exc:
            run.log(f"Error fetching from {source_name}: {exc}; skipping", "error")
            continue
        run.log(f"Found {len(live_urls)} current jobs from {source_name}")

        for row in stored:
            if row["source_url"] not in live_urls:
                orphaned.append(
                    {
                        "id": row["id"],
                        "title": row.get("title"),
                        "source_name": source_name,
                        "source_url": row["source_url"],
                    }
                )
        await run.maybe_flush()

    run.log(f"Orphaned jobs found: {len(orphaned)}", "warning" if orphaned else "success")
    return orphaned


async def _collect_live_urls(repository: Any, source: JobSource, settings: Settings) -> set[str]:
    company_filter: list[str] | None = None
    if source.kind == "ats":
        worklist = await build_worklist(
            repository,
            {source.name: source},
            seed_companies=seed_companies(settings),
        )
        company_filter = [item.name for item in worklist]
        if not company_filter:
            raise SourceFetchError(source.name, "no known companies to re-fetch")

    urls: set[str] = set()
    async for batch in source.fetch(company_filter):
        urls.update(posting.source_url for posting in batch)
    return urls


async def _delete_in_batches(repository: Any, run: RunLog, ids: list[int], settings: Settings) -> int:
    batch_size = max(1, settings.prune_delete_batch_size)
    deleted = 0
    for start in range(0, len(ids), batch_size):
        deleted += await repository.delete_postings(ids[start : start + batch_size])
        run.log(f"Deleted {deleted}/{len(ids)} jobs")
        await run.maybe_flush()
    return deleted


def _isoformat(value: Any) -> str | None:
    if isinstance(value, datetime):
        return value.isoformat()
    return value if isinstance(value, str) else None
