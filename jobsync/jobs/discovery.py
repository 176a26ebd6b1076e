from __future__ import annotations

from collections.abc import Callable, Sequence
import logging
import time
from typing import Any

from opentelemetry import trace

from jobsync.core.config import Settings, get_settings
from jobsync.jobs.ledger import RunLog, read_cursor, write_cursor
from jobsync.jobs.worklist import advance_cursor, select_window
from jobsync.services.repository import RepositoryError
from jobsync.sources.probes import CompanyProbe, ProbeResult, build_probes

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DISCOVERY_TYPE = "discovery"
SAMPLE_JOB_LIMIT = 3


async def run_discovery_tick(
    repository: Any,
    *,
    probes: Sequence[CompanyProbe] | None = None,
    settings: Settings | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> dict[str, Any]:
    """Probe the next window of candidate companies against each backend in order."""
    settings = settings or get_settings()
    if probes is None:
        probes = build_probes(
            timeout_seconds=settings.http_timeout_seconds,
            max_retries=settings.http_max_retries,
            retry_base_seconds=settings.http_retry_base_seconds,
        )

    started_at = clock()
    run = RunLog(
        repository,
        DISCOVERY_TYPE,
        flush_interval_seconds=settings.run_log_flush_interval_seconds,
        clock=clock,
    )
    discovered: list[dict[str, Any]] = []
    not_found: list[str] = []

    with tracer.start_as_current_span("discovery.tick"):
        try:
            await run.start()
            candidates = await repository.list_candidate_pool()
            total = len(candidates)
            if total == 0:
                run.log("No pending or not_found candidates to check", "warning")
                await run.complete(total_items=0, last_processed_index=0)
                return _result(run, discovered, not_found, next_index=0, wrapped_around=True)

            cursor = await read_cursor(repository, DISCOVERY_TYPE)
            window = select_window(total, cursor, settings.discovery_window_size)
            run.log(f"Checking candidates {window.start + 1}-{window.end} of {total}")

            completed = 0
            for candidate in candidates[window.start : window.end]:
                elapsed = clock() - started_at
                if elapsed >= settings.sync_time_budget_seconds:
                    run.log(f"Time budget reached after {elapsed:.1f}s; stopping early", "warning")
                    break

                slug = candidate["slug"]
                with tracer.start_as_current_span("discovery.candidate") as span:
                    span.set_attribute("discovery.slug", slug)
                    hit = await _check_candidate(repository, run, probes, slug)
                if hit is not None:
                    discovered.append(hit)
                    run.bump("companies_added")
                else:
                    not_found.append(slug)
                    run.bump("not_found")

                completed += 1
                next_index = advance_cursor(window, completed, total)
                await write_cursor(repository, DISCOVERY_TYPE, next_index, total)
                await run.checkpoint(total_items=total, last_processed_index=next_index)

            next_index = advance_cursor(window, completed, total)
            run.log(f"Discovery tick complete: {len(discovered)} discovered, {len(not_found)} not found", "success")
            await run.complete(total_items=total, last_processed_index=next_index)
            return _result(
                run,
                discovered,
                not_found,
                next_index=next_index,
                wrapped_around=window.wrapped_around and completed == window.size,
            )
        except Exception as exc:
            logger.exception("discovery tick failed")
            await run.fail(str(exc))
            return run.failure(str(exc))


async def _check_candidate(
    repository: Any,
    run: RunLog,
    probes: Sequence[CompanyProbe],
    slug: str,
) -> dict[str, Any] | None:
    try:
        await repository.mark_candidate_checking(slug)
        for probe in probes:
            result = await probe.probe(slug)
            if not result.found or result.company is None:
                run.log(f"{slug}: not on {probe.name} ({result.error or 'no board'})")
                continue
            run.log(f"{slug}: found on {result.source} ({result.company.remote_job_count} remote jobs)", "success")
            return await _record_hit(repository, run, slug, result)

        await repository.set_candidate_status(slug, "not_found")
        run.log(f"{slug}: not found on any source")
        return None
    except RepositoryError as exc:
        logger.warning("candidate check failed slug=%s: %s", slug, exc)
        run.log(f"{slug}: check failed: {exc}", "error")
        await _release_candidate(repository, slug)
        return None
    except Exception as exc:  # one candidate never aborts the tick
        logger.exception("candidate check crashed slug=%s", slug)
        run.log(f"{slug}: check failed: {exc}", "error")
        await _release_candidate(repository, slug)
        return None


async def _record_hit(repository: Any, run: RunLog, slug: str, result: ProbeResult) -> dict[str, Any]:
    company = result.company
    assert company is not None
    inserted = await repository.insert_discovered_company(
        slug=company.slug,
        name=company.name,
        source=result.source,
        job_count=company.job_count,
        remote_job_count=company.remote_job_count,
        sample_jobs=[job["title"] for job in result.jobs[:SAMPLE_JOB_LIMIT] if job.get("title")],
    )
    if not inserted:
        run.log(f"{company.slug}: already discovered; keeping existing record")
    await repository.set_candidate_status(slug, "discovered")
    return {
        "slug": company.slug,
        "name": company.name,
        "source": result.source,
        "job_count": company.job_count,
        "remote_job_count": company.remote_job_count,
        "inserted": inserted,
    }


async def _release_candidate(repository: Any, slug: str) -> None:
    # A candidate left in 'checking' would drop out of the selection pool.
    try:
        await repository.set_candidate_status(slug, "not_found")
    except RepositoryError as exc:
        logger.warning("could not release candidate slug=%s: %s", slug, exc)


def _result(
    run: RunLog,
    discovered: list[dict[str, Any]],
    not_found: list[str],
    *,
    next_index: int,
    wrapped_around: bool,
) -> dict[str, Any]:
    return {
        "success": True,
        "sync_id": run.run_id,
        "discovered": discovered,
        "not_found": not_found,
        "next_index": next_index,
        "wrapped_around": wrapped_around,
        "logs": list(run.entries),
    }
