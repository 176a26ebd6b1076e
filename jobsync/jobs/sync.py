from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
import logging
import time
from typing import Any

from opentelemetry import trace

from jobsync.core.config import Settings, get_settings
from jobsync.jobs.ledger import RunLog, read_cursor, write_cursor
from jobsync.jobs.worklist import Window, WorkItem, advance_cursor, build_worklist
from jobsync.services.batch_writer import BatchedWriter
from jobsync.services.categorize import default_categories, determine_category_id
from jobsync.services.repository import RepositoryError
from jobsync.services.sanitize import sanitize_text
from jobsync.sources.base import JobSource, RawPosting, SourceFetchError
from jobsync.sources.registry import build_sources, resolve_source, seed_companies

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

SYNC_TYPE = "sync"
MAX_PAY_RANGE_LENGTH = 255


async def run_sync_tick(
    repository: Any,
    *,
    sources: list[str] | None = None,
    update_existing: bool = True,
    add_new: bool = True,
    max_jobs_per_company: int | None = None,
    job_sources: Mapping[str, JobSource] | None = None,
    settings: Settings | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> dict[str, Any]:
    """Advance synchronization by one bounded window of the worklist."""
    settings = settings or get_settings()
    tick = _SyncTick(
        repository,
        job_sources if job_sources is not None else build_sources(settings),
        settings,
        update_existing=update_existing,
        add_new=add_new,
        max_jobs_per_company=max_jobs_per_company or settings.max_jobs_per_company,
        clock=clock,
    )
    with tracer.start_as_current_span("sync.tick"):
        return await tick.run(sources)


class _SyncTick:
    def __init__(
        self,
        repository: Any,
        job_sources: Mapping[str, JobSource],
        settings: Settings,
        *,
        update_existing: bool,
        add_new: bool,
        max_jobs_per_company: int,
        clock: Callable[[], float],
    ) -> None:
        self.repository = repository
        self.job_sources = job_sources
        self.settings = settings
        self.update_existing = update_existing
        self.add_new = add_new
        self.cap = max(1, max_jobs_per_company)
        self.clock = clock
        self.updated = 0
        self.skipped = 0
        self.processed_items = 0
        self.failed_items = 0
        self._cursor_lock = asyncio.Lock()
        self.run_log = RunLog(
            repository,
            SYNC_TYPE,
            flush_interval_seconds=settings.run_log_flush_interval_seconds,
            clock=clock,
        )
        self.writer = BatchedWriter(
            repository,
            max_size=settings.batch_max_size,
            max_wait_seconds=settings.batch_max_wait_seconds,
            on_log=self.run_log.log,
            clock=clock,
        )

    async def run(self, source_filter: list[str] | None) -> dict[str, Any]:
        started_at = self.clock()
        run = self.run_log
        try:
            await run.start()
            run.log(
                f"Starting sync tick (update_existing={self.update_existing}, add_new={self.add_new}, "
                f"max_jobs_per_company={self.cap})"
            )
            if source_filter:
                run.log(f"Syncing sources: {', '.join(source_filter)}")

            seeded = await self.repository.ensure_categories(default_categories())
            if seeded:
                run.log(f"Seeded {seeded} default categories", "success")

            worklist = await build_worklist(
                self.repository,
                self.job_sources,
                seed_companies=seed_companies(self.settings),
                source_filter=source_filter,
            )
            total = len(worklist)
            if total == 0:
                run.log("Worklist is empty; nothing to sync", "warning")
                await run.complete(total_items=0, last_processed_index=0)
                return self._result(total=0, next_index=0, wrapped_around=True, deferred=0)

            cursor = await read_cursor(self.repository, SYNC_TYPE)
            window, items = worklist.window(cursor, self.settings.sync_window_size)
            run.log(f"Processing items {window.start + 1}-{window.end} of {total}")

            completed = [False] * len(items)
            progress = {"prefix": 0, "next_index": window.start}
            semaphore = asyncio.Semaphore(max(1, self.settings.sync_concurrency))
            tasks: list[asyncio.Task] = []
            deferred = 0
            for position, item in enumerate(items):
                await semaphore.acquire()
                elapsed = self.clock() - started_at
                if elapsed >= self.settings.sync_time_budget_seconds:
                    semaphore.release()
                    deferred = len(items) - position
                    run.log(
                        f"Time budget reached after {elapsed:.1f}s; {deferred} item(s) deferred to next tick",
                        "warning",
                    )
                    break
                tasks.append(
                    asyncio.create_task(
                        self._run_item(position, item, window, total, completed, progress, semaphore)
                    )
                )
            await asyncio.gather(*tasks)

            await self.writer.flush()
            next_index = progress["next_index"]
            run.stats.update(self._stats())
            run.log(
                f"Tick complete: {self.writer.written} added, {self.updated} updated, "
                f"{self.skipped + self.writer.skipped} skipped",
                "success",
            )
            await run.complete(total_items=total, last_processed_index=next_index)
            return self._result(
                total=total,
                next_index=next_index,
                wrapped_around=window.wrapped_around and deferred == 0,
                deferred=deferred,
            )
        except Exception as exc:
            logger.exception("sync tick failed")
            await run.fail(str(exc))
            return run.failure(str(exc))

    async def _run_item(
        self,
        position: int,
        item: WorkItem,
        window: Window,
        total: int,
        completed: list[bool],
        progress: dict[str, int],
        semaphore: asyncio.Semaphore,
    ) -> None:
        try:
            with tracer.start_as_current_span("sync.item") as span:
                span.set_attribute("sync.source", item.source)
                span.set_attribute("sync.item", item.name)
                try:
                    await self._sync_item(item)
                    self.processed_items += 1
                except SourceFetchError as exc:
                    self.failed_items += 1
                    self.run_log.log(f"Skipping {item.label}: {exc}", "error")
                except Exception as exc:  # item-level failures never abort the tick
                    self.failed_items += 1
                    logger.exception("sync item failed item=%s", item.label)
                    self.run_log.log(f"Skipping {item.label}: {exc}", "error")
        finally:
            semaphore.release()

        completed[position] = True
        prefix = 0
        while prefix < len(completed) and completed[prefix]:
            prefix += 1
        if prefix > progress["prefix"]:
            progress["prefix"] = prefix
            progress["next_index"] = advance_cursor(window, prefix, total)
            async with self._cursor_lock:
                await write_cursor(self.repository, SYNC_TYPE, progress["next_index"], total)
        self.run_log.stats.update(self._stats())
        await self.run_log.checkpoint(total_items=total, last_processed_index=progress["next_index"])

    async def _sync_item(self, item: WorkItem) -> None:
        source = resolve_source(self.job_sources, item.source)
        if source is None:
            raise SourceFetchError(item.source, "unknown source")

        if item.is_pseudo:
            self.run_log.log(f"Fetching full feed from {item.source}")
            count = 0
            async for batch in source.fetch(log=self.run_log.log):
                for raw in batch:
                    count += 1
                    await self._apply(raw)
            self.run_log.log(f"{item.source}: processed {count} job(s)")
            return

        offset = await self.repository.get_job_offset(item.source, item.name)
        count = 0
        async for batch in source.fetch([item.name], log=self.run_log.log, job_offset=offset, limit=self.cap):
            for raw in batch[: self.cap - count]:
                count += 1
                await self._apply(raw)

        next_offset = 0 if count < self.cap else offset + count
        try:
            await self.repository.save_job_progress(item.source, item.name, next_offset)
        except RepositoryError as exc:
            logger.warning("progress write failed item=%s: %s", item.label, exc)
            self.run_log.log(f"Could not save progress for {item.label}: {exc}", "warning")
        if next_offset == 0:
            self.run_log.log(f"{item.label}: {count} job(s) from offset {offset}; backlog drained")
        else:
            self.run_log.log(f"{item.label}: {count} job(s) from offset {offset}; next offset {next_offset}")

    async def _apply(self, raw: RawPosting) -> None:
        title = sanitize_text(raw.title, required=True)
        source_url = (raw.source_url or "").strip()
        if not title or not source_url:
            self.skipped += 1
            return

        description = sanitize_text(raw.description)
        fields = {
            "title": title,
            "company": sanitize_text(raw.company),
            "description": description,
            "pay_range": sanitize_text(raw.salary, max_length=MAX_PAY_RANGE_LENGTH),
            "post_date": raw.posted_date,
            "category_id": determine_category_id(title, description, raw.tags),
        }

        existing = await self.repository.get_posting_by_source_url(source_url)
        if existing is not None:
            if not self.update_existing:
                self.skipped += 1
                return
            await self.repository.update_posting(existing["id"], fields)
            self.updated += 1
            return

        if not self.add_new:
            self.skipped += 1
            return
        await self.writer.add({**fields, "source_name": raw.source_name, "source_url": source_url})

    def _stats(self) -> dict[str, int]:
        return {
            "added": self.writer.written,
            "updated": self.updated,
            "skipped": self.skipped + self.writer.skipped,
            "failed": self.writer.failed,
            "processed_items": self.processed_items,
            "failed_items": self.failed_items,
        }

    def _result(self, *, total: int, next_index: int, wrapped_around: bool, deferred: int) -> dict[str, Any]:
        return {
            "success": True,
            "sync_id": self.run_log.run_id,
            **self._stats(),
            "deferred_items": deferred,
            "total_items": total,
            "next_index": next_index,
            "wrapped_around": wrapped_around,
            "logs": list(self.run_log.entries),
        }
