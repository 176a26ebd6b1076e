from __future__ import annotations

import copy
from datetime import datetime, timezone
from itertools import count
from typing import Any

from jobsync.services.repository import (
    CANDIDATE_STATUSES,
    MUTABLE_POSTING_FIELDS,
    POSTING_COLUMNS,
    RUN_STATUSES,
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryValidationError,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryRepository:
    """Process-local store with the same contract as PostgresRepository.

    Used for local runs and tests; nothing survives the process.
    """

    def __init__(self) -> None:
        self.categories: dict[int, dict[str, Any]] = {}
        self.postings: dict[int, dict[str, Any]] = {}
        self.potential_companies: dict[str, dict[str, Any]] = {}
        self.discovered_companies: dict[str, dict[str, Any]] = {}
        self.job_progress: dict[tuple[str, str], dict[str, Any]] = {}
        self.sync_runs: dict[int, dict[str, Any]] = {}
        self.cursors: dict[str, dict[str, Any]] = {}
        self.duplicate_pairs: list[dict[str, Any]] = []
        self._posting_ids = count(1)
        self._run_ids = count(1)

    async def close(self) -> None:
        return None

    async def ping(self) -> None:
        return None

    async def ensure_categories(self, categories: list[dict[str, Any]]) -> int:
        if self.categories:
            return 0
        for row in categories:
            self.categories[int(row["id"])] = dict(row)
        return len(categories)

    def add_posting(self, **fields: Any) -> dict[str, Any]:
        now = _utcnow()
        row = {column: fields.get(column) for column in POSTING_COLUMNS}
        if any(existing["source_url"] == row["source_url"] for existing in self.postings.values()):
            raise RepositoryConflictError(f"duplicate source_url: {row['source_url']}")
        posting_id = fields.get("id")
        while posting_id is None or posting_id in self.postings:
            posting_id = next(self._posting_ids)
        row["id"] = posting_id
        row["created_at"] = fields.get("created_at") or now
        row["updated_at"] = fields.get("updated_at") or row["created_at"]
        self.postings[posting_id] = row
        return row

    def add_potential_company(self, slug: str, *, status: str = "pending", added_at: datetime | None = None) -> None:
        self.potential_companies[slug] = {
            "slug": slug,
            "status": status,
            "check_count": 0,
            "added_at": added_at or _utcnow(),
            "last_checked_at": None,
        }

    async def get_posting_by_source_url(self, source_url: str) -> dict[str, Any] | None:
        for row in self.postings.values():
            if row["source_url"] == source_url:
                return dict(row)
        return None

    async def update_posting(self, posting_id: int, fields: dict[str, Any]) -> None:
        unknown = set(fields) - MUTABLE_POSTING_FIELDS
        if unknown:
            raise RepositoryValidationError(f"cannot update posting fields: {sorted(unknown)}")
        row = self.postings.get(posting_id)
        if row is None:
            return
        row.update(fields)
        row["updated_at"] = _utcnow()

    async def insert_postings(self, rows: list[dict[str, Any]]) -> int:
        urls = [row.get("source_url") for row in rows]
        existing = {row["source_url"] for row in self.postings.values()}
        if len(set(urls)) != len(urls) or existing.intersection(urls):
            raise RepositoryConflictError("duplicate key value violates unique constraint on source_url")
        for row in rows:
            self.add_posting(**{column: row.get(column) for column in POSTING_COLUMNS})
        return len(rows)

    async def insert_posting(self, row: dict[str, Any]) -> None:
        self.add_posting(**{column: row.get(column) for column in POSTING_COLUMNS})

    async def list_postings_for_dedupe(self) -> list[dict[str, Any]]:
        rows = sorted(self.postings.values(), key=lambda row: (row["created_at"], row["id"]))
        return [dict(row) for row in rows]

    async def delete_postings(self, posting_ids: list[int]) -> int:
        deleted = 0
        for posting_id in posting_ids:
            if self.postings.pop(posting_id, None) is not None:
                deleted += 1
        return deleted

    async def list_posting_sources(self) -> list[str]:
        return sorted({row["source_name"] for row in self.postings.values()})

    async def list_postings_by_source(self, source_name: str) -> list[dict[str, Any]]:
        return [
            {"id": row["id"], "title": row["title"], "source_url": row["source_url"]}
            for row in sorted(self.postings.values(), key=lambda row: row["id"])
            if row["source_name"] == source_name
        ]

    async def list_stale_postings(
        self,
        *,
        updated_before: datetime,
        sources: list[str] | None,
        limit: int,
    ) -> list[dict[str, Any]]:
        rows = [
            row
            for row in self.postings.values()
            if row["updated_at"] < updated_before and (not sources or row["source_name"] in sources)
        ]
        rows.sort(key=lambda row: (row["updated_at"], row["id"]))
        return [
            {"id": row["id"], "title": row["title"], "source_name": row["source_name"], "updated_at": row["updated_at"]}
            for row in rows[: max(1, limit)]
        ]

    async def get_job_offset(self, source: str, company_slug: str) -> int:
        progress = self.job_progress.get((source, company_slug))
        return int(progress["last_job_offset"]) if progress else 0

    async def save_job_progress(self, source: str, company_slug: str, last_job_offset: int) -> None:
        self.job_progress[(source, company_slug)] = {
            "source": source,
            "company_slug": company_slug,
            "last_job_offset": max(0, last_job_offset),
            "last_synced_at": _utcnow(),
        }

    async def list_discovered_companies(self) -> list[dict[str, Any]]:
        return [
            {"slug": row["slug"], "name": row["name"], "source": row["source"], "status": row["status"]}
            for row in sorted(self.discovered_companies.values(), key=lambda row: row["slug"])
            if row["status"] == "active"
        ]

    async def insert_discovered_company(
        self,
        *,
        slug: str,
        name: str,
        source: str,
        job_count: int,
        remote_job_count: int,
        sample_jobs: list[str],
    ) -> bool:
        if slug in self.discovered_companies:
            return False
        self.discovered_companies[slug] = {
            "slug": slug,
            "name": name,
            "source": source,
            "status": "active",
            "job_count": job_count,
            "remote_job_count": remote_job_count,
            "sample_jobs": list(sample_jobs),
            "discovered_at": _utcnow(),
        }
        return True

    async def list_candidate_pool(self) -> list[dict[str, Any]]:
        rows = [row for row in self.potential_companies.values() if row["status"] in {"pending", "not_found"}]
        rows.sort(key=lambda row: (row["added_at"], row["slug"]))
        return [dict(row) for row in rows]

    async def mark_candidate_checking(self, slug: str) -> None:
        row = self.potential_companies.get(slug)
        if row is None:
            raise RepositoryNotFoundError("potential company not found")
        row["status"] = "checking"
        row["check_count"] += 1
        row["last_checked_at"] = _utcnow()

    async def set_candidate_status(self, slug: str, status: str) -> None:
        if status not in CANDIDATE_STATUSES:
            raise RepositoryValidationError(f"invalid candidate status: {status}")
        row = self.potential_companies.get(slug)
        if row is not None:
            row["status"] = status
            row["last_checked_at"] = _utcnow()

    async def create_sync_run(self, sync_type: str) -> dict[str, Any]:
        run_id = next(self._run_ids)
        run = {
            "id": run_id,
            "sync_type": sync_type,
            "status": "running",
            "started_at": _utcnow(),
            "completed_at": None,
            "logs": [],
            "stats": {},
            "last_processed_index": 0,
            "total_items": 0,
            "error": None,
        }
        self.sync_runs[run_id] = run
        return {key: run[key] for key in ("id", "sync_type", "status", "started_at")}

    async def update_sync_run(
        self,
        run_id: int,
        *,
        logs: list[dict[str, Any]],
        stats: dict[str, Any],
        status: str | None = None,
        total_items: int | None = None,
        last_processed_index: int | None = None,
        error: str | None = None,
    ) -> None:
        if status is not None and status not in RUN_STATUSES:
            raise RepositoryValidationError(f"invalid run status: {status}")
        run = self.sync_runs.get(run_id)
        if run is None:
            return
        run["logs"] = copy.deepcopy(logs)
        run["stats"] = dict(stats)
        if status is not None:
            run["status"] = status
            if status in {"completed", "failed"}:
                run["completed_at"] = _utcnow()
        if total_items is not None:
            run["total_items"] = total_items
        if last_processed_index is not None:
            run["last_processed_index"] = last_processed_index
        if error is not None:
            run["error"] = error

    async def get_sync_run(self, run_id: int) -> dict[str, Any]:
        run = self.sync_runs.get(run_id)
        if run is None:
            raise RepositoryNotFoundError("sync run not found")
        return copy.deepcopy(run)

    async def list_running_runs(self) -> list[dict[str, Any]]:
        rows = [run for run in self.sync_runs.values() if run["status"] == "running"]
        rows.sort(key=lambda run: run["started_at"])
        return [copy.deepcopy(run) for run in rows]

    async def get_cursor(self, sync_type: str) -> int:
        cursor = self.cursors.get(sync_type)
        return int(cursor["last_processed_index"]) if cursor else 0

    async def set_cursor(self, sync_type: str, index: int, total_items: int) -> None:
        self.cursors[sync_type] = {
            "sync_type": sync_type,
            "status": "batch_state",
            "last_processed_index": max(0, index),
            "total_items": max(0, total_items),
        }

    async def record_duplicate_pairs(self, pairs: list[dict[str, Any]]) -> int:
        for pair in pairs:
            self.duplicate_pairs.append({**pair, "resolved": pair.get("resolved", True)})
        return len(pairs)
