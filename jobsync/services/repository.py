from __future__ import annotations

import json
from datetime import datetime
from functools import lru_cache
from importlib import resources
from typing import Any, Literal

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from jobsync.core.config import get_settings

WriteErrorKind = Literal["conflict", "other"]

POSTING_COLUMNS = (
    "title",
    "company",
    "description",
    "pay_range",
    "source_name",
    "source_url",
    "category_id",
    "post_date",
)
MUTABLE_POSTING_FIELDS = {"title", "company", "description", "pay_range", "post_date", "category_id"}
CANDIDATE_STATUSES = {"pending", "checking", "discovered", "not_found"}
RUN_STATUSES = {"running", "completed", "failed"}


class RepositoryError(Exception):
    """Base repository error."""

    kind: WriteErrorKind = "other"


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when a write collides with an existing unique key."""

    kind: WriteErrorKind = "conflict"


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


_DB_ERRORS = (pg_exc.PostgresError, asyncpg.DataError, asyncpg.InterfaceError)


class PostgresRepository:
    def __init__(self, database_url: str | None, min_pool_size: int, max_pool_size: int) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ping(self) -> None:
        pool = await self._get_pool()
        try:
            await pool.fetchval("select 1")
        except _DB_ERRORS as exc:
            raise RepositoryUnavailableError(str(exc)) from exc

    async def apply_schema(self) -> None:
        sql = resources.files("jobsync.db").joinpath("schema.sql").read_text(encoding="utf-8")
        pool = await self._get_pool()
        try:
            await pool.execute(sql)
        except _DB_ERRORS as exc:
            raise RepositoryError(str(exc)) from exc

    async def ensure_categories(self, categories: list[dict[str, Any]]) -> int:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    existing = await conn.fetchval("select count(*) from categories")
                    if existing:
                        return 0
                    await conn.executemany(
                        """
                        insert into categories (id, name, slug, description)
                        values ($1, $2, $3, $4)
                        on conflict (id) do nothing
                        """,
                        [(row["id"], row["name"], row["slug"], row.get("description")) for row in categories],
                    )
        except _DB_ERRORS as exc:
            raise RepositoryError(str(exc)) from exc
        return len(categories)

    async def get_posting_by_source_url(self, source_url: str) -> dict[str, Any] | None:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                """
                select id, title, company, description, pay_range, source_name, source_url,
                       category_id, post_date, created_at, updated_at
                from job_postings
                where source_url = $1
                """,
                source_url,
            )
        except _DB_ERRORS as exc:
            raise RepositoryError(str(exc)) from exc
        return dict(row) if row is not None else None

    async def update_posting(self, posting_id: int, fields: dict[str, Any]) -> None:
        unknown = set(fields) - MUTABLE_POSTING_FIELDS
        if unknown:
            raise RepositoryValidationError(f"cannot update posting fields: {sorted(unknown)}")
        assignments = [f"{name} = ${index}" for index, name in enumerate(fields, start=2)]
        assignments.append("updated_at = now()")
        pool = await self._get_pool()
        try:
            await pool.execute(
                f"update job_postings set {', '.join(assignments)} where id = $1",
                posting_id,
                *fields.values(),
            )
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryConflictError(str(exc)) from exc
        except _DB_ERRORS as exc:
            raise RepositoryError(str(exc)) from exc

    async def insert_postings(self, rows: list[dict[str, Any]]) -> int:
        if not rows:
            return 0
        columns = [[row.get(column) for row in rows] for column in POSTING_COLUMNS]
        pool = await self._get_pool()
        try:
            inserted = await pool.fetch(
                """
                insert into job_postings
                  (title, company, description, pay_range, source_name, source_url, category_id, post_date)
                select * from unnest(
                  $1::text[], $2::text[], $3::text[], $4::text[],
                  $5::text[], $6::text[], $7::integer[], $8::timestamptz[]
                )
                returning id
                """,
                *columns,
            )
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryConflictError(str(exc)) from exc
        except _DB_ERRORS as exc:
            raise RepositoryError(str(exc)) from exc
        return len(inserted)

    async def insert_posting(self, row: dict[str, Any]) -> None:
        pool = await self._get_pool()
        try:
            await pool.execute(
                """
                insert into job_postings
                  (title, company, description, pay_range, source_name, source_url, category_id, post_date)
                values ($1, $2, $3, $4, $5, $6, $7, $8)
                """,
                *(row.get(column) for column in POSTING_COLUMNS),
            )
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryConflictError(str(exc)) from exc
        except _DB_ERRORS as exc:
            raise RepositoryError(str(exc)) from exc

    async def list_postings_for_dedupe(self) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                """
                select id, title, company, description, pay_range, source_name, created_at
                from job_postings
                order by created_at asc, id asc
                """
            )
        except _DB_ERRORS as exc:
            raise RepositoryError(str(exc)) from exc
        return [dict(row) for row in rows]

    async def delete_postings(self, posting_ids: list[int]) -> int:
        if not posting_ids:
            return 0
        pool = await self._get_pool()
        try:
            deleted = await pool.fetch(
                "delete from job_postings where id = any($1::bigint[]) returning id",
                posting_ids,
            )
        except _DB_ERRORS as exc:
            raise RepositoryError(str(exc)) from exc
        return len(deleted)

    async def list_posting_sources(self) -> list[str]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch("select distinct source_name from job_postings order by source_name")
        except _DB_ERRORS as exc:
            raise RepositoryError(str(exc)) from exc
        return [row["source_name"] for row in rows]

    async def list_postings_by_source(self, source_name: str) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                "select id, title, source_url from job_postings where source_name = $1 order by id",
                source_name,
            )
        except _DB_ERRORS as exc:
            raise RepositoryError(str(exc)) from exc
        return [dict(row) for row in rows]

    async def list_stale_postings(
        self,
        *,
        updated_before: datetime,
        sources: list[str] | None,
        limit: int,
    ) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                """
                select id, title, source_name, updated_at
                from job_postings
                where updated_at < $1
                  and ($2::text[] is null or source_name = any($2::text[]))
                order by updated_at asc, id asc
                limit $3
                """,
                updated_before,
                sources or None,
                max(1, limit),
            )
        except _DB_ERRORS as exc:
            raise RepositoryError(str(exc)) from exc
        return [dict(row) for row in rows]

    async def get_job_offset(self, source: str, company_slug: str) -> int:
        pool = await self._get_pool()
        try:
            offset = await pool.fetchval(
                "select last_job_offset from company_job_progress where source = $1 and company_slug = $2",
                source,
                company_slug,
            )
        except _DB_ERRORS as exc:
            raise RepositoryError(str(exc)) from exc
        return int(offset or 0)

    async def save_job_progress(self, source: str, company_slug: str, last_job_offset: int) -> None:
        pool = await self._get_pool()
        try:
            await pool.execute(
                """
                insert into company_job_progress (source, company_slug, last_job_offset, last_synced_at)
                values ($1, $2, $3, now())
                on conflict (source, company_slug)
                do update set last_job_offset = excluded.last_job_offset, last_synced_at = excluded.last_synced_at
                """,
                source,
                company_slug,
                max(0, last_job_offset),
            )
        except _DB_ERRORS as exc:
            raise RepositoryError(str(exc)) from exc

    async def list_discovered_companies(self) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                "select slug, name, source, status from discovered_companies where status = 'active' order by slug"
            )
        except _DB_ERRORS as exc:
            raise RepositoryError(str(exc)) from exc
        return [dict(row) for row in rows]

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
        pool = await self._get_pool()
        try:
            inserted = await pool.fetchval(
                """
                insert into discovered_companies (slug, name, source, job_count, remote_job_count, sample_jobs)
                values ($1, $2, $3, $4, $5, $6::jsonb)
                on conflict (slug) do nothing
                returning slug
                """,
                slug,
                name,
                source,
                job_count,
                remote_job_count,
                json.dumps(sample_jobs),
            )
        except _DB_ERRORS as exc:
            raise RepositoryError(str(exc)) from exc
        return inserted is not None

    async def list_candidate_pool(self) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                """
                select slug, status, check_count, added_at, last_checked_at
                from potential_companies
                where status in ('pending', 'not_found')
                order by added_at asc, slug asc
                """
            )
        except _DB_ERRORS as exc:
            raise RepositoryError(str(exc)) from exc
        return [dict(row) for row in rows]

    async def mark_candidate_checking(self, slug: str) -> None:
        pool = await self._get_pool()
        try:
            updated = await pool.fetchval(
                """
                update potential_companies
                set status = 'checking', check_count = check_count + 1, last_checked_at = now()
                where slug = $1
                returning slug
                """,
                slug,
            )
        except _DB_ERRORS as exc:
            raise RepositoryError(str(exc)) from exc
        if updated is None:
            raise RepositoryNotFoundError("potential company not found")

    async def set_candidate_status(self, slug: str, status: str) -> None:
        if status not in CANDIDATE_STATUSES:
            raise RepositoryValidationError(f"invalid candidate status: {status}")
        pool = await self._get_pool()
        try:
            await pool.execute(
                "update potential_companies set status = $2, last_checked_at = now() where slug = $1",
                slug,
                status,
            )
        except _DB_ERRORS as exc:
            raise RepositoryError(str(exc)) from exc

    async def create_sync_run(self, sync_type: str) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                """
                insert into sync_history (sync_type, status)
                values ($1, 'running')
                returning id, sync_type, status, started_at
                """,
                sync_type,
            )
        except _DB_ERRORS as exc:
            raise RepositoryError(str(exc)) from exc
        return dict(row)

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
        pool = await self._get_pool()
        try:
            await pool.execute(
                """
                update sync_history
                set logs = $2::jsonb,
                    stats = $3::jsonb,
                    status = coalesce($4::text, status),
                    completed_at = case when $4::text in ('completed', 'failed') then now() else completed_at end,
                    total_items = coalesce($5, total_items),
                    last_processed_index = coalesce($6, last_processed_index),
                    error = coalesce($7, error)
                where id = $1 and status <> 'batch_state'
                """,
                run_id,
                json.dumps(logs, default=str),
                json.dumps(stats, default=str),
                status,
                total_items,
                last_processed_index,
                error,
            )
        except _DB_ERRORS as exc:
            raise RepositoryError(str(exc)) from exc

    async def get_sync_run(self, run_id: int) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                """
                select id, sync_type, status, started_at, completed_at, logs, stats,
                       last_processed_index, total_items, error
                from sync_history
                where id = $1 and status <> 'batch_state'
                """,
                run_id,
            )
        except _DB_ERRORS as exc:
            raise RepositoryError(str(exc)) from exc
        if row is None:
            raise RepositoryNotFoundError("sync run not found")
        return self._run_row_to_dict(row)

    async def list_running_runs(self) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                """
                select id, sync_type, status, started_at, completed_at, logs, stats,
                       last_processed_index, total_items, error
                from sync_history
                where status = 'running'
                order by started_at asc
                """
            )
        except _DB_ERRORS as exc:
            raise RepositoryError(str(exc)) from exc
        return [self._run_row_to_dict(row) for row in rows]

    async def get_cursor(self, sync_type: str) -> int:
        pool = await self._get_pool()
        try:
            index = await pool.fetchval(
                "select last_processed_index from sync_history where sync_type = $1 and status = 'batch_state'",
                sync_type,
            )
        except _DB_ERRORS as exc:
            raise RepositoryError(str(exc)) from exc
        return int(index or 0)

    async def set_cursor(self, sync_type: str, index: int, total_items: int) -> None:
        pool = await self._get_pool()
        try:
            await pool.execute(
                """
                insert into sync_history (sync_type, status, last_processed_index, total_items, completed_at)
                values ($1, 'batch_state', $2, $3, now())
                on conflict (sync_type) where status = 'batch_state'
                do update set last_processed_index = excluded.last_processed_index,
                              total_items = excluded.total_items,
                              completed_at = excluded.completed_at
                """,
                sync_type,
                max(0, index),
                max(0, total_items),
            )
        except _DB_ERRORS as exc:
            raise RepositoryError(str(exc)) from exc

    async def record_duplicate_pairs(self, pairs: list[dict[str, Any]]) -> int:
        if not pairs:
            return 0
        pool = await self._get_pool()
        try:
            await pool.executemany(
                """
                insert into duplicate_job_pairs (job_id_1, job_id_2, similarity_score, resolved)
                values ($1, $2, $3, $4)
                """,
                [
                    (pair["job_id_1"], pair["job_id_2"], pair["similarity_score"], pair.get("resolved", True))
                    for pair in pairs
                ],
            )
        except _DB_ERRORS as exc:
            raise RepositoryError(str(exc)) from exc
        return len(pairs)

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("JOBSYNC_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _run_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        payload = dict(row)
        for key, default in (("logs", []), ("stats", {})):
            value = payload.get(key)
            if isinstance(value, str):
                try:
                    value = json.loads(value)
                except json.JSONDecodeError:
                    value = default
            payload[key] = value if value is not None else default
        return payload


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
