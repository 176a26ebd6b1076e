from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Protocol

import httpx

SourceKind = Literal["ats", "aggregator"]
LogFn = Callable[..., None]

USER_AGENT = "jobsync/0.1 (+remote job aggregator)"


class SourceFetchError(Exception):
    """Raised when an external job source cannot be read."""

    def __init__(self, source: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source
        self.status_code = status_code


@dataclass(slots=True)
class RawPosting:
    title: str
    source_url: str
    source_name: str
    company: str | None = None
    description: str | None = None
    salary: str | None = None
    posted_date: datetime | None = None
    tags: list[str] = field(default_factory=list)
    external_id: str | None = None
    location: str | None = None


class JobSource(Protocol):
    name: str
    kind: SourceKind

    def fetch(
        self,
        company_filter: list[str] | None = None,
        *,
        log: LogFn | None = None,
        job_offset: int | None = None,
        limit: int | None = None,
    ) -> AsyncIterator[list[RawPosting]]: ...


class HttpJobSource:
    """Shared plumbing for adapters backed by a JSON HTTP API."""

    name = "unknown"
    kind: SourceKind = "aggregator"

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 15.0,
        max_retries: int = 3,
        retry_base_seconds: float = 1.0,
    ) -> None:
        self.client = client
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.retry_base_seconds = retry_base_seconds

    @asynccontextmanager
    async def client_scope(self) -> AsyncIterator[httpx.AsyncClient]:
        if self.client is not None:
            yield self.client
            return
        async with httpx.AsyncClient(
            timeout=self.timeout_seconds,
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        ) as temp_client:
            yield temp_client


def emit(log: LogFn | None, message: str, level: str = "info") -> None:
    if log is not None:
        log(message, level)


def slice_window(items: list, job_offset: int | None, limit: int | None) -> list:
    start = job_offset if job_offset is not None and job_offset > 0 else 0
    if limit is not None and limit > 0:
        return items[start : start + limit]
    return items[start:]


class AtsJobSource(HttpJobSource):
    """Per-company ATS board.

    Offsets index the usable remote postings of a board, so rows that cannot
    be mapped never shorten a window.
    """

    kind: SourceKind = "ats"

    def __init__(self, companies: list[str] | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.companies = list(dict.fromkeys(companies or []))

    async def fetch(
        self,
        company_filter: list[str] | None = None,
        *,
        log: LogFn | None = None,
        job_offset: int | None = None,
        limit: int | None = None,
    ) -> AsyncIterator[list[RawPosting]]:
        companies = list(dict.fromkeys(company_filter)) if company_filter else self.companies
        async with self.client_scope() as client:
            for slug in companies:
                try:
                    jobs = await self.fetch_company_jobs(client, slug)
                except SourceFetchError as exc:
                    if exc.status_code != 404:
                        raise
                    emit(log, f"{self.name}: no board for {slug}", "warning")
                    continue

                remote_jobs = [job for job in jobs if self.is_remote(job)]
                usable = [posting for posting in (self.to_posting(job, slug) for job in remote_jobs) if posting]
                postings = slice_window(usable, job_offset, limit)
                emit(log, f"{self.name}: {slug} returned {len(postings)} of {len(usable)} remote job(s)")
                if postings:
                    yield postings

    async def fetch_company_jobs(self, client: httpx.AsyncClient, slug: str) -> list[dict]:
        raise NotImplementedError

    def is_remote(self, job: dict) -> bool:
        raise NotImplementedError

    def to_posting(self, job: dict, slug: str) -> RawPosting | None:
        raise NotImplementedError
