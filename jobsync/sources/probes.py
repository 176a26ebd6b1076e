from __future__ import annotations

from dataclasses import dataclass, field
import logging
import re
from typing import Protocol

import httpx

from jobsync.sources.base import HttpJobSource, SourceFetchError
from jobsync.sources.greenhouse import BOARDS_API_URL, location_name
from jobsync.sources.http import fetch_json
from jobsync.sources.lever import POSTINGS_API_URL

logger = logging.getLogger(__name__)

MAX_PROBE_JOBS = 10
_GREENHOUSE_SLUG_RE = re.compile(r"[^a-z0-9-]")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(slots=True)
class ProbeCompany:
    slug: str
    name: str
    job_count: int
    remote_job_count: int


@dataclass(slots=True)
class ProbeResult:
    found: bool
    source: str
    company: ProbeCompany | None = None
    jobs: list[dict[str, str]] = field(default_factory=list)
    error: str | None = None


class CompanyProbe(Protocol):
    name: str

    async def probe(self, query: str) -> ProbeResult: ...


class GreenhouseProbe(HttpJobSource):
    name = "Greenhouse"

    async def probe(self, query: str) -> ProbeResult:
        slug = _GREENHOUSE_SLUG_RE.sub("", _WHITESPACE_RE.sub("-", query.strip().lower()))
        if not slug:
            return ProbeResult(found=False, source=self.name, error="empty company slug")
        try:
            async with self.client_scope() as client:
                payload = await fetch_json(
                    client,
                    BOARDS_API_URL.format(slug=slug),
                    source=self.name,
                    max_retries=self.max_retries,
                    retry_base_seconds=self.retry_base_seconds,
                )
        except SourceFetchError as exc:
            return _miss(self.name, exc)
        except httpx.HTTPError as exc:
            logger.warning("company lookup failed source=%s: %s", self.name, exc)
            return ProbeResult(found=False, source=self.name, error=str(exc))

        jobs = payload.get("jobs") if isinstance(payload, dict) else None
        if not isinstance(jobs, list):
            return ProbeResult(found=False, source=self.name, error="no jobs data in response")
        jobs = [job for job in jobs if isinstance(job, dict)]
        remote = [job for job in jobs if "remote" in location_name(job).lower()]
        if not remote:
            return _no_remote(self.name, len(jobs))
        return ProbeResult(
            found=True,
            source=self.name,
            company=ProbeCompany(
                slug=slug,
                name=jobs[0].get("company_name") or slug,
                job_count=len(jobs),
                remote_job_count=len(remote),
            ),
            jobs=[
                {"title": str(job.get("title") or ""), "url": str(job.get("absolute_url") or "")}
                for job in remote[:MAX_PROBE_JOBS]
            ],
        )


class LeverProbe(HttpJobSource):
    name = "Lever"

    async def probe(self, query: str) -> ProbeResult:
        slug = _WHITESPACE_RE.sub("", query.strip().lower())
        if not slug:
            return ProbeResult(found=False, source=self.name, error="empty company slug")
        try:
            async with self.client_scope() as client:
                payload = await fetch_json(
                    client,
                    POSTINGS_API_URL.format(slug=slug),
                    source=self.name,
                    params={"mode": "json"},
                    max_retries=self.max_retries,
                    retry_base_seconds=self.retry_base_seconds,
                )
        except SourceFetchError as exc:
            return _miss(self.name, exc)
        except httpx.HTTPError as exc:
            logger.warning("company lookup failed source=%s: %s", self.name, exc)
            return ProbeResult(found=False, source=self.name, error=str(exc))

        if not isinstance(payload, list):
            return ProbeResult(found=False, source=self.name, error="invalid response format")
        jobs = [job for job in payload if isinstance(job, dict)]
        remote = [job for job in jobs if _lever_is_remote(job)]
        if not remote:
            return _no_remote(self.name, len(jobs))
        return ProbeResult(
            found=True,
            source=self.name,
            company=ProbeCompany(
                slug=slug,
                name=jobs[0].get("companyName") or slug,
                job_count=len(jobs),
                remote_job_count=len(remote),
            ),
            jobs=[
                {"title": str(job.get("text") or ""), "url": str(job.get("hostedUrl") or "")}
                for job in remote[:MAX_PROBE_JOBS]
            ],
        )


def build_probes(*, client: httpx.AsyncClient | None = None, **http_options) -> list[CompanyProbe]:
    """Probes in priority order; discovery stops at the first hit."""
    return [GreenhouseProbe(client=client, **http_options), LeverProbe(client=client, **http_options)]


def _lever_is_remote(job: dict) -> bool:
    categories = job.get("categories") if isinstance(job.get("categories"), dict) else {}
    location = str(categories.get("location") or "").lower()
    commitment = str(categories.get("commitment") or "").lower()
    return "remote" in location or "remote" in commitment


def _no_remote(source: str, job_count: int) -> ProbeResult:
    return ProbeResult(found=False, source=source, error=f"board has {job_count} job(s) but none remote")


def _miss(source: str, exc: SourceFetchError) -> ProbeResult:
    if exc.status_code == 404:
        return ProbeResult(found=False, source=source, error=f"company not found on {source}")
    logger.warning("company probe failed source=%s: %s", source, exc)
    return ProbeResult(found=False, source=source, error=str(exc))
