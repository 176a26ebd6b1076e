from __future__ import annotations

from collections.abc import AsyncIterator

from jobsync.services.sanitize import html_to_text
from jobsync.sources.base import HttpJobSource, LogFn, RawPosting, emit
from jobsync.sources.http import fetch_json
from jobsync.sources.timestamps import parse_timestamp

FEED_URL = "https://jobicy.com/api/v2/remote-jobs"
MAX_COUNT = 100


class JobicySource(HttpJobSource):
    """Single-request aggregator; the API caps one response at 100 jobs."""

    name = "Jobicy"
    kind = "aggregator"

    def __init__(self, *, tag: str | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.tag = tag

    async def fetch(
        self,
        company_filter: list[str] | None = None,
        *,
        log: LogFn | None = None,
        job_offset: int | None = None,
        limit: int | None = None,
    ) -> AsyncIterator[list[RawPosting]]:
        params: dict[str, str | int] = {"count": min(limit or MAX_COUNT, MAX_COUNT)}
        if self.tag:
            params["tag"] = self.tag
        async with self.client_scope() as client:
            payload = await fetch_json(
                client,
                FEED_URL,
                source=self.name,
                params=params,
                max_retries=self.max_retries,
                retry_base_seconds=self.retry_base_seconds,
            )
        jobs = payload.get("jobs") if isinstance(payload, dict) else None
        rows = [job for job in jobs if isinstance(job, dict)] if isinstance(jobs, list) else []
        postings = [posting for posting in (_to_posting(row) for row in rows) if posting]
        if company_filter:
            wanted = {company.lower() for company in company_filter}
            postings = [posting for posting in postings if (posting.company or "").lower() in wanted]
        emit(log, f"{self.name}: fetched {len(postings)} job(s)")
        if postings:
            yield postings


def format_annual_salary(minimum, maximum, currency: str | None) -> str | None:
    if not minimum:
        return None
    prefix = f"{currency} " if currency else ""
    if maximum:
        return f"{prefix}{int(minimum):,} - {int(maximum):,}/year"
    return f"{prefix}{int(minimum):,}+/year"


def _to_posting(row: dict) -> RawPosting | None:
    url = row.get("url")
    title = row.get("jobTitle")
    if not url or not title:
        return None
    industries = row.get("jobIndustry")
    return RawPosting(
        title=html_to_text(title) or title,
        source_url=url,
        source_name=JobicySource.name,
        company=row.get("companyName") or "Unknown Company",
        description=html_to_text(row.get("jobExcerpt") or row.get("jobDescription")),
        salary=format_annual_salary(row.get("annualSalaryMin"), row.get("annualSalaryMax"), row.get("salaryCurrency")),
        posted_date=parse_timestamp(row.get("pubDate")),
        tags=[str(value) for value in industries if value] if isinstance(industries, list) else [],
        external_id=f"jobicy-{row.get('id')}",
        location=row.get("jobGeo") or "Remote",
    )
