from __future__ import annotations

from collections.abc import AsyncIterator

from jobsync.services.sanitize import html_to_text
from jobsync.sources.base import HttpJobSource, LogFn, RawPosting, emit
from jobsync.sources.http import fetch_json
from jobsync.sources.salary import format_salary_range
from jobsync.sources.timestamps import parse_timestamp

FEED_URL = "https://himalayas.app/jobs/api"
PAGE_SIZE = 20
MAX_PAGES = 500


class HimalayasSource(HttpJobSource):
    """Paginated aggregator; only jobs without location restrictions are kept."""

    name = "Himalayas"
    kind = "aggregator"

    async def fetch(
        self,
        company_filter: list[str] | None = None,
        *,
        log: LogFn | None = None,
        job_offset: int | None = None,
        limit: int | None = None,
    ) -> AsyncIterator[list[RawPosting]]:
        wanted = {company.lower() for company in company_filter} if company_filter else None
        total = 0
        async with self.client_scope() as client:
            for page in range(MAX_PAGES):
                payload = await fetch_json(
                    client,
                    FEED_URL,
                    source=self.name,
                    params={"limit": PAGE_SIZE, "offset": page * PAGE_SIZE},
                    max_retries=self.max_retries,
                    retry_base_seconds=self.retry_base_seconds,
                )
                jobs = payload.get("jobs") if isinstance(payload, dict) else None
                if not isinstance(jobs, list) or not jobs:
                    break

                postings = [
                    posting
                    for posting in (_to_posting(job) for job in jobs if isinstance(job, dict))
                    if posting and (wanted is None or (posting.company or "").lower() in wanted)
                ]
                if postings:
                    total += len(postings)
                    yield postings
                if len(jobs) < PAGE_SIZE:
                    break
                if limit is not None and limit > 0 and total >= limit:
                    break
        emit(log, f"{self.name}: fetched {total} remote job(s)")


def _to_posting(job: dict) -> RawPosting | None:
    if job.get("locationRestrictions"):
        return None
    url = job.get("applicationLink")
    title = job.get("title")
    if not url or not title:
        return None
    salary = None
    if job.get("minSalary") and job.get("maxSalary") and job.get("currency"):
        salary = format_salary_range(job["minSalary"], job["maxSalary"], currency=job["currency"])
    return RawPosting(
        title=title,
        source_url=url,
        source_name=HimalayasSource.name,
        company=job.get("companyName"),
        description=html_to_text(job.get("description") or job.get("excerpt")),
        salary=salary,
        posted_date=parse_timestamp(job.get("pubDate")),
        tags=[str(tag) for tag in job.get("categories") or [] if tag],
        external_id=f"himalayas-{job.get('guid')}",
        location="Remote",
    )
