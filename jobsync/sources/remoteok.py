from __future__ import annotations

from collections.abc import AsyncIterator

from jobsync.services.sanitize import html_to_text
from jobsync.sources.base import HttpJobSource, LogFn, RawPosting, emit
from jobsync.sources.http import fetch_json
from jobsync.sources.salary import format_salary_range
from jobsync.sources.timestamps import parse_timestamp

FEED_URL = "https://remoteok.com/api"


class RemoteOKSource(HttpJobSource):
    """Whole-feed aggregator; the first array element is API metadata."""

    name = "RemoteOK"
    kind = "aggregator"

    async def fetch(
        self,
        company_filter: list[str] | None = None,
        *,
        log: LogFn | None = None,
        job_offset: int | None = None,
        limit: int | None = None,
    ) -> AsyncIterator[list[RawPosting]]:
        async with self.client_scope() as client:
            payload = await fetch_json(
                client,
                FEED_URL,
                source=self.name,
                max_retries=self.max_retries,
                retry_base_seconds=self.retry_base_seconds,
            )
        rows = payload[1:] if isinstance(payload, list) else []
        postings = [posting for posting in (_to_posting(row) for row in rows if isinstance(row, dict)) if posting]
        if company_filter:
            wanted = {company.lower() for company in company_filter}
            postings = [posting for posting in postings if (posting.company or "").lower() in wanted]
        emit(log, f"{self.name}: fetched {len(postings)} job(s)")
        if postings:
            yield postings


def _to_posting(row: dict) -> RawPosting | None:
    if not row.get("position") or not row.get("url") or row.get("expired"):
        return None
    return RawPosting(
        title=row["position"],
        source_url=row["url"],
        source_name=RemoteOKSource.name,
        company=row.get("company") or "Unknown Company",
        description=html_to_text(row.get("description")),
        salary=format_salary_range(row.get("salary_min"), row.get("salary_max")),
        posted_date=parse_timestamp(row.get("date") or row.get("epoch")),
        tags=[str(tag) for tag in row.get("tags") or []],
        external_id=f"remoteok-{row.get('id')}",
        location="Remote",
    )
