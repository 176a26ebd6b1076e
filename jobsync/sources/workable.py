from __future__ import annotations

import httpx

from jobsync.sources.base import AtsJobSource, RawPosting
from jobsync.sources.http import fetch_json
from jobsync.sources.timestamps import parse_timestamp

ACCOUNT_API_URL = "https://apply.workable.com/api/v1/widget/accounts/{slug}"
JOB_PAGE_URL = "https://apply.workable.com/{slug}/j/{shortcode}/"


class WorkableSource(AtsJobSource):
    """Workable widget API; listings carry no description or salary."""

    name = "Workable"

    async def fetch_company_jobs(self, client: httpx.AsyncClient, slug: str) -> list[dict]:
        payload = await fetch_json(
            client,
            ACCOUNT_API_URL.format(slug=slug),
            source=self.name,
            max_retries=self.max_retries,
            retry_base_seconds=self.retry_base_seconds,
        )
        jobs = payload.get("jobs") if isinstance(payload, dict) else None
        return [job for job in jobs if isinstance(job, dict)] if isinstance(jobs, list) else []

    def is_remote(self, job: dict) -> bool:
        return job.get("telecommuting") is True or "remote" in str(job.get("title") or "").lower()

    def to_posting(self, job: dict, slug: str) -> RawPosting | None:
        title = job.get("title")
        shortcode = job.get("shortcode")
        url = job.get("url") or job.get("application_url")
        if not url and shortcode:
            url = JOB_PAGE_URL.format(slug=slug, shortcode=shortcode)
        if not url or not title:
            return None
        return RawPosting(
            title=title,
            source_url=url,
            source_name=self.name,
            company=company_name(slug),
            posted_date=parse_timestamp(job.get("created_at") or job.get("published_on")),
            tags=_tags(job),
            external_id=f"workable-{shortcode or job.get('id')}",
            location=_location(job),
        )


def company_name(slug: str) -> str:
    name = slug.replace("-", " ")
    return name[:1].upper() + name[1:]


def _tags(job: dict) -> list[str]:
    tags: list[str] = []
    if job.get("department"):
        tags.append(str(job["department"]))
    for entry in job.get("department_hierarchy") or []:
        if isinstance(entry, dict) and entry.get("name"):
            tags.append(str(entry["name"]))
    return list(dict.fromkeys(tags))


def _location(job: dict) -> str:
    parts = [str(job[key]) for key in ("city", "country") if job.get(key)]
    if not parts:
        locations = job.get("locations")
        if isinstance(locations, list) and locations and isinstance(locations[0], dict):
            first = locations[0]
            parts = [str(first[key]) for key in ("city", "country") if first.get(key)]
    location = ", ".join(parts) or "Remote"
    if job.get("telecommuting") is True and location != "Remote":
        location = f"{location} (Remote)"
    return location
