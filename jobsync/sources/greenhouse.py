from __future__ import annotations

from typing import Any

import httpx

from jobsync.services.sanitize import html_to_text, summarize_words
from jobsync.sources.base import AtsJobSource, RawPosting
from jobsync.sources.http import fetch_json
from jobsync.sources.salary import extract_salary
from jobsync.sources.timestamps import parse_timestamp

BOARDS_API_URL = "https://boards-api.greenhouse.io/v1/boards/{slug}/jobs"


class GreenhouseSource(AtsJobSource):
    name = "Greenhouse"

    async def fetch_company_jobs(self, client: httpx.AsyncClient, slug: str) -> list[dict]:
        payload = await fetch_json(
            client,
            BOARDS_API_URL.format(slug=slug),
            source=self.name,
            params={"content": "true"},
            max_retries=self.max_retries,
            retry_base_seconds=self.retry_base_seconds,
        )
        jobs = payload.get("jobs") if isinstance(payload, dict) else None
        return [job for job in jobs if isinstance(job, dict)] if isinstance(jobs, list) else []

    def is_remote(self, job: dict) -> bool:
        return "remote" in location_name(job).lower()

    def to_posting(self, job: dict, slug: str) -> RawPosting | None:
        url = job.get("absolute_url")
        title = job.get("title")
        if not url or not title:
            return None
        text = html_to_text(job.get("content"))
        return RawPosting(
            title=title,
            source_url=url,
            source_name=self.name,
            company=job.get("company_name") or slug.replace("-", " ").title(),
            description=summarize_words(text),
            salary=_metadata_salary(job.get("metadata")) or extract_salary(text),
            posted_date=parse_timestamp(job.get("updated_at") or job.get("first_published")),
            tags=[dept["name"] for dept in job.get("departments") or [] if isinstance(dept, dict) and dept.get("name")],
            external_id=f"greenhouse-{job.get('id')}",
            location=location_name(job) or "Remote",
        )


def location_name(job: dict) -> str:
    location = job.get("location")
    if isinstance(location, dict) and isinstance(location.get("name"), str):
        return location["name"]
    return ""


def _metadata_salary(metadata: Any) -> str | None:
    if not isinstance(metadata, list):
        return None
    for field in metadata:
        if not isinstance(field, dict):
            continue
        name = str(field.get("name") or "").lower()
        if ("salary" in name or "compensation" in name) and field.get("value"):
            value = field["value"]
            if isinstance(value, dict):
                return _format_metadata_range(value)
            return str(value)
    return None


def _format_metadata_range(value: dict) -> str | None:
    low = value.get("min_value")
    high = value.get("max_value")
    if low is None and high is None:
        return None
    unit = value.get("unit") or ""
    return f"{unit} {low or '?'} - {high or '?'}".strip()
