from __future__ import annotations

import httpx

from jobsync.services.sanitize import html_to_text, summarize_words
from jobsync.sources.base import AtsJobSource, RawPosting
from jobsync.sources.http import fetch_json
from jobsync.sources.salary import extract_salary, format_salary_range
from jobsync.sources.timestamps import parse_timestamp

POSTINGS_API_URL = "https://api.lever.co/v0/postings/{slug}"


class LeverSource(AtsJobSource):
    name = "Lever"

    async def fetch_company_jobs(self, client: httpx.AsyncClient, slug: str) -> list[dict]:
        payload = await fetch_json(
            client,
            POSTINGS_API_URL.format(slug=slug),
            source=self.name,
            params={"mode": "json"},
            max_retries=self.max_retries,
            retry_base_seconds=self.retry_base_seconds,
        )
        return [job for job in payload if isinstance(job, dict)] if isinstance(payload, list) else []

    def is_remote(self, job: dict) -> bool:
        categories = _categories(job)
        haystack = " ".join(
            str(value or "")
            for value in (
                categories.get("location"),
                categories.get("commitment"),
                job.get("workplaceType"),
                job.get("descriptionPlain"),
            )
        )
        return "remote" in haystack.lower()

    def to_posting(self, job: dict, slug: str) -> RawPosting | None:
        url = job.get("applyUrl") or job.get("hostedUrl")
        title = job.get("text")
        if not url or not title:
            return None
        categories = _categories(job)
        text = html_to_text(job.get("description"))
        salary = _salary_range(job.get("salaryRange"))
        if salary is None:
            salary = extract_salary(f"{job.get('descriptionPlain') or ''}\n{job.get('additionalPlain') or ''}")
        tags = [
            str(value)
            for value in (categories.get("team"), categories.get("department"), categories.get("commitment"))
            if value
        ]
        return RawPosting(
            title=title,
            source_url=url,
            source_name=self.name,
            company=job.get("companyName") or slug.replace("-", " ").title(),
            description=summarize_words(text),
            salary=salary,
            posted_date=parse_timestamp(job.get("createdAt")),
            tags=tags,
            external_id=f"lever-{job.get('id')}",
            location=categories.get("location") or "Remote",
        )


def _categories(job: dict) -> dict:
    categories = job.get("categories")
    return categories if isinstance(categories, dict) else {}


def _salary_range(value: object) -> str | None:
    if not isinstance(value, dict):
        return None
    if not value.get("min") or not value.get("max"):
        return None
    return format_salary_range(value.get("min"), value.get("max"), currency=value.get("currency") or "USD")
