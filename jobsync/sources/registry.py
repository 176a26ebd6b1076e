from __future__ import annotations

from collections.abc import Mapping

import httpx

from jobsync.core.config import Settings
from jobsync.sources.base import JobSource
from jobsync.sources.greenhouse import GreenhouseSource
from jobsync.sources.himalayas import HimalayasSource
from jobsync.sources.jobicy import JobicySource
from jobsync.sources.lever import LeverSource
from jobsync.sources.remoteok import RemoteOKSource
from jobsync.sources.workable import WorkableSource


def build_sources(settings: Settings, *, client: httpx.AsyncClient | None = None) -> dict[str, JobSource]:
    http_options = {
        "client": client,
        "timeout_seconds": settings.http_timeout_seconds,
        "max_retries": settings.http_max_retries,
        "retry_base_seconds": settings.http_retry_base_seconds,
    }
    sources: list[JobSource] = [
        GreenhouseSource(settings.greenhouse_companies, **http_options),
        LeverSource(settings.lever_companies, **http_options),
        WorkableSource(settings.workable_companies, **http_options),
        RemoteOKSource(**http_options),
        HimalayasSource(**http_options),
        JobicySource(tag=settings.jobicy_tag, **http_options),
    ]
    return {source.name: source for source in sources}


def seed_companies(settings: Settings) -> dict[str, list[str]]:
    """Configured ATS slugs, merged with discovered companies when building a worklist."""
    return {
        "Greenhouse": settings.greenhouse_companies,
        "Lever": settings.lever_companies,
        "Workable": settings.workable_companies,
    }


def resolve_source(sources: Mapping[str, JobSource], name: str) -> JobSource | None:
    if name in sources:
        return sources[name]
    lowered = name.strip().lower()
    for key, source in sources.items():
        if key.lower() == lowered:
            return source
    return None
