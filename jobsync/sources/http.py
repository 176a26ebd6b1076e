from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
import logging
import random
from typing import Any

import httpx

from jobsync.sources.base import SourceFetchError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
MAX_RETRY_AFTER_SECONDS = 30.0


async def fetch_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    source: str,
    params: dict[str, Any] | None = None,
    max_retries: int = 3,
    retry_base_seconds: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Any:
    attempt = 0
    while True:
        try:
            response = await client.get(url, params=params)
        except httpx.TransportError as exc:
            if attempt >= max_retries:
                raise SourceFetchError(source, f"request failed: {exc}") from exc
            delay = _backoff_delay(attempt, retry_base_seconds)
            logger.warning("source request failed source=%s url=%s; retry in %.1fs", source, url, delay)
            attempt += 1
            await sleep(delay)
            continue
        except httpx.HTTPError as exc:
            raise SourceFetchError(source, f"request failed: {exc}") from exc

        if response.status_code in RETRYABLE_STATUS_CODES and attempt < max_retries:
            delay = _retry_after_seconds(response) if response.status_code == 429 else None
            if delay is None:
                delay = _backoff_delay(attempt, retry_base_seconds)
            logger.warning(
                "source returned status=%s source=%s url=%s; retry in %.1fs",
                response.status_code,
                source,
                url,
                delay,
            )
            attempt += 1
            await sleep(delay)
            continue

        if response.status_code >= 400:
            raise SourceFetchError(
                source,
                f"HTTP {response.status_code} for {url}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise SourceFetchError(source, f"invalid JSON from {url}") from exc


def _backoff_delay(attempt: int, base_seconds: float) -> float:
    jitter = random.uniform(0.0, 0.25)
    return base_seconds * (2**attempt) + jitter


def _retry_after_seconds(response: httpx.Response) -> float | None:
    raw = response.headers.get("retry-after")
    if not raw:
        return None
    raw = raw.strip()
    try:
        seconds = float(raw)
    except ValueError:
        try:
            retry_at = parsedate_to_datetime(raw)
        except (TypeError, ValueError):
            return None
        if retry_at.tzinfo is None:
            retry_at = retry_at.replace(tzinfo=timezone.utc)
        seconds = (retry_at - datetime.now(timezone.utc)).total_seconds()
    return min(MAX_RETRY_AFTER_SECONDS, max(0.0, seconds))
