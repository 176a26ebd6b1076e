from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Any

from jobsync.core.config import Settings, get_settings
from jobsync.sources.timestamps import parse_timestamp

logger = logging.getLogger(__name__)


def run_expired(run: dict[str, Any], now: datetime | None = None, *, max_age: timedelta) -> bool:
    now = now or datetime.now(timezone.utc)
    started_at = parse_timestamp(run.get("started_at"))
    if started_at is None:
        return False
    return started_at <= now - max_age


def should_fail(run: dict[str, Any], now: datetime | None = None, *, max_age: timedelta) -> bool:
    return run.get("status") == "running" and run_expired(run, now=now, max_age=max_age)


async def fail_stuck_runs(
    repository: Any,
    *,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Mark runs abandoned mid-invocation as failed so they stop reading as in progress."""
    settings = settings or get_settings()
    max_age = timedelta(minutes=max(1, settings.stuck_run_after_minutes))
    now = now or datetime.now(timezone.utc)

    failed_ids: list[int] = []
    for run in await repository.list_running_runs():
        if not should_fail(run, now=now, max_age=max_age):
            continue
        logs = list(run.get("logs") or [])
        logs.append(
            {
                "timestamp": now.isoformat(),
                "level": "error",
                "message": f"Run exceeded {settings.stuck_run_after_minutes} minutes without finishing; marked failed",
            }
        )
        await repository.update_sync_run(
            run["id"],
            logs=logs,
            stats=dict(run.get("stats") or {}),
            status="failed",
            error="stuck run timed out",
        )
        failed_ids.append(int(run["id"]))

    if failed_ids:
        logger.info("marked stuck runs as failed: %s", failed_ids)
    return {"success": True, "failed_runs": failed_ids}
