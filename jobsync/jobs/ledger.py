from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timezone
import logging
import time
from typing import Any, Literal, Protocol

from jobsync.services.repository import RepositoryError

logger = logging.getLogger(__name__)

LogLevel = Literal["info", "success", "warning", "error"]

_LOGGING_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class HistoryStore(Protocol):
    async def create_sync_run(self, sync_type: str) -> dict[str, Any]: ...

    async def update_sync_run(self, run_id: int, **fields: Any) -> None: ...

    async def get_cursor(self, sync_type: str) -> int: ...

    async def set_cursor(self, sync_type: str, index: int, total_items: int) -> None: ...


class RunLog:
    """One SyncHistory run: ordered log lines plus running stats.

    History writes are best effort. A failed write is logged and the run
    keeps going; postings already written are never rolled back.
    """

    def __init__(
        self,
        repository: HistoryStore,
        sync_type: str,
        *,
        flush_interval_seconds: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.repository = repository
        self.sync_type = sync_type
        self.run_id: int | None = None
        self.entries: list[dict[str, str]] = []
        self.stats: dict[str, int] = {}
        self.flush_interval_seconds = flush_interval_seconds
        self.clock = clock
        self._last_flush_at = clock()
        self._lock = asyncio.Lock()

    async def start(self) -> int:
        row = await self.repository.create_sync_run(self.sync_type)
        self.run_id = int(row["id"])
        return self.run_id

    def log(self, message: str, level: LogLevel = "info") -> None:
        self.entries.append(
            {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "level": level,
                "message": message,
            }
        )
        logger.log(
            _LOGGING_LEVELS.get(level, logging.INFO),
            "%s run=%s %s",
            self.sync_type,
            self.run_id,
            message,
        )

    def bump(self, key: str, amount: int = 1) -> None:
        self.stats[key] = self.stats.get(key, 0) + amount

    async def checkpoint(self, **fields: Any) -> bool:
        return await self._persist(**fields)

    async def maybe_flush(self) -> None:
        if self.clock() - self._last_flush_at >= self.flush_interval_seconds:
            await self._persist()

    async def complete(self, **fields: Any) -> bool:
        return await self._persist(status="completed", **fields)

    async def fail(self, error: str) -> bool:
        self.log(f"Run failed: {error}", "error")
        return await self._persist(status="failed", error=error)

    def failure(self, error: str) -> dict[str, Any]:
        return {"success": False, "error": error, "sync_id": self.run_id, "logs": list(self.entries)}

    async def _persist(self, **fields: Any) -> bool:
        if self.run_id is None:
            return False
        async with self._lock:
            try:
                await self.repository.update_sync_run(
                    self.run_id,
                    logs=list(self.entries),
                    stats=dict(self.stats),
                    **fields,
                )
            except RepositoryError as exc:
                logger.warning("sync history write failed run=%s: %s", self.run_id, exc)
                return False
            self._last_flush_at = self.clock()
            return True


async def read_cursor(repository: HistoryStore, sync_type: str) -> int:
    return max(0, await repository.get_cursor(sync_type))


async def write_cursor(repository: HistoryStore, sync_type: str, index: int, total_items: int) -> bool:
    try:
        await repository.set_cursor(sync_type, index, total_items)
    except RepositoryError as exc:
        logger.warning("cursor write failed sync_type=%s index=%s: %s", sync_type, index, exc)
        return False
    return True
