from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
import logging
import time
from typing import Any, Protocol

from jobsync.services.repository import RepositoryError

logger = logging.getLogger(__name__)


class PostingSink(Protocol):
    async def insert_postings(self, rows: list[dict[str, Any]]) -> int: ...

    async def insert_posting(self, row: dict[str, Any]) -> None: ...


@dataclass(slots=True)
class FlushResult:
    attempted: int
    written: int
    skipped: int
    failed: int
    fallback: bool


class BatchedWriter:
    """Buffers new postings and writes them in bulk.

    A flush happens when the buffer reaches ``max_size`` or its oldest row is
    older than ``max_wait_seconds``, whichever comes first. Callers must
    ``flush()`` (or use ``async with``) to persist a partial buffer.
    """

    def __init__(
        self,
        sink: PostingSink,
        *,
        max_size: int = 50,
        max_wait_seconds: float = 2.0,
        on_log: Callable[..., None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.sink = sink
        self.max_size = max(1, max_size)
        self.max_wait_seconds = max(0.0, max_wait_seconds)
        self.on_log = on_log
        self.clock = clock
        self.written = 0
        self.skipped = 0
        self.failed = 0
        self._buffer: list[dict[str, Any]] = []
        self._oldest_at: float | None = None
        self._lock = asyncio.Lock()

    @property
    def pending(self) -> int:
        return len(self._buffer)

    async def __aenter__(self) -> "BatchedWriter":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.flush()

    async def add(self, row: dict[str, Any]) -> None:
        if not self._buffer:
            self._oldest_at = self.clock()
        self._buffer.append(row)
        if len(self._buffer) >= self.max_size or self._waited_too_long():
            await self.flush()

    async def flush(self) -> FlushResult:
        async with self._lock:
            batch, self._buffer = self._buffer, []
            self._oldest_at = None
            if not batch:
                return FlushResult(attempted=0, written=0, skipped=0, failed=0, fallback=False)

            try:
                written = await self.sink.insert_postings(batch)
            except RepositoryError as exc:
                logger.warning("bulk insert of %s rows failed (%s); retrying individually", len(batch), exc.kind)
                return await self._write_individually(batch)

            self.written += written
            self._log(f"Flushed {written} new job(s)")
            return FlushResult(attempted=len(batch), written=written, skipped=0, failed=0, fallback=False)

    async def _write_individually(self, batch: list[dict[str, Any]]) -> FlushResult:
        written = skipped = failed = 0
        for row in batch:
            try:
                await self.sink.insert_posting(row)
            except RepositoryError as exc:
                if exc.kind == "conflict":
                    skipped += 1
                    continue
                failed += 1
                logger.error("insert failed for source_url=%s: %s", row.get("source_url"), exc)
                self._log(f"Failed to insert {row.get('title') or row.get('source_url')}: {exc}", "error")
                continue
            written += 1

        self.written += written
        self.skipped += skipped
        self.failed += failed
        self._log(f"Flushed {written} new job(s) individually ({skipped} skipped, {failed} failed)")
        return FlushResult(attempted=len(batch), written=written, skipped=skipped, failed=failed, fallback=True)

    def _waited_too_long(self) -> bool:
        return self._oldest_at is not None and self.clock() - self._oldest_at >= self.max_wait_seconds

    def _log(self, message: str, level: str = "info") -> None:
        if self.on_log is not None:
            self.on_log(message, level)
