from __future__ import annotations

import asyncio
from typing import Any

from jobsync.services.batch_writer import BatchedWriter
from jobsync.services.repository import RepositoryError
from jobsync.services.store import InMemoryRepository


def _row(index: int) -> dict[str, Any]:
    return {
        "title": f"Engineer {index}",
        "company": "Acme",
        "source_name": "RemoteOK",
        "source_url": f"https://remoteok.com/jobs/{index}",
        "category_id": 1,
    }


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class BrokenSink:
    """Bulk insert always fails; single inserts fail for one URL."""

    def __init__(self, bad_url: str) -> None:
        self.bad_url = bad_url
        self.rows: list[dict[str, Any]] = []

    async def insert_postings(self, rows: list[dict[str, Any]]) -> int:
        raise RepositoryError("connection reset during copy")

    async def insert_posting(self, row: dict[str, Any]) -> None:
        if row["source_url"] == self.bad_url:
            raise RepositoryError("value too long for type character varying(255)")
        self.rows.append(row)


def test_writer_flushes_partial_buffer_on_exit() -> None:
    repo = InMemoryRepository()

    async def run() -> BatchedWriter:
        async with BatchedWriter(repo, max_size=50) as writer:
            for index in range(3):
                await writer.add(_row(index))
            assert writer.pending == 3
            assert repo.postings == {}
        return writer

    writer = asyncio.run(run())
    assert writer.pending == 0
    assert writer.written == 3
    assert len(repo.postings) == 3


def test_writer_flushes_when_buffer_is_full() -> None:
    repo = InMemoryRepository()

    async def run() -> BatchedWriter:
        writer = BatchedWriter(repo, max_size=2, max_wait_seconds=60)
        for index in range(5):
            await writer.add(_row(index))
        return writer

    writer = asyncio.run(run())
    assert writer.written == 4
    assert writer.pending == 1
    assert len(repo.postings) == 4


def test_writer_flushes_when_oldest_row_waited_too_long() -> None:
    repo = InMemoryRepository()
    clock = FakeClock()

    async def run() -> BatchedWriter:
        writer = BatchedWriter(repo, max_size=50, max_wait_seconds=2.0, clock=clock)
        await writer.add(_row(1))
        clock.now = 1.0
        await writer.add(_row(2))
        assert writer.pending == 2
        clock.now = 2.5
        await writer.add(_row(3))
        return writer

    writer = asyncio.run(run())
    assert writer.pending == 0
    assert writer.written == 3


def test_writer_falls_back_to_single_inserts_and_skips_conflicts() -> None:
    repo = InMemoryRepository()
    repo.add_posting(title="Existing", source_name="RemoteOK", source_url=_row(1)["source_url"])
    messages: list[tuple[str, str]] = []

    async def run():
        writer = BatchedWriter(repo, max_size=50, on_log=lambda message, level="info": messages.append((level, message)))
        for index in range(3):
            await writer.add(_row(index))
        return writer, await writer.flush()

    writer, result = asyncio.run(run())
    assert result.fallback is True
    assert (result.attempted, result.written, result.skipped, result.failed) == (3, 2, 1, 0)
    assert writer.skipped == 1
    assert writer.failed == 0
    assert len(repo.postings) == 3
    assert not any(level == "error" for level, _ in messages)


def test_writer_counts_non_conflict_errors_as_failed() -> None:
    sink = BrokenSink(bad_url=_row(2)["source_url"])
    messages: list[tuple[str, str]] = []

    async def run():
        writer = BatchedWriter(sink, on_log=lambda message, level="info": messages.append((level, message)))
        for index in range(3):
            await writer.add(_row(index))
        return writer, await writer.flush()

    writer, result = asyncio.run(run())
    assert (result.written, result.skipped, result.failed) == (2, 0, 1)
    assert writer.failed == 1
    assert [row["title"] for row in sink.rows] == ["Engineer 0", "Engineer 1"]
    assert any(level == "error" and "Engineer 2" in message for level, message in messages)


def test_flush_of_empty_buffer_is_a_no_op() -> None:
    repo = InMemoryRepository()
    result = asyncio.run(BatchedWriter(repo).flush())
    assert result.attempted == 0
    assert result.fallback is False
