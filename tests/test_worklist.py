from __future__ import annotations

import asyncio

from jobsync.jobs.worklist import WorkItem, Worklist, advance_cursor, build_worklist, select_window
from jobsync.services.store import InMemoryRepository


class StubSource:
    def __init__(self, name: str, kind: str) -> None:
        self.name = name
        self.kind = kind

    async def fetch(self, company_filter=None, *, log=None, job_offset=None, limit=None):
        if False:
            yield []


def _sources() -> dict[str, StubSource]:
    return {
        "Greenhouse": StubSource("Greenhouse", "ats"),
        "Lever": StubSource("Lever", "ats"),
        "RemoteOK": StubSource("RemoteOK", "aggregator"),
        "Himalayas": StubSource("Himalayas", "aggregator"),
    }


def test_select_window_walks_and_wraps() -> None:
    first = select_window(7, 0, 3)
    assert (first.start, first.end, first.next_index, first.wrapped_around) == (0, 3, 3, False)

    last = select_window(7, 6, 3)
    assert (last.start, last.end, last.next_index, last.wrapped_around) == (6, 7, 0, True)


def test_select_window_restarts_when_cursor_is_past_the_end() -> None:
    window = select_window(4, 9, 5)
    assert (window.start, window.end, window.next_index, window.wrapped_around) == (0, 4, 0, True)


def test_select_window_on_empty_worklist() -> None:
    window = select_window(0, 3, 5)
    assert window.size == 0
    assert window.next_index == 0
    assert window.wrapped_around


def test_advance_cursor_stops_at_completed_prefix() -> None:
    window = select_window(10, 4, 5)
    assert advance_cursor(window, 0, 10) == 4
    assert advance_cursor(window, 2, 10) == 6
    assert advance_cursor(select_window(6, 4, 5), 2, 6) == 0


def test_worklist_dedupes_and_orders_items() -> None:
    worklist = Worklist(
        [
            WorkItem("Lever", "netflix"),
            WorkItem("Greenhouse", "stripe"),
            WorkItem("Greenhouse", "airbnb"),
            WorkItem("Lever", "netflix"),
            WorkItem("RemoteOK", "RemoteOK", is_pseudo=True),
        ]
    )
    assert [item.label for item in worklist] == [
        "Greenhouse:airbnb",
        "Greenhouse:stripe",
        "Lever:netflix",
        "RemoteOK",
    ]


def test_build_worklist_unions_seeded_and_discovered_companies() -> None:
    repo = InMemoryRepository()

    async def run() -> Worklist:
        await repo.insert_discovered_company(
            slug="Figma", name="Figma", source="greenhouse", job_count=4, remote_job_count=2, sample_jobs=[]
        )
        await repo.insert_discovered_company(
            slug="stripe", name="Stripe", source="Greenhouse", job_count=9, remote_job_count=3, sample_jobs=[]
        )
        await repo.insert_discovered_company(
            slug="ghost", name="Ghost", source="Ashby", job_count=1, remote_job_count=1, sample_jobs=[]
        )
        return await build_worklist(
            repo,
            _sources(),
            seed_companies={"Greenhouse": ["stripe", " "], "Lever": ["Netflix"]},
        )

    worklist = asyncio.run(run())
    assert [item.label for item in worklist] == [
        "Greenhouse:figma",
        "Greenhouse:stripe",
        "Himalayas",
        "Lever:netflix",
        "RemoteOK",
    ]


def test_build_worklist_honors_source_filter() -> None:
    repo = InMemoryRepository()

    worklist = asyncio.run(
        build_worklist(
            repo,
            _sources(),
            seed_companies={"Greenhouse": ["stripe"], "Lever": ["netflix"]},
            source_filter=["remoteok", "Lever"],
        )
    )
    assert [item.label for item in worklist] == ["Lever:netflix", "RemoteOK"]
