from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from jobsync.sources.base import JobSource


@dataclass(frozen=True, slots=True)
class WorkItem:
    source: str
    name: str
    is_pseudo: bool = False

    @property
    def label(self) -> str:
        return self.name if self.is_pseudo else f"{self.source}:{self.name}"


@dataclass(frozen=True, slots=True)
class Window:
    start: int
    end: int
    next_index: int
    wrapped_around: bool

    @property
    def size(self) -> int:
        return self.end - self.start


def select_window(total: int, cursor: int, size: int) -> Window:
    """Slice ``size`` entries from ``cursor``; a cursor at or past the end restarts at 0."""
    if total <= 0:
        return Window(start=0, end=0, next_index=0, wrapped_around=True)
    start = cursor if 0 <= cursor < total else 0
    end = min(total, start + max(1, size))
    wrapped = end >= total
    return Window(start=start, end=end, next_index=0 if wrapped else end, wrapped_around=wrapped)


def advance_cursor(window: Window, completed: int, total: int) -> int:
    """Cursor after ``completed`` leading items of ``window`` finished."""
    position = window.start + completed
    if position >= total:
        return 0
    return position


class Worklist:
    """Deduplicated, deterministically ordered sync targets for one tick."""

    def __init__(self, items: Iterable[WorkItem]) -> None:
        unique = {(item.source, item.name, item.is_pseudo): item for item in items}
        self.items: tuple[WorkItem, ...] = tuple(
            sorted(unique.values(), key=lambda item: (item.source.lower(), item.name.lower(), item.is_pseudo))
        )

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    def window(self, cursor: int, size: int) -> tuple[Window, list[WorkItem]]:
        selected = select_window(len(self.items), cursor, size)
        return selected, list(self.items[selected.start : selected.end])


class CompanyDirectory(Protocol):
    async def list_discovered_companies(self) -> list[dict[str, Any]]: ...


async def build_worklist(
    repository: CompanyDirectory,
    sources: Mapping[str, JobSource],
    *,
    seed_companies: Mapping[str, list[str]] | None = None,
    source_filter: list[str] | None = None,
) -> Worklist:
    """Union of ATS companies (discovered plus seeded) and one pseudo item per aggregator."""
    wanted = {name.strip().lower() for name in source_filter or [] if name.strip()}

    def included(source_name: str) -> bool:
        return not wanted or source_name.lower() in wanted

    items: list[WorkItem] = []
    ats_names = {name.lower(): name for name, source in sources.items() if source.kind == "ats"}
    for name, source in sources.items():
        if source.kind == "aggregator" and included(name):
            items.append(WorkItem(source=name, name=name, is_pseudo=True))

    for source_name, slugs in (seed_companies or {}).items():
        canonical = ats_names.get(source_name.lower())
        if canonical is None or not included(canonical):
            continue
        items.extend(WorkItem(source=canonical, name=slug.strip().lower()) for slug in slugs if slug.strip())

    for company in await repository.list_discovered_companies():
        canonical = ats_names.get(str(company.get("source") or "").lower())
        slug = str(company.get("slug") or "").strip().lower()
        if canonical is None or not slug or not included(canonical):
            continue
        items.append(WorkItem(source=canonical, name=slug))

    return Worklist(items)
