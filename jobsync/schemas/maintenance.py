from typing import Any, Literal

from pydantic import BaseModel, Field

from jobsync.schemas.runs import LogEntry

DedupeCriterion = Literal["title", "company", "description", "salary"]


class DeduplicateRequest(BaseModel):
    dry_run: bool = True
    criteria: list[DedupeCriterion] = Field(default_factory=lambda: ["title", "company"], min_length=1)


class DeduplicateResult(BaseModel):
    success: bool = True
    sync_id: int | None
    dry_run: bool
    criteria: list[DedupeCriterion]
    duplicates_found: int
    duplicates_removed: int
    groups: list[dict[str, Any]] = Field(default_factory=list)
    logs: list[LogEntry] = Field(default_factory=list)


class PruneRequest(BaseModel):
    dry_run: bool = True
    sources: list[str] | None = None
    stale_days: int | None = Field(default=None, ge=1)


class PruneResult(BaseModel):
    success: bool = True
    sync_id: int | None
    dry_run: bool
    strategy: Literal["live_check", "staleness"]
    jobs_to_delete: int
    jobs_deleted: int
    orphaned: list[dict[str, Any]] = Field(default_factory=list)
    logs: list[LogEntry] = Field(default_factory=list)
