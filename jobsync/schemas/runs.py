from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class LogEntry(BaseModel):
    timestamp: str
    level: str
    message: str


class FailureResult(BaseModel):
    success: Literal[False] = False
    error: str
    sync_id: int | None = None
    logs: list[LogEntry] = Field(default_factory=list)


class SyncTickRequest(BaseModel):
    sources: list[str] | None = None
    update_existing: bool = True
    add_new: bool = True
    max_jobs_per_company: int | None = Field(default=None, ge=1, le=500)


class SyncTickResult(BaseModel):
    success: bool = True
    sync_id: int | None
    added: int
    updated: int
    skipped: int
    failed: int
    processed_items: int
    failed_items: int
    deferred_items: int
    total_items: int
    next_index: int
    wrapped_around: bool
    logs: list[LogEntry] = Field(default_factory=list)


class DiscoveredCompanyOut(BaseModel):
    slug: str
    name: str
    source: str
    job_count: int
    remote_job_count: int
    inserted: bool


class DiscoveryTickResult(BaseModel):
    success: bool = True
    sync_id: int | None
    discovered: list[DiscoveredCompanyOut] = Field(default_factory=list)
    not_found: list[str] = Field(default_factory=list)
    next_index: int
    wrapped_around: bool
    logs: list[LogEntry] = Field(default_factory=list)


class SyncRunOut(BaseModel):
    id: int
    sync_type: str
    status: str
    started_at: datetime
    completed_at: datetime | None = None
    logs: list[LogEntry] = Field(default_factory=list)
    stats: dict[str, Any] = Field(default_factory=dict)
    last_processed_index: int = 0
    total_items: int = 0
    error: str | None = None


class ReapResult(BaseModel):
    success: bool = True
    failed_runs: list[int] = Field(default_factory=list)
