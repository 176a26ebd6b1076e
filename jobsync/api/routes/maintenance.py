from fastapi import APIRouter, Depends

from jobsync.api.responses import task_response
from jobsync.jobs.dedupe import deduplicate
from jobsync.jobs.prune import prune
from jobsync.schemas.maintenance import DeduplicateRequest, DeduplicateResult, PruneRequest, PruneResult
from jobsync.services.repository import get_repository

router = APIRouter()


@router.post("/deduplicate", response_model=DeduplicateResult)
async def deduplicate_jobs(payload: DeduplicateRequest, repository=Depends(get_repository)):
    result = await deduplicate(repository, dry_run=payload.dry_run, criteria=payload.criteria)
    return task_response(result)


@router.post("/prune", response_model=PruneResult)
async def prune_jobs(payload: PruneRequest, repository=Depends(get_repository)):
    result = await prune(
        repository,
        dry_run=payload.dry_run,
        sources=payload.sources,
        stale_days=payload.stale_days,
    )
    return task_response(result)
