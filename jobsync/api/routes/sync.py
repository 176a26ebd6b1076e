from fastapi import APIRouter, Depends, HTTPException, status

from jobsync.api.responses import task_response
from jobsync.jobs.discovery import run_discovery_tick
from jobsync.jobs.run_reaper import fail_stuck_runs
from jobsync.jobs.sync import run_sync_tick
from jobsync.schemas.runs import DiscoveryTickResult, ReapResult, SyncRunOut, SyncTickRequest, SyncTickResult
from jobsync.services.repository import (
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    get_repository,
)

router = APIRouter()


@router.post("/tick", response_model=SyncTickResult)
async def sync_tick(payload: SyncTickRequest | None = None, repository=Depends(get_repository)):
    payload = payload or SyncTickRequest()
    result = await run_sync_tick(
        repository,
        sources=payload.sources,
        update_existing=payload.update_existing,
        add_new=payload.add_new,
        max_jobs_per_company=payload.max_jobs_per_company,
    )
    return task_response(result)


@router.post("/discovery", response_model=DiscoveryTickResult)
async def discovery_tick(repository=Depends(get_repository)):
    return task_response(await run_discovery_tick(repository))


@router.post("/reap-stuck", response_model=ReapResult)
async def reap_stuck_runs(repository=Depends(get_repository)) -> ReapResult:
    try:
        result = await fail_stuck_runs(repository)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return ReapResult(**result)


@router.get("/{sync_id}", response_model=SyncRunOut)
async def get_sync_run(sync_id: int, repository=Depends(get_repository)) -> SyncRunOut:
    try:
        run = await repository.get_sync_run(sync_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return SyncRunOut(**run)
