from fastapi import APIRouter, Depends, HTTPException, Query, status

from review_harvester.jobs.errors import AlreadyRunning, InvalidDateFilter, NoActiveJob, TargetNotFound
from review_harvester.jobs.orchestrator import get_orchestrator
from review_harvester.schemas.jobs import JobOut, JobStatusOut, MessageOut, StartJobRequest
from review_harvester.services.repository import RepositoryNotFoundError, RepositoryUnavailableError

router = APIRouter()


@router.post("/start", response_model=MessageOut)
async def start_job(payload: StartJobRequest, orchestrator=Depends(get_orchestrator)) -> MessageOut:
    try:
        result = await orchestrator.start(payload.date_filter, payload.company_name)
    except (AlreadyRunning, InvalidDateFilter) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except TargetNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return MessageOut(**result)


@router.post("/stop", response_model=MessageOut)
async def stop_job(orchestrator=Depends(get_orchestrator)) -> MessageOut:
    try:
        result = await orchestrator.stop()
    except NoActiveJob as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return MessageOut(**result)


@router.get("/status", response_model=JobStatusOut)
async def job_status(orchestrator=Depends(get_orchestrator)) -> JobStatusOut:
    try:
        payload = await orchestrator.status()
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return JobStatusOut(**payload)


@router.get("", response_model=list[JobOut])
async def list_jobs(
    orchestrator=Depends(get_orchestrator),
    limit: int = Query(default=10, ge=1, le=200),
) -> list[JobOut]:
    try:
        rows = await orchestrator.recent(limit)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return [JobOut(**row) for row in rows]


@router.get("/{job_id}", response_model=JobOut)
async def get_job(job_id: int, orchestrator=Depends(get_orchestrator)) -> JobOut:
    try:
        row = await orchestrator.get(job_id)
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return JobOut(**row)
