"""
Evaluation routes - job submission, polling, worker callback, claiming, listing and showcase
"""
from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from ..auth import CurrentUser, get_current_user, get_current_user_optional, require_admin, require_shared_secret
from ..config import settings
from ..db import get_db
from ..exceptions import DispatchError, NotEvaluationOwnerError
from ..models import EvaluationJob
from ..schemas import (
    ClaimRequest,
    EvaluateRequest,
    EvaluateResponse,
    EvaluationList,
    EvaluationOut,
    JobStatusReport,
    JobStatusResponse,
    ShowcaseList,
)
from ..services import jobs, showcase
from ..logger import logger

router = APIRouter(tags=["Evaluations"])


def _job_response(job: EvaluationJob) -> JobStatusResponse:
    return JobStatusResponse(
        jobId=job.id,
        status=job.status,
        createdAt=job.created_at,
        updatedAt=job.updated_at,
        completedAt=job.completed_at,
        evaluationId=job.evaluation_id,
        result=job.result,
        error=job.error,
    )


@router.post("/evaluate", response_model=EvaluateResponse, status_code=202)
async def submit_evaluation(
    request: EvaluateRequest,
    current_user: Optional[CurrentUser] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db),
):
    """Create a job and hand it to the scraping worker. Poll /evaluate/status/{jobId} for the outcome."""
    job = await jobs.create_job(
        db,
        request.productUrl,
        request.demographics.model_dump() if request.demographics else None,
        current_user.user_id if current_user else None,
    )

    try:
        await jobs.dispatch(job)
    except DispatchError as exc:
        logger.warning("Job created but not dispatched", extra={"job_id": job.id})
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.code,
                "message": exc.message,
                "status_code": exc.status_code,
                "jobId": job.id,
            },
        )

    return EvaluateResponse(
        jobId=job.id,
        status=job.status,
        message="Evaluation started. Poll the status endpoint for results.",
    )


@router.get("/evaluate/status/{job_id}", response_model=JobStatusResponse)
async def get_job_status(job_id: str, db: AsyncSession = Depends(get_db)):
    job = await jobs.get_status(db, job_id)
    return _job_response(job)


@router.post("/evaluate/status/{job_id}", response_model=JobStatusResponse)
async def report_job_status(
    job_id: str,
    report: JobStatusReport,
    x_worker_token: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
):
    """Status callback for the external worker"""
    require_shared_secret(settings.WORKER_CALLBACK_TOKEN, x_worker_token)
    job = await jobs.report_status(db, job_id, report.status, report.result, report.error)
    return _job_response(job)


@router.post("/evaluate/{job_id}/redispatch", response_model=JobStatusResponse)
async def redispatch_job(
    job_id: str,
    _: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    job = await jobs.redispatch(db, job_id)
    return _job_response(job)


@router.post("/evaluations/claim", response_model=JobStatusResponse)
async def claim_evaluation(
    request: ClaimRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    job = await jobs.claim(db, request.jobId, current_user.user_id)
    return _job_response(job)


@router.get("/evaluations", response_model=EvaluationList)
async def list_evaluations(
    limit: int = Query(50, ge=1, le=200),
    stats: bool = Query(False),
    db: AsyncSession = Depends(get_db),
):
    """Most recent evaluations; pass stats=true for totals across all of them"""
    rows = await jobs.list_evaluations(db, limit)
    return EvaluationList(
        evaluations=[EvaluationOut.model_validate(r) for r in rows],
        count=len(rows),
        stats=await jobs.evaluation_stats(db) if stats else None,
    )


@router.get("/showcase", response_model=ShowcaseList)
async def get_showcase(db: AsyncSession = Depends(get_db)):
    return await showcase.list_showcase(db)


@router.get("/evaluations/user", response_model=List[EvaluationOut])
async def list_my_evaluations(
    limit: int = Query(20, ge=1, le=100),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await jobs.list_user_evaluations(db, current_user.user_id, limit)


@router.get("/evaluations/{evaluation_id}", response_model=EvaluationOut)
async def get_evaluation(evaluation_id: int, db: AsyncSession = Depends(get_db)):
    return await jobs.get_evaluation(db, evaluation_id)


@router.delete("/evaluations/{evaluation_id}", status_code=204)
async def delete_evaluation(
    evaluation_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Owners can delete their own evaluations; the admin can delete any"""
    evaluation = await jobs.get_evaluation(db, evaluation_id)
    if not current_user.is_admin and evaluation.user_id != current_user.user_id:
        raise NotEvaluationOwnerError(evaluation_id)
    await jobs.delete_evaluation(db, evaluation_id)
