from __future__ import annotations

import re
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from sqlalchemy import delete, desc, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import (
    AlreadyClaimedError,
    EvaluationNotFoundError,
    InvalidTransitionError,
    JobNotFoundError,
    ValidationError,
)
from ..logger import logger
from ..models import (
    AXCouncilResult,
    AXModelEvaluation,
    Evaluation,
    EvaluationJob,
    JobStatus,
    ShowcaseEvaluation,
    utcnow,
)
from ..schemas import EvaluationStats
from . import dispatch as dispatcher

# Source statuses from which each target status may be reached.
_ALLOWED_SOURCES = {
    JobStatus.PROCESSING: (JobStatus.PENDING,),
    JobStatus.COMPLETED: (JobStatus.PROCESSING,),
    JobStatus.FAILED: (JobStatus.PENDING, JobStatus.PROCESSING),
}

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


def normalize_url(raw: str) -> str:
    """Prefix a missing scheme with https:// and reject anything that is not an absolute http(s) URL."""
    url = (raw or "").strip()
    if not url:
        raise ValidationError("Product URL is required")
    if not _SCHEME_RE.match(url):
        url = f"https://{url}"

    try:
        parsed = urlparse(url)
        parsed.port  # raises on a malformed port
    except ValueError:
        raise ValidationError(f"Invalid URL: {raw}")

    if parsed.scheme.lower() not in ("http", "https") or not parsed.hostname:
        raise ValidationError(f"Invalid URL: {raw}")
    return url


async def _get_job(db: AsyncSession, job_id: str) -> EvaluationJob:
    result = await db.execute(
        select(EvaluationJob)
        .where(EvaluationJob.id == job_id)
        .execution_options(populate_existing=True)
    )
    job = result.scalar_one_or_none()
    if job is None:
        raise JobNotFoundError(job_id)
    return job


async def create_job(
    db: AsyncSession,
    product_url: str,
    demographics: Optional[Dict[str, Any]],
    user_id: Optional[str] = None,
) -> EvaluationJob:
    if not demographics:
        raise ValidationError("Target demographics are required")
    url = normalize_url(product_url)

    job = EvaluationJob(
        id=str(uuid.uuid4()),
        url=url,
        demographics=demographics,
        status=JobStatus.PENDING,
        user_id=user_id,
    )
    db.add(job)
    await db.commit()
    await db.refresh(job)

    logger.info("Job created", extra={"job_id": job.id, "url": url, "user_id": user_id})
    return job


async def dispatch(job: EvaluationJob, timeout: Optional[float] = None) -> None:
    """Hand a job to the worker. A DispatchError leaves the job pending for a later redispatch."""
    await dispatcher.dispatch(job.id, job.url, job.demographics, timeout=timeout)


async def redispatch(db: AsyncSession, job_id: str, timeout: Optional[float] = None) -> EvaluationJob:
    """Manually re-send a job that never left pending."""
    job = await _get_job(db, job_id)
    if job.status != JobStatus.PENDING:
        raise InvalidTransitionError(job_id, job.status, JobStatus.PENDING)

    await dispatcher.dispatch(job.id, job.url, job.demographics, timeout=timeout)
    logger.info("Job re-dispatched", extra={"job_id": job_id})
    return job


async def report_status(
    db: AsyncSession,
    job_id: str,
    status: str,
    result: Optional[Dict[str, Any]] = None,
    error: Optional[str] = None,
) -> EvaluationJob:
    """
    Apply a worker status report.

    The transition is one conditional UPDATE on the current status, so two racing
    reports cannot both win and a terminal job is never overwritten. Repeating the
    current non-terminal status is a no-op. A completed report also persists the
    Evaluation record in the same transaction.
    """
    if status not in JobStatus.ALL:
        raise ValidationError(f"Unknown status: {status}")
    if status == JobStatus.COMPLETED and result is None:
        raise ValidationError("A completed status requires a result")

    job = await _get_job(db, job_id)
    if status == job.status and status not in JobStatus.TERMINAL:
        logger.info("Repeated status report ignored", extra={"job_id": job_id, "status": status})
        return job

    now = utcnow()
    values: Dict[str, Any] = {"status": status, "updated_at": now}
    if status == JobStatus.COMPLETED:
        values.update(result=result, completed_at=now)
    elif status == JobStatus.FAILED:
        values.update(error=error or "Evaluation failed", completed_at=now)

    sources = _ALLOWED_SOURCES.get(status, ())
    updated = await db.execute(
        update(EvaluationJob)
        .where(EvaluationJob.id == job_id, EvaluationJob.status.in_(sources))
        .values(**values)
        .returning(EvaluationJob.id)
        .execution_options(synchronize_session=False)
    )
    if updated.first() is None:
        await db.rollback()
        await db.refresh(job)
        logger.warning(
            "Rejected status transition",
            extra={"job_id": job_id, "current": job.status, "requested": status},
        )
        raise InvalidTransitionError(job_id, job.status, status)

    if status == JobStatus.COMPLETED:
        evaluation = Evaluation(
            job_id=job_id,
            url=job.url,
            target_demographics=job.demographics,
            result=result,
            website_snapshot=result.get("websiteSnapshot"),
            user_id=job.user_id,
        )
        db.add(evaluation)
        await db.flush()
        await db.execute(
            update(EvaluationJob)
            .where(EvaluationJob.id == job_id)
            .values(evaluation_id=evaluation.id)
            .execution_options(synchronize_session=False)
        )

    await db.commit()
    await db.refresh(job)

    logger.info(
        "Job status updated",
        extra={"job_id": job_id, "status": status, "evaluation_id": job.evaluation_id},
    )
    return job


async def get_status(db: AsyncSession, job_id: str) -> EvaluationJob:
    return await _get_job(db, job_id)


async def claim(db: AsyncSession, job_id: str, user_id: str) -> EvaluationJob:
    """Attach a user to an anonymous job, once. Claiming is free."""
    claimed = await db.execute(
        update(EvaluationJob)
        .where(EvaluationJob.id == job_id, EvaluationJob.user_id.is_(None))
        .values(user_id=user_id, updated_at=utcnow())
        .returning(EvaluationJob.id)
        .execution_options(synchronize_session=False)
    )
    if claimed.first() is None:
        await db.rollback()
        await _get_job(db, job_id)
        raise AlreadyClaimedError(job_id)

    await db.execute(
        update(Evaluation)
        .where(Evaluation.job_id == job_id, Evaluation.user_id.is_(None))
        .values(user_id=user_id)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    job = await _get_job(db, job_id)
    logger.info("Job claimed", extra={"job_id": job_id, "user_id": user_id})
    return job


async def get_evaluation(db: AsyncSession, evaluation_id: int) -> Evaluation:
    evaluation = await db.get(Evaluation, evaluation_id, populate_existing=True)
    if evaluation is None:
        raise EvaluationNotFoundError(evaluation_id)
    return evaluation


async def list_user_evaluations(db: AsyncSession, user_id: str, limit: int = 20) -> List[Evaluation]:
    result = await db.execute(
        select(Evaluation)
        .where(Evaluation.user_id == user_id)
        .order_by(desc(Evaluation.created_at), desc(Evaluation.id))
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_evaluations(db: AsyncSession, limit: int = 50) -> List[Evaluation]:
    result = await db.execute(
        select(Evaluation).order_by(desc(Evaluation.created_at), desc(Evaluation.id)).limit(limit)
    )
    return list(result.scalars().all())


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _average(values: List[float]) -> Optional[float]:
    return round(sum(values) / len(values), 2) if values else None


async def evaluation_stats(db: AsyncSession) -> EvaluationStats:
    """Totals over every stored evaluation, read from the worker result payloads."""
    payloads = (await db.execute(select(Evaluation.result))).scalars().all()

    scores, intents = [], []
    anchors = {"high": 0, "middle": 0, "low": 0}
    for payload in payloads:
        payload = payload or {}
        score = _number(payload.get("overallScore"))
        if score is not None:
            scores.append(score)
        intent = _number(payload.get("buyingIntentProbability"))
        if intent is not None:
            intents.append(intent)
        anchor = payload.get("purchaseIntentAnchor")
        if anchor in anchors:
            anchors[anchor] += 1

    return EvaluationStats(
        total_evaluations=len(payloads),
        avg_overall_score=_average(scores),
        avg_buying_intent=_average(intents),
        high_intent_count=anchors["high"],
        middle_intent_count=anchors["middle"],
        low_intent_count=anchors["low"],
    )


async def delete_evaluation(db: AsyncSession, evaluation_id: int) -> bool:
    """
    Delete an evaluation with its panel rows, council result and showcase entry.

    The job that produced it is kept and loses its evaluation link.
    """
    for model in (AXModelEvaluation, AXCouncilResult, ShowcaseEvaluation):
        await db.execute(delete(model).where(model.evaluation_id == evaluation_id))
    await db.execute(
        update(EvaluationJob)
        .where(EvaluationJob.evaluation_id == evaluation_id)
        .values(evaluation_id=None)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(delete(Evaluation).where(Evaluation.id == evaluation_id))
    if result.rowcount == 0:
        await db.rollback()
        return False

    await db.commit()
    logger.info("Evaluation deleted", extra={"evaluation_id": evaluation_id})
    return True


async def find_stuck_jobs(
    db: AsyncSession, max_age: timedelta, now: Optional[datetime] = None
) -> List[EvaluationJob]:
    """Jobs still pending or processing whose last update is older than max_age."""
    cutoff = (now or utcnow()) - max_age
    result = await db.execute(
        select(EvaluationJob)
        .where(
            EvaluationJob.status.in_((JobStatus.PENDING, JobStatus.PROCESSING)),
            EvaluationJob.updated_at < cutoff,
        )
        .order_by(EvaluationJob.updated_at)
    )
    return list(result.scalars().all())
