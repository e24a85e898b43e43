from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..db import upsert_for
from ..exceptions import AlreadyInProgressError, NotEvaluationOwnerError
from ..inference.opinion_parser import parse_opinion
from ..inference.opinion_provider import OpinionProvider, get_opinion_provider
from ..inference.prompts import build_subject_description
from ..logger import logger
from ..models import AXCouncilResult, AXModelEvaluation, JobStatus, utcnow
from ..schemas import (
    AXCouncilResultOut,
    PanelModelStatus,
    PanelOverview,
    PendingModelEvaluation,
)
from . import jobs, ledger, model_configs

_CLEARED_OPINION: Dict[str, Any] = {
    "ax_score": None,
    "anps": None,
    "ax_factors": None,
    "agent_accessibility": None,
    "ax_recommendations": None,
    "raw_response": None,
    "error_message": None,
    "completed_at": None,
}


async def _upsert_pair(
    db: AsyncSession,
    evaluation_id: int,
    model_id: str,
    values: Dict[str, Any],
    only_if_not_processing: bool = False,
) -> Optional[int]:
    """Replace-on-conflict write for one (evaluation, model) pair. Returns the row id, or None if the guard rejected it."""
    table = AXModelEvaluation.__table__
    now = utcnow()
    stmt = upsert_for(db, table).values(
        evaluation_id=evaluation_id,
        model_id=model_id,
        created_at=now,
        updated_at=now,
        **values,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["evaluation_id", "model_id"],
        set_={**values, "updated_at": now},
        where=(table.c.status != JobStatus.PROCESSING) if only_if_not_processing else None,
    ).returning(table.c.id)
    return (await db.execute(stmt)).scalar_one_or_none()


async def _get_pair(db: AsyncSession, evaluation_id: int, model_id: str) -> Optional[AXModelEvaluation]:
    result = await db.execute(
        select(AXModelEvaluation).where(
            AXModelEvaluation.evaluation_id == evaluation_id,
            AXModelEvaluation.model_id == model_id,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def start(
    db: AsyncSession,
    evaluation_id: int,
    model_id: str,
    provider: Optional[OpinionProvider] = None,
    timeout: Optional[float] = None,
    requester_id: Optional[str] = None,
    requester_email: Optional[str] = None,
) -> AXModelEvaluation:
    """
    Run one panelist against an evaluation and store its terminal state.

    An evaluation that belongs to a user can only be run by that user; anonymous
    evaluations are open to anyone and free. The pair moves to processing through
    a guarded upsert, so a second start while the first is still running is
    rejected without touching the row. Provider failures, timeouts and
    unparseable responses all end as failed. A completed opinion costs the owner
    one credit; a failed debit is logged and the opinion is kept.
    """
    evaluation = await jobs.get_evaluation(db, evaluation_id)
    owner_id = evaluation.user_id
    if owner_id and requester_id != owner_id:
        logger.warning(
            "Panel start refused for non-owner",
            extra={"evaluation_id": evaluation_id, "model_id": model_id, "user_id": requester_id},
        )
        raise NotEvaluationOwnerError(evaluation_id)
    model = await model_configs.get_enabled_model(db, model_id)
    display_name = model.display_name
    provider_model_id = model.provider_model_id
    subject = build_subject_description(evaluation.url, evaluation.website_snapshot)

    row_id = await _upsert_pair(
        db,
        evaluation_id,
        model_id,
        {**_CLEARED_OPINION, "status": JobStatus.PROCESSING},
        only_if_not_processing=True,
    )
    if row_id is None:
        await db.rollback()
        logger.warning(
            "Panel evaluation already in progress",
            extra={"evaluation_id": evaluation_id, "model_id": model_id},
        )
        raise AlreadyInProgressError(evaluation_id, model_id)
    await db.commit()
    logger.info("Panel evaluation started", extra={"evaluation_id": evaluation_id, "model_id": model_id})

    provider = provider or get_opinion_provider()
    timeout = settings.OPINION_TIMEOUT_SECONDS if timeout is None else timeout
    raw_response = None
    try:
        raw_response = await asyncio.wait_for(
            asyncio.to_thread(
                provider.get_opinion,
                provider_model_id,
                subject,
                settings.OPINION_MAX_OUTPUT_TOKENS,
            ),
            timeout,
        )
        opinion = parse_opinion(raw_response)
    except asyncio.TimeoutError:
        error = f"Opinion provider timed out after {timeout}s"
        opinion = None
    except Exception as e:
        error = str(e) or type(e).__name__
        opinion = None

    if opinion is None:
        await _upsert_pair(
            db,
            evaluation_id,
            model_id,
            {
                **_CLEARED_OPINION,
                "status": JobStatus.FAILED,
                "raw_response": raw_response,
                "error_message": error,
                "completed_at": utcnow(),
            },
        )
        await db.commit()
        logger.error(
            "Panel evaluation failed",
            extra={"evaluation_id": evaluation_id, "model_id": model_id, "error": error},
        )
        return await _get_pair(db, evaluation_id, model_id)

    await _upsert_pair(
        db,
        evaluation_id,
        model_id,
        {
            "status": JobStatus.COMPLETED,
            "ax_score": opinion.ax_score,
            "anps": opinion.anps,
            "ax_factors": [f.model_dump() for f in opinion.factors],
            "agent_accessibility": opinion.agent_accessibility,
            "ax_recommendations": opinion.recommendations,
            "raw_response": raw_response,
            "error_message": None,
            "completed_at": utcnow(),
        },
    )
    await db.commit()
    logger.info(
        "Panel evaluation completed",
        extra={
            "evaluation_id": evaluation_id,
            "model_id": model_id,
            "ax_score": opinion.ax_score,
            "anps": opinion.anps,
        },
    )

    if owner_id:
        try:
            await ledger.debit(db, owner_id, 1, f"AX evaluation: {display_name}", requester_email)
        except Exception as e:
            logger.error(
                "Failed to debit credit for completed panel evaluation",
                extra={
                    "evaluation_id": evaluation_id,
                    "model_id": model_id,
                    "user_id": owner_id,
                    "error": str(e),
                },
            )

    return await _get_pair(db, evaluation_id, model_id)


async def get_status(
    db: AsyncSession, evaluation_id: int, model_id: str
) -> Union[AXModelEvaluation, PendingModelEvaluation]:
    row = await _get_pair(db, evaluation_id, model_id)
    if row is None:
        return PendingModelEvaluation(evaluation_id=evaluation_id, model_id=model_id)
    return row


async def _pair_statuses(db: AsyncSession, evaluation_id: int) -> Dict[str, AXModelEvaluation]:
    result = await db.execute(
        select(AXModelEvaluation)
        .where(AXModelEvaluation.evaluation_id == evaluation_id)
        .execution_options(populate_existing=True)
    )
    return {row.model_id: row for row in result.scalars().all()}


async def all_terminal(db: AsyncSession, evaluation_id: int) -> bool:
    """True when every enabled model has a completed or failed row for this evaluation."""
    models = await model_configs.list_models(db)
    if not models:
        return False
    rows = await _pair_statuses(db, evaluation_id)
    return all(
        m.model_id in rows and rows[m.model_id].status in JobStatus.TERMINAL
        for m in models
    )


async def panel_overview(db: AsyncSession, evaluation_id: int) -> PanelOverview:
    await jobs.get_evaluation(db, evaluation_id)
    models = await model_configs.list_models(db)
    rows = await _pair_statuses(db, evaluation_id)

    statuses = []
    for m in models:
        row = rows.get(m.model_id)
        statuses.append(
            PanelModelStatus(
                model_id=m.model_id,
                display_name=m.display_name,
                status=row.status if row else JobStatus.PENDING,
                ax_score=row.ax_score if row else None,
                anps=row.anps if row else None,
            )
        )

    terminal = bool(models) and all(s.status in JobStatus.TERMINAL for s in statuses)
    council = await db.get(AXCouncilResult, evaluation_id)
    return PanelOverview(
        evaluation_id=evaluation_id,
        models=statuses,
        all_terminal=terminal,
        council_ready=terminal and council is None,
        council_result=AXCouncilResultOut.model_validate(council) if council else None,
    )
