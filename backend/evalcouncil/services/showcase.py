from __future__ import annotations

from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import upsert_for
from ..logger import logger
from ..models import Evaluation, ShowcaseEvaluation, utcnow
from ..schemas import ShowcaseEntry, ShowcaseList
from . import jobs


def _entry(evaluation: Evaluation, display_order: int) -> ShowcaseEntry:
    score = (evaluation.result or {}).get("overallScore")
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        score = None
    return ShowcaseEntry(
        evaluation_id=evaluation.id,
        display_order=display_order,
        url=evaluation.url,
        overall_score=score,
        website_snapshot=evaluation.website_snapshot,
        created_at=evaluation.created_at,
    )


async def list_showcase(db: AsyncSession) -> ShowcaseList:
    """Curated evaluations in display order, lowest first."""
    result = await db.execute(
        select(ShowcaseEvaluation, Evaluation)
        .join(Evaluation, Evaluation.id == ShowcaseEvaluation.evaluation_id)
        .order_by(ShowcaseEvaluation.display_order, ShowcaseEvaluation.evaluation_id)
    )
    entries = [_entry(evaluation, entry.display_order) for entry, evaluation in result.all()]
    return ShowcaseList(evaluations=entries, count=len(entries))


async def add_to_showcase(
    db: AsyncSession, evaluation_id: int, display_order: Optional[int] = None
) -> ShowcaseEntry:
    """
    Put an evaluation on the showcase, or move it if it is already there.

    Without a display order the evaluation goes after the current last entry.
    """
    evaluation = await jobs.get_evaluation(db, evaluation_id)
    if display_order is None:
        current_max = (await db.execute(select(func.max(ShowcaseEvaluation.display_order)))).scalar_one()
        display_order = 0 if current_max is None else current_max + 1

    stmt = upsert_for(db, ShowcaseEvaluation.__table__).values(
        evaluation_id=evaluation_id,
        display_order=display_order,
        created_at=utcnow(),
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["evaluation_id"],
        set_={"display_order": display_order},
    )
    await db.execute(stmt)
    await db.commit()

    logger.info("Evaluation added to showcase", extra={"evaluation_id": evaluation_id, "display_order": display_order})
    return _entry(evaluation, display_order)


async def remove_from_showcase(db: AsyncSession, evaluation_id: int) -> bool:
    result = await db.execute(
        delete(ShowcaseEvaluation).where(ShowcaseEvaluation.evaluation_id == evaluation_id)
    )
    await db.commit()
    if result.rowcount:
        logger.info("Evaluation removed from showcase", extra={"evaluation_id": evaluation_id})
    return result.rowcount > 0
