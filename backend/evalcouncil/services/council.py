from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import upsert_for
from ..exceptions import IncompleteError, NoQuorumError, NotFoundError
from ..inference.opinion_parser import anps_category
from ..logger import logger
from ..models import AXCouncilResult, AXModelConfig, AXModelEvaluation, JobStatus, utcnow
from . import jobs, panel


def median(values: Sequence[float]) -> float:
    """Median; an even count averages the two middle values."""
    if not values:
        raise ValueError("median of empty sequence")
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return float(ordered[mid])
    return (ordered[mid - 1] + ordered[mid]) / 2


def merge_recommendations(lists: Iterable[Optional[Iterable[str]]]) -> List[str]:
    """Union of recommendations, trimmed and de-duplicated case-insensitively, first seen wins."""
    seen = set()
    merged: List[str] = []
    for items in lists:
        for item in items or []:
            if not isinstance(item, str):
                continue
            text = item.strip()
            key = text.lower()
            if not text or key in seen:
                continue
            seen.add(key)
            merged.append(text)
    return merged


class MedianConsensusPolicy:
    """Median score and ANPS, with agreement classified from the score spread."""

    def __init__(self, high_spread: float = 10, medium_spread: float = 25):
        self.high_spread = high_spread
        self.medium_spread = medium_spread

    def consensus(self, values: Sequence[float]) -> float:
        return median(values)

    def agreement(self, scores: Sequence[float]) -> str:
        spread = max(scores) - min(scores)
        if spread <= self.high_spread:
            return "high"
        if spread <= self.medium_spread:
            return "medium"
        return "low"


def _quality_band(score: float) -> str:
    if score >= 80:
        return "excellent"
    if score >= 60:
        return "good"
    if score >= 40:
        return "fair"
    return "poor"


def summarize(score: float, anps: float, agreement: str, completed: int, total: int, spread: float) -> str:
    return (
        f"{completed} of {total} panelists completed. "
        f"Consensus AX score {score:g} ({_quality_band(score)}) "
        f"with ANPS {anps:g} ({anps_category(anps)}). "
        f"Panelists showed {agreement} agreement (score spread {spread:g} points)."
    )


async def aggregate(
    db: AsyncSession,
    evaluation_id: int,
    policy: Optional[MedianConsensusPolicy] = None,
) -> AXCouncilResult:
    """
    Combine the completed panelists into one consensus result.

    Recomputing over the same completed rows returns the stored result untouched;
    a changed snapshot overwrites it.
    """
    policy = policy or MedianConsensusPolicy()
    await jobs.get_evaluation(db, evaluation_id)
    if not await panel.all_terminal(db, evaluation_id):
        raise IncompleteError(evaluation_id)

    rows = (
        await db.execute(
            select(AXModelEvaluation)
            .where(AXModelEvaluation.evaluation_id == evaluation_id)
            .order_by(AXModelEvaluation.model_id)
            .execution_options(populate_existing=True)
        )
    ).scalars().all()
    completed = [r for r in rows if r.status == JobStatus.COMPLETED and r.ax_score is not None]
    if not completed:
        logger.warning("Council has no quorum", extra={"evaluation_id": evaluation_id})
        raise NoQuorumError(evaluation_id)

    names: Dict[str, str] = {
        m.model_id: m.display_name
        for m in (await db.execute(select(AXModelConfig))).scalars().all()
    }

    scores = [r.ax_score for r in completed]
    anps_values = [r.anps if r.anps is not None else 0 for r in completed]
    final_score = policy.consensus(scores)
    final_anps = policy.consensus(anps_values)
    agreement = policy.agreement(scores)

    payload = {
        "final_ax_score": final_score,
        "final_anps": final_anps,
        "recommendations": merge_recommendations(r.ax_recommendations for r in completed),
        "model_scores": [
            {
                "model_id": r.model_id,
                "display_name": names.get(r.model_id, r.model_id),
                "ax_score": r.ax_score,
                "anps": r.anps if r.anps is not None else 0,
            }
            for r in completed
        ],
        "agreement": agreement,
        "council_analysis": summarize(
            final_score, final_anps, agreement, len(completed), len(rows), max(scores) - min(scores)
        ),
    }

    existing = await db.get(AXCouncilResult, evaluation_id, populate_existing=True)
    if existing is not None and all(getattr(existing, k) == v for k, v in payload.items()):
        logger.info("Council result unchanged", extra={"evaluation_id": evaluation_id})
        return existing

    stmt = upsert_for(db, AXCouncilResult.__table__).values(
        evaluation_id=evaluation_id, computed_at=utcnow(), **payload
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["evaluation_id"],
        set_={**payload, "computed_at": utcnow()},
    )
    await db.execute(stmt)
    await db.commit()

    logger.info(
        "Council result computed",
        extra={
            "evaluation_id": evaluation_id,
            "final_ax_score": final_score,
            "final_anps": final_anps,
            "agreement": agreement,
            "panelists": len(completed),
        },
    )
    return await db.get(AXCouncilResult, evaluation_id, populate_existing=True)


async def get_result(db: AsyncSession, evaluation_id: int) -> AXCouncilResult:
    result = await db.get(AXCouncilResult, evaluation_id, populate_existing=True)
    if result is None:
        raise NotFoundError(f"No council result for evaluation {evaluation_id}", "COUNCIL_RESULT_NOT_FOUND")
    return result
