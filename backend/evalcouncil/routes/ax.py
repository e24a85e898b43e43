"""
AX panel and council routes
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional, Union

from ..auth import CurrentUser, get_current_user_optional
from ..db import get_db
from ..inference.opinion_provider import OpinionProvider, get_opinion_provider
from ..schemas import (
    AXCouncilResultOut,
    AXModelConfigOut,
    AXModelEvaluationOut,
    PanelOverview,
    PendingModelEvaluation,
)
from ..services import council, model_configs, panel

router = APIRouter(tags=["AX Panel"])


def get_provider() -> OpinionProvider:
    return get_opinion_provider()


@router.get("/ax-models", response_model=List[AXModelConfigOut])
async def list_enabled_models(db: AsyncSession = Depends(get_db)):
    return await model_configs.list_models(db)


# Declared before the /{evaluation_id}/{model_id} pair so "status" is not taken as an id.
@router.get("/ax-evaluate/status/{evaluation_id}", response_model=PanelOverview)
async def get_panel_overview(evaluation_id: int, db: AsyncSession = Depends(get_db)):
    return await panel.panel_overview(db, evaluation_id)


@router.post("/ax-evaluate/{evaluation_id}/{model_id}", response_model=AXModelEvaluationOut)
async def start_model_evaluation(
    evaluation_id: int,
    model_id: str,
    provider: OpinionProvider = Depends(get_provider),
    current_user: Optional[CurrentUser] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db),
):
    """Run one panelist. Returns the stored row, completed or failed."""
    return await panel.start(
        db,
        evaluation_id,
        model_id,
        provider=provider,
        requester_id=current_user.user_id if current_user else None,
        requester_email=current_user.email if current_user else None,
    )


@router.get(
    "/ax-evaluate/{evaluation_id}/{model_id}",
    response_model=Union[AXModelEvaluationOut, PendingModelEvaluation],
)
async def get_model_evaluation(evaluation_id: int, model_id: str, db: AsyncSession = Depends(get_db)):
    row = await panel.get_status(db, evaluation_id, model_id)
    if isinstance(row, PendingModelEvaluation):
        return row
    return AXModelEvaluationOut.model_validate(row)


@router.post("/ax-council/{evaluation_id}", response_model=AXCouncilResultOut)
async def run_council(evaluation_id: int, db: AsyncSession = Depends(get_db)):
    return await council.aggregate(db, evaluation_id)


@router.get("/ax-council/{evaluation_id}", response_model=AXCouncilResultOut)
async def get_council_result(evaluation_id: int, db: AsyncSession = Depends(get_db)):
    return await council.get_result(db, evaluation_id)
