"""
Credit balance routes
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import CurrentUser, get_current_user
from ..db import get_db
from ..schemas import CreditBalanceResponse, CreditTransactionOut
from ..services import ledger

router = APIRouter(prefix="/user", tags=["Credits"])


@router.get("/credits", response_model=CreditBalanceResponse)
async def get_credits(
    history: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Current balance; pass history=true for the newest transactions"""
    balance = await ledger.get_balance(db, current_user.user_id, current_user.email)
    transactions = None
    if history:
        rows = await ledger.list_transactions(db, current_user.user_id, limit)
        transactions = [CreditTransactionOut.model_validate(r) for r in rows]
    return CreditBalanceResponse(balance=balance, transactions=transactions)
