"""
Payment confirmation webhook
"""
from fastapi import APIRouter, Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from ..auth import require_shared_secret
from ..config import settings
from ..db import get_db
from ..schemas import PaymentConfirmation, PaymentConfirmationResult
from ..services import payments

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/confirm", response_model=PaymentConfirmationResult)
async def confirm_payment(
    event: PaymentConfirmation,
    x_webhook_secret: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
):
    """Delivered by the payment collaborator once per completed checkout; safe to repeat."""
    require_shared_secret(settings.PAYMENT_WEBHOOK_SECRET, x_webhook_secret)
    return await payments.apply_payment_confirmation(db, event)
