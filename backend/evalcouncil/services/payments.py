from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..exceptions import ValidationError
from ..logger import logger
from ..models import TransactionKind
from ..schemas import PaymentConfirmation, PaymentConfirmationResult, PurchaseQuote
from . import discounts, ledger, referrals


def get_pack(pack_id: str) -> Dict[str, Any]:
    pack = settings.CREDIT_PACKS.get(pack_id)
    if pack is None:
        raise ValidationError(f"Unknown credit pack: {pack_id}", "UNKNOWN_PACK")
    return pack


async def quote_purchase(
    db: AsyncSession,
    pack_id: str,
    referral_code: Optional[str] = None,
    discount_code: Optional[str] = None,
) -> PurchaseQuote:
    """
    Price a credit pack. A referral code takes priority over a discount code when
    both are supplied. Quoting never consumes a code use.
    """
    pack = get_pack(pack_id)
    price = pack["price"]

    if referral_code:
        referral = await referrals.validate_referral_code(db, referral_code)
        discount_amount, _ = referrals.calculate_referral(referral, price)
        return PurchaseQuote(
            pack_id=pack_id,
            credits=pack["credits"],
            original_amount=price,
            discount_amount=discount_amount,
            final_amount=price - discount_amount,
            referral_code_id=referral.id,
            commission_percent=referral.commission_percent,
        )

    if discount_code:
        discount = await discounts.validate_discount_code(db, discount_code, price)
        calculation = discounts.calculate_discount(discount, price)
        return PurchaseQuote(
            pack_id=pack_id,
            credits=pack["credits"],
            original_amount=calculation.original_amount,
            discount_amount=calculation.discount_amount,
            final_amount=calculation.final_amount,
            discount_code_id=discount.id,
        )

    return PurchaseQuote(
        pack_id=pack_id,
        credits=pack["credits"],
        original_amount=price,
        discount_amount=0,
        final_amount=price,
    )


async def apply_payment_confirmation(
    db: AsyncSession, event: PaymentConfirmation
) -> PaymentConfirmationResult:
    """
    Credit a completed purchase exactly once per payment_ref, recording any
    referral or discount use in the same transaction.
    """
    if await ledger.has_external_ref(db, event.payment_ref):
        logger.info("Duplicate payment confirmation ignored", extra={"payment_ref": event.payment_ref})
        balance = await ledger.get_balance(db, event.user_id, event.user_email)
        return PaymentConfirmationResult(duplicate=True, balance=balance)

    pack = settings.CREDIT_PACKS.get(event.pack_id, {})
    description = f"Purchased {pack.get('name', event.pack_id)} ({event.credits} credits)"

    try:
        balance = await ledger._apply_credit(
            db,
            event.user_id,
            event.credits,
            TransactionKind.PURCHASE,
            description,
            external_ref=event.payment_ref,
            email=event.user_email,
        )
        if event.referral_code_id is not None:
            await referrals.record_referral_usage(
                db,
                event.referral_code_id,
                event.user_id,
                event.original_amount,
                event.discount_amount,
                payment_ref=event.payment_ref,
            )
        elif event.discount_code_id is not None:
            await discounts.record_discount_usage(
                db,
                event.discount_code_id,
                event.user_id,
                event.original_amount,
                event.discount_amount,
                payment_ref=event.payment_ref,
            )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info(
            "Duplicate payment confirmation ignored after concurrent insert",
            extra={"payment_ref": event.payment_ref},
        )
        balance = await ledger.get_balance(db, event.user_id)
        return PaymentConfirmationResult(duplicate=True, balance=balance)

    logger.info(
        "Payment confirmation applied",
        extra={
            "payment_ref": event.payment_ref,
            "user_id": event.user_id,
            "credits": event.credits,
            "balance": balance,
        },
    )
    return PaymentConfirmationResult(duplicate=False, balance=balance)
