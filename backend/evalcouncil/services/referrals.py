from __future__ import annotations

from typing import List, Optional, Tuple

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import (
    CodeExhaustedError,
    CodeNotFoundError,
    ExpiredCodeError,
    InactiveCodeError,
    ValidationError,
)
from ..logger import logger
from ..models import ReferralCode, ReferralUsage, utcnow
from ..schemas import PromotionStats, ReferralCodeCreate, ReferralCodeUpdate
from .codes import (
    insert_with_code,
    is_expired,
    normalize_code,
    to_naive_utc,
    validate_future_expiry,
    validate_max_uses,
)


def _validate_percent(name: str, value: Optional[int]) -> None:
    if value is not None and not 0 <= value <= 100:
        raise ValidationError(f"{name} must be between 0 and 100")


def _prefix_for(owner_name: str) -> str:
    letters = "".join(ch for ch in owner_name.upper() if ch.isalnum())
    return letters[:6] or "REF"


async def create_referral_code(db: AsyncSession, data: ReferralCodeCreate) -> ReferralCode:
    if not data.owner_name.strip():
        raise ValidationError("Owner name is required")
    _validate_percent("discount_percent", data.discount_percent)
    _validate_percent("commission_percent", data.commission_percent)
    validate_max_uses(data.max_uses)
    validate_future_expiry(data.expires_at)

    referral = await insert_with_code(
        db,
        lambda code: ReferralCode(
            code=code,
            owner_name=data.owner_name.strip(),
            owner_email=data.owner_email,
            discount_percent=data.discount_percent,
            commission_percent=data.commission_percent,
            max_uses=data.max_uses,
            expires_at=to_naive_utc(data.expires_at),
        ),
        custom_code=data.custom_code,
        prefix=_prefix_for(data.owner_name),
    )
    logger.info("Referral code created", extra={"referral_code_id": referral.id, "code": referral.code})
    return referral


async def list_referral_codes(db: AsyncSession) -> List[ReferralCode]:
    result = await db.execute(select(ReferralCode).order_by(ReferralCode.created_at.desc(), ReferralCode.id.desc()))
    return list(result.scalars().all())


async def get_referral_stats(db: AsyncSession) -> PromotionStats:
    row = (
        await db.execute(
            select(
                func.count(ReferralCode.id),
                func.count(ReferralCode.id).filter(ReferralCode.is_active.is_(True)),
                func.coalesce(func.sum(ReferralCode.current_uses), 0),
            )
        )
    ).one()
    commission = (
        await db.execute(select(func.coalesce(func.sum(ReferralUsage.commission_amount), 0)))
    ).scalar_one()
    return PromotionStats(
        total_codes=row[0],
        active_codes=row[1],
        total_uses=row[2],
        total_commission=commission,
    )


async def update_referral_code(
    db: AsyncSession, referral_code_id: int, changes: ReferralCodeUpdate
) -> Optional[ReferralCode]:
    referral = await db.get(ReferralCode, referral_code_id)
    if referral is None:
        return None

    _validate_percent("discount_percent", changes.discount_percent)
    _validate_percent("commission_percent", changes.commission_percent)
    validate_max_uses(changes.max_uses)

    if changes.owner_name is not None:
        if not changes.owner_name.strip():
            raise ValidationError("Owner name is required")
        referral.owner_name = changes.owner_name.strip()
    if changes.owner_email is not None:
        referral.owner_email = changes.owner_email
    if changes.discount_percent is not None:
        referral.discount_percent = changes.discount_percent
    if changes.commission_percent is not None:
        referral.commission_percent = changes.commission_percent
    if changes.max_uses is not None:
        referral.max_uses = changes.max_uses
    if changes.expires_at is not None:
        referral.expires_at = to_naive_utc(changes.expires_at)
    if changes.is_active is not None:
        referral.is_active = changes.is_active

    await db.commit()
    await db.refresh(referral)
    logger.info("Referral code updated", extra={"referral_code_id": referral.id})
    return referral


async def delete_referral_code(db: AsyncSession, referral_code_id: int) -> bool:
    result = await db.execute(delete(ReferralCode).where(ReferralCode.id == referral_code_id))
    await db.commit()
    return result.rowcount > 0


async def validate_referral_code(db: AsyncSession, code: str) -> ReferralCode:
    result = await db.execute(
        select(ReferralCode)
        .where(ReferralCode.code == normalize_code(code))
        .execution_options(populate_existing=True)
    )
    referral = result.scalar_one_or_none()

    if referral is None:
        raise CodeNotFoundError("Invalid referral code")
    if not referral.is_active:
        raise InactiveCodeError("This referral code is no longer active")
    if is_expired(referral.expires_at):
        raise ExpiredCodeError("This referral code has expired")
    if referral.max_uses is not None and referral.current_uses >= referral.max_uses:
        raise CodeExhaustedError("This referral code has reached its maximum number of uses")

    return referral


def calculate_referral(referral: ReferralCode, purchase_amount: int) -> Tuple[int, int]:
    """
    Return (discount_amount, commission_amount) in cents. Commission is a share of
    what the buyer actually pays.
    """
    discount_amount = (purchase_amount * referral.discount_percent + 50) // 100
    final_amount = purchase_amount - discount_amount
    commission_amount = (final_amount * referral.commission_percent + 50) // 100
    return discount_amount, commission_amount


async def record_referral_usage(
    db: AsyncSession,
    referral_code_id: int,
    user_id: str,
    original_amount: int,
    discount_amount: int,
    payment_ref: Optional[str] = None,
) -> Optional[ReferralUsage]:
    """Count one use and store the owner's commission, inside the caller's transaction."""
    result = await db.execute(
        update(ReferralCode)
        .where(
            ReferralCode.id == referral_code_id,
            or_(ReferralCode.max_uses.is_(None), ReferralCode.current_uses < ReferralCode.max_uses),
        )
        .values(current_uses=ReferralCode.current_uses + 1, updated_at=utcnow())
        .returning(ReferralCode.commission_percent)
        .execution_options(synchronize_session=False)
    )
    row = result.first()
    if row is None:
        logger.warning(
            "Referral usage not recorded: code missing or exhausted",
            extra={"referral_code_id": referral_code_id, "user_id": user_id, "payment_ref": payment_ref},
        )
        return None

    final_amount = original_amount - discount_amount
    usage = ReferralUsage(
        referral_code_id=referral_code_id,
        user_id=user_id,
        original_amount=original_amount,
        discount_amount=discount_amount,
        final_amount=final_amount,
        commission_amount=(final_amount * row[0] + 50) // 100,
        payment_ref=payment_ref,
    )
    db.add(usage)
    await db.flush()
    logger.info(
        "Referral usage recorded",
        extra={
            "referral_code_id": referral_code_id,
            "user_id": user_id,
            "commission_amount": usage.commission_amount,
            "payment_ref": payment_ref,
        },
    )
    return usage
