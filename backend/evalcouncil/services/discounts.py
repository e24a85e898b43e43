from __future__ import annotations

from typing import List, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import (
    BelowMinimumPurchaseError,
    CodeExhaustedError,
    CodeNotFoundError,
    ExpiredCodeError,
    InactiveCodeError,
    ValidationError,
)
from ..logger import logger
from ..models import DiscountCode, DiscountUsage, utcnow
from ..schemas import DiscountCalculation, DiscountCodeCreate, DiscountCodeUpdate, PromotionStats
from .codes import (
    insert_with_code,
    is_expired,
    normalize_code,
    to_naive_utc,
    validate_future_expiry,
    validate_max_uses,
)

DISCOUNT_TYPES = ("percentage", "fixed")


def _validate_value(discount_type: str, discount_value: int) -> None:
    if discount_type not in DISCOUNT_TYPES:
        raise ValidationError("Invalid discount type")
    if discount_value < 0:
        raise ValidationError("Discount value must not be negative")
    if discount_type == "percentage" and discount_value > 100:
        raise ValidationError("Percentage discount must be between 0 and 100")


async def create_discount_code(db: AsyncSession, data: DiscountCodeCreate) -> DiscountCode:
    _validate_value(data.discount_type, data.discount_value)
    validate_max_uses(data.max_uses)
    validate_future_expiry(data.expires_at)
    if not data.auto_generate and not (data.code and data.code.strip()):
        raise ValidationError("Discount code is required")

    discount = await insert_with_code(
        db,
        lambda code: DiscountCode(
            code=code,
            discount_type=data.discount_type,
            discount_value=data.discount_value,
            description=data.description,
            min_purchase_amount=data.min_purchase_amount,
            max_uses=data.max_uses,
            expires_at=to_naive_utc(data.expires_at),
        ),
        custom_code=None if data.auto_generate else data.code,
        prefix="SAVE",
    )
    logger.info("Discount code created", extra={"discount_code_id": discount.id, "code": discount.code})
    return discount


async def list_discount_codes(db: AsyncSession) -> List[DiscountCode]:
    result = await db.execute(select(DiscountCode).order_by(DiscountCode.created_at.desc(), DiscountCode.id.desc()))
    return list(result.scalars().all())


async def get_discount_stats(db: AsyncSession) -> PromotionStats:
    row = (
        await db.execute(
            select(
                func.count(DiscountCode.id),
                func.count(DiscountCode.id).filter(DiscountCode.is_active.is_(True)),
                func.coalesce(func.sum(DiscountCode.current_uses), 0),
            )
        )
    ).one()
    return PromotionStats(total_codes=row[0], active_codes=row[1], total_uses=row[2])


async def update_discount_code(
    db: AsyncSession, discount_code_id: int, changes: DiscountCodeUpdate
) -> Optional[DiscountCode]:
    discount = await db.get(DiscountCode, discount_code_id)
    if discount is None:
        return None

    discount_type = changes.discount_type if changes.discount_type is not None else discount.discount_type
    discount_value = changes.discount_value if changes.discount_value is not None else discount.discount_value
    _validate_value(discount_type, discount_value)
    validate_max_uses(changes.max_uses)

    discount.discount_type = discount_type
    discount.discount_value = discount_value
    if changes.description is not None:
        discount.description = changes.description
    if changes.min_purchase_amount is not None:
        discount.min_purchase_amount = changes.min_purchase_amount
    if changes.max_uses is not None:
        discount.max_uses = changes.max_uses
    if changes.expires_at is not None:
        discount.expires_at = to_naive_utc(changes.expires_at)
    if changes.is_active is not None:
        discount.is_active = changes.is_active

    await db.commit()
    await db.refresh(discount)
    logger.info("Discount code updated", extra={"discount_code_id": discount.id})
    return discount


async def delete_discount_code(db: AsyncSession, discount_code_id: int) -> bool:
    result = await db.execute(delete(DiscountCode).where(DiscountCode.id == discount_code_id))
    await db.commit()
    return result.rowcount > 0


async def validate_discount_code(
    db: AsyncSession, code: str, purchase_amount: Optional[int] = None
) -> DiscountCode:
    """
    Check that a discount code can be applied. Read-only: probing a code never
    consumes a use.
    """
    result = await db.execute(
        select(DiscountCode)
        .where(DiscountCode.code == normalize_code(code))
        .execution_options(populate_existing=True)
    )
    discount = result.scalar_one_or_none()

    if discount is None:
        raise CodeNotFoundError("Invalid discount code")
    if not discount.is_active:
        raise InactiveCodeError("This discount code is no longer active")
    if is_expired(discount.expires_at):
        raise ExpiredCodeError("This discount code has expired")
    if discount.max_uses is not None and discount.current_uses >= discount.max_uses:
        raise CodeExhaustedError("This discount code has reached its maximum number of uses")
    if (
        purchase_amount is not None
        and discount.min_purchase_amount is not None
        and purchase_amount < discount.min_purchase_amount
    ):
        raise BelowMinimumPurchaseError(discount.min_purchase_amount)

    return discount


def calculate_discount(discount: DiscountCode, purchase_amount: int) -> DiscountCalculation:
    """Amounts are in cents; fixed discounts never push the total below zero."""
    if discount.discount_type == "percentage":
        value = max(0, min(100, discount.discount_value))
        discount_amount = (purchase_amount * value + 50) // 100
    else:
        discount_amount = min(discount.discount_value, purchase_amount)

    return DiscountCalculation(
        original_amount=purchase_amount,
        discount_amount=discount_amount,
        final_amount=purchase_amount - discount_amount,
    )


async def record_discount_usage(
    db: AsyncSession,
    discount_code_id: int,
    user_id: str,
    original_amount: int,
    discount_amount: int,
    payment_ref: Optional[str] = None,
) -> Optional[DiscountUsage]:
    """
    Count one use after a confirmed payment, inside the caller's transaction.

    The counter only moves while uses remain; an exhausted code is logged and the
    usage is not recorded.
    """
    result = await db.execute(
        update(DiscountCode)
        .where(
            DiscountCode.id == discount_code_id,
            or_(DiscountCode.max_uses.is_(None), DiscountCode.current_uses < DiscountCode.max_uses),
        )
        .values(current_uses=DiscountCode.current_uses + 1, updated_at=utcnow())
        .returning(DiscountCode.id)
        .execution_options(synchronize_session=False)
    )
    if result.first() is None:
        logger.warning(
            "Discount usage not recorded: code missing or exhausted",
            extra={"discount_code_id": discount_code_id, "user_id": user_id, "payment_ref": payment_ref},
        )
        return None

    usage = DiscountUsage(
        discount_code_id=discount_code_id,
        user_id=user_id,
        original_amount=original_amount,
        discount_amount=discount_amount,
        final_amount=original_amount - discount_amount,
        payment_ref=payment_ref,
    )
    db.add(usage)
    await db.flush()
    logger.info(
        "Discount usage recorded",
        extra={"discount_code_id": discount_code_id, "user_id": user_id, "payment_ref": payment_ref},
    )
    return usage
