from __future__ import annotations

from typing import List, Optional, Tuple

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import (
    AlreadyRedeemedError,
    CodeExhaustedError,
    CodeNotFoundError,
    ExpiredCodeError,
    InactiveCodeError,
    ValidationError,
)
from ..logger import logger
from ..models import TransactionKind, Voucher, VoucherRedemption, utcnow
from ..schemas import PromotionStats, VoucherCreate, VoucherUpdate
from . import ledger
from .codes import (
    insert_with_code,
    is_expired,
    normalize_code,
    to_naive_utc,
    validate_future_expiry,
    validate_max_uses,
)

MIN_CODE_LENGTH = 3
MAX_CODE_LENGTH = 50


async def create_voucher(db: AsyncSession, data: VoucherCreate) -> Voucher:
    validate_max_uses(data.max_uses)
    validate_future_expiry(data.expires_at)
    if data.custom_code is not None:
        code = normalize_code(data.custom_code)
        if not MIN_CODE_LENGTH <= len(code) <= MAX_CODE_LENGTH:
            raise ValidationError(
                f"Voucher code must be between {MIN_CODE_LENGTH} and {MAX_CODE_LENGTH} characters"
            )

    voucher = await insert_with_code(
        db,
        lambda code: Voucher(
            code=code,
            credits_amount=data.credits_amount,
            max_uses=data.max_uses,
            expires_at=to_naive_utc(data.expires_at),
        ),
        custom_code=data.custom_code,
        prefix="AX",
    )
    logger.info(
        "Voucher created",
        extra={"voucher_id": voucher.id, "code": voucher.code, "credits_amount": voucher.credits_amount},
    )
    return voucher


async def list_vouchers(db: AsyncSession) -> List[Voucher]:
    result = await db.execute(select(Voucher).order_by(Voucher.created_at.desc(), Voucher.id.desc()))
    return list(result.scalars().all())


async def get_voucher_stats(db: AsyncSession) -> PromotionStats:
    row = (
        await db.execute(
            select(
                func.count(Voucher.id),
                func.count(Voucher.id).filter(Voucher.is_active.is_(True)),
                func.coalesce(func.sum(Voucher.current_uses), 0),
            )
        )
    ).one()
    granted = (
        await db.execute(select(func.coalesce(func.sum(VoucherRedemption.credits_amount), 0)))
    ).scalar_one()
    return PromotionStats(
        total_codes=row[0],
        active_codes=row[1],
        total_uses=row[2],
        total_credits_granted=granted,
    )


async def update_voucher(db: AsyncSession, voucher_id: int, changes: VoucherUpdate) -> Optional[Voucher]:
    voucher = await db.get(Voucher, voucher_id)
    if voucher is None:
        return None

    validate_max_uses(changes.max_uses)
    if changes.credits_amount is not None:
        voucher.credits_amount = changes.credits_amount
    if changes.max_uses is not None:
        voucher.max_uses = changes.max_uses
    if changes.expires_at is not None:
        voucher.expires_at = to_naive_utc(changes.expires_at)
    if changes.is_active is not None:
        voucher.is_active = changes.is_active

    await db.commit()
    await db.refresh(voucher)
    logger.info("Voucher updated", extra={"voucher_id": voucher.id})
    return voucher


async def delete_voucher(db: AsyncSession, voucher_id: int) -> bool:
    result = await db.execute(delete(Voucher).where(Voucher.id == voucher_id))
    await db.commit()
    return result.rowcount > 0


async def redeem_voucher(
    db: AsyncSession, code: str, user_id: str, email: Optional[str] = None
) -> Tuple[int, int]:
    """
    Redeem a voucher for a user and return (credits_granted, new_balance).

    The use counter, the redemption row and the ledger credit commit together or
    not at all. The counter moves only while uses remain, and the unique
    (voucher, user) pair stops a second redemption by the same user.
    """
    code = normalize_code(code or "")
    if not MIN_CODE_LENGTH <= len(code) <= MAX_CODE_LENGTH:
        raise ValidationError("Invalid voucher code format")

    result = await db.execute(
        select(Voucher).where(Voucher.code == code).execution_options(populate_existing=True)
    )
    voucher = result.scalar_one_or_none()
    if voucher is None:
        raise CodeNotFoundError("Invalid voucher code")
    if not voucher.is_active:
        raise InactiveCodeError("This voucher is no longer active")
    if is_expired(voucher.expires_at):
        raise ExpiredCodeError("This voucher has expired")

    existing = await db.execute(
        select(VoucherRedemption.id).where(
            VoucherRedemption.voucher_id == voucher.id,
            VoucherRedemption.user_id == user_id,
        )
    )
    if existing.first() is not None:
        raise AlreadyRedeemedError()

    voucher_id = voucher.id
    credits_amount = voucher.credits_amount
    try:
        claimed = await db.execute(
            update(Voucher)
            .where(
                Voucher.id == voucher_id,
                Voucher.is_active.is_(True),
                or_(Voucher.max_uses.is_(None), Voucher.current_uses < Voucher.max_uses),
            )
            .values(current_uses=Voucher.current_uses + 1, updated_at=utcnow())
            .returning(Voucher.id)
            .execution_options(synchronize_session=False)
        )
        if claimed.first() is None:
            await db.rollback()
            raise CodeExhaustedError("This voucher has reached its maximum number of uses")

        db.add(VoucherRedemption(voucher_id=voucher_id, user_id=user_id, credits_amount=credits_amount))
        await db.flush()

        new_balance = await ledger._apply_credit(
            db,
            user_id,
            credits_amount,
            TransactionKind.BONUS,
            f"Voucher redeemed: {code}",
            email=email,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.warning(
            "Concurrent redemption rejected",
            extra={"voucher_id": voucher_id, "user_id": user_id},
        )
        raise AlreadyRedeemedError()

    logger.info(
        "Voucher redeemed",
        extra={"voucher_id": voucher_id, "user_id": user_id, "credits": credits_amount, "balance": new_balance},
    )
    return credits_amount, new_balance
