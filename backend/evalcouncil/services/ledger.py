from __future__ import annotations

from typing import List, Optional

from sqlalchemy import desc, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..db import upsert_for
from ..exceptions import (
    ConflictError,
    InsufficientBalanceError,
    InvalidAmountError,
    ValidationError,
)
from ..logger import logger
from ..models import CreditAccount, CreditTransaction, TransactionKind, utcnow

SET_BALANCE_ATTEMPTS = 3


def _seed_for(email: Optional[str]) -> int:
    if email and email == settings.ADMIN_EMAIL:
        return settings.ADMIN_INITIAL_CREDITS
    return settings.DEFAULT_CREDITS


async def _current_balance(db: AsyncSession, user_id: str) -> Optional[int]:
    result = await db.execute(select(CreditAccount.balance).where(CreditAccount.user_id == user_id))
    return result.scalar_one_or_none()


async def _ensure_account(db: AsyncSession, user_id: str, email: Optional[str] = None) -> None:
    """
    Create the account row if it does not exist yet, inside the caller's transaction.

    The seed amount is logged as a bonus transaction so the transaction log always
    sums to the balance.
    """
    seed = _seed_for(email)
    stmt = (
        upsert_for(db, CreditAccount.__table__)
        .values(user_id=user_id, balance=seed)
        .on_conflict_do_nothing(index_elements=["user_id"])
        .returning(CreditAccount.__table__.c.user_id)
    )
    created = (await db.execute(stmt)).first()
    if created is None:
        return

    if seed > 0:
        db.add(
            CreditTransaction(
                user_id=user_id,
                amount=seed,
                kind=TransactionKind.BONUS,
                description="Initial credits",
                balance_after=seed,
            )
        )
        await db.flush()
    logger.info("Created credit account", extra={"user_id": user_id, "seed": seed})


async def get_balance(db: AsyncSession, user_id: str, email: Optional[str] = None) -> int:
    balance = await _current_balance(db, user_id)
    if balance is not None:
        return balance

    await _ensure_account(db, user_id, email)
    balance = await _current_balance(db, user_id)
    await db.commit()
    return balance


async def _apply_credit(
    db: AsyncSession,
    user_id: str,
    amount: int,
    kind: str,
    description: str,
    external_ref: Optional[str] = None,
    email: Optional[str] = None,
) -> int:
    """Increment the balance and append the transaction without committing."""
    if amount <= 0:
        raise InvalidAmountError(amount)
    if kind not in TransactionKind.ALL or kind == TransactionKind.DEDUCTION:
        raise ValidationError(f"Invalid credit kind: {kind}")

    await _ensure_account(db, user_id, email)
    result = await db.execute(
        update(CreditAccount)
        .where(CreditAccount.user_id == user_id)
        .values(balance=CreditAccount.balance + amount, updated_at=utcnow())
        .returning(CreditAccount.balance)
        .execution_options(synchronize_session=False)
    )
    new_balance = result.scalar_one()

    db.add(
        CreditTransaction(
            user_id=user_id,
            amount=amount,
            kind=kind,
            description=description,
            balance_after=new_balance,
            external_ref=external_ref,
        )
    )
    await db.flush()
    return new_balance


async def has_external_ref(db: AsyncSession, external_ref: str) -> bool:
    result = await db.execute(
        select(CreditTransaction.id).where(CreditTransaction.external_ref == external_ref)
    )
    return result.first() is not None


async def credit(
    db: AsyncSession,
    user_id: str,
    amount: int,
    kind: str,
    description: str,
    external_ref: Optional[str] = None,
    email: Optional[str] = None,
) -> int:
    """
    Add credits and return the new balance.

    A repeated external_ref is treated as an already-applied credit and returns the
    current balance unchanged.
    """
    if amount <= 0:
        raise InvalidAmountError(amount)

    if external_ref and await has_external_ref(db, external_ref):
        logger.info(
            "Duplicate credit ignored",
            extra={"user_id": user_id, "external_ref": external_ref},
        )
        return await get_balance(db, user_id, email)

    try:
        new_balance = await _apply_credit(db, user_id, amount, kind, description, external_ref, email)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        if not external_ref:
            raise
        logger.info(
            "Duplicate credit ignored after concurrent insert",
            extra={"user_id": user_id, "external_ref": external_ref},
        )
        return await get_balance(db, user_id, email)

    logger.info(
        "Credits added",
        extra={"user_id": user_id, "amount": amount, "kind": kind, "balance": new_balance},
    )
    return new_balance


async def debit(
    db: AsyncSession, user_id: str, amount: int, description: str, email: Optional[str] = None
) -> int:
    """
    Remove credits and return the new balance.

    The balance check and the decrement are one conditional UPDATE, so concurrent
    debits can never drive the balance negative.
    """
    if amount <= 0:
        raise InvalidAmountError(amount)

    await _ensure_account(db, user_id, email)
    result = await db.execute(
        update(CreditAccount)
        .where(CreditAccount.user_id == user_id, CreditAccount.balance >= amount)
        .values(balance=CreditAccount.balance - amount, updated_at=utcnow())
        .returning(CreditAccount.balance)
        .execution_options(synchronize_session=False)
    )
    row = result.first()
    if row is None:
        current = await _current_balance(db, user_id) or 0
        await db.rollback()
        logger.warning(
            "Debit rejected: insufficient balance",
            extra={"user_id": user_id, "amount": amount, "balance": current},
        )
        raise InsufficientBalanceError(user_id, current, amount)

    new_balance = row[0]
    db.add(
        CreditTransaction(
            user_id=user_id,
            amount=-amount,
            kind=TransactionKind.DEDUCTION,
            description=description,
            balance_after=new_balance,
        )
    )
    await db.commit()

    logger.info(
        "Credits deducted",
        extra={"user_id": user_id, "amount": amount, "balance": new_balance},
    )
    return new_balance


async def set_balance(db: AsyncSession, user_id: str, amount: int, email: Optional[str] = None) -> int:
    """
    Administrative override. Records the delta to the target as a bonus transaction.
    """
    if amount < 0:
        raise ValidationError("Invalid credits amount")

    for _ in range(SET_BALANCE_ATTEMPTS):
        await _ensure_account(db, user_id, email)
        current = await _current_balance(db, user_id)
        delta = amount - current
        if delta == 0:
            await db.commit()
            return amount

        result = await db.execute(
            update(CreditAccount)
            .where(CreditAccount.user_id == user_id, CreditAccount.balance == current)
            .values(balance=amount, updated_at=utcnow())
            .returning(CreditAccount.balance)
            .execution_options(synchronize_session=False)
        )
        if result.first() is None:
            await db.rollback()
            continue

        db.add(
            CreditTransaction(
                user_id=user_id,
                amount=delta,
                kind=TransactionKind.BONUS,
                description="Admin credits set",
                balance_after=amount,
            )
        )
        await db.commit()
        logger.info(
            "Credits set by admin",
            extra={"user_id": user_id, "balance": amount, "delta": delta},
        )
        return amount

    raise ConflictError("Balance changed concurrently, please retry")


async def list_transactions(db: AsyncSession, user_id: str, limit: int = 50) -> List[CreditTransaction]:
    result = await db.execute(
        select(CreditTransaction)
        .where(CreditTransaction.user_id == user_id)
        .order_by(desc(CreditTransaction.created_at), desc(CreditTransaction.id))
        .limit(limit)
    )
    return list(result.scalars().all())
