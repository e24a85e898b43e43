import asyncio
import re
from datetime import timedelta

import pytest
from sqlalchemy import update

from evalcouncil.exceptions import (
    AlreadyRedeemedError,
    CodeExhaustedError,
    CodeNotFoundError,
    DuplicateCodeError,
    ExpiredCodeError,
    InactiveCodeError,
    ValidationError,
)
from evalcouncil.models import TransactionKind, Voucher, utcnow
from evalcouncil.schemas import VoucherCreate, VoucherUpdate
from evalcouncil.services import ledger, vouchers


@pytest.mark.asyncio
async def test_create_voucher_generates_readable_code(db):
    voucher = await vouchers.create_voucher(db, VoucherCreate(credits_amount=50))

    assert re.fullmatch(r"AX(-[A-HJ-NP-Z2-9]{4}){3}", voucher.code)
    assert voucher.current_uses == 0
    assert voucher.is_active


@pytest.mark.asyncio
async def test_custom_code_is_normalized_and_unique(db):
    voucher = await vouchers.create_voucher(db, VoucherCreate(credits_amount=10, custom_code="  launch50 "))
    assert voucher.code == "LAUNCH50"

    with pytest.raises(DuplicateCodeError):
        await vouchers.create_voucher(db, VoucherCreate(credits_amount=10, custom_code="Launch50"))


@pytest.mark.asyncio
async def test_create_voucher_validation(db):
    with pytest.raises(ValidationError):
        await vouchers.create_voucher(db, VoucherCreate(credits_amount=10, max_uses=0))
    with pytest.raises(ValidationError):
        await vouchers.create_voucher(
            db, VoucherCreate(credits_amount=10, expires_at=utcnow() - timedelta(days=1))
        )
    with pytest.raises(ValidationError):
        await vouchers.create_voucher(db, VoucherCreate(credits_amount=10, custom_code="AB"))


@pytest.mark.asyncio
async def test_redeem_credits_ledger(db, ledger_check):
    voucher = await vouchers.create_voucher(db, VoucherCreate(credits_amount=25, custom_code="WELCOME"))

    credits, balance = await vouchers.redeem_voucher(db, " welcome ", "user-1")

    assert (credits, balance) == (25, 25)
    transactions = await ledger.list_transactions(db, "user-1")
    assert transactions[0].kind == TransactionKind.BONUS
    assert transactions[0].description == "Voucher redeemed: WELCOME"
    await db.refresh(voucher)
    assert voucher.current_uses == 1
    assert await ledger_check("user-1") == 25


@pytest.mark.asyncio
async def test_same_user_cannot_redeem_twice(db, ledger_check):
    await vouchers.create_voucher(db, VoucherCreate(credits_amount=25, custom_code="WELCOME"))
    await vouchers.redeem_voucher(db, "WELCOME", "user-1")

    with pytest.raises(AlreadyRedeemedError):
        await vouchers.redeem_voucher(db, "WELCOME", "user-1")

    assert await ledger.get_balance(db, "user-1") == 25
    assert await ledger_check("user-1") == 25


@pytest.mark.asyncio
async def test_concurrent_same_user_redeems_once(session_factory, ledger_check):
    async with session_factory() as session:
        await vouchers.create_voucher(session, VoucherCreate(credits_amount=10, custom_code="TWICE"))

    async def redeem():
        async with session_factory() as session:
            return await vouchers.redeem_voucher(session, "TWICE", "user-1")

    results = await asyncio.gather(redeem(), redeem(), return_exceptions=True)

    assert sum(1 for r in results if not isinstance(r, Exception)) == 1
    assert any(isinstance(r, AlreadyRedeemedError) for r in results)
    assert await ledger_check("user-1") == 10


@pytest.mark.asyncio
async def test_max_uses_holds_under_concurrency(session_factory, db):
    max_uses = 3
    voucher = await vouchers.create_voucher(
        db, VoucherCreate(credits_amount=5, max_uses=max_uses, custom_code="LIMITED")
    )

    async def redeem(user_id):
        async with session_factory() as session:
            return await vouchers.redeem_voucher(session, "LIMITED", user_id)

    results = await asyncio.gather(*(redeem(f"user-{i}") for i in range(8)), return_exceptions=True)

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == max_uses
    assert all(isinstance(f, CodeExhaustedError) for f in failures)

    await db.refresh(voucher)
    assert voucher.current_uses == max_uses
    stats = await vouchers.get_voucher_stats(db)
    assert stats.total_uses == max_uses
    assert stats.total_credits_granted == 5 * max_uses


@pytest.mark.asyncio
async def test_redeem_rejections(db):
    voucher = await vouchers.create_voucher(db, VoucherCreate(credits_amount=5, custom_code="OLDCODE"))

    with pytest.raises(ValidationError):
        await vouchers.redeem_voucher(db, "x", "user-1")
    with pytest.raises(CodeNotFoundError):
        await vouchers.redeem_voucher(db, "NOPE", "user-1")

    await vouchers.update_voucher(db, voucher.id, VoucherUpdate(is_active=False))
    with pytest.raises(InactiveCodeError):
        await vouchers.redeem_voucher(db, "OLDCODE", "user-1")

    await db.execute(
        update(Voucher)
        .where(Voucher.id == voucher.id)
        .values(is_active=True, expires_at=utcnow() - timedelta(minutes=1))
    )
    await db.commit()
    with pytest.raises(ExpiredCodeError):
        await vouchers.redeem_voucher(db, "OLDCODE", "user-1")

    assert await ledger.get_balance(db, "user-1") == 0


@pytest.mark.asyncio
async def test_update_and_delete_voucher(db):
    voucher = await vouchers.create_voucher(db, VoucherCreate(credits_amount=5))

    updated = await vouchers.update_voucher(db, voucher.id, VoucherUpdate(credits_amount=8, max_uses=2))
    assert (updated.credits_amount, updated.max_uses) == (8, 2)

    assert await vouchers.delete_voucher(db, voucher.id) is True
    assert await vouchers.delete_voucher(db, voucher.id) is False
    assert await vouchers.update_voucher(db, voucher.id, VoucherUpdate(is_active=False)) is None


@pytest.mark.asyncio
async def test_admin_first_redemption_keeps_admin_seed(db, ledger_check):
    await vouchers.create_voucher(db, VoucherCreate(credits_amount=25, custom_code="FIRST25"))

    credits, balance = await vouchers.redeem_voucher(db, "first25", "admin-1", "admin@example.com")

    assert (credits, balance) == (25, 1025)
    assert await ledger.get_balance(db, "admin-1", "admin@example.com") == 1025
    assert await ledger_check("admin-1") == 1025
