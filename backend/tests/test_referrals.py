from datetime import timedelta

import pytest

from evalcouncil.exceptions import (
    CodeExhaustedError,
    CodeNotFoundError,
    ExpiredCodeError,
    InactiveCodeError,
    ValidationError,
)
from evalcouncil.models import ReferralCode, utcnow
from evalcouncil.schemas import ReferralCodeCreate, ReferralCodeUpdate
from evalcouncil.services import referrals


@pytest.mark.asyncio
async def test_create_with_defaults(db):
    referral = await referrals.create_referral_code(db, ReferralCodeCreate(owner_name="Jane Doe"))

    assert referral.code.startswith("JANEDO-")
    assert (referral.discount_percent, referral.commission_percent) == (10, 20)
    assert referral.current_uses == 0


@pytest.mark.asyncio
async def test_owner_without_letters_falls_back_to_ref_prefix(db):
    referral = await referrals.create_referral_code(db, ReferralCodeCreate(owner_name="--- ---"))
    assert referral.code.startswith("REF-")


@pytest.mark.asyncio
async def test_create_validation(db):
    with pytest.raises(ValidationError):
        await referrals.create_referral_code(db, ReferralCodeCreate(owner_name="Jane", discount_percent=120))
    with pytest.raises(ValidationError):
        await referrals.create_referral_code(db, ReferralCodeCreate(owner_name="Jane", commission_percent=-1))
    with pytest.raises(ValidationError):
        await referrals.create_referral_code(db, ReferralCodeCreate(owner_name="   "))


def test_commission_is_share_of_final_amount():
    referral = ReferralCode(discount_percent=10, commission_percent=20)

    discount_amount, commission_amount = referrals.calculate_referral(referral, 149900)

    assert discount_amount == 14990
    assert commission_amount == 26982


@pytest.mark.asyncio
async def test_validate_referral_code(db):
    referral = await referrals.create_referral_code(
        db, ReferralCodeCreate(owner_name="Jane", custom_code="jane10", max_uses=1)
    )

    assert (await referrals.validate_referral_code(db, " JANE10 ")).id == referral.id
    with pytest.raises(CodeNotFoundError):
        await referrals.validate_referral_code(db, "NOBODY")

    await referrals.record_referral_usage(db, referral.id, "buyer-1", 149900, 14990, payment_ref="pay_1")
    await db.commit()
    with pytest.raises(CodeExhaustedError):
        await referrals.validate_referral_code(db, "JANE10")

    await referrals.update_referral_code(db, referral.id, ReferralCodeUpdate(is_active=False))
    with pytest.raises(InactiveCodeError):
        await referrals.validate_referral_code(db, "JANE10")

    other = await referrals.create_referral_code(db, ReferralCodeCreate(owner_name="Old", custom_code="OLD"))
    other.expires_at = utcnow() - timedelta(seconds=1)
    await db.commit()
    with pytest.raises(ExpiredCodeError):
        await referrals.validate_referral_code(db, "OLD")


@pytest.mark.asyncio
async def test_record_usage_stores_commission(db):
    referral = await referrals.create_referral_code(
        db, ReferralCodeCreate(owner_name="Jane", discount_percent=10, commission_percent=20)
    )

    usage = await referrals.record_referral_usage(db, referral.id, "buyer-1", 149900, 14990, payment_ref="pay_1")
    await db.commit()

    assert usage.final_amount == 134910
    assert usage.commission_amount == 26982
    await db.refresh(referral)
    assert referral.current_uses == 1

    stats = await referrals.get_referral_stats(db)
    assert (stats.total_codes, stats.total_uses, stats.total_commission) == (1, 1, 26982)


@pytest.mark.asyncio
async def test_update_and_delete(db):
    referral = await referrals.create_referral_code(db, ReferralCodeCreate(owner_name="Jane"))

    with pytest.raises(ValidationError):
        await referrals.update_referral_code(db, referral.id, ReferralCodeUpdate(commission_percent=101))

    updated = await referrals.update_referral_code(
        db, referral.id, ReferralCodeUpdate(owner_name="Jane Smith", commission_percent=25)
    )
    assert (updated.owner_name, updated.commission_percent) == ("Jane Smith", 25)

    assert await referrals.delete_referral_code(db, referral.id) is True
    assert await referrals.update_referral_code(db, referral.id, ReferralCodeUpdate(is_active=True)) is None
    assert await referrals.list_referral_codes(db) == []
