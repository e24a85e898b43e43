"""
Admin routes - promotions, AX model catalogue, showcase and credit overrides
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from ..auth import CurrentUser, get_current_user_optional, require_admin
from ..db import get_db
from ..logger import logger
from ..schemas import (
    AdminCheckResponse,
    AXModelConfigCreate,
    AXModelConfigOut,
    AXModelConfigUpdate,
    CreditBalanceResponse,
    DiscountCodeCreate,
    DiscountCodeList,
    DiscountCodeOut,
    DiscountCodeUpdate,
    ReferralCodeCreate,
    ReferralCodeList,
    ReferralCodeOut,
    ReferralCodeUpdate,
    SetCreditsRequest,
    ShowcaseAddRequest,
    ShowcaseEntry,
    ShowcaseList,
    ToggleRequest,
    VoucherCreate,
    VoucherList,
    VoucherOut,
    VoucherUpdate,
)
from ..services import discounts, ledger, model_configs, referrals, showcase, vouchers

router = APIRouter(prefix="/admin", tags=["Admin"])


def _not_found(kind: str):
    return HTTPException(status_code=404, detail=f"{kind} not found")


@router.get("/check", response_model=AdminCheckResponse)
async def check_admin(current_user: Optional[CurrentUser] = Depends(get_current_user_optional)):
    return AdminCheckResponse(isAdmin=bool(current_user and current_user.is_admin))


@router.post("/set-credits", response_model=CreditBalanceResponse)
async def set_credits(
    request: SetCreditsRequest,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Set a user's balance; defaults to the admin's own account"""
    target = request.user_id or admin.user_id
    email = admin.email if target == admin.user_id else None
    balance = await ledger.set_balance(db, target, request.credits, email)
    logger.info("Admin set credits", extra={"admin_id": admin.user_id, "user_id": target, "balance": balance})
    return CreditBalanceResponse(balance=balance)


# ===== Discount codes =====

@router.get("/discounts", response_model=DiscountCodeList)
async def list_discounts(_: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    codes = await discounts.list_discount_codes(db)
    stats = await discounts.get_discount_stats(db)
    return DiscountCodeList(codes=[DiscountCodeOut.model_validate(c) for c in codes], stats=stats)


@router.post("/discounts", response_model=DiscountCodeOut, status_code=201)
async def create_discount(
    request: DiscountCodeCreate,
    _: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await discounts.create_discount_code(db, request)


@router.patch("/discounts/{discount_code_id}", response_model=DiscountCodeOut)
async def update_discount(
    discount_code_id: int,
    request: DiscountCodeUpdate,
    _: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    discount = await discounts.update_discount_code(db, discount_code_id, request)
    if discount is None:
        raise _not_found("Discount code")
    return discount


@router.post("/discounts/{discount_code_id}/toggle", response_model=DiscountCodeOut)
async def toggle_discount(
    discount_code_id: int,
    request: ToggleRequest,
    _: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    discount = await discounts.update_discount_code(
        db, discount_code_id, DiscountCodeUpdate(is_active=request.is_active)
    )
    if discount is None:
        raise _not_found("Discount code")
    return discount


@router.delete("/discounts/{discount_code_id}", status_code=204)
async def delete_discount(
    discount_code_id: int,
    _: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    if not await discounts.delete_discount_code(db, discount_code_id):
        raise _not_found("Discount code")


# ===== Referral codes =====

@router.get("/referrals", response_model=ReferralCodeList)
async def list_referrals(_: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    codes = await referrals.list_referral_codes(db)
    stats = await referrals.get_referral_stats(db)
    return ReferralCodeList(codes=[ReferralCodeOut.model_validate(c) for c in codes], stats=stats)


@router.post("/referrals", response_model=ReferralCodeOut, status_code=201)
async def create_referral(
    request: ReferralCodeCreate,
    _: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await referrals.create_referral_code(db, request)


@router.patch("/referrals/{referral_code_id}", response_model=ReferralCodeOut)
async def update_referral(
    referral_code_id: int,
    request: ReferralCodeUpdate,
    _: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    referral = await referrals.update_referral_code(db, referral_code_id, request)
    if referral is None:
        raise _not_found("Referral code")
    return referral


@router.post("/referrals/{referral_code_id}/toggle", response_model=ReferralCodeOut)
async def toggle_referral(
    referral_code_id: int,
    request: ToggleRequest,
    _: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    referral = await referrals.update_referral_code(
        db, referral_code_id, ReferralCodeUpdate(is_active=request.is_active)
    )
    if referral is None:
        raise _not_found("Referral code")
    return referral


@router.delete("/referrals/{referral_code_id}", status_code=204)
async def delete_referral(
    referral_code_id: int,
    _: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    if not await referrals.delete_referral_code(db, referral_code_id):
        raise _not_found("Referral code")


# ===== Vouchers =====

@router.get("/vouchers", response_model=VoucherList)
async def list_vouchers(_: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    rows = await vouchers.list_vouchers(db)
    stats = await vouchers.get_voucher_stats(db)
    return VoucherList(vouchers=[VoucherOut.model_validate(v) for v in rows], stats=stats)


@router.post("/vouchers", response_model=VoucherOut, status_code=201)
async def create_voucher(
    request: VoucherCreate,
    _: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await vouchers.create_voucher(db, request)


@router.patch("/vouchers/{voucher_id}", response_model=VoucherOut)
async def update_voucher(
    voucher_id: int,
    request: VoucherUpdate,
    _: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    voucher = await vouchers.update_voucher(db, voucher_id, request)
    if voucher is None:
        raise _not_found("Voucher")
    return voucher


@router.post("/vouchers/{voucher_id}/toggle", response_model=VoucherOut)
async def toggle_voucher(
    voucher_id: int,
    request: ToggleRequest,
    _: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    voucher = await vouchers.update_voucher(db, voucher_id, VoucherUpdate(is_active=request.is_active))
    if voucher is None:
        raise _not_found("Voucher")
    return voucher


@router.delete("/vouchers/{voucher_id}", status_code=204)
async def delete_voucher(
    voucher_id: int,
    _: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    if not await vouchers.delete_voucher(db, voucher_id):
        raise _not_found("Voucher")


# ===== AX model catalogue =====

@router.get("/ax-models", response_model=List[AXModelConfigOut])
async def list_all_models(_: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return await model_configs.list_models(db, enabled_only=False)


@router.post("/ax-models", response_model=AXModelConfigOut, status_code=201)
async def create_model(
    request: AXModelConfigCreate,
    _: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await model_configs.create_model(db, request)


@router.patch("/ax-models/{model_id}", response_model=AXModelConfigOut)
async def update_model(
    model_id: str,
    request: AXModelConfigUpdate,
    _: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    model = await model_configs.update_model(db, model_id, request)
    if model is None:
        raise _not_found("Model")
    return model


@router.delete("/ax-models/{model_id}", status_code=204)
async def delete_model(
    model_id: str,
    _: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    if not await model_configs.delete_model(db, model_id):
        raise _not_found("Model")


# ===== Showcase =====

@router.get("/showcase", response_model=ShowcaseList)
async def list_showcase(_: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return await showcase.list_showcase(db)


@router.post("/showcase", response_model=ShowcaseEntry, status_code=201)
async def add_to_showcase(
    request: ShowcaseAddRequest,
    _: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await showcase.add_to_showcase(db, request.evaluationId, request.displayOrder)


@router.delete("/showcase/{evaluation_id}", status_code=204)
async def remove_from_showcase(
    evaluation_id: int,
    _: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    if not await showcase.remove_from_showcase(db, evaluation_id):
        raise _not_found("Showcase entry")
