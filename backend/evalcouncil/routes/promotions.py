"""
Promotion routes - code validation, voucher redemption and purchase quotes
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import CurrentUser, get_current_user
from ..config import settings
from ..db import get_db
from ..exceptions import RateLimitedError
from ..logger import logger
from ..schemas import (
    DiscountCodeOut,
    DiscountValidateRequest,
    DiscountValidateResponse,
    PurchaseQuote,
    PurchaseQuoteRequest,
    ReferralValidateRequest,
    ReferralValidateResponse,
    VoucherRedeemRequest,
    VoucherRedeemResponse,
)
from ..services import discounts, payments, referrals, vouchers
from ..services.rate_limit import SlidingWindowRateLimiter

router = APIRouter(tags=["Promotions"])

voucher_limiter = SlidingWindowRateLimiter(
    settings.VOUCHER_RATE_LIMIT_ATTEMPTS,
    settings.VOUCHER_RATE_LIMIT_WINDOW_SECONDS,
)


def _client_ip(request: Request) -> str:
    """Forwarding headers are client-controlled, so they are only read behind a trusted proxy."""
    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # The proxy appends the address it saw; earlier entries come from the client.
            return forwarded.split(",")[-1].strip()
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip.strip()
    return request.client.host if request.client else "unknown"


@router.post("/discount/validate", response_model=DiscountValidateResponse)
async def validate_discount(request: DiscountValidateRequest, db: AsyncSession = Depends(get_db)):
    """Check a discount code without consuming it"""
    discount = await discounts.validate_discount_code(db, request.code, request.purchase_amount)
    calculation = None
    if request.purchase_amount is not None:
        calculation = discounts.calculate_discount(discount, request.purchase_amount)
    return DiscountValidateResponse(
        discount=DiscountCodeOut.model_validate(discount),
        calculation=calculation,
    )


@router.post("/referrals/validate", response_model=ReferralValidateResponse)
async def validate_referral(request: ReferralValidateRequest, db: AsyncSession = Depends(get_db)):
    referral = await referrals.validate_referral_code(db, request.code)
    return ReferralValidateResponse(
        valid=True,
        code=referral.code,
        discount_percent=referral.discount_percent,
        owner_name=referral.owner_name,
    )


@router.post("/vouchers/redeem", response_model=VoucherRedeemResponse)
async def redeem_voucher(
    body: VoucherRedeemRequest,
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ip = _client_ip(request)
    if not voucher_limiter.hit(ip):
        logger.warning("Voucher redemption rate limited", extra={"client_ip": ip, "user_id": current_user.user_id})
        raise RateLimitedError()

    credits, balance = await vouchers.redeem_voucher(db, body.code, current_user.user_id, current_user.email)
    return VoucherRedeemResponse(
        message=f"Successfully redeemed {credits} credits!",
        credits=credits,
        newBalance=balance,
    )


@router.post("/purchases/quote", response_model=PurchaseQuote)
async def quote_purchase(request: PurchaseQuoteRequest, db: AsyncSession = Depends(get_db)):
    return await payments.quote_purchase(db, request.pack_id, request.referral_code, request.discount_code)
