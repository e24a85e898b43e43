"""
Pydantic schemas for request/response validation
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

# ===== Common Schemas =====

class HealthResponse(BaseModel):
    status: str

class VersionResponse(BaseModel):
    version: str

class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

# ===== Evaluation Jobs =====

class Demographics(BaseModel):
    ageRange: Literal["18-24", "25-34", "35-44", "45-54", "55+"]
    gender: Literal["male", "female", "non-binary", "all"]
    incomeTier: Literal["low", "medium", "high"]
    region: Literal["north-america", "europe", "asia", "latin-america", "africa", "oceania"]
    ethnicity: Optional[str] = None

class EvaluateRequest(BaseModel):
    productUrl: str
    demographics: Optional[Demographics] = None

class EvaluateResponse(BaseModel):
    jobId: str
    status: str
    message: str
    dispatched: bool = True

class JobStatusReport(BaseModel):
    """Body the external worker posts back for a job"""
    status: Literal["pending", "processing", "completed", "failed"]
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @model_validator(mode="after")
    def _validate_payload(self) -> "JobStatusReport":
        if self.status == "completed" and self.result is None:
            raise ValueError("result is required when status is 'completed'")
        return self

class JobStatusResponse(BaseModel):
    jobId: str
    status: str
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None
    completedAt: Optional[datetime] = None
    evaluationId: Optional[int] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

class ClaimRequest(BaseModel):
    jobId: str = Field(min_length=1)

class EvaluationOut(ORMModel):
    id: int
    job_id: Optional[str] = None
    url: str
    target_demographics: Dict[str, Any]
    result: Optional[Dict[str, Any]] = None
    website_snapshot: Optional[Dict[str, Any]] = None
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None

class EvaluationStats(BaseModel):
    total_evaluations: int
    avg_overall_score: Optional[float] = None
    avg_buying_intent: Optional[float] = None
    high_intent_count: int = 0
    middle_intent_count: int = 0
    low_intent_count: int = 0

class EvaluationList(BaseModel):
    evaluations: List[EvaluationOut]
    count: int
    stats: Optional[EvaluationStats] = None

class ShowcaseAddRequest(BaseModel):
    evaluationId: int = Field(gt=0)
    displayOrder: Optional[int] = None

class ShowcaseEntry(BaseModel):
    evaluation_id: int
    display_order: int
    url: str
    overall_score: Optional[float] = None
    website_snapshot: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None

class ShowcaseList(BaseModel):
    evaluations: List[ShowcaseEntry]
    count: int

# ===== AX Panel =====

class AXFactor(BaseModel):
    name: str
    score: int = Field(ge=0, le=100)
    status: Optional[Literal["excellent", "good", "needs-improvement"]] = None
    description: str = ""

class AXOpinion(BaseModel):
    """Structured opinion returned by one panelist"""
    model_config = ConfigDict(populate_by_name=True)

    ax_score: int = Field(alias="axScore", ge=0, le=100)
    anps: int = Field(ge=-100, le=100)
    factors: List[AXFactor] = Field(default_factory=list)
    agent_accessibility: str = Field(alias="agentAccessibility", default="")
    recommendations: List[str] = Field(default_factory=list)

class AXModelEvaluationOut(ORMModel):
    evaluation_id: int
    model_id: str
    status: str
    ax_score: Optional[int] = None
    anps: Optional[int] = None
    ax_factors: Optional[List[Dict[str, Any]]] = None
    agent_accessibility: Optional[str] = None
    ax_recommendations: Optional[List[str]] = None
    error_message: Optional[str] = None
    completed_at: Optional[datetime] = None

class PendingModelEvaluation(BaseModel):
    evaluation_id: int
    model_id: str
    status: Literal["pending"] = "pending"

class PanelModelStatus(BaseModel):
    model_id: str
    display_name: str
    status: str
    ax_score: Optional[int] = None
    anps: Optional[int] = None

class ModelScore(BaseModel):
    model_id: str
    display_name: str
    ax_score: int
    anps: int

class AXCouncilResultOut(ORMModel):
    evaluation_id: int
    final_ax_score: float
    final_anps: float
    recommendations: List[str]
    model_scores: List[ModelScore]
    agreement: Literal["high", "medium", "low"]
    council_analysis: Optional[str] = None
    computed_at: Optional[datetime] = None

class PanelOverview(BaseModel):
    evaluation_id: int
    models: List[PanelModelStatus]
    all_terminal: bool
    council_ready: bool
    council_result: Optional[AXCouncilResultOut] = None

class AXModelConfigCreate(BaseModel):
    model_id: str = Field(min_length=1)
    display_name: str = Field(min_length=1)
    provider: str = Field(min_length=1)
    provider_model_id: str = Field(min_length=1)
    is_enabled: bool = True
    sort_order: int = 0

class AXModelConfigUpdate(BaseModel):
    display_name: Optional[str] = None
    provider: Optional[str] = None
    provider_model_id: Optional[str] = None
    is_enabled: Optional[bool] = None
    sort_order: Optional[int] = None

class AXModelConfigOut(ORMModel):
    id: int
    model_id: str
    display_name: str
    provider: str
    provider_model_id: str
    is_enabled: bool
    sort_order: int

# ===== Credits =====

class CreditTransactionOut(ORMModel):
    id: int
    amount: int
    kind: str
    description: Optional[str] = None
    balance_after: int
    external_ref: Optional[str] = None
    created_at: Optional[datetime] = None

class CreditBalanceResponse(BaseModel):
    balance: int
    transactions: Optional[List[CreditTransactionOut]] = None

class SetCreditsRequest(BaseModel):
    credits: int = Field(ge=0)
    user_id: Optional[str] = None

# ===== Promotions =====

class DiscountCodeCreate(BaseModel):
    code: Optional[str] = None
    auto_generate: bool = False
    discount_type: Literal["percentage", "fixed"]
    discount_value: int = Field(ge=0)
    description: Optional[str] = None
    min_purchase_amount: Optional[int] = Field(default=None, ge=0)
    max_uses: Optional[int] = None
    expires_at: Optional[datetime] = None

class DiscountCodeUpdate(BaseModel):
    discount_type: Optional[Literal["percentage", "fixed"]] = None
    discount_value: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = None
    min_purchase_amount: Optional[int] = Field(default=None, ge=0)
    max_uses: Optional[int] = None
    expires_at: Optional[datetime] = None
    is_active: Optional[bool] = None

class DiscountCodeOut(ORMModel):
    id: int
    code: str
    discount_type: str
    discount_value: int
    description: Optional[str] = None
    min_purchase_amount: Optional[int] = None
    max_uses: Optional[int] = None
    current_uses: int
    expires_at: Optional[datetime] = None
    is_active: bool

class DiscountValidateRequest(BaseModel):
    code: str = Field(min_length=1)
    purchase_amount: Optional[int] = Field(default=None, ge=0)

class DiscountCalculation(BaseModel):
    original_amount: int
    discount_amount: int
    final_amount: int

class DiscountValidateResponse(BaseModel):
    discount: DiscountCodeOut
    calculation: Optional[DiscountCalculation] = None

class ReferralCodeCreate(BaseModel):
    owner_name: str = Field(min_length=1)
    owner_email: Optional[str] = None
    discount_percent: int = 10
    commission_percent: int = 20
    max_uses: Optional[int] = None
    expires_at: Optional[datetime] = None
    custom_code: Optional[str] = None

class ReferralCodeUpdate(BaseModel):
    owner_name: Optional[str] = None
    owner_email: Optional[str] = None
    discount_percent: Optional[int] = None
    commission_percent: Optional[int] = None
    max_uses: Optional[int] = None
    expires_at: Optional[datetime] = None
    is_active: Optional[bool] = None

class ReferralCodeOut(ORMModel):
    id: int
    code: str
    owner_name: str
    owner_email: Optional[str] = None
    discount_percent: int
    commission_percent: int
    max_uses: Optional[int] = None
    current_uses: int
    expires_at: Optional[datetime] = None
    is_active: bool

class ReferralValidateRequest(BaseModel):
    code: str = Field(min_length=1)

class ReferralValidateResponse(BaseModel):
    valid: bool
    code: str
    discount_percent: int
    owner_name: str

class VoucherCreate(BaseModel):
    credits_amount: int = Field(gt=0)
    max_uses: Optional[int] = None
    expires_at: Optional[datetime] = None
    custom_code: Optional[str] = None

class VoucherUpdate(BaseModel):
    credits_amount: Optional[int] = Field(default=None, gt=0)
    max_uses: Optional[int] = None
    expires_at: Optional[datetime] = None
    is_active: Optional[bool] = None

class VoucherOut(ORMModel):
    id: int
    code: str
    credits_amount: int
    max_uses: Optional[int] = None
    current_uses: int
    expires_at: Optional[datetime] = None
    is_active: bool

class VoucherRedeemRequest(BaseModel):
    code: str

class VoucherRedeemResponse(BaseModel):
    success: bool = True
    message: str
    credits: int
    newBalance: int

class PromotionStats(BaseModel):
    total_codes: int
    active_codes: int
    total_uses: int
    total_credits_granted: Optional[int] = None
    total_commission: Optional[int] = None

class DiscountCodeList(BaseModel):
    codes: List[DiscountCodeOut]
    stats: PromotionStats

class ReferralCodeList(BaseModel):
    codes: List[ReferralCodeOut]
    stats: PromotionStats

class VoucherList(BaseModel):
    vouchers: List[VoucherOut]
    stats: PromotionStats

class ToggleRequest(BaseModel):
    is_active: bool

class AdminCheckResponse(BaseModel):
    isAdmin: bool

# ===== Purchases =====

class PurchaseQuoteRequest(BaseModel):
    pack_id: str
    referral_code: Optional[str] = None
    discount_code: Optional[str] = None

class PurchaseQuote(BaseModel):
    pack_id: str
    credits: int
    original_amount: int
    discount_amount: int
    final_amount: int
    referral_code_id: Optional[int] = None
    discount_code_id: Optional[int] = None
    commission_percent: Optional[int] = None

class PaymentConfirmation(BaseModel):
    """Delivered once per completed purchase by the payment collaborator"""
    payment_ref: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    user_email: Optional[str] = None
    pack_id: str
    credits: int = Field(gt=0)
    original_amount: int = Field(default=0, ge=0)
    discount_amount: int = Field(default=0, ge=0)
    referral_code_id: Optional[int] = None
    discount_code_id: Optional[int] = None

class PaymentConfirmationResult(BaseModel):
    received: bool = True
    duplicate: bool
    balance: int
