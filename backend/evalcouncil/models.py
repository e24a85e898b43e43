from datetime import datetime, timezone

from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp; all DateTime columns store naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class JobStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    TERMINAL = (COMPLETED, FAILED)
    ALL = (PENDING, PROCESSING, COMPLETED, FAILED)


class TransactionKind:
    PURCHASE = "purchase"
    BONUS = "bonus"
    DEDUCTION = "deduction"
    REFUND = "refund"

    ALL = (PURCHASE, BONUS, DEDUCTION, REFUND)


# ===== Evaluation jobs =====

class EvaluationJob(Base):
    __tablename__ = "evaluation_jobs"
    id = Column(String, primary_key=True, index=True)
    url = Column(String, nullable=False)
    demographics = Column(JSON, nullable=False)
    status = Column(String, nullable=False, default=JobStatus.PENDING, index=True)
    result = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    user_id = Column(String, nullable=True, index=True)
    evaluation_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime, nullable=True)


class Evaluation(Base):
    __tablename__ = "evaluations"
    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String, unique=True, nullable=True)
    url = Column(String, nullable=False)
    target_demographics = Column(JSON, nullable=False)
    result = Column(JSON, nullable=True)
    website_snapshot = Column(JSON, nullable=True)
    user_id = Column(String, nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow, index=True)


class ShowcaseEvaluation(Base):
    __tablename__ = "showcase_evaluations"
    evaluation_id = Column(Integer, ForeignKey("evaluations.id", ondelete="CASCADE"), primary_key=True)
    display_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)


# ===== AX panel =====

class AXModelConfig(Base):
    __tablename__ = "ax_model_configs"
    id = Column(Integer, primary_key=True, autoincrement=True)
    model_id = Column(String, unique=True, nullable=False)
    display_name = Column(String, nullable=False)
    provider = Column(String, nullable=False)
    provider_model_id = Column(String, nullable=False)
    is_enabled = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class AXModelEvaluation(Base):
    __tablename__ = "ax_model_evaluations"
    id = Column(Integer, primary_key=True, autoincrement=True)
    evaluation_id = Column(Integer, ForeignKey("evaluations.id", ondelete="CASCADE"), nullable=False, index=True)
    model_id = Column(String, nullable=False)
    status = Column(String, nullable=False, default=JobStatus.PENDING)
    ax_score = Column(Integer, nullable=True)
    anps = Column(Integer, nullable=True)
    ax_factors = Column(JSON, nullable=True)
    agent_accessibility = Column(Text, nullable=True)
    ax_recommendations = Column(JSON, nullable=True)
    raw_response = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("evaluation_id", "model_id", name="uq_ax_model_evaluation_pair"),
    )


class AXCouncilResult(Base):
    __tablename__ = "ax_council_results"
    evaluation_id = Column(Integer, ForeignKey("evaluations.id", ondelete="CASCADE"), primary_key=True)
    final_ax_score = Column(Float, nullable=False)
    final_anps = Column(Float, nullable=False)
    recommendations = Column(JSON, nullable=False)
    model_scores = Column(JSON, nullable=False)
    agreement = Column(String, nullable=False)
    council_analysis = Column(Text, nullable=True)
    computed_at = Column(DateTime, default=utcnow)


# ===== Credits =====

class CreditAccount(Base):
    __tablename__ = "credit_accounts"
    user_id = Column(String, primary_key=True)
    balance = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_credit_balance_non_negative"),
    )


class CreditTransaction(Base):
    __tablename__ = "credit_transactions"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    kind = Column(String, nullable=False)
    description = Column(String, nullable=True)
    balance_after = Column(Integer, nullable=False)
    external_ref = Column(String, unique=True, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)


# ===== Promotion codes =====

class DiscountCode(Base):
    __tablename__ = "discount_codes"
    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String, unique=True, nullable=False, index=True)
    discount_type = Column(String, nullable=False)  # percentage | fixed (cents)
    discount_value = Column(Integer, nullable=False)
    description = Column(String, nullable=True)
    min_purchase_amount = Column(Integer, nullable=True)
    max_uses = Column(Integer, nullable=True)
    current_uses = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class DiscountUsage(Base):
    __tablename__ = "discount_usages"
    id = Column(Integer, primary_key=True, autoincrement=True)
    discount_code_id = Column(Integer, ForeignKey("discount_codes.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, nullable=False)
    original_amount = Column(Integer, nullable=False)
    discount_amount = Column(Integer, nullable=False)
    final_amount = Column(Integer, nullable=False)
    payment_ref = Column(String, unique=True, nullable=True)
    created_at = Column(DateTime, default=utcnow)


class ReferralCode(Base):
    __tablename__ = "referral_codes"
    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String, unique=True, nullable=False, index=True)
    owner_name = Column(String, nullable=False)
    owner_email = Column(String, nullable=True)
    discount_percent = Column(Integer, nullable=False, default=10)
    commission_percent = Column(Integer, nullable=False, default=20)
    max_uses = Column(Integer, nullable=True)
    current_uses = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class ReferralUsage(Base):
    __tablename__ = "referral_usages"
    id = Column(Integer, primary_key=True, autoincrement=True)
    referral_code_id = Column(Integer, ForeignKey("referral_codes.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, nullable=False)
    original_amount = Column(Integer, nullable=False)
    discount_amount = Column(Integer, nullable=False)
    final_amount = Column(Integer, nullable=False)
    commission_amount = Column(Integer, nullable=False)
    payment_ref = Column(String, unique=True, nullable=True)
    created_at = Column(DateTime, default=utcnow)


class Voucher(Base):
    __tablename__ = "vouchers"
    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String, unique=True, nullable=False, index=True)
    credits_amount = Column(Integer, nullable=False)
    max_uses = Column(Integer, nullable=True)
    current_uses = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class VoucherRedemption(Base):
    __tablename__ = "voucher_redemptions"
    id = Column(Integer, primary_key=True, autoincrement=True)
    voucher_id = Column(Integer, ForeignKey("vouchers.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String, nullable=False, index=True)
    credits_amount = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("voucher_id", "user_id", name="uq_voucher_redemption_user"),
    )
