"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, StrictInt

from farewelly_payments.domain.models import (
    DisputePriority,
    DisputeStatus,
    PartyRole,
    PaymentPurpose,
    PaymentStatus,
    ProviderTier,
    Rail,
    RefundInitiator,
    RefundStatus,
)
from farewelly_payments.domain.money import DEFAULT_CURRENCY, Money


class MoneySchema(BaseModel):
    """Integer minor units plus ISO currency; floats are rejected"""

    amount: StrictInt = Field(..., description="Amount in minor units (cents)")
    currency: str = Field(DEFAULT_CURRENCY, pattern=r"^[A-Z]{3}$")

    def to_money(self) -> Money:
        return Money(self.amount, self.currency)


# Splits


class SplitRequest(BaseModel):
    """Request body for POST /v1/splits"""

    base_amount: MoneySchema
    payment_type: PaymentPurpose
    provider_id: str = Field(..., min_length=1)
    service_type: Optional[str] = None
    submitted_documents: List[str] = Field(default_factory=list)
    custom_fee_structure: Optional[Dict[str, Any]] = None


class PaymentSplitSchema(BaseModel):
    provider_id: str
    provider_amount: MoneySchema
    platform_fee: MoneySchema
    commission_fee: MoneySchema
    net_amount: MoneySchema
    adjusted_base: MoneySchema
    role: Optional[PartyRole] = None


class BreakdownSchema(BaseModel):
    original_amount: MoneySchema
    adjusted_amount: MoneySchema
    reduction_applied: MoneySchema
    platform_fee: MoneySchema
    commission_fee: MoneySchema
    provider_net: MoneySchema
    total_fees: MoneySchema


class EligibilitySchema(BaseModel):
    is_municipal_burial: bool
    reduction_applied: bool
    rationale: str


class SplitResponse(BaseModel):
    """Response for POST /v1/splits"""

    split: PaymentSplitSchema
    breakdown: BreakdownSchema
    eligibility: EligibilitySchema


class PartySchema(BaseModel):
    provider_id: str = Field(..., min_length=1)
    percentage: Decimal
    role: PartyRole = PartyRole.PRIMARY


class PartySplitRequest(BaseModel):
    """Request body for POST /v1/splits/parties"""

    base_amount: MoneySchema
    parties: List[PartySchema] = Field(..., min_length=1)


class TieredCommissionRequest(BaseModel):
    """Request body for POST /v1/commissions/tiered"""

    base_amount: MoneySchema
    tier: ProviderTier
    monthly_volume: MoneySchema


class TieredCommissionResponse(BaseModel):
    tier: ProviderTier
    rate: str  # decimal string, e.g. "0.105"
    amount: MoneySchema
    benefits: List[str]


class FamilyFeeResponse(BaseModel):
    base_fee: MoneySchema
    adjusted_fee: MoneySchema
    savings: MoneySchema


# Payments


class CreatePaymentRequest(BaseModel):
    """Request body for POST /v1/payments"""

    amount: MoneySchema
    purpose: PaymentPurpose
    customer_id: str = Field(..., min_length=1)
    service_id: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    provider_id: Optional[str] = None
    rail: Optional[Rail] = None
    service_type: Optional[str] = None
    submitted_documents: List[str] = Field(default_factory=list)
    metadata: Dict[str, str] = Field(default_factory=dict)
    idempotency_key: Optional[str] = None


class ConfirmPaymentRequest(BaseModel):
    method_token: str = Field(..., min_length=1)


class PaymentIntentResponse(BaseModel):
    id: str
    rail: Rail
    amount: MoneySchema
    purpose: PaymentPurpose
    customer_id: str
    provider_id: Optional[str] = None
    service_id: str
    status: PaymentStatus
    split: Optional[PaymentSplitSchema] = None
    checkout_url: Optional[str] = None
    client_secret: Optional[str] = None
    created_at: datetime


# Refunds


class CreateRefundSchema(BaseModel):
    """Request body for POST /v1/refunds; reason is validated by the refund policy"""

    payment_intent_id: str = Field(..., min_length=1)
    reason: str
    description: str = ""
    initiated_by: RefundInitiator = RefundInitiator.CUSTOMER
    amount: Optional[MoneySchema] = None


class ApproveRefundRequest(BaseModel):
    approved_by: str = Field(..., min_length=1)


class RejectRefundRequest(BaseModel):
    rejected_by: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1)


class RefundResponse(BaseModel):
    id: str
    payment_intent_id: str
    amount: MoneySchema
    reason: str
    status: RefundStatus
    automatic: bool
    initiated_by: RefundInitiator
    rail_refund_id: Optional[str] = None
    decided_by: Optional[str] = None
    created_at: datetime
    processed_at: Optional[datetime] = None


# Disputes


class CreateDisputeSchema(BaseModel):
    """Request body for POST /v1/disputes"""

    payment_intent_id: str = Field(..., min_length=1)
    customer_id: str = Field(..., min_length=1)
    provider_id: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1)
    description: str = ""
    evidence: List[str] = Field(default_factory=list)
    priority: DisputePriority = DisputePriority.MEDIUM


class ResolveDisputeRequest(BaseModel):
    resolution: str = Field(..., min_length=1)
    resolved_by: str = Field(..., min_length=1)
    refund_amount: Optional[MoneySchema] = None


class DisputeResponse(BaseModel):
    id: str
    payment_intent_id: str
    customer_id: str
    provider_id: str
    reason: str
    status: DisputeStatus
    priority: DisputePriority
    evidence: List[str]
    chargeback: bool
    resolution: Optional[str] = None
    refund_id: Optional[str] = None
    created_at: datetime
    resolved_at: Optional[datetime] = None


class WebhookResponse(BaseModel):
    status: str
