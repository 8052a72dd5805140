"""Domain models - immutable dataclasses representing payment entities"""

import dataclasses
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from farewelly_payments.domain.exceptions import InvalidFeeStructure, InvalidSplitConfiguration
from farewelly_payments.domain.money import Money, Rate, to_decimal
from farewelly_payments.utils.date_utils import utc_now


def new_id(prefix: str) -> str:
    """Collision-resistant identifier with a readable type prefix"""
    return f"{prefix}_{uuid.uuid4().hex}"


class PaymentPurpose(str, Enum):
    FAMILY_FEE = "family_fee"
    PROVIDER_COMMISSION = "provider_commission"
    MUNICIPAL_BURIAL = "municipal_burial"
    REGULAR_SERVICE = "regular_service"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class RefundStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REJECTED = "rejected"


class DisputeStatus(str, Enum):
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


class DisputePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ProviderTier(str, Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


class PartyRole(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    VENDOR = "vendor"


class Rail(str, Enum):
    STRIPE = "stripe"
    MOLLIE = "mollie"


class RefundInitiator(str, Enum):
    CUSTOMER = "customer"
    PROVIDER = "provider"
    ADMIN = "admin"
    SYSTEM = "system"


class WebhookEventKind(str, Enum):
    PAYMENT_STATUS = "payment_status"
    REFUND_STATUS = "refund_status"
    CHARGEBACK = "chargeback"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class FeeStructure:
    """Marketplace fee configuration, passed by value per calculation"""

    family_fee: Money = Money(10_000)  # €100.00
    provider_commission_rate: Decimal = Decimal("0.125")
    municipal_burial_reduction: Decimal = Decimal("0.30")
    platform_fee_rate: Decimal = Decimal("0.029")

    def __post_init__(self) -> None:
        for name in ("provider_commission_rate", "municipal_burial_reduction", "platform_fee_rate"):
            try:
                object.__setattr__(self, name, to_decimal(getattr(self, name)))
            except ArithmeticError as e:
                raise InvalidFeeStructure(f"{name} is not a number: {getattr(self, name)!r}") from e

        if not Decimal("0.08") <= self.provider_commission_rate <= Decimal("0.15"):
            raise InvalidFeeStructure(
                f"provider_commission_rate must be within 0.08-0.15, got {self.provider_commission_rate}"
            )
        if not Decimal("0") <= self.municipal_burial_reduction < Decimal("1"):
            raise InvalidFeeStructure(
                f"municipal_burial_reduction must be within [0, 1), got {self.municipal_burial_reduction}"
            )
        if not Decimal("0") <= self.platform_fee_rate < Decimal("1") - self.provider_commission_rate:
            raise InvalidFeeStructure(f"platform_fee_rate out of range: {self.platform_fee_rate}")
        if not isinstance(self.family_fee, Money) or self.family_fee.amount < 0:
            raise InvalidFeeStructure(f"family_fee must be non-negative Money, got {self.family_fee!r}")

    def with_overrides(self, overrides: Optional[Mapping[str, Any]]) -> "FeeStructure":
        """Return a copy with validated overrides; unknown keys are rejected"""
        if not overrides:
            return self

        known = {f.name for f in dataclasses.fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise InvalidFeeStructure(f"Unknown fee structure keys: {', '.join(unknown)}")

        values = dict(overrides)
        if "family_fee" in values:
            values["family_fee"] = Money.of(values["family_fee"])
        return dataclasses.replace(self, **values)


@dataclass(frozen=True)
class FeeComputation:
    """Output of one Fee Policy pass"""

    adjusted_base: Money
    platform_fee: Money
    commission_fee: Money
    net_amount: Money
    total_fees: Money


@dataclass(frozen=True)
class PaymentSplit:
    """Apportionment of one payment between platform and provider"""

    provider_id: str
    provider_amount: Money
    platform_fee: Money
    commission_fee: Money
    net_amount: Money
    adjusted_base: Money
    role: Optional[PartyRole] = None

    def __post_init__(self) -> None:
        if self.provider_amount != self.net_amount:
            raise InvalidSplitConfiguration("provider_amount must equal net_amount")
        if self.platform_fee + self.commission_fee + self.net_amount != self.adjusted_base:
            raise InvalidSplitConfiguration("split components do not sum to adjusted base")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "provider_amount": self.provider_amount.to_dict(),
            "platform_fee": self.platform_fee.to_dict(),
            "commission_fee": self.commission_fee.to_dict(),
            "net_amount": self.net_amount.to_dict(),
            "adjusted_base": self.adjusted_base.to_dict(),
            "role": self.role.value if self.role else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PaymentSplit":
        def money(key: str) -> Money:
            return Money(data[key]["amount"], data[key]["currency"])

        return cls(
            provider_id=data["provider_id"],
            provider_amount=money("provider_amount"),
            platform_fee=money("platform_fee"),
            commission_fee=money("commission_fee"),
            net_amount=money("net_amount"),
            adjusted_base=money("adjusted_base"),
            role=PartyRole(data["role"]) if data.get("role") else None,
        )


@dataclass(frozen=True)
class StatusChange:
    """One entry of an append-only status history"""

    status: str
    at: datetime


@dataclass(frozen=True)
class PaymentIntent:
    """One charge attempt on a payment rail"""

    id: str  # rail-specific identifier (pi_... / tr_...)
    rail: Rail
    amount: Money
    purpose: PaymentPurpose
    customer_id: str
    service_id: str
    description: str
    status: PaymentStatus = PaymentStatus.PENDING
    provider_id: Optional[str] = None
    split: Optional[PaymentSplit] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    checkout_url: Optional[str] = None
    client_secret: Optional[str] = None
    status_history: Tuple[StatusChange, ...] = ()
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    version: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rail": self.rail.value,
            "amount": self.amount.to_dict(),
            "purpose": self.purpose.value,
            "customer_id": self.customer_id,
            "provider_id": self.provider_id,
            "service_id": self.service_id,
            "status": self.status.value,
            "split": self.split.to_dict() if self.split else None,
            "checkout_url": self.checkout_url,
            "client_secret": self.client_secret,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class RefundRequest:
    """Refund against a payment intent; idempotency key is the refund id"""

    id: str
    payment_intent_id: str
    amount: Money
    reason: str
    status: RefundStatus
    created_at: datetime = field(default_factory=utc_now)
    processed_at: Optional[datetime] = None
    description: str = ""
    initiated_by: RefundInitiator = RefundInitiator.SYSTEM
    automatic: bool = False
    rail_refund_id: Optional[str] = None
    decided_by: Optional[str] = None
    notes: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "payment_intent_id": self.payment_intent_id,
            "amount": self.amount.to_dict(),
            "reason": self.reason,
            "status": self.status.value,
            "automatic": self.automatic,
            "initiated_by": self.initiated_by.value,
            "rail_refund_id": self.rail_refund_id,
            "decided_by": self.decided_by,
            "created_at": self.created_at.isoformat(),
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }


@dataclass(frozen=True)
class DisputeCase:
    """Customer dispute or rail chargeback against a payment intent"""

    id: str
    payment_intent_id: str
    customer_id: str
    provider_id: str
    reason: str
    description: str
    status: DisputeStatus
    priority: DisputePriority = DisputePriority.MEDIUM
    evidence: Tuple[str, ...] = ()
    chargeback: bool = False
    resolution: Optional[str] = None
    resolved_by: Optional[str] = None
    refund_id: Optional[str] = None
    status_history: Tuple[StatusChange, ...] = ()
    created_at: datetime = field(default_factory=utc_now)
    resolved_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status != DisputeStatus.RESOLVED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "payment_intent_id": self.payment_intent_id,
            "customer_id": self.customer_id,
            "provider_id": self.provider_id,
            "reason": self.reason,
            "status": self.status.value,
            "priority": self.priority.value,
            "evidence": list(self.evidence),
            "chargeback": self.chargeback,
            "resolution": self.resolution,
            "refund_id": self.refund_id,
            "created_at": self.created_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }


@dataclass(frozen=True)
class WebhookEvent:
    """Rail webhook after signature verification, in rail-neutral form"""

    rail: Rail
    provider_event_id: str
    type: str
    kind: WebhookEventKind
    payment_id: Optional[str] = None
    payment_status: Optional[PaymentStatus] = None
    refund_id: Optional[str] = None
    refund_status: Optional[RefundStatus] = None
    amount: Optional[Money] = None
    reason: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


# Inbound requests


@dataclass(frozen=True)
class SplitCalculationRequest:
    base_amount: Money
    payment_type: PaymentPurpose
    provider_id: str
    service_type: Optional[str] = None
    submitted_documents: FrozenSet[str] = frozenset()
    custom_fee_structure: Optional[Mapping[str, Any]] = None


@dataclass(frozen=True)
class CreatePaymentIntentRequest:
    amount: Money
    purpose: PaymentPurpose
    customer_id: str
    service_id: str
    description: str
    provider_id: Optional[str] = None
    rail: Optional[Rail] = None
    service_type: Optional[str] = None
    submitted_documents: FrozenSet[str] = frozenset()
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CreateRefundRequest:
    payment_intent_id: str
    reason: str
    description: str
    initiated_by: RefundInitiator
    amount: Optional[Money] = None


@dataclass(frozen=True)
class CreateDisputeRequest:
    payment_intent_id: str
    customer_id: str
    provider_id: str
    reason: str
    description: str
    evidence: Tuple[str, ...] = ()
    priority: DisputePriority = DisputePriority.MEDIUM


# Split calculator results


@dataclass(frozen=True)
class SplitBreakdown:
    original_amount: Money
    adjusted_amount: Money
    reduction_applied: Money
    platform_fee: Money
    commission_fee: Money
    provider_net: Money
    total_fees: Money


@dataclass(frozen=True)
class SplitEligibility:
    is_municipal_burial: bool
    reduction_applied: bool
    rationale: str


@dataclass(frozen=True)
class SplitResult:
    split: PaymentSplit
    breakdown: SplitBreakdown
    eligibility: SplitEligibility

    def to_dict(self) -> Dict[str, Any]:
        return {
            "split": self.split.to_dict(),
            "breakdown": {
                f.name: getattr(self.breakdown, f.name).to_dict() for f in dataclasses.fields(self.breakdown)
            },
            "eligibility": dataclasses.asdict(self.eligibility),
        }


@dataclass(frozen=True)
class SplitParty:
    provider_id: str
    percentage: Rate
    role: PartyRole = PartyRole.PRIMARY


@dataclass(frozen=True)
class TieredCommission:
    tier: ProviderTier
    rate: Decimal
    amount: Money
    benefits: Tuple[str, ...]


@dataclass(frozen=True)
class FamilyFee:
    base_fee: Money
    adjusted_fee: Money
    savings: Money
