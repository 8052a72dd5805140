"""Refund policy - reason vocabulary and automatic vs approval-required routing"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import FrozenSet, Iterable

from farewelly_payments.config import settings
from farewelly_payments.domain.exceptions import (
    InvalidAmount,
    InvalidRefundReason,
    NonRefundable,
    PaymentNotRefundable,
    RefundExceedsBalance,
)
from farewelly_payments.domain.models import PaymentIntent, PaymentStatus, RefundRequest, RefundStatus
from farewelly_payments.domain.money import Money
from farewelly_payments.utils.date_utils import days_since


class RefundReason(str, Enum):
    DUPLICATE_CHARGE = "duplicate_charge"
    PROCESSING_ERROR = "processing_error"
    SYSTEM_ERROR = "system_error"
    FRAUDULENT_CHARGE = "fraudulent_charge"
    SERVICE_CANCELED = "service_canceled"
    SERVICE_NOT_PROVIDED = "service_not_provided"
    CUSTOMER_REQUEST = "customer_request"
    CUSTOMER_COMPLAINT = "customer_complaint"
    QUALITY_ISSUE = "quality_issue"
    DISPUTE_RESOLUTION = "dispute_resolution"
    SERVICE_COMPLETED = "service_completed"
    PAST_TIME_LIMIT = "past_time_limit"
    FRAUDULENT_REQUEST = "fraudulent_request"


@dataclass(frozen=True)
class RefundPolicy:
    """Which reasons refund automatically, which need approval, which never refund"""

    time_limit_days: int = settings.refund_time_limit_days
    allow_partial_refunds: bool = True
    # Operator-verifiable facts: submitted to the rail without review
    automatic_reasons: FrozenSet[RefundReason] = frozenset(
        {
            RefundReason.DUPLICATE_CHARGE,
            RefundReason.PROCESSING_ERROR,
            RefundReason.SYSTEM_ERROR,
        }
    )
    non_refundable_reasons: FrozenSet[RefundReason] = frozenset(
        {
            RefundReason.SERVICE_COMPLETED,
            RefundReason.PAST_TIME_LIMIT,
            RefundReason.FRAUDULENT_REQUEST,
        }
    )

    def is_automatic(self, reason: RefundReason) -> bool:
        return reason in self.automatic_reasons


DEFAULT_REFUND_POLICY = RefundPolicy()

REFUNDABLE_PAYMENT_STATUSES = frozenset({PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED})

# Refunds holding a claim on the payment balance
RESERVING_REFUND_STATUSES = frozenset({RefundStatus.PENDING, RefundStatus.PROCESSING, RefundStatus.COMPLETED})
SUBMITTED_REFUND_STATUSES = frozenset({RefundStatus.PROCESSING, RefundStatus.COMPLETED})


def parse_refund_reason(reason: str, policy: RefundPolicy = DEFAULT_REFUND_POLICY) -> RefundReason:
    """
    Validate a refund reason in the required order.

    Raises:
        InvalidRefundReason: reason is not in the enumeration
        NonRefundable: reason is in the non-refundable set
    """
    try:
        parsed = RefundReason(reason)
    except ValueError:
        raise InvalidRefundReason(f"Invalid refund reason: {reason!r}") from None

    if parsed in policy.non_refundable_reasons:
        raise NonRefundable(f"Refund reason {parsed.value} is not eligible for refund")
    return parsed


def check_refund_window(
    intent: PaymentIntent,
    reason: RefundReason,
    policy: RefundPolicy = DEFAULT_REFUND_POLICY,
    now: datetime | None = None,
) -> None:
    """Subjective reasons expire after the policy time limit; automatic ones do not"""
    if policy.is_automatic(reason):
        return
    if days_since(intent.created_at, now) > policy.time_limit_days:
        raise NonRefundable(
            f"Payment {intent.id} is past the {policy.time_limit_days}-day refund window"
        )


def sum_refunds(refunds: Iterable[RefundRequest], statuses: FrozenSet[RefundStatus], currency: str) -> Money:
    total = Money(0, currency)
    for refund in refunds:
        if refund.status in statuses:
            total = total + refund.amount
    return total


def remaining_balance(
    intent: PaymentIntent,
    refunds: Iterable[RefundRequest],
    statuses: FrozenSet[RefundStatus] = RESERVING_REFUND_STATUSES,
) -> Money:
    """Original charge minus refunds in the given statuses"""
    return intent.amount - sum_refunds(refunds, statuses, intent.amount.currency)


def resolve_refund_amount(
    intent: PaymentIntent,
    requested: Money | None,
    refunds: Iterable[RefundRequest],
    policy: RefundPolicy = DEFAULT_REFUND_POLICY,
) -> Money:
    """
    Amount to refund: the requested amount, or the full remaining balance.

    Raises:
        PaymentNotRefundable: payment was never captured or is already refunded
        RefundExceedsBalance: request is larger than what is left to refund
    """
    if intent.status not in REFUNDABLE_PAYMENT_STATUSES:
        raise PaymentNotRefundable(f"Payment {intent.id} is {intent.status.value}; only completed payments refund")

    available = remaining_balance(intent, refunds)
    if not available.is_positive:
        raise RefundExceedsBalance(f"Payment {intent.id} has no refundable balance left")

    if requested is None:
        return available

    requested = Money.of(requested, intent.amount.currency)
    if not requested.is_positive:
        raise InvalidAmount(f"Refund amount must be positive, got {requested.amount}")
    if requested > available:
        raise RefundExceedsBalance(
            f"Refund of {requested} exceeds remaining balance {available} on payment {intent.id}"
        )
    if requested != intent.amount and not policy.allow_partial_refunds:
        raise NonRefundable("Partial refunds are disabled by policy")
    return requested
