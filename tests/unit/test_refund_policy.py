"""Unit tests for refund reasons, time window and balance rules"""

from datetime import timedelta

import pytest

from farewelly_payments.domain.exceptions import (
    InvalidAmount,
    InvalidRefundReason,
    NonRefundable,
    PaymentNotRefundable,
    RefundExceedsBalance,
)
from farewelly_payments.domain.models import (
    PaymentIntent,
    PaymentPurpose,
    PaymentStatus,
    Rail,
    RefundRequest,
    RefundStatus,
)
from farewelly_payments.domain.money import Money
from farewelly_payments.domain.refunds import (
    DEFAULT_REFUND_POLICY,
    RefundPolicy,
    RefundReason,
    check_refund_window,
    parse_refund_reason,
    remaining_balance,
    resolve_refund_amount,
)
from farewelly_payments.utils.date_utils import utc_now


def _intent(status: PaymentStatus = PaymentStatus.COMPLETED, age_days: int = 0) -> PaymentIntent:
    return PaymentIntent(
        id="pi_test",
        rail=Rail.STRIPE,
        amount=Money(10000),
        purpose=PaymentPurpose.REGULAR_SERVICE,
        customer_id="cust_1",
        service_id="svc_1",
        description="Burial service",
        status=status,
        created_at=utc_now() - timedelta(days=age_days),
    )


def _refund(amount: int, status: RefundStatus) -> RefundRequest:
    return RefundRequest(
        id=f"rf_{amount}_{status.value}",
        payment_intent_id="pi_test",
        amount=Money(amount),
        reason="customer_request",
        status=status,
    )


def test_automatic_reasons():
    """Test operator-verifiable reasons skip approval"""
    assert DEFAULT_REFUND_POLICY.is_automatic(RefundReason.DUPLICATE_CHARGE)
    assert DEFAULT_REFUND_POLICY.is_automatic(RefundReason.SYSTEM_ERROR)
    assert not DEFAULT_REFUND_POLICY.is_automatic(RefundReason.CUSTOMER_REQUEST)


def test_parse_refund_reason_unknown_before_non_refundable():
    """Test unknown reasons fail as invalid and listed ones as non-refundable"""
    with pytest.raises(InvalidRefundReason):
        parse_refund_reason("changed_my_mind")
    with pytest.raises(NonRefundable):
        parse_refund_reason("service_completed")
    assert parse_refund_reason("quality_issue") == RefundReason.QUALITY_ISSUE


def test_refund_window_applies_to_subjective_reasons_only():
    """Test a 31-day-old payment refunds for a duplicate charge but not on request"""
    old = _intent(age_days=31)

    with pytest.raises(NonRefundable):
        check_refund_window(old, RefundReason.CUSTOMER_REQUEST)
    check_refund_window(old, RefundReason.DUPLICATE_CHARGE)
    boundary = _intent()
    check_refund_window(boundary, RefundReason.CUSTOMER_REQUEST, now=boundary.created_at + timedelta(days=30))


def test_remaining_balance_counts_reserving_refunds():
    """Test pending, processing and completed refunds hold balance; failed and rejected do not"""
    refunds = [
        _refund(1000, RefundStatus.PENDING),
        _refund(2000, RefundStatus.COMPLETED),
        _refund(500, RefundStatus.PROCESSING),
        _refund(4000, RefundStatus.FAILED),
        _refund(4000, RefundStatus.REJECTED),
    ]
    assert remaining_balance(_intent(), refunds).amount == 6500


def test_resolve_refund_amount_defaults_to_full_remaining():
    """Test omitted amount refunds what is left"""
    refunds = [_refund(3000, RefundStatus.COMPLETED)]
    assert resolve_refund_amount(_intent(PaymentStatus.PARTIALLY_REFUNDED), None, refunds).amount == 7000


def test_resolve_refund_amount_rejects_over_refund():
    """Test request larger than the remaining balance fails"""
    refunds = [_refund(8000, RefundStatus.COMPLETED)]
    with pytest.raises(RefundExceedsBalance):
        resolve_refund_amount(_intent(PaymentStatus.PARTIALLY_REFUNDED), Money(2001), refunds)

    fully = [_refund(10000, RefundStatus.COMPLETED)]
    with pytest.raises(RefundExceedsBalance):
        resolve_refund_amount(_intent(PaymentStatus.PARTIALLY_REFUNDED), None, fully)


def test_resolve_refund_amount_requires_captured_payment():
    """Test pending, failed and refunded payments cannot be refunded"""
    for status in (PaymentStatus.PENDING, PaymentStatus.FAILED, PaymentStatus.REFUNDED):
        with pytest.raises(PaymentNotRefundable):
            resolve_refund_amount(_intent(status), Money(100), [])


def test_resolve_refund_amount_rejects_non_positive_and_disabled_partials():
    """Test zero amount and partial refunds when policy disallows them"""
    with pytest.raises(InvalidAmount):
        resolve_refund_amount(_intent(), Money(0), [])

    no_partials = RefundPolicy(allow_partial_refunds=False)
    with pytest.raises(NonRefundable):
        resolve_refund_amount(_intent(), Money(5000), [], no_partials)
    assert resolve_refund_amount(_intent(), Money(10000), [], no_partials).amount == 10000
