"""Unit tests for payment and dispute status transitions"""

import pytest

from farewelly_payments.domain.exceptions import InvalidStateTransition
from farewelly_payments.domain.models import (
    DisputeCase,
    DisputeStatus,
    PaymentIntent,
    PaymentPurpose,
    PaymentStatus,
    Rail,
)
from farewelly_payments.domain.money import Money
from farewelly_payments.domain.state_machine import advance_dispute, advance_payment, payment_path


def _intent(status: PaymentStatus = PaymentStatus.PENDING) -> PaymentIntent:
    return PaymentIntent(
        id="pi_test",
        rail=Rail.STRIPE,
        amount=Money(10000),
        purpose=PaymentPurpose.REGULAR_SERVICE,
        customer_id="cust_1",
        service_id="svc_1",
        description="Burial service",
        status=status,
    )


def _dispute(status: DisputeStatus = DisputeStatus.SUBMITTED) -> DisputeCase:
    return DisputeCase(
        id="dp_test",
        payment_intent_id="pi_test",
        customer_id="cust_1",
        provider_id="prov_1",
        reason="service_not_as_described",
        description="Flowers missing",
        status=status,
    )


def test_payment_happy_path_appends_history():
    """Test pending -> processing -> completed -> partially_refunded -> refunded"""
    intent = _intent()
    for status in (
        PaymentStatus.PROCESSING,
        PaymentStatus.COMPLETED,
        PaymentStatus.PARTIALLY_REFUNDED,
        PaymentStatus.REFUNDED,
    ):
        intent = advance_payment(intent, status)

    assert intent.status == PaymentStatus.REFUNDED
    assert [c.status for c in intent.status_history] == [
        "processing",
        "completed",
        "partially_refunded",
        "refunded",
    ]


def test_pending_to_terminal_passes_through_processing():
    """Test a rail jumping straight to paid is recorded via processing"""
    assert payment_path(PaymentStatus.PENDING, PaymentStatus.COMPLETED) == [
        PaymentStatus.PROCESSING,
        PaymentStatus.COMPLETED,
    ]
    intent = advance_payment(_intent(), PaymentStatus.FAILED)
    assert [c.status for c in intent.status_history] == ["processing", "failed"]


def test_same_status_is_a_no_op():
    """Test re-applying the current status returns the same object"""
    intent = _intent(PaymentStatus.COMPLETED)
    assert advance_payment(intent, PaymentStatus.COMPLETED) is intent


@pytest.mark.parametrize(
    "current,target",
    [
        (PaymentStatus.FAILED, PaymentStatus.COMPLETED),
        (PaymentStatus.CANCELLED, PaymentStatus.PROCESSING),
        (PaymentStatus.REFUNDED, PaymentStatus.COMPLETED),
        (PaymentStatus.PENDING, PaymentStatus.REFUNDED),
        (PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.COMPLETED),
    ],
)
def test_illegal_payment_transitions(current: PaymentStatus, target: PaymentStatus):
    """Test terminal states stay terminal and refunds need a completed payment"""
    with pytest.raises(InvalidStateTransition):
        advance_payment(_intent(current), target)


def test_advance_payment_does_not_mutate_input():
    """Test intents are immutable snapshots"""
    intent = _intent()
    advance_payment(intent, PaymentStatus.PROCESSING)
    assert intent.status == PaymentStatus.PENDING
    assert intent.status_history == ()


def test_dispute_transitions():
    """Test submitted -> under_review -> resolved and resolved is final"""
    dispute = advance_dispute(_dispute(), DisputeStatus.UNDER_REVIEW)
    dispute = advance_dispute(dispute, DisputeStatus.RESOLVED)

    assert dispute.status == DisputeStatus.RESOLVED
    assert not dispute.is_open
    assert [c.status for c in dispute.status_history] == ["under_review", "resolved"]

    with pytest.raises(InvalidStateTransition):
        advance_dispute(dispute, DisputeStatus.UNDER_REVIEW)


def test_dispute_cannot_skip_review():
    """Test submitted cannot jump straight to resolved"""
    with pytest.raises(InvalidStateTransition):
        advance_dispute(_dispute(), DisputeStatus.RESOLVED)
