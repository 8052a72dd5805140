"""Status transitions for payment intents and dispute cases"""

import dataclasses
from datetime import datetime
from typing import Dict, FrozenSet, List

from farewelly_payments.domain.exceptions import InvalidStateTransition
from farewelly_payments.domain.models import (
    DisputeCase,
    DisputeStatus,
    PaymentIntent,
    PaymentStatus,
    StatusChange,
)
from farewelly_payments.utils.date_utils import utc_now

PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PROCESSING}),
    PaymentStatus.PROCESSING: frozenset(
        {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED}
    ),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED}),
    PaymentStatus.PARTIALLY_REFUNDED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.CANCELLED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

DISPUTE_TRANSITIONS: Dict[DisputeStatus, FrozenSet[DisputeStatus]] = {
    DisputeStatus.SUBMITTED: frozenset({DisputeStatus.UNDER_REVIEW, DisputeStatus.ESCALATED}),
    DisputeStatus.UNDER_REVIEW: frozenset({DisputeStatus.RESOLVED}),
    DisputeStatus.ESCALATED: frozenset({DisputeStatus.RESOLVED}),
    DisputeStatus.RESOLVED: frozenset(),
}

# Statuses a rail may report without passing through processing first
_RAIL_TERMINAL = frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED})


def payment_path(current: PaymentStatus, target: PaymentStatus) -> List[PaymentStatus]:
    """
    Statuses to append to move from current to target.

    A rail that jumps from pending straight to a terminal state is
    recorded as pending -> processing -> terminal.

    Raises:
        InvalidStateTransition: target is not reachable from current
    """
    if current == target:
        return []
    if target in PAYMENT_TRANSITIONS[current]:
        return [target]
    if current == PaymentStatus.PENDING and target in _RAIL_TERMINAL:
        return [PaymentStatus.PROCESSING, target]
    raise InvalidStateTransition(f"Payment cannot move from {current.value} to {target.value}")


def advance_payment(intent: PaymentIntent, target: PaymentStatus, at: datetime | None = None) -> PaymentIntent:
    """Return a new intent moved to target with the history appended"""
    steps = payment_path(intent.status, target)
    if not steps:
        return intent

    at = at or utc_now()
    history = intent.status_history + tuple(StatusChange(status=s.value, at=at) for s in steps)
    return dataclasses.replace(intent, status=target, status_history=history, updated_at=at)


def advance_dispute(dispute: DisputeCase, target: DisputeStatus, at: datetime | None = None) -> DisputeCase:
    """Return a new dispute moved to target; resolved is final"""
    if target not in DISPUTE_TRANSITIONS[dispute.status]:
        raise InvalidStateTransition(f"Dispute cannot move from {dispute.status.value} to {target.value}")

    at = at or utc_now()
    return dataclasses.replace(
        dispute,
        status=target,
        status_history=dispute.status_history + (StatusChange(status=target.value, at=at),),
    )
