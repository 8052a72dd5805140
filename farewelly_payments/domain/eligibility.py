"""Eligibility for the subsidised municipal burial (gemeentebegrafenis) rate"""

from dataclasses import dataclass
from typing import AbstractSet, FrozenSet, Optional, Tuple

from farewelly_payments.config import settings
from farewelly_payments.domain.money import Money


@dataclass(frozen=True)
class EligibilityPolicy:
    """Ceiling, subsidised service categories and required documents"""

    max_amount: Money = Money(settings.municipal_burial_max_amount_cents)
    eligible_services: FrozenSet[str] = frozenset({"basic_burial", "cremation_basic", "municipal_service"})
    required_documents: FrozenSet[str] = frozenset({"income_statement", "municipal_approval", "death_certificate"})


DEFAULT_ELIGIBILITY_POLICY = EligibilityPolicy()


@dataclass(frozen=True)
class EligibilityDecision:
    eligible: bool
    reasons: Tuple[str, ...]

    @property
    def rationale(self) -> str:
        return "; ".join(self.reasons)


def evaluate_reduced_rate(
    amount: Money,
    service_category: Optional[str],
    submitted_documents: AbstractSet[str],
    policy: EligibilityPolicy = DEFAULT_ELIGIBILITY_POLICY,
) -> EligibilityDecision:
    """
    Evaluate all three conditions and collect a reason for each failure.

    Conditions are conjunctive:
    - amount at or below the policy ceiling
    - service category in the subsidised allow-list
    - every required document submitted
    """
    amount = Money.of(amount)
    reasons = []

    if amount > policy.max_amount:
        reasons.append(f"amount {amount} exceeds ceiling {policy.max_amount}")

    if service_category not in policy.eligible_services:
        reasons.append(f"service category {service_category!r} is not subsidised")

    missing = sorted(policy.required_documents - set(submitted_documents))
    if missing:
        reasons.append(f"missing documents: {', '.join(missing)}")

    if reasons:
        return EligibilityDecision(eligible=False, reasons=tuple(reasons))
    return EligibilityDecision(eligible=True, reasons=("all municipal burial conditions met",))


def is_reduced_rate_eligible(
    amount: Money,
    service_category: Optional[str],
    submitted_documents: AbstractSet[str],
    policy: EligibilityPolicy = DEFAULT_ELIGIBILITY_POLICY,
) -> bool:
    """True when the transaction qualifies for the subsidised rate"""
    return evaluate_reduced_rate(amount, service_category, submitted_documents, policy).eligible
