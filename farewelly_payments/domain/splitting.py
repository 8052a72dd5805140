"""Split calculator - turns a gross charge into platform fee, commission and provider payout"""

from decimal import Decimal
from typing import List, Sequence

from farewelly_payments.domain.eligibility import (
    DEFAULT_ELIGIBILITY_POLICY,
    EligibilityPolicy,
    evaluate_reduced_rate,
)
from farewelly_payments.domain.exceptions import InvalidAmount, InvalidSplitConfiguration
from farewelly_payments.domain.fees import DEFAULT_FEE_STRUCTURE, compute_fees
from farewelly_payments.domain.models import (
    FeeStructure,
    PaymentPurpose,
    PaymentSplit,
    ProviderTier,
    SplitBreakdown,
    SplitCalculationRequest,
    SplitEligibility,
    SplitParty,
    SplitResult,
    TieredCommission,
)
from farewelly_payments.domain.money import Money, round_half_up, to_decimal

# Pricing policy: changes here are product decisions
TIER_RATES = {
    ProviderTier.BRONZE: Decimal("0.15"),
    ProviderTier.SILVER: Decimal("0.13"),
    ProviderTier.GOLD: Decimal("0.11"),
    ProviderTier.PLATINUM: Decimal("0.10"),
}

# (monthly volume strictly above, rate adjustment), checked highest first
VOLUME_ADJUSTMENTS = (
    (Money(20_000_000), Decimal("-0.015")),  # > €200k
    (Money(10_000_000), Decimal("-0.010")),  # > €100k
    (Money(5_000_000), Decimal("-0.005")),  # > €50k
)

MIN_COMMISSION_RATE = Decimal("0.08")

TIER_BENEFITS = {
    ProviderTier.BRONZE: (
        "Basic marketplace access",
        "Standard support",
        "15% commission rate",
    ),
    ProviderTier.SILVER: (
        "Priority listing",
        "Enhanced support",
        "13% commission rate",
        "Monthly analytics reports",
    ),
    ProviderTier.GOLD: (
        "Featured provider status",
        "Priority support",
        "11% commission rate",
        "Weekly analytics reports",
        "Marketing co-op opportunities",
    ),
    ProviderTier.PLATINUM: (
        "Premium provider status",
        "Dedicated account manager",
        "10% commission rate",
        "Real-time analytics",
        "Co-marketing opportunities",
        "Early access to new features",
    ),
}

PERCENTAGE_TOLERANCE = Decimal("0.01")


def calculate_split(
    request: SplitCalculationRequest,
    default_structure: FeeStructure = DEFAULT_FEE_STRUCTURE,
    policy: EligibilityPolicy = DEFAULT_ELIGIBILITY_POLICY,
) -> SplitResult:
    """
    Main entry point: compute the split, breakdown and eligibility rationale.

    Flow:
    1. Apply any per-request fee structure override (unknown keys rejected)
    2. Evaluate eligibility only for municipal burial payments
    3. Run the fee policy with the eligibility outcome
    4. Assemble split, breakdown and audit rationale

    Raises:
        InvalidFeeStructure: override is malformed
        InvalidAmount: base amount is not positive
    """
    structure = default_structure.with_overrides(request.custom_fee_structure)
    base_amount = Money.of(request.base_amount)

    is_municipal_burial = request.payment_type == PaymentPurpose.MUNICIPAL_BURIAL
    reduction_applies = False
    if not is_municipal_burial:
        rationale = f"{request.payment_type.value} payment: standard rate"
    else:
        decision = evaluate_reduced_rate(base_amount, request.service_type, request.submitted_documents, policy)
        reduction_applies = decision.eligible
        if reduction_applies:
            rationale = (
                f"Municipal burial reduction applied "
                f"({structure.municipal_burial_reduction * 100:.0f}%): {decision.rationale}"
            )
        else:
            rationale = f"Municipal burial reduction not applied: {decision.rationale}"

    fees = compute_fees(base_amount, request.payment_type, reduction_applies, structure)

    split = PaymentSplit(
        provider_id=request.provider_id,
        provider_amount=fees.net_amount,
        platform_fee=fees.platform_fee,
        commission_fee=fees.commission_fee,
        net_amount=fees.net_amount,
        adjusted_base=fees.adjusted_base,
    )

    return SplitResult(
        split=split,
        breakdown=SplitBreakdown(
            original_amount=base_amount,
            adjusted_amount=fees.adjusted_base,
            reduction_applied=base_amount - fees.adjusted_base,
            platform_fee=fees.platform_fee,
            commission_fee=fees.commission_fee,
            provider_net=fees.net_amount,
            total_fees=fees.total_fees,
        ),
        eligibility=SplitEligibility(
            is_municipal_burial=is_municipal_burial,
            reduction_applied=reduction_applies,
            rationale=rationale,
        ),
    )


def calculate_tiered_commission(
    base_amount: Money,
    tier: ProviderTier,
    monthly_volume: Money,
) -> TieredCommission:
    """
    Commission for a provider tier with monthly-volume discounts.

    Base rates: bronze 15%, silver 13%, gold 11%, platinum 10%.
    Volume above €50k / €100k / €200k lowers the rate by 0.5 / 1.0 / 1.5
    points. The final rate never drops below 8%.
    """
    if not isinstance(tier, ProviderTier):
        raise InvalidSplitConfiguration(f"Unknown provider tier: {tier!r}")
    base_amount = Money.of(base_amount)
    if not base_amount.is_positive:
        raise InvalidAmount(f"Base amount must be positive, got {base_amount.amount}")
    monthly_volume = Money.of(monthly_volume, base_amount.currency)

    adjustment = Decimal("0")
    for threshold, delta in VOLUME_ADJUSTMENTS:
        if monthly_volume > threshold:
            adjustment = delta
            break

    rate = max(MIN_COMMISSION_RATE, TIER_RATES[tier] + adjustment)

    return TieredCommission(
        tier=tier,
        rate=rate,
        amount=base_amount.scale(rate),
        benefits=TIER_BENEFITS[tier],
    )


def split_across_parties(
    base_amount: Money,
    parties: Sequence[SplitParty],
    structure: FeeStructure = DEFAULT_FEE_STRUCTURE,
) -> List[PaymentSplit]:
    """
    Divide one payment between several providers, each with its own fee pass.

    Percentages must total 100 within 0.01; the check runs before any
    amount is computed, so a bad configuration yields no partial result.
    Shares round half-up and the last party absorbs the rounding
    remainder, keeping the sum of adjusted bases equal to the base amount.

    Example:
        10000 cents at 60/40 -> adjusted bases 6000 + 4000
    """
    if not parties:
        raise InvalidSplitConfiguration("At least one party is required")

    percentages = []
    for party in parties:
        try:
            percentage = to_decimal(party.percentage)
        except ArithmeticError as e:
            raise InvalidSplitConfiguration(f"Invalid percentage for {party.provider_id}") from e
        if percentage <= 0:
            raise InvalidSplitConfiguration(f"Percentage for {party.provider_id} must be positive")
        percentages.append(percentage)

    total = sum(percentages, Decimal("0"))
    if abs(total - Decimal("100")) > PERCENTAGE_TOLERANCE:
        raise InvalidSplitConfiguration(f"Split percentages must total 100%, got {total}%")

    base_amount = Money.of(base_amount)
    if not base_amount.is_positive:
        raise InvalidAmount(f"Base amount must be positive, got {base_amount.amount}")

    shares = [round_half_up(Decimal(base_amount.amount) * pct / 100) for pct in percentages]
    # Last party absorbs rounding remainder to ensure exact total
    shares[-1] += base_amount.amount - sum(shares)

    splits = []
    for party, share in zip(parties, shares):
        fees = compute_fees(Money(share, base_amount.currency), PaymentPurpose.REGULAR_SERVICE, False, structure)
        splits.append(
            PaymentSplit(
                provider_id=party.provider_id,
                provider_amount=fees.net_amount,
                platform_fee=fees.platform_fee,
                commission_fee=fees.commission_fee,
                net_amount=fees.net_amount,
                adjusted_base=fees.adjusted_base,
                role=party.role,
            )
        )

    return splits
