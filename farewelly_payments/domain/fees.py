"""Fee policy - platform fee, commission and provider net for a base amount"""

from decimal import Decimal

from farewelly_payments.domain.exceptions import InvalidAmount
from farewelly_payments.domain.models import FamilyFee, FeeComputation, FeeStructure, PaymentPurpose
from farewelly_payments.domain.money import Money

DEFAULT_FEE_STRUCTURE = FeeStructure()

MIN_PAYMENT = Money(100)  # €1.00
MAX_PAYMENT = Money(5_000_000)  # €50,000.00


def compute_fees(
    base_amount: Money,
    purpose: PaymentPurpose,
    reduction_applies: bool = False,
    structure: FeeStructure = DEFAULT_FEE_STRUCTURE,
) -> FeeComputation:
    """
    Split a base amount into platform fee, commission fee and provider net.

    Requirements:
    - Municipal burial reduction shrinks the base before any fee is taken
    - Each fee is rounded half-up to whole cents
    - Net absorbs rounding so platform + commission + net == adjusted base

    Example:
        10000 cents, reduction 30% -> adjusted 7000
        platform 2.9% -> 203, commission 12.5% -> 875, net -> 5922

    Raises:
        InvalidAmount: base amount is zero or negative
    """
    base_amount = Money.of(base_amount)
    if not base_amount.is_positive:
        raise InvalidAmount(f"Base amount must be positive for {purpose.value}, got {base_amount.amount}")

    adjusted_base = base_amount
    if reduction_applies:
        adjusted_base = base_amount.scale(Decimal("1") - structure.municipal_burial_reduction)

    platform_fee = adjusted_base.scale(structure.platform_fee_rate)
    commission_fee = adjusted_base.scale(structure.provider_commission_rate)
    total_fees = platform_fee + commission_fee
    net_amount = adjusted_base - total_fees

    return FeeComputation(
        adjusted_base=adjusted_base,
        platform_fee=platform_fee,
        commission_fee=commission_fee,
        net_amount=net_amount,
        total_fees=total_fees,
    )


def calculate_family_fee(
    is_municipal_burial: bool = False,
    structure: FeeStructure = DEFAULT_FEE_STRUCTURE,
) -> FamilyFee:
    """Flat family fee, reduced for municipal burials"""
    base_fee = structure.family_fee
    adjusted_fee = base_fee
    if is_municipal_burial:
        adjusted_fee = base_fee.scale(Decimal("1") - structure.municipal_burial_reduction)

    return FamilyFee(base_fee=base_fee, adjusted_fee=adjusted_fee, savings=base_fee - adjusted_fee)


def validate_payment_amount(amount: Money) -> None:
    """Reject charges outside the marketplace payment limits"""
    if amount.currency != MIN_PAYMENT.currency:
        raise InvalidAmount(f"Unsupported currency: {amount.currency}")
    if not MIN_PAYMENT <= amount <= MAX_PAYMENT:
        raise InvalidAmount(f"Payment amount {amount} outside limits {MIN_PAYMENT} - {MAX_PAYMENT}")
