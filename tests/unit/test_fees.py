"""Unit tests for the fee policy"""

from decimal import Decimal

import pytest

from farewelly_payments.domain.exceptions import InvalidAmount, InvalidFeeStructure
from farewelly_payments.domain.fees import calculate_family_fee, compute_fees, validate_payment_amount
from farewelly_payments.domain.models import FeeStructure, PaymentPurpose
from farewelly_payments.domain.money import Money


def test_compute_fees_with_municipal_reduction():
    """Test €100 municipal burial: reduced base 7000, 203 + 875 fees, 5922 net"""
    fees = compute_fees(Money(10000), PaymentPurpose.MUNICIPAL_BURIAL, reduction_applies=True)

    assert fees.adjusted_base.amount == 7000
    assert fees.platform_fee.amount == 203
    assert fees.commission_fee.amount == 875
    assert fees.net_amount.amount == 5922
    assert fees.total_fees.amount == 1078


def test_compute_fees_standard_rate():
    """Test €100 regular service without reduction"""
    fees = compute_fees(Money(10000), PaymentPurpose.REGULAR_SERVICE)

    assert fees.adjusted_base.amount == 10000
    assert fees.platform_fee.amount == 290
    assert fees.commission_fee.amount == 1250
    assert fees.net_amount.amount == 8460


@pytest.mark.parametrize("amount", [100, 101, 333, 999, 12345, 250000, 4999999])
def test_components_sum_to_adjusted_base(amount: int):
    """Test no cent is created or lost by rounding"""
    for reduction in (False, True):
        fees = compute_fees(Money(amount), PaymentPurpose.MUNICIPAL_BURIAL, reduction)
        total = fees.platform_fee.amount + fees.commission_fee.amount + fees.net_amount.amount
        assert total == fees.adjusted_base.amount
        assert fees.net_amount.amount >= 0


def test_fees_never_decrease_as_base_grows():
    """Test fees are monotonic in the base amount"""
    previous = compute_fees(Money(100), PaymentPurpose.REGULAR_SERVICE)
    for amount in range(101, 2000, 7):
        current = compute_fees(Money(amount), PaymentPurpose.REGULAR_SERVICE)
        assert current.platform_fee >= previous.platform_fee
        assert current.commission_fee >= previous.commission_fee
        previous = current


@pytest.mark.parametrize("amount", [100, 101, 999, 10000, 12345, 250000, 5000000])
def test_reduction_never_raises_provider_net(amount: int):
    """Test the municipal reduction only ever lowers what the provider nets"""
    reduced = compute_fees(Money(amount), PaymentPurpose.MUNICIPAL_BURIAL, reduction_applies=True)
    standard = compute_fees(Money(amount), PaymentPurpose.MUNICIPAL_BURIAL, reduction_applies=False)

    assert reduced.adjusted_base <= standard.adjusted_base
    assert reduced.net_amount <= standard.net_amount
    assert reduced.total_fees <= standard.total_fees


def test_compute_fees_rejects_non_positive_base():
    """Test zero and negative bases fail"""
    with pytest.raises(InvalidAmount):
        compute_fees(Money(0), PaymentPurpose.REGULAR_SERVICE)
    with pytest.raises(InvalidAmount):
        compute_fees(Money(-100), PaymentPurpose.REGULAR_SERVICE)


def test_family_fee_standard_and_reduced():
    """Test €100 family fee and its municipal burial reduction"""
    standard = calculate_family_fee()
    assert standard.adjusted_fee.amount == 10000
    assert standard.savings.amount == 0

    reduced = calculate_family_fee(is_municipal_burial=True)
    assert reduced.base_fee.amount == 10000
    assert reduced.adjusted_fee.amount == 7000
    assert reduced.savings.amount == 3000


def test_fee_structure_overrides_are_validated():
    """Test overrides replace rates and reject unknown keys or out-of-range values"""
    structure = FeeStructure().with_overrides({"provider_commission_rate": "0.10"})
    assert structure.provider_commission_rate == Decimal("0.10")
    assert compute_fees(Money(10000), PaymentPurpose.REGULAR_SERVICE, structure=structure).commission_fee.amount == 1000

    with pytest.raises(InvalidFeeStructure):
        FeeStructure().with_overrides({"bogus_rate": "0.1"})
    with pytest.raises(InvalidFeeStructure):
        FeeStructure().with_overrides({"provider_commission_rate": "0.20"})
    with pytest.raises(InvalidFeeStructure):
        FeeStructure().with_overrides({"municipal_burial_reduction": "1.0"})


def test_payment_limits():
    """Test €1.00 to €50,000.00 inclusive"""
    validate_payment_amount(Money(100))
    validate_payment_amount(Money(5_000_000))

    with pytest.raises(InvalidAmount):
        validate_payment_amount(Money(99))
    with pytest.raises(InvalidAmount):
        validate_payment_amount(Money(5_000_001))
    with pytest.raises(InvalidAmount):
        validate_payment_amount(Money(1000, "USD"))
