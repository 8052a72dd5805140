"""Unit tests for rail selection"""

import pytest

from farewelly_payments.domain.exceptions import PaymentNotFound
from farewelly_payments.domain.gateway import PaymentRailGateway, RailRegistry, detect_rail_from_id
from farewelly_payments.domain.models import Rail


def test_fake_rail_satisfies_gateway_protocol(fake_rail):
    """Test structural typing accepts any object with the rail capabilities"""
    assert isinstance(fake_rail, PaymentRailGateway)


def test_register_rejects_non_gateways():
    """Test objects missing capabilities are refused"""
    with pytest.raises(TypeError):
        RailRegistry([object()])


def test_detect_rail_from_id():
    """Test pi_ is Stripe, tr_ is Mollie, anything else falls back"""
    assert detect_rail_from_id("pi_3Nx") == Rail.STRIPE
    assert detect_rail_from_id("tr_WDqYK6vllg") == Rail.MOLLIE
    assert detect_rail_from_id("ch_legacy", default=Rail.STRIPE) == Rail.STRIPE


def test_select_prefers_explicit_rail_then_default(fake_rail):
    """Test explicit rail wins over the default"""
    stripe, mollie = fake_rail, type(fake_rail)(Rail.MOLLIE)
    registry = RailRegistry([stripe, mollie], default_rail=Rail.MOLLIE)

    assert registry.select() is mollie
    assert registry.select(Rail.STRIPE) is stripe
    assert registry.for_payment("pi_abc") is stripe
    assert registry.for_payment("pi_abc", Rail.MOLLIE) is mollie
    assert set(registry.rails) == {Rail.STRIPE, Rail.MOLLIE}


def test_unregistered_rail_raises(fake_rail):
    """Test asking for a rail with no gateway fails cleanly"""
    registry = RailRegistry([fake_rail], default_rail=Rail.STRIPE)
    with pytest.raises(PaymentNotFound):
        registry.get(Rail.MOLLIE)
    with pytest.raises(PaymentNotFound):
        registry.get("paypal")
