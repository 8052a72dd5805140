"""Payment rail capability interface, registry and rail selection.

Split and refund logic talk to rails only through ``PaymentRailGateway``.
Adding a rail means implementing the protocol and registering it; the
selection policy can change without touching the engine.
"""

from typing import Any, Dict, Iterable, Mapping, Optional, Protocol, runtime_checkable

from farewelly_payments.domain.exceptions import PaymentNotFound
from farewelly_payments.domain.models import (
    PaymentIntent,
    PaymentPurpose,
    PaymentSplit,
    Rail,
    RefundRequest,
    WebhookEvent,
)
from farewelly_payments.domain.money import Money


@runtime_checkable
class PaymentRailGateway(Protocol):
    """Capabilities every payment rail provides.

    Money-moving calls take an ``idempotency_key`` forwarded to the rail so
    a retry after a timeout cannot charge or refund twice, and an optional
    ``timeout`` in seconds supplied by the caller.
    """

    @property
    def rail(self) -> Rail:
        ...

    async def create_charge(
        self,
        amount: Money,
        description: str,
        metadata: Mapping[str, Any],
        *,
        idempotency_key: str,
        purpose: PaymentPurpose = PaymentPurpose.REGULAR_SERVICE,
        split: Optional[PaymentSplit] = None,
        timeout: Optional[float] = None,
    ) -> PaymentIntent:
        ...

    async def confirm_charge(
        self, payment_id: str, method_token: str, *, timeout: Optional[float] = None
    ) -> PaymentIntent:
        ...

    async def create_refund(
        self,
        payment_id: str,
        amount: Optional[Money],
        reason: str,
        *,
        idempotency_key: str,
        timeout: Optional[float] = None,
    ) -> RefundRequest:
        ...

    async def get_status(self, payment_id: str, *, timeout: Optional[float] = None) -> PaymentIntent:
        ...

    def verify_and_parse_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        ...


# Rail-assigned identifier prefixes
_ID_PREFIXES = {
    "pi_": Rail.STRIPE,
    "tr_": Rail.MOLLIE,
}


def detect_rail_from_id(payment_id: str, default: Rail = Rail.MOLLIE) -> Rail:
    """Infer the rail from its payment identifier prefix"""
    for prefix, rail in _ID_PREFIXES.items():
        if payment_id.startswith(prefix):
            return rail
    return default


class RailRegistry:
    """Registered gateways plus the rail-selection policy"""

    def __init__(self, gateways: Iterable[PaymentRailGateway] = (), default_rail: Rail = Rail.MOLLIE):
        self._gateways: Dict[Rail, PaymentRailGateway] = {}
        self.default_rail = default_rail
        for gateway in gateways:
            self.register(gateway)

    def register(self, gateway: PaymentRailGateway) -> None:
        if not isinstance(gateway, PaymentRailGateway):
            raise TypeError(f"{gateway!r} does not implement PaymentRailGateway")
        self._gateways[gateway.rail] = gateway

    def get(self, rail: Rail) -> PaymentRailGateway:
        try:
            return self._gateways[Rail(rail)]
        except (KeyError, ValueError):
            raise PaymentNotFound(f"No gateway registered for rail {rail!r}") from None

    def select(self, requested: Optional[Rail] = None) -> PaymentRailGateway:
        """
        Pick the rail for a new charge.

        An explicit rail wins; otherwise the default rail (Mollie, for the
        Dutch local methods such as iDEAL) is used.
        """
        return self.get(requested or self.default_rail)

    def for_payment(self, payment_id: str, rail: Optional[Rail] = None) -> PaymentRailGateway:
        return self.get(rail or detect_rail_from_id(payment_id, self.default_rail))

    @property
    def rails(self) -> list:
        return list(self._gateways)
