"""Payment orchestration: split emission, charge creation and rail status sync"""

import dataclasses
import logging
from typing import Optional

from farewelly_payments.domain.eligibility import DEFAULT_ELIGIBILITY_POLICY, EligibilityPolicy
from farewelly_payments.domain.events import EngineEvent, EventSink, EventType
from farewelly_payments.domain.fees import DEFAULT_FEE_STRUCTURE, validate_payment_amount
from farewelly_payments.domain.gateway import RailRegistry
from farewelly_payments.domain.models import (
    CreatePaymentIntentRequest,
    FeeStructure,
    PaymentIntent,
    PaymentPurpose,
    PaymentStatus,
    SplitCalculationRequest,
    SplitResult,
    new_id,
)
from farewelly_payments.domain.splitting import calculate_split
from farewelly_payments.domain.state_machine import advance_payment
from farewelly_payments.infrastructure.clients.event_sink import emit
from farewelly_payments.infrastructure.database.repositories import PaymentRepository
from farewelly_payments.infrastructure.observability.logging import log_split
from farewelly_payments.infrastructure.observability.metrics import record_split
from farewelly_payments.services.locks import IntentLockRegistry

logger = logging.getLogger(__name__)

# Rails keep reporting the charge as paid after refunds have been issued
_REFUND_STATES = frozenset({PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED})


class PaymentService:
    """Creates charges on a selected rail and keeps stored intents in step with it"""

    def __init__(
        self,
        repository: PaymentRepository,
        rails: RailRegistry,
        event_sink: EventSink,
        locks: IntentLockRegistry,
        fee_structure: FeeStructure = DEFAULT_FEE_STRUCTURE,
        eligibility_policy: EligibilityPolicy = DEFAULT_ELIGIBILITY_POLICY,
    ):
        self.repository = repository
        self.rails = rails
        self.event_sink = event_sink
        self.locks = locks
        self.fee_structure = fee_structure
        self.eligibility_policy = eligibility_policy

    async def compute_split(self, request: SplitCalculationRequest) -> SplitResult:
        """Calculate a split and emit ``split_computed``; nothing is persisted"""
        result = calculate_split(request, self.fee_structure, self.eligibility_policy)

        record_split(request.payment_type.value, result.eligibility.reduction_applied)
        log_split(
            request.provider_id,
            request.payment_type.value,
            result.eligibility.reduction_applied,
            result.split.adjusted_base.amount,
            result.split.net_amount.amount,
        )
        await emit(self.event_sink, EngineEvent(EventType.SPLIT_COMPUTED, result.to_dict()))
        return result

    async def create_payment_intent(
        self,
        request: CreatePaymentIntentRequest,
        idempotency_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> PaymentIntent:
        """
        Charge a family on the selected rail.

        Flow:
        1. Enforce the per-charge payment limits
        2. Split provider payments (the family fee goes to the platform whole)
        3. Select the rail and charge the split's adjusted base, so an
           eligible municipal burial is charged the reduced amount
        4. Persist the intent as the rail reported it

        Retrying with the same ``idempotency_key`` is safe: the rail
        returns the original charge and the stored intent comes back.

        Raises:
            InvalidAmount: amount outside payment limits
            RailCommunicationError: rail unreachable after retries
            RailRequestRejected: rail refused the charge
        """
        # 1. Limits
        validate_payment_amount(request.amount)

        # 2. Split
        split = None
        charge_amount = request.amount
        if request.provider_id and request.purpose != PaymentPurpose.FAMILY_FEE:
            result = await self.compute_split(
                SplitCalculationRequest(
                    base_amount=request.amount,
                    payment_type=request.purpose,
                    provider_id=request.provider_id,
                    service_type=request.service_type,
                    submitted_documents=request.submitted_documents,
                )
            )
            split = result.split
            charge_amount = split.adjusted_base

        # 3. Charge
        gateway = self.rails.select(request.rail)
        metadata = dict(request.metadata)
        metadata.update(customer_id=request.customer_id, service_id=request.service_id)
        if request.provider_id:
            metadata["provider_id"] = request.provider_id
        if charge_amount != request.amount:
            metadata["list_amount"] = str(request.amount.amount)

        intent = await gateway.create_charge(
            charge_amount,
            request.description,
            metadata,
            idempotency_key=idempotency_key or new_id("charge"),
            purpose=request.purpose,
            split=split,
            timeout=timeout,
        )
        intent = dataclasses.replace(
            intent,
            purpose=request.purpose,
            customer_id=request.customer_id,
            service_id=request.service_id,
            provider_id=request.provider_id,
            split=split,
        )

        # 4. Persist; a replayed idempotency key returns the stored intent
        existing = self.repository.find_intent(intent.id)
        if existing is not None:
            return existing
        self.repository.add_intent(intent)
        self.repository.commit()

        logger.info(
            f"Payment intent {intent.id} created on {intent.rail.value}",
            extra={
                "step": "payment_created",
                "payment_intent_id": intent.id,
                "rail": intent.rail.value,
                "amount_cents": intent.amount.amount,
                "purpose": intent.purpose.value,
            },
        )
        return intent

    async def confirm_payment(
        self, payment_intent_id: str, method_token: str, timeout: Optional[float] = None
    ) -> PaymentIntent:
        stored = self.repository.get_intent(payment_intent_id)
        gateway = self.rails.for_payment(stored.id, stored.rail)
        remote = await gateway.confirm_charge(stored.id, method_token, timeout=timeout)

        intent = await self.apply_status(payment_intent_id, remote.status)
        self.repository.commit()
        return intent

    async def sync_payment_status(self, payment_intent_id: str, timeout: Optional[float] = None) -> PaymentIntent:
        """Fetch the rail's view of a payment and advance the stored intent to match"""
        stored = self.repository.get_intent(payment_intent_id)
        gateway = self.rails.for_payment(stored.id, stored.rail)
        remote = await gateway.get_status(stored.id, timeout=timeout)

        intent = await self.apply_status(payment_intent_id, remote.status)
        self.repository.commit()
        return intent

    async def apply_status(self, payment_intent_id: str, status: PaymentStatus) -> PaymentIntent:
        """
        Move a stored intent to a rail-reported status without committing.

        Raises:
            PaymentNotFound: intent is not stored
            InvalidStateTransition: status is not reachable from the current one
            ConcurrentModificationError: intent changed underneath this update
        """
        async with self.locks.lock(payment_intent_id):
            intent = self.repository.get_intent(payment_intent_id)
            if intent.status in _REFUND_STATES and status == PaymentStatus.COMPLETED:
                return intent

            advanced = advance_payment(intent, status)
            if advanced is intent:
                return intent

            saved = self.repository.save_intent(advanced)

        logger.info(
            f"Payment intent {payment_intent_id}: {intent.status.value} -> {status.value}",
            extra={"step": "payment_status", "payment_intent_id": payment_intent_id, "status": status.value},
        )
        return saved
