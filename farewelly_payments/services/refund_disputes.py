"""Refund & Dispute Manager - refund routing, dispute lifecycle and chargeback intake"""

import dataclasses
import logging
from typing import List, Optional, Tuple

from farewelly_payments.domain.events import EngineEvent, EventSink, EventType
from farewelly_payments.domain.exceptions import (
    DisputeAlreadyOpen,
    InvalidStateTransition,
    PaymentNotFound,
    PaymentNotRefundable,
    RailCommunicationError,
    RailRequestRejected,
    RefundExceedsBalance,
)
from farewelly_payments.domain.gateway import RailRegistry
from farewelly_payments.domain.models import (
    CreateDisputeRequest,
    CreateRefundRequest,
    DisputeCase,
    DisputePriority,
    DisputeStatus,
    PaymentIntent,
    PaymentStatus,
    RefundInitiator,
    RefundRequest,
    RefundStatus,
    StatusChange,
    WebhookEvent,
    new_id,
)
from farewelly_payments.domain.money import Money
from farewelly_payments.domain.refunds import (
    DEFAULT_REFUND_POLICY,
    REFUNDABLE_PAYMENT_STATUSES,
    SUBMITTED_REFUND_STATUSES,
    RefundPolicy,
    RefundReason,
    check_refund_window,
    parse_refund_reason,
    remaining_balance,
    resolve_refund_amount,
    sum_refunds,
)
from farewelly_payments.domain.state_machine import DISPUTE_TRANSITIONS, advance_dispute, advance_payment
from farewelly_payments.infrastructure.clients.event_sink import emit
from farewelly_payments.infrastructure.database.repositories import PaymentRepository
from farewelly_payments.infrastructure.observability.logging import log_dispute, log_refund
from farewelly_payments.infrastructure.observability.metrics import (
    chargeback_counter,
    dispute_counter,
    record_refund,
    refund_approved_counter,
)
from farewelly_payments.services.locks import IntentLockRegistry
from farewelly_payments.utils.date_utils import utc_now

logger = logging.getLogger(__name__)

# Collected automatically for every chargeback response
CHARGEBACK_EVIDENCE = (
    "payment_confirmation",
    "service_delivery_proof",
    "communication_logs",
    "terms_of_service_acceptance",
)


def _log_refund(refund: RefundRequest, actor: str) -> None:
    log_refund(refund.id, refund.payment_intent_id, refund.status.value, refund.amount.amount, refund.automatic, actor)


class RefundDisputeManager:
    """
    Validates and routes refunds, tracks dispute cases and ingests chargebacks.

    Every balance check and intent update for one payment intent runs under
    that intent's lock and finishes with a version compare-and-set, so an
    automatic refund and a pending-refund approval cannot both spend the
    same balance.
    """

    def __init__(
        self,
        repository: PaymentRepository,
        rails: RailRegistry,
        event_sink: EventSink,
        locks: IntentLockRegistry,
        policy: RefundPolicy = DEFAULT_REFUND_POLICY,
    ):
        self.repository = repository
        self.rails = rails
        self.event_sink = event_sink
        self.locks = locks
        self.policy = policy
        self._outbox: List[EngineEvent] = []

    # Refunds

    async def create_refund(self, request: CreateRefundRequest, timeout: Optional[float] = None) -> RefundRequest:
        """
        Create a refund, submitting it to the rail when its reason is automatic.

        Validation order:
        1. Reason is a known refund reason
        2. Reason is not in the non-refundable set
        3. Payment is refundable and inside the refund window
        4. Amount fits the remaining refundable balance

        Returns the refund in ``pending`` (approval required), ``processing``
        or ``completed``.

        Raises:
            InvalidRefundReason, NonRefundable, PaymentNotFound,
            PaymentNotRefundable, RefundExceedsBalance, InvalidAmount
            RailCommunicationError / RailRequestRejected: automatic
                submission failed; the refund is stored with its outcome
        """
        reason = parse_refund_reason(request.reason, self.policy)
        return await self._create_refund(request, reason, self.policy.is_automatic(reason), timeout)

    async def _create_refund(
        self,
        request: CreateRefundRequest,
        reason: RefundReason,
        automatic: bool,
        timeout: Optional[float],
    ) -> RefundRequest:
        async with self.locks.lock(request.payment_intent_id):
            refund = await self._create_refund_locked(request, reason, automatic, timeout)

        _log_refund(refund, request.initiated_by.value)
        await emit(self.event_sink, EngineEvent(EventType.REFUND_CREATED, refund.to_dict()))
        return refund

    async def _create_refund_locked(
        self,
        request: CreateRefundRequest,
        reason: RefundReason,
        automatic: bool,
        timeout: Optional[float],
    ) -> RefundRequest:
        """Refund body; the caller holds the payment intent's lock"""
        intent = self.repository.get_intent(request.payment_intent_id)
        if not automatic:
            check_refund_window(intent, reason, self.policy)

        refunds = self.repository.list_refunds(intent.id)
        amount = resolve_refund_amount(intent, request.amount, refunds, self.policy)

        refund = RefundRequest(
            id=new_id("rf"),
            payment_intent_id=intent.id,
            amount=amount,
            reason=reason.value,
            status=RefundStatus.PENDING,
            description=request.description,
            initiated_by=request.initiated_by,
            automatic=automatic,
        )
        self.repository.add_refund(refund)
        # Reserve the balance against writers in other processes
        intent = self.repository.save_intent(intent)
        record_refund(automatic)

        if automatic:
            return await self._submit(intent, refund, refunds, timeout)
        self.repository.commit()
        return refund

    async def approve_refund(
        self, refund_id: str, approved_by: str, timeout: Optional[float] = None
    ) -> RefundRequest:
        """
        Approve a pending refund and submit it to the rail.

        The balance is checked again against refunds already submitted,
        so approvals can never push the refunded total past the charge.

        Raises:
            RefundNotFound, InvalidStateTransition (not pending),
            PaymentNotRefundable, RefundExceedsBalance,
            RailCommunicationError, RailRequestRejected
        """
        refund = self.repository.get_refund(refund_id)

        async with self.locks.lock(refund.payment_intent_id):
            refund = self.repository.get_refund(refund_id)
            if refund.status != RefundStatus.PENDING:
                raise InvalidStateTransition(f"Refund {refund_id} is {refund.status.value}, not pending")

            intent = self.repository.get_intent(refund.payment_intent_id)
            if intent.status not in REFUNDABLE_PAYMENT_STATUSES:
                raise PaymentNotRefundable(f"Payment {intent.id} is {intent.status.value}; refund cannot be approved")

            others = [r for r in self.repository.list_refunds(intent.id) if r.id != refund.id]
            available = remaining_balance(intent, others, SUBMITTED_REFUND_STATUSES)
            if refund.amount > available:
                raise RefundExceedsBalance(
                    f"Refund {refund_id} of {refund.amount} exceeds remaining balance {available}"
                )

            refund = dataclasses.replace(refund, decided_by=approved_by)
            intent = self.repository.save_intent(intent)
            refund_approved_counter.inc()
            refund = await self._submit(intent, refund, others, timeout)

        _log_refund(refund, approved_by)
        await emit(self.event_sink, EngineEvent(EventType.REFUND_APPROVED, refund.to_dict()))
        return refund

    async def reject_refund(self, refund_id: str, rejected_by: str, reason: str) -> RefundRequest:
        """Decline a pending refund; the reserved balance is released"""
        refund = self.repository.get_refund(refund_id)

        async with self.locks.lock(refund.payment_intent_id):
            refund = self.repository.get_refund(refund_id)
            if refund.status != RefundStatus.PENDING:
                raise InvalidStateTransition(f"Refund {refund_id} is {refund.status.value}, not pending")

            refund = dataclasses.replace(
                refund,
                status=RefundStatus.REJECTED,
                decided_by=rejected_by,
                notes=reason,
                processed_at=utc_now(),
            )
            self.repository.update_refund(refund)
            self.repository.commit()

        _log_refund(refund, rejected_by)
        return refund

    async def retry_refund(self, refund_id: str, timeout: Optional[float] = None) -> RefundRequest:
        """
        Resubmit a refund whose rail outcome is unknown.

        The refund id is the idempotency key, so the rail returns the
        original refund if the first attempt did reach it.
        """
        refund = self.repository.get_refund(refund_id)

        async with self.locks.lock(refund.payment_intent_id):
            refund = self.repository.get_refund(refund_id)
            if refund.status != RefundStatus.PROCESSING or refund.rail_refund_id:
                raise InvalidStateTransition(f"Refund {refund_id} has a known rail outcome; nothing to retry")

            intent = self.repository.get_intent(refund.payment_intent_id)
            others = [r for r in self.repository.list_refunds(intent.id) if r.id != refund.id]
            refund = await self._submit(intent, refund, others, timeout)

        _log_refund(refund, "system")
        return refund

    async def _submit(
        self,
        intent: PaymentIntent,
        refund: RefundRequest,
        others: List[RefundRequest],
        timeout: Optional[float],
    ) -> RefundRequest:
        """
        Send a refund to the rail and commit the outcome.

        A failure that certainly moved no money marks the refund failed and
        frees its balance; an uncertain one leaves it processing without a
        rail id so ``retry_refund`` can resubmit with the same key. Either
        way the error is raised after the outcome is committed.
        """
        gateway = self.rails.for_payment(intent.id, intent.rail)
        try:
            submitted = await gateway.create_refund(
                intent.id,
                refund.amount,
                refund.reason,
                idempotency_key=refund.id,
                timeout=timeout,
            )
        except (RailCommunicationError, RailRequestRejected) as e:
            uncertain = isinstance(e, RailCommunicationError) and e.may_have_moved_money
            refund = dataclasses.replace(
                refund,
                status=RefundStatus.PROCESSING if uncertain else RefundStatus.FAILED,
                notes=str(e),
                processed_at=None if uncertain else utc_now(),
            )
            self.repository.update_refund(refund)
            self.repository.commit()
            logger.error(
                f"Refund {refund.id} submission failed: {e}",
                extra={
                    "step": "refund_submit",
                    "refund_id": refund.id,
                    "payment_intent_id": intent.id,
                    "may_have_moved_money": uncertain,
                },
            )
            raise

        refund = dataclasses.replace(
            refund,
            status=submitted.status,
            rail_refund_id=submitted.rail_refund_id,
            processed_at=utc_now() if submitted.status != RefundStatus.PROCESSING else None,
        )
        self.repository.update_refund(refund)
        self._reconcile_intent(intent, others + [refund])
        self.repository.commit()
        return refund

    def _reconcile_intent(self, intent: PaymentIntent, refunds: List[RefundRequest]) -> PaymentIntent:
        """Move the intent to refunded / partially refunded from its completed refunds"""
        refunded = sum_refunds(refunds, frozenset({RefundStatus.COMPLETED}), intent.amount.currency)
        if not refunded.is_positive:
            return intent

        target = PaymentStatus.REFUNDED if refunded >= intent.amount else PaymentStatus.PARTIALLY_REFUNDED
        advanced = advance_payment(intent, target)
        if advanced is intent:
            return intent
        return self.repository.save_intent(advanced)

    async def apply_refund_status(self, event: WebhookEvent) -> Optional[RefundRequest]:
        """
        Apply a rail refund status update without committing.

        Unknown refunds are logged and skipped; refunds created directly on
        the rail dashboard are not tracked by this engine.
        """
        refund = self.repository.find_refund_by_rail_id(event.refund_id) if event.refund_id else None
        if refund is None:
            logger.warning(
                f"Refund status for untracked refund {event.refund_id}",
                extra={"rail": event.rail.value, "rail_refund_id": event.refund_id},
            )
            return None

        async with self.locks.lock(refund.payment_intent_id):
            refund = self.repository.get_refund(refund.id)
            if refund.status == event.refund_status:
                return refund
            if refund.status != RefundStatus.PROCESSING:
                raise InvalidStateTransition(
                    f"Refund {refund.id} is {refund.status.value}; cannot become {event.refund_status.value}"
                )

            refund = dataclasses.replace(
                refund,
                status=event.refund_status,
                processed_at=utc_now() if event.refund_status != RefundStatus.PROCESSING else None,
            )
            self.repository.update_refund(refund)
            intent = self.repository.get_intent(refund.payment_intent_id)
            self._reconcile_intent(intent, self.repository.list_refunds(intent.id))

        _log_refund(refund, "rail")
        return refund

    # Disputes

    async def create_dispute(self, request: CreateDisputeRequest) -> DisputeCase:
        """
        Open a dispute in ``submitted``; urgent disputes go straight to ``escalated``.

        Raises:
            PaymentNotFound: payment intent does not exist
            DisputeAlreadyOpen: payment already has an unresolved dispute
        """
        async with self.locks.lock(request.payment_intent_id):
            intent = self.repository.get_intent(request.payment_intent_id)
            self._ensure_no_open_dispute(intent.id)

            now = utc_now()
            dispute = DisputeCase(
                id=new_id("dp"),
                payment_intent_id=intent.id,
                customer_id=request.customer_id,
                provider_id=request.provider_id,
                reason=request.reason,
                description=request.description,
                status=DisputeStatus.SUBMITTED,
                priority=request.priority,
                evidence=tuple(request.evidence),
                status_history=(StatusChange(status=DisputeStatus.SUBMITTED.value, at=now),),
                created_at=now,
            )
            if dispute.priority == DisputePriority.URGENT:
                dispute = advance_dispute(dispute, DisputeStatus.ESCALATED, now)

            self.repository.add_dispute(dispute)
            self.repository.commit()

        dispute_counter.labels(action="created").inc()
        log_dispute(dispute.id, dispute.payment_intent_id, "created", dispute.status.value)
        await emit(self.event_sink, EngineEvent(EventType.DISPUTE_CREATED, dispute.to_dict()))
        return dispute

    def _ensure_no_open_dispute(self, payment_intent_id: str) -> None:
        existing = self.repository.get_open_dispute(payment_intent_id)
        if existing is not None:
            raise DisputeAlreadyOpen(
                f"Payment {payment_intent_id} already has open dispute {existing.id} ({existing.status.value})"
            )

    async def review_dispute(self, dispute_id: str) -> DisputeCase:
        return self._move_dispute(dispute_id, DisputeStatus.UNDER_REVIEW, "reviewed")

    async def escalate_dispute(self, dispute_id: str) -> DisputeCase:
        return self._move_dispute(dispute_id, DisputeStatus.ESCALATED, "escalated")

    def _move_dispute(self, dispute_id: str, target: DisputeStatus, action: str) -> DisputeCase:
        dispute = advance_dispute(self.repository.get_dispute(dispute_id), target)
        self.repository.update_dispute(dispute)
        self.repository.commit()

        dispute_counter.labels(action=action).inc()
        log_dispute(dispute.id, dispute.payment_intent_id, action, dispute.status.value)
        return dispute

    async def resolve_dispute(
        self,
        dispute_id: str,
        resolution: str,
        resolved_by: str,
        refund_amount: Optional[Money] = None,
        timeout: Optional[float] = None,
    ) -> DisputeCase:
        """
        Resolve a dispute, refunding first when ``refund_amount`` is given.

        The refund uses reason ``dispute_resolution`` and is always
        automatic. A dispute still in ``submitted`` is recorded as passing
        through ``under_review``. If the refund fails the dispute stays open.

        The open check, the refund and the resolution all run under the
        payment intent's lock, so concurrent resolutions of one dispute
        submit at most one refund.

        Raises:
            DisputeNotFound, InvalidStateTransition (already resolved), and
            any refund error
        """
        dispute = self.repository.get_dispute(dispute_id)

        refund: Optional[RefundRequest] = None
        async with self.locks.lock(dispute.payment_intent_id):
            dispute = self.repository.get_dispute(dispute_id)
            if not dispute.is_open:
                raise InvalidStateTransition(f"Dispute {dispute_id} is already resolved")

            if refund_amount is not None:
                refund = await self._create_refund_locked(
                    CreateRefundRequest(
                        payment_intent_id=dispute.payment_intent_id,
                        reason=RefundReason.DISPUTE_RESOLUTION.value,
                        description=f"Dispute {dispute.id} resolution: {resolution}",
                        initiated_by=RefundInitiator.ADMIN,
                        amount=Money.of(refund_amount),
                    ),
                    RefundReason.DISPUTE_RESOLUTION,
                    automatic=True,
                    timeout=timeout,
                )

            now = utc_now()
            if DisputeStatus.RESOLVED not in DISPUTE_TRANSITIONS[dispute.status]:
                dispute = advance_dispute(dispute, DisputeStatus.UNDER_REVIEW, now)
            dispute = dataclasses.replace(
                advance_dispute(dispute, DisputeStatus.RESOLVED, now),
                resolution=resolution,
                resolved_by=resolved_by,
                resolved_at=now,
                refund_id=refund.id if refund else None,
            )
            self.repository.update_dispute(dispute)
            self.repository.commit()

        if refund is not None:
            _log_refund(refund, resolved_by)
            await emit(self.event_sink, EngineEvent(EventType.REFUND_CREATED, refund.to_dict()))

        dispute_counter.labels(action="resolved").inc()
        log_dispute(dispute.id, dispute.payment_intent_id, "resolved", dispute.status.value)
        await emit(self.event_sink, EngineEvent(EventType.DISPUTE_RESOLVED, dispute.to_dict()))
        return dispute

    async def ingest_chargeback(self, event: WebhookEvent) -> DisputeCase:
        """
        Turn a rail chargeback into a dispute in ``under_review``, without committing.

        A chargeback on a payment that already has an open dispute is merged
        into it. The provider notification (``chargeback_received``) is
        queued and only goes out through ``flush_events`` once the caller
        has committed; ``discard_events`` drops it after a rollback.
        """
        if not event.payment_id:
            raise PaymentNotFound(f"Chargeback {event.provider_event_id} carries no payment id")
        intent = self.repository.get_intent(event.payment_id)
        amount = event.amount or intent.amount

        async with self.locks.lock(intent.id):
            dispute, action = self._chargeback_dispute(intent, event)

        self._outbox.append(
            EngineEvent(
                EventType.CHARGEBACK_RECEIVED,
                {
                    "payment_intent_id": intent.id,
                    "dispute_id": dispute.id,
                    "provider_id": intent.provider_id,
                    "customer_id": intent.customer_id,
                    "rail": event.rail.value,
                    "amount": amount.to_dict(),
                    "reason": event.reason,
                },
            )
        )
        chargeback_counter.labels(rail=event.rail.value).inc()
        dispute_counter.labels(action=action).inc()
        log_dispute(dispute.id, dispute.payment_intent_id, action, dispute.status.value)
        return dispute

    async def flush_events(self) -> None:
        """Emit notifications queued by uncommitted work"""
        events, self._outbox = self._outbox, []
        for event in events:
            await emit(self.event_sink, event)

    def discard_events(self) -> None:
        self._outbox = []

    def _chargeback_dispute(self, intent: PaymentIntent, event: WebhookEvent) -> Tuple[DisputeCase, str]:
        now = utc_now()
        existing = self.repository.get_open_dispute(intent.id)

        if existing is not None:
            evidence = existing.evidence + tuple(e for e in CHARGEBACK_EVIDENCE if e not in existing.evidence)
            dispute = existing
            if dispute.status == DisputeStatus.SUBMITTED:
                dispute = advance_dispute(dispute, DisputeStatus.UNDER_REVIEW, now)
            dispute = dataclasses.replace(dispute, evidence=evidence, chargeback=True)
            self.repository.update_dispute(dispute)
            return dispute, "chargeback_merged"

        dispute = DisputeCase(
            id=new_id("dp"),
            payment_intent_id=intent.id,
            customer_id=intent.customer_id,
            provider_id=intent.provider_id or "",
            reason=event.reason or "chargeback",
            description=f"Chargeback received via {event.rail.value} ({event.provider_event_id})",
            status=DisputeStatus.UNDER_REVIEW,
            priority=DisputePriority.HIGH,
            evidence=CHARGEBACK_EVIDENCE,
            chargeback=True,
            status_history=(StatusChange(status=DisputeStatus.UNDER_REVIEW.value, at=now),),
            created_at=now,
        )
        self.repository.add_dispute(dispute)
        return dispute, "created"
