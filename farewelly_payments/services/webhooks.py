"""Idempotent ingestion of signed rail webhooks"""

import logging
from enum import Enum

from farewelly_payments.domain.exceptions import InvalidStateTransition, PaymentNotFound, WebhookSignatureInvalid
from farewelly_payments.domain.gateway import RailRegistry
from farewelly_payments.domain.models import Rail, WebhookEvent, WebhookEventKind
from farewelly_payments.infrastructure.database.repositories import PaymentRepository
from farewelly_payments.infrastructure.observability.metrics import webhook_counter
from farewelly_payments.services.payments import PaymentService
from farewelly_payments.services.refund_disputes import RefundDisputeManager

logger = logging.getLogger(__name__)


class WebhookOutcome(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


class WebhookProcessor:
    """Verifies, deduplicates and applies rail webhook deliveries"""

    def __init__(
        self,
        repository: PaymentRepository,
        rails: RailRegistry,
        payments: PaymentService,
        manager: RefundDisputeManager,
    ):
        self.repository = repository
        self.rails = rails
        self.payments = payments
        self.manager = manager

    async def process(self, rail: Rail, payload: bytes, signature: str) -> WebhookOutcome:
        """
        Handle one webhook delivery.

        Flow:
        1. Verify the signature before trusting any field
        2. Claim ``(rail, provider_event_id)``; a second delivery stops here
        3. Apply the status change, refund update or chargeback
        4. Commit the claim and its effects together
        5. Send notifications queued by the applied effects

        Raises:
            WebhookSignatureInvalid: delivery is dropped and must not be retried
        """
        # 1. Verify
        gateway = self.rails.get(rail)
        try:
            event = gateway.verify_and_parse_webhook(payload, signature)
        except WebhookSignatureInvalid as e:
            webhook_counter.labels(rail=rail.value, outcome="rejected").inc()
            logger.warning(f"Rejected {rail.value} webhook: {e}", extra={"rail": rail.value, "step": "webhook"})
            raise

        log_extra = {
            "rail": rail.value,
            "provider_event_id": event.provider_event_id,
            "event_type": event.type,
            "step": "webhook",
        }

        # 2. Deduplicate
        if not self.repository.record_webhook(rail, event.provider_event_id, event.type):
            webhook_counter.labels(rail=rail.value, outcome=WebhookOutcome.DUPLICATE.value).inc()
            logger.info(f"Duplicate webhook {event.provider_event_id} skipped", extra=log_extra)
            return WebhookOutcome.DUPLICATE

        # 3. Apply, 4. Commit
        try:
            outcome = await self._dispatch(event)
            self.repository.commit()
        except Exception as e:
            self.repository.rollback()
            self.manager.discard_events()
            logger.error(f"Webhook {event.provider_event_id} failed: {e}", extra=log_extra)
            raise

        # 5. Notify
        await self.manager.flush_events()

        webhook_counter.labels(rail=rail.value, outcome=outcome.value).inc()
        logger.info(f"Webhook {event.provider_event_id} {outcome.value}", extra=log_extra)
        return outcome

    async def _dispatch(self, event: WebhookEvent) -> WebhookOutcome:
        try:
            if event.kind == WebhookEventKind.PAYMENT_STATUS:
                await self.payments.apply_status(event.payment_id, event.payment_status)
            elif event.kind == WebhookEventKind.REFUND_STATUS:
                if await self.manager.apply_refund_status(event) is None:
                    return WebhookOutcome.IGNORED
            elif event.kind == WebhookEventKind.CHARGEBACK:
                await self.manager.ingest_chargeback(event)
            else:
                return WebhookOutcome.IGNORED
        except (PaymentNotFound, InvalidStateTransition) as e:
            # Out-of-order or foreign events are recorded so the rail stops redelivering
            logger.warning(
                f"Webhook {event.provider_event_id} not applied: {e}",
                extra={"rail": event.rail.value, "provider_event_id": event.provider_event_id},
            )
            return WebhookOutcome.IGNORED
        return WebhookOutcome.PROCESSED
