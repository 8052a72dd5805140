"""Data access layer mapping ORM rows to immutable domain entities"""

import dataclasses
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from farewelly_payments.domain.exceptions import (
    ConcurrentModificationError,
    DisputeNotFound,
    PaymentNotFound,
    RefundNotFound,
)
from farewelly_payments.domain.models import (
    DisputeCase,
    DisputePriority,
    DisputeStatus,
    PaymentIntent,
    PaymentPurpose,
    PaymentSplit,
    PaymentStatus,
    Rail,
    RefundInitiator,
    RefundRequest,
    RefundStatus,
    StatusChange,
)
from farewelly_payments.domain.money import Money
from farewelly_payments.infrastructure.database.models import (
    DisputeRecord,
    PaymentIntentRecord,
    ProcessedWebhook,
    RefundRecord,
)
from farewelly_payments.utils.date_utils import ensure_utc

logger = logging.getLogger(__name__)


def _dump_history(history: Tuple[StatusChange, ...]) -> List[Dict[str, str]]:
    return [{"status": change.status, "at": change.at.isoformat()} for change in history]


def _load_history(rows: Optional[List[Dict[str, str]]]) -> Tuple[StatusChange, ...]:
    return tuple(
        StatusChange(status=row["status"], at=ensure_utc(datetime.fromisoformat(row["at"])))
        for row in rows or []
    )


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    return ensure_utc(value) if value is not None else None


def intent_from_record(row: PaymentIntentRecord) -> PaymentIntent:
    return PaymentIntent(
        id=row.id,
        rail=Rail(row.rail),
        amount=Money(row.amount_cents, row.currency),
        purpose=PaymentPurpose(row.purpose),
        customer_id=row.customer_id,
        service_id=row.service_id,
        description=row.description,
        status=PaymentStatus(row.status),
        provider_id=row.provider_id,
        split=PaymentSplit.from_dict(row.split) if row.split else None,
        metadata=dict(row.payment_metadata or {}),
        checkout_url=row.checkout_url,
        status_history=_load_history(row.status_history),
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
        version=row.version,
    )


def refund_from_record(row: RefundRecord) -> RefundRequest:
    return RefundRequest(
        id=row.id,
        payment_intent_id=row.payment_intent_id,
        amount=Money(row.amount_cents, row.currency),
        reason=row.reason,
        status=RefundStatus(row.status),
        created_at=ensure_utc(row.created_at),
        processed_at=_utc(row.processed_at),
        description=row.description,
        initiated_by=RefundInitiator(row.initiated_by),
        automatic=row.automatic,
        rail_refund_id=row.rail_refund_id,
        decided_by=row.decided_by,
        notes=row.notes,
    )


def dispute_from_record(row: DisputeRecord) -> DisputeCase:
    return DisputeCase(
        id=row.id,
        payment_intent_id=row.payment_intent_id,
        customer_id=row.customer_id,
        provider_id=row.provider_id,
        reason=row.reason,
        description=row.description,
        status=DisputeStatus(row.status),
        priority=DisputePriority(row.priority),
        evidence=tuple(row.evidence or ()),
        chargeback=row.chargeback,
        resolution=row.resolution,
        resolved_by=row.resolved_by,
        refund_id=row.refund_id,
        status_history=_load_history(row.status_history),
        created_at=ensure_utc(row.created_at),
        resolved_at=_utc(row.resolved_at),
    )


class PaymentRepository:
    """Repository for payment intents and the refunds and disputes referencing them"""

    def __init__(self, db: Session):
        self.db = db

    # Payment intents

    def add_intent(self, intent: PaymentIntent) -> PaymentIntent:
        """Persist a new intent as returned by the rail"""
        self.db.add(
            PaymentIntentRecord(
                id=intent.id,
                rail=intent.rail.value,
                amount_cents=intent.amount.amount,
                currency=intent.amount.currency,
                purpose=intent.purpose.value,
                customer_id=intent.customer_id,
                provider_id=intent.provider_id,
                service_id=intent.service_id,
                description=intent.description,
                status=intent.status.value,
                status_history=_dump_history(intent.status_history),
                split=intent.split.to_dict() if intent.split else None,
                payment_metadata=dict(intent.metadata),
                checkout_url=intent.checkout_url,
                version=intent.version,
                created_at=intent.created_at,
                updated_at=intent.updated_at,
            )
        )
        self.db.flush()  # Surface duplicate ids before commit
        return intent

    def find_intent(self, payment_intent_id: str) -> Optional[PaymentIntent]:
        row = self.db.get(PaymentIntentRecord, payment_intent_id)
        return intent_from_record(row) if row else None

    def get_intent(self, payment_intent_id: str) -> PaymentIntent:
        intent = self.find_intent(payment_intent_id)
        if intent is None:
            raise PaymentNotFound(f"Payment intent {payment_intent_id} not found")
        return intent

    def save_intent(self, intent: PaymentIntent) -> PaymentIntent:
        """
        Compare-and-set update keyed on ``intent.version``.

        Returns the intent with its version bumped.

        Raises:
            ConcurrentModificationError: another writer updated the row since
                this intent was read
        """
        updated = (
            self.db.query(PaymentIntentRecord)
            .filter(
                PaymentIntentRecord.id == intent.id,
                PaymentIntentRecord.version == intent.version,
            )
            .update(
                {
                    PaymentIntentRecord.status: intent.status.value,
                    PaymentIntentRecord.status_history: _dump_history(intent.status_history),
                    PaymentIntentRecord.split: intent.split.to_dict() if intent.split else None,
                    PaymentIntentRecord.checkout_url: intent.checkout_url,
                    PaymentIntentRecord.updated_at: intent.updated_at,
                    PaymentIntentRecord.version: intent.version + 1,
                },
            )
        )
        if updated != 1:
            logger.warning(
                f"Version conflict on payment intent {intent.id}",
                extra={"payment_intent_id": intent.id, "expected_version": intent.version},
            )
            raise ConcurrentModificationError(
                f"Payment intent {intent.id} was modified concurrently (expected version {intent.version})"
            )
        return dataclasses.replace(intent, version=intent.version + 1)

    # Refunds

    def add_refund(self, refund: RefundRequest) -> RefundRequest:
        self.db.add(
            RefundRecord(
                id=refund.id,
                payment_intent_id=refund.payment_intent_id,
                amount_cents=refund.amount.amount,
                currency=refund.amount.currency,
                reason=refund.reason,
                description=refund.description,
                status=refund.status.value,
                initiated_by=refund.initiated_by.value,
                automatic=refund.automatic,
                rail_refund_id=refund.rail_refund_id,
                decided_by=refund.decided_by,
                notes=refund.notes,
                created_at=refund.created_at,
                processed_at=refund.processed_at,
            )
        )
        self.db.flush()
        return refund

    def update_refund(self, refund: RefundRequest) -> RefundRequest:
        row = self.db.get(RefundRecord, refund.id)
        if row is None:
            raise RefundNotFound(f"Refund {refund.id} not found")
        row.status = refund.status.value
        row.rail_refund_id = refund.rail_refund_id
        row.decided_by = refund.decided_by
        row.notes = refund.notes
        row.processed_at = refund.processed_at
        self.db.flush()
        return refund

    def get_refund(self, refund_id: str) -> RefundRequest:
        row = self.db.get(RefundRecord, refund_id)
        if row is None:
            raise RefundNotFound(f"Refund {refund_id} not found")
        return refund_from_record(row)

    def find_refund_by_rail_id(self, rail_refund_id: str) -> Optional[RefundRequest]:
        row = (
            self.db.query(RefundRecord)
            .filter(RefundRecord.rail_refund_id == rail_refund_id)
            .first()
        )
        return refund_from_record(row) if row else None

    def list_refunds(self, payment_intent_id: str) -> List[RefundRequest]:
        rows = (
            self.db.query(RefundRecord)
            .filter(RefundRecord.payment_intent_id == payment_intent_id)
            .order_by(RefundRecord.created_at.asc())
            .all()
        )
        return [refund_from_record(row) for row in rows]

    # Disputes

    def _dispute_values(self, dispute: DisputeCase) -> Dict[str, Any]:
        return {
            "status": dispute.status.value,
            "priority": dispute.priority.value,
            "evidence": list(dispute.evidence),
            "chargeback": dispute.chargeback,
            "resolution": dispute.resolution,
            "resolved_by": dispute.resolved_by,
            "refund_id": dispute.refund_id,
            "status_history": _dump_history(dispute.status_history),
            "resolved_at": dispute.resolved_at,
        }

    def add_dispute(self, dispute: DisputeCase) -> DisputeCase:
        self.db.add(
            DisputeRecord(
                id=dispute.id,
                payment_intent_id=dispute.payment_intent_id,
                customer_id=dispute.customer_id,
                provider_id=dispute.provider_id,
                reason=dispute.reason,
                description=dispute.description,
                created_at=dispute.created_at,
                **self._dispute_values(dispute),
            )
        )
        self.db.flush()
        return dispute

    def update_dispute(self, dispute: DisputeCase) -> DisputeCase:
        row = self.db.get(DisputeRecord, dispute.id)
        if row is None:
            raise DisputeNotFound(f"Dispute {dispute.id} not found")
        for key, value in self._dispute_values(dispute).items():
            setattr(row, key, value)
        self.db.flush()
        return dispute

    def get_dispute(self, dispute_id: str) -> DisputeCase:
        row = self.db.get(DisputeRecord, dispute_id)
        if row is None:
            raise DisputeNotFound(f"Dispute {dispute_id} not found")
        return dispute_from_record(row)

    def get_open_dispute(self, payment_intent_id: str) -> Optional[DisputeCase]:
        row = (
            self.db.query(DisputeRecord)
            .filter(
                DisputeRecord.payment_intent_id == payment_intent_id,
                DisputeRecord.status != DisputeStatus.RESOLVED.value,
            )
            .first()
        )
        return dispute_from_record(row) if row else None

    # Webhook dedupe

    def record_webhook(self, rail: Rail, provider_event_id: str, event_type: str) -> bool:
        """
        Claim a webhook delivery.

        Returns False when ``(rail, provider_event_id)`` was already
        recorded, including when a concurrent delivery wins the insert.
        Must be the first write of the unit of work: losing the race rolls
        the session back.
        """
        existing = (
            self.db.query(ProcessedWebhook)
            .filter(
                ProcessedWebhook.rail == rail.value,
                ProcessedWebhook.provider_event_id == provider_event_id,
            )
            .first()
        )
        if existing is not None:
            return False

        self.db.add(ProcessedWebhook(rail=rail.value, provider_event_id=provider_event_id, event_type=event_type))
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            return False
        return True

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
