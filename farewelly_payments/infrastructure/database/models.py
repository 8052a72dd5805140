"""SQLAlchemy ORM models for payment intents, refunds, disputes and webhook dedupe"""

from sqlalchemy import Column, String, BigInteger, Boolean, DateTime, Integer, Text, JSON, UniqueConstraint
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

from farewelly_payments.domain.money import DEFAULT_CURRENCY

Base = declarative_base()


class PaymentIntentRecord(Base):
    """Charge attempt on a rail with its embedded split"""

    __tablename__ = "payment_intent"

    id = Column(String(64), primary_key=True)  # rail identifier (pi_... / tr_...)
    rail = Column(String(16), nullable=False)
    amount_cents = Column(BigInteger, nullable=False)
    currency = Column(String(3), nullable=False, default=DEFAULT_CURRENCY)
    purpose = Column(String(32), nullable=False)
    customer_id = Column(Text, nullable=False, index=True)
    provider_id = Column(Text, nullable=True, index=True)
    service_id = Column(Text, nullable=False)
    description = Column(Text, nullable=False, default="")
    status = Column(String(32), nullable=False)
    status_history = Column(JSON, nullable=False, default=list)
    split = Column(JSON, nullable=True)
    payment_metadata = Column("metadata", JSON, nullable=False, default=dict)
    checkout_url = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class RefundRecord(Base):
    """Refund against a payment intent; weak reference, no cascade"""

    __tablename__ = "refund_request"

    id = Column(String(64), primary_key=True)
    payment_intent_id = Column(String(64), nullable=False, index=True)
    amount_cents = Column(BigInteger, nullable=False)
    currency = Column(String(3), nullable=False, default=DEFAULT_CURRENCY)
    reason = Column(String(32), nullable=False)
    description = Column(Text, nullable=False, default="")
    status = Column(String(16), nullable=False)
    initiated_by = Column(String(16), nullable=False)
    automatic = Column(Boolean, nullable=False, default=False)
    rail_refund_id = Column(String(64), nullable=True, index=True)
    decided_by = Column(Text, nullable=True)
    notes = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    processed_at = Column(DateTime(timezone=True), nullable=True)


class DisputeRecord(Base):
    """Customer dispute or chargeback case"""

    __tablename__ = "dispute_case"

    id = Column(String(64), primary_key=True)
    payment_intent_id = Column(String(64), nullable=False, index=True)
    customer_id = Column(Text, nullable=False)
    provider_id = Column(Text, nullable=False)
    reason = Column(Text, nullable=False)
    description = Column(Text, nullable=False, default="")
    status = Column(String(16), nullable=False)
    priority = Column(String(16), nullable=False)
    evidence = Column(JSON, nullable=False, default=list)
    chargeback = Column(Boolean, nullable=False, default=False)
    resolution = Column(Text, nullable=True)
    resolved_by = Column(Text, nullable=True)
    refund_id = Column(String(64), nullable=True)
    status_history = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    resolved_at = Column(DateTime(timezone=True), nullable=True)


class ProcessedWebhook(Base):
    """Rail webhook deliveries already applied; one row per (rail, provider event id)"""

    __tablename__ = "processed_webhook"
    __table_args__ = (UniqueConstraint("rail", "provider_event_id", name="uq_processed_webhook_event"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    rail = Column(String(16), nullable=False)
    provider_event_id = Column(String(128), nullable=False)
    event_type = Column(Text, nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
