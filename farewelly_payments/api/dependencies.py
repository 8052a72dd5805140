"""Dependency injection for FastAPI endpoints"""

from functools import lru_cache

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from farewelly_payments.config import settings
from farewelly_payments.domain.events import EventSink
from farewelly_payments.domain.gateway import RailRegistry
from farewelly_payments.domain.models import Rail
from farewelly_payments.infrastructure.clients.event_sink import HttpEventSink, LoggingEventSink
from farewelly_payments.infrastructure.clients.mollie import MollieClient
from farewelly_payments.infrastructure.clients.stripe import StripeClient
from farewelly_payments.infrastructure.database.repositories import PaymentRepository
from farewelly_payments.infrastructure.database.session import get_db
from farewelly_payments.services.locks import IntentLockRegistry
from farewelly_payments.services.payments import PaymentService
from farewelly_payments.services.refund_disputes import RefundDisputeManager
from farewelly_payments.services.webhooks import WebhookProcessor


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


@lru_cache
def get_rail_registry() -> RailRegistry:
    """Stripe and Mollie gateways; Mollie is the default for Dutch payment methods"""
    return RailRegistry([StripeClient(), MollieClient()], default_rail=Rail(settings.default_rail))


@lru_cache
def get_event_sink() -> EventSink:
    """HTTP sink when a downstream URL is configured, otherwise the structured log"""
    if settings.event_sink_url:
        return HttpEventSink()
    return LoggingEventSink()


@lru_cache
def get_intent_locks() -> IntentLockRegistry:
    return IntentLockRegistry()


def get_repository(db: Session = Depends(get_db)) -> PaymentRepository:
    return PaymentRepository(db)


def get_payment_service(
    repository: PaymentRepository = Depends(get_repository),
    rails: RailRegistry = Depends(get_rail_registry),
    event_sink: EventSink = Depends(get_event_sink),
    locks: IntentLockRegistry = Depends(get_intent_locks),
) -> PaymentService:
    return PaymentService(repository, rails, event_sink, locks)


def get_refund_dispute_manager(
    repository: PaymentRepository = Depends(get_repository),
    rails: RailRegistry = Depends(get_rail_registry),
    event_sink: EventSink = Depends(get_event_sink),
    locks: IntentLockRegistry = Depends(get_intent_locks),
) -> RefundDisputeManager:
    return RefundDisputeManager(repository, rails, event_sink, locks)


def get_webhook_processor(
    repository: PaymentRepository = Depends(get_repository),
    rails: RailRegistry = Depends(get_rail_registry),
    payments: PaymentService = Depends(get_payment_service),
    manager: RefundDisputeManager = Depends(get_refund_dispute_manager),
) -> WebhookProcessor:
    return WebhookProcessor(repository, rails, payments, manager)
