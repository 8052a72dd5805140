"""Pytest fixtures for testing"""

import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("MOLLIE_WEBHOOK_SECRET", "mollie_whsec_test")

import asyncio
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Generator, List, Mapping, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker, Session

from farewelly_payments.api.dependencies import get_event_sink, get_rail_registry
from farewelly_payments.api.main import create_app
from farewelly_payments.domain.events import InMemoryEventSink
from farewelly_payments.domain.exceptions import WebhookSignatureInvalid
from farewelly_payments.domain.gateway import RailRegistry
from farewelly_payments.domain.models import (
    PaymentIntent,
    PaymentPurpose,
    PaymentSplit,
    PaymentStatus,
    Rail,
    RefundRequest,
    RefundStatus,
    WebhookEvent,
)
from farewelly_payments.domain.money import Money
from farewelly_payments.domain.state_machine import advance_payment
from farewelly_payments.infrastructure.clients.base import snapshot_intent
from farewelly_payments.infrastructure.database.models import Base
from farewelly_payments.infrastructure.database.repositories import PaymentRepository
from farewelly_payments.infrastructure.database.session import build_engine, get_db, init_db
from farewelly_payments.services.locks import IntentLockRegistry
from farewelly_payments.services.payments import PaymentService
from farewelly_payments.services.refund_disputes import RefundDisputeManager
from farewelly_payments.utils.date_utils import utc_now


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = build_engine(TEST_DATABASE_URL)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeRailGateway:
    """In-process rail: charges start pending, refunds succeed unless told otherwise"""

    def __init__(self, rail: Rail = Rail.STRIPE):
        self._rail = rail
        self.charges: Dict[str, PaymentIntent] = {}
        self.charge_status = PaymentStatus.COMPLETED
        self.refund_status = RefundStatus.COMPLETED
        self.refund_error: Optional[Exception] = None
        self.refund_calls: List[Dict[str, Any]] = []

    @property
    def rail(self) -> Rail:
        return self._rail

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
        if idempotency_key in self.charges:
            return self.charges[idempotency_key]

        prefix = "pi_" if self._rail == Rail.STRIPE else "tr_"
        intent = snapshot_intent(
            PaymentStatus.PENDING,
            id=f"{prefix}{uuid.uuid4().hex[:16]}",
            rail=self._rail,
            amount=amount,
            purpose=purpose,
            customer_id=metadata.get("customer_id", ""),
            service_id=metadata.get("service_id", ""),
            provider_id=metadata.get("provider_id"),
            description=description,
            metadata=dict(metadata),
            split=split,
            created_at=utc_now(),
        )
        self.charges[idempotency_key] = intent
        return intent

    async def confirm_charge(self, payment_id: str, method_token: str, *, timeout: Optional[float] = None):
        return self._with_status(payment_id, PaymentStatus.COMPLETED)

    async def get_status(self, payment_id: str, *, timeout: Optional[float] = None) -> PaymentIntent:
        return self._with_status(payment_id, self.charge_status)

    def _with_status(self, payment_id: str, status: PaymentStatus) -> PaymentIntent:
        intent = next(i for i in self.charges.values() if i.id == payment_id)
        return advance_payment(intent, status)

    async def create_refund(
        self,
        payment_id: str,
        amount: Optional[Money],
        reason: str,
        *,
        idempotency_key: str,
        timeout: Optional[float] = None,
    ) -> RefundRequest:
        self.refund_calls.append(
            {"payment_id": payment_id, "amount": amount, "reason": reason, "idempotency_key": idempotency_key}
        )
        await asyncio.sleep(0)  # Yield like real I/O so concurrent callers interleave

        if self.refund_error is not None:
            error, self.refund_error = self.refund_error, None
            raise error

        return RefundRequest(
            id=f"re_{idempotency_key}",
            payment_intent_id=payment_id,
            amount=amount,
            reason=reason,
            status=self.refund_status,
            rail_refund_id=f"re_{idempotency_key}",
        )

    def verify_and_parse_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        raise WebhookSignatureInvalid("Fake rail does not sign webhooks")


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    init_db(engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def repository(db: Session) -> PaymentRepository:
    return PaymentRepository(db)


@pytest.fixture
def event_sink() -> InMemoryEventSink:
    return InMemoryEventSink()


@pytest.fixture
def locks() -> IntentLockRegistry:
    return IntentLockRegistry()


@pytest.fixture
def fake_rail() -> FakeRailGateway:
    return FakeRailGateway()


@pytest.fixture
def rails(fake_rail: FakeRailGateway) -> RailRegistry:
    return RailRegistry([fake_rail], default_rail=Rail.STRIPE)


@pytest.fixture
def manager(repository, rails, event_sink, locks) -> RefundDisputeManager:
    return RefundDisputeManager(repository, rails, event_sink, locks)


@pytest.fixture
def payment_service(repository, rails, event_sink, locks) -> PaymentService:
    return PaymentService(repository, rails, event_sink, locks)


@pytest.fixture
def store_intent(repository: PaymentRepository) -> Callable[..., PaymentIntent]:
    """Persist a payment intent as if the rail had reported ``status``"""

    def _store(
        amount: int = 10_000,
        status: PaymentStatus = PaymentStatus.COMPLETED,
        rail: Rail = Rail.STRIPE,
        created_at: Optional[datetime] = None,
        provider_id: Optional[str] = "prov_uitvaart_1",
    ) -> PaymentIntent:
        prefix = "pi_" if rail == Rail.STRIPE else "tr_"
        captured = status in (PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED)
        intent = snapshot_intent(
            PaymentStatus.COMPLETED if captured else status,
            id=f"{prefix}{uuid.uuid4().hex[:16]}",
            rail=rail,
            amount=Money(amount),
            purpose=PaymentPurpose.REGULAR_SERVICE,
            customer_id="cust_family_1",
            service_id="svc_cremation_1",
            provider_id=provider_id,
            description="Cremation service",
            created_at=created_at or utc_now(),
        )
        if captured:
            intent = advance_payment(intent, status)
        repository.add_intent(intent)
        repository.commit()
        return repository.get_intent(intent.id)

    return _store


@pytest.fixture
def client(db: Session, rails: RailRegistry, event_sink: InMemoryEventSink) -> TestClient:
    """Create FastAPI test client with test database, fake rail and in-memory event sink"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_rail_registry] = lambda: rails
    app.dependency_overrides[get_event_sink] = lambda: event_sink
    return TestClient(app)
