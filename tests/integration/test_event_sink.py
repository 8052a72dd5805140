"""Integration tests for background delivery to the downstream event sink"""

import asyncio

import httpx
from prometheus_client import REGISTRY

from farewelly_payments.domain.events import EngineEvent, EventType
from farewelly_payments.domain.models import CreateRefundRequest, RefundInitiator, RefundStatus
from farewelly_payments.infrastructure.clients.event_sink import HttpEventSink
from farewelly_payments.services.refund_disputes import RefundDisputeManager

SINK_URL = "https://analytics.test/events"


def failures(event_type: EventType) -> float:
    return REGISTRY.get_sample_value("event_sink_failures_total", {"event": event_type.value}) or 0.0


async def test_publish_does_not_wait_for_delivery():
    """Test publish returns while the sink is still answering"""
    release = asyncio.Event()
    delivered = []

    async def handler(request: httpx.Request) -> httpx.Response:
        await release.wait()
        delivered.append(request)
        return httpx.Response(202)

    sink = HttpEventSink(webhook_url=SINK_URL, backoff_base=0, transport=httpx.MockTransport(handler))

    await sink.publish(EngineEvent(EventType.SPLIT_COMPUTED, {"provider_id": "prov_1"}))

    assert sink.pending == 1
    assert delivered == []

    release.set()
    await sink.drain()

    assert sink.pending == 0
    assert len(delivered) == 1


async def test_exhausted_retries_are_counted_not_raised():
    """Test a sink that keeps failing gives up in the background"""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503)

    sink = HttpEventSink(webhook_url=SINK_URL, max_retries=3, backoff_base=0, transport=httpx.MockTransport(handler))
    before = failures(EventType.DISPUTE_CREATED)

    await sink.publish(EngineEvent(EventType.DISPUTE_CREATED, {"id": "dp_1"}))
    await sink.drain()

    assert len(calls) == 3
    assert failures(EventType.DISPUTE_CREATED) == before + 1


async def test_refund_completes_while_sink_is_stalled(repository, rails, locks, store_intent):
    """Test a hanging sink does not hold up an automatic refund"""
    release = asyncio.Event()

    async def handler(request: httpx.Request) -> httpx.Response:
        await release.wait()
        return httpx.Response(202)

    sink = HttpEventSink(webhook_url=SINK_URL, backoff_base=0, transport=httpx.MockTransport(handler))
    manager = RefundDisputeManager(repository, rails, sink, locks)
    intent = store_intent()

    refund = await manager.create_refund(
        CreateRefundRequest(
            payment_intent_id=intent.id,
            reason="duplicate_charge",
            description="Charged twice",
            initiated_by=RefundInitiator.CUSTOMER,
        )
    )

    assert refund.status == RefundStatus.COMPLETED
    assert sink.pending == 1

    release.set()
    await sink.drain()
