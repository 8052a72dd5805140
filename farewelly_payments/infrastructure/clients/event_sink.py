"""Event sink webhook client with exponential backoff retry logic"""

import httpx
import asyncio
import logging
from typing import Set

from farewelly_payments.config import settings
from farewelly_payments.domain.events import EngineEvent, EventSink
from farewelly_payments.infrastructure.observability.metrics import (
    event_sink_failure_counter,
    event_sink_latency_histogram,
)

logger = logging.getLogger(__name__)


def _record_failure(event: EngineEvent, error: BaseException) -> None:
    event_sink_failure_counter.labels(event=event.type.value).inc()
    logger.error(
        f"Event sink failed for {event.type.value}: {error}",
        extra={"event": event.type.value, "step": "emit_event"},
    )


class HttpEventSink:
    """
    Client for posting engine lifecycle events to the analytics/notification service.

    ``publish`` only schedules delivery; retries run in a background task so
    a slow or unreachable sink never holds up a refund, dispute or webhook.
    Call ``drain`` on shutdown to let in-flight deliveries finish.
    """

    def __init__(
        self,
        webhook_url: str | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.webhook_url = webhook_url or settings.event_sink_url
        self.max_retries = max_retries if max_retries is not None else settings.event_sink_max_retries
        self.backoff_base = backoff_base if backoff_base is not None else settings.event_sink_backoff_base
        self.transport = transport
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def publish(self, event: EngineEvent) -> None:
        task = asyncio.create_task(self.deliver(event))
        self._pending.add(task)
        task.add_done_callback(lambda t: self._finished(event, t))

    def _finished(self, event: EngineEvent, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            logger.warning(f"Delivery of {event.type.value} cancelled", extra={"event": event.type.value})
        elif task.exception() is not None:
            _record_failure(event, task.exception())

    async def drain(self) -> None:
        """Wait for every scheduled delivery to succeed or give up"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def deliver(self, event: EngineEvent) -> None:
        """
        Send an engine event downstream with retry logic.

        Retry strategy:
        - Exponential backoff: base * 2^(attempt-1)
        - Retries on HTTP error statuses and network failures
        - Tracks latency histogram

        Raises the last error after the final attempt.
        """
        attempt = 0
        async with httpx.AsyncClient(transport=self.transport) as client:
            while attempt < self.max_retries:
                try:
                    with event_sink_latency_histogram.time():
                        response = await client.post(
                            self.webhook_url,
                            json=event.to_dict(),
                            timeout=settings.http_timeout_seconds,
                        )
                        response.raise_for_status()
                        return  # Success

                except (httpx.HTTPStatusError, httpx.RequestError):
                    attempt += 1

                    if attempt >= self.max_retries:
                        # Final failure after all retries
                        raise

                    backoff = self.backoff_base * (2 ** (attempt - 1))
                    await asyncio.sleep(backoff)


async def emit(sink: EventSink, event: EngineEvent) -> None:
    """Fire-and-forget: a failing sink is logged and counted, never raised"""
    try:
        await sink.publish(event)
    except Exception as e:
        _record_failure(event, e)


class LoggingEventSink:
    """Writes events to the structured log when no downstream URL is configured"""

    async def publish(self, event: EngineEvent) -> None:
        logger.info(
            f"Engine event {event.type.value}",
            extra={"event": event.type.value, "step": "emit_event", "data": event.payload},
        )
