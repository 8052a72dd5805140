"""Shared HTTP plumbing for payment rail clients: retries, idempotency, error mapping"""

import asyncio
import hashlib
import hmac
import logging
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

import httpx

from farewelly_payments.config import settings
from farewelly_payments.domain.exceptions import RailCommunicationError, RailRequestRejected
from farewelly_payments.domain.models import PaymentIntent, PaymentStatus, Rail, RefundStatus, StatusChange
from farewelly_payments.domain.state_machine import advance_payment
from farewelly_payments.infrastructure.observability.metrics import rail_failure_counter, rail_latency_histogram

logger = logging.getLogger(__name__)


def hmac_sha256_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def constant_time_equals(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def map_status(table: Mapping[str, Any], status: str, fallback: Any, rail: Rail, kind: str) -> Any:
    """Translate a rail status; unknown values become failed and are logged"""
    mapped = table.get(status)
    if mapped is None:
        logger.warning(
            f"Unrecognized {rail.value} {kind} status {status!r}, treating as {fallback.value}",
            extra={"rail": rail.value, "rail_status": status},
        )
        return fallback
    return mapped


def map_payment_status(table: Mapping[str, PaymentStatus], status: str, rail: Rail) -> PaymentStatus:
    return map_status(table, status, PaymentStatus.FAILED, rail, "payment")


def map_refund_status(table: Mapping[str, RefundStatus], status: str, rail: Rail) -> RefundStatus:
    return map_status(table, status, RefundStatus.FAILED, rail, "refund")


def snapshot_intent(status: PaymentStatus, **fields: Any) -> PaymentIntent:
    """Build an intent as seen on the rail; history always starts at pending"""
    created_at: datetime = fields["created_at"]
    intent = PaymentIntent(
        status=PaymentStatus.PENDING,
        status_history=(StatusChange(status=PaymentStatus.PENDING.value, at=created_at),),
        updated_at=created_at,
        **fields,
    )
    return advance_payment(intent, status)


class RailHttpClient:
    """Base client for a payment rail REST API"""

    rail: Rail

    def __init__(
        self,
        base_url: str,
        api_key: str,
        webhook_secret: str,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.timeout = timeout or settings.http_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.rail_max_retries
        self.backoff_base = backoff_base if backoff_base is not None else settings.rail_backoff_base
        self.transport = transport

    def _headers(self, idempotency_key: Optional[str]) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        idempotency_key: Optional[str] = None,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        """
        Call the rail with bounded exponential backoff.

        Retry strategy:
        - Retries on network failures, timeouts, 429 and 5xx
        - Every attempt carries the same idempotency key
        - Backoff: base * 2^(attempt-1)

        Raises:
            RailCommunicationError: retries exhausted; ``may_have_moved_money``
                is set when any attempt may have reached the rail
            RailRequestRejected: rail answered with a 4xx other than 429
        """
        attempt = 0
        uncertain = False
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or self.timeout,
            transport=self.transport,
        ) as client:
            while True:
                attempt += 1
                try:
                    with rail_latency_histogram.labels(rail=self.rail.value, operation=operation).time():
                        response = await client.request(
                            method, path, headers=self._headers(idempotency_key), **kwargs
                        )
                except (httpx.ConnectError, httpx.ConnectTimeout) as e:
                    error = f"{self.rail.value} unreachable: {e!r}"
                except httpx.RequestError as e:
                    uncertain = True
                    error = f"{self.rail.value} request failed after sending: {e!r}"
                else:
                    if response.status_code == 429 or response.status_code >= 500:
                        uncertain = uncertain or response.status_code >= 500
                        error = f"{self.rail.value} returned {response.status_code}"
                    elif response.status_code >= 400:
                        rail_failure_counter.labels(rail=self.rail.value, operation=operation).inc()
                        logger.error(
                            f"{self.rail.value} rejected {operation}: {response.status_code}",
                            extra={"rail": self.rail.value, "operation": operation},
                        )
                        raise RailRequestRejected(
                            f"{self.rail.value} rejected {operation}: {response.status_code} {response.text}",
                            rail=self.rail.value,
                            operation=operation,
                            status_code=response.status_code,
                        )
                    else:
                        try:
                            return response.json()
                        except ValueError as e:
                            raise RailCommunicationError(
                                f"Invalid JSON from {self.rail.value}",
                                rail=self.rail.value,
                                operation=operation,
                                may_have_moved_money=True,
                            ) from e

                rail_failure_counter.labels(rail=self.rail.value, operation=operation).inc()
                logger.warning(
                    f"{error} (attempt {attempt}/{self.max_retries})",
                    extra={"rail": self.rail.value, "operation": operation, "attempt": attempt},
                )

                if attempt >= self.max_retries:
                    raise RailCommunicationError(
                        f"{operation} failed after {attempt} attempts: {error}",
                        rail=self.rail.value,
                        operation=operation,
                        may_have_moved_money=uncertain,
                    )

                backoff = self.backoff_base * (2 ** (attempt - 1))
                await asyncio.sleep(backoff)

    def _invalid_response(self, operation: str, error: Exception) -> RailCommunicationError:
        return RailCommunicationError(
            f"Invalid {operation} response from {self.rail.value}: {error!r}",
            rail=self.rail.value,
            operation=operation,
            may_have_moved_money=True,
        )
