"""Unit tests for the structured JSON log format"""

import json
import logging

from farewelly_payments.config import settings
from farewelly_payments.infrastructure.observability.logging import CustomJsonFormatter, set_correlation_id


def render(message: str) -> dict:
    record = logging.LogRecord("farewelly_payments.test", logging.INFO, __file__, 1, message, None, None)
    formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    return json.loads(formatter.format(record))


def test_service_name_comes_from_settings(monkeypatch):
    """Test each record carries the configured service name"""
    monkeypatch.setattr(settings, "service_name", "farewelly-payments-staging")

    line = render("Refund created")

    assert line["service"] == "farewelly-payments-staging"
    assert line["level"] == "INFO"
    assert line["message"] == "Refund created"


def test_correlation_id_is_attached():
    """Test the current correlation id is written on every record"""
    set_correlation_id("req_123")

    assert render("Dispute resolved")["correlation_id"] == "req_123"
