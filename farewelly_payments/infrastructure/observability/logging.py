"""Structured JSON logging for production observability"""

import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from farewelly_payments.config import settings

# Request correlation id, set by middleware or by callers invoking the engine directly
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_var.set(correlation_id)


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp, service metadata and correlation id"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name
        log_record.setdefault("correlation_id", correlation_id_var.get())


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_split(provider_id: str, purpose: str, reduction_applied: bool, adjusted_cents: int, net_cents: int) -> None:
    """Log structured split outcome for audit"""
    logging.info(
        "Split computed",
        extra={
            "step": "split_computed",
            "provider_id": provider_id,
            "purpose": purpose,
            "reduction_applied": reduction_applied,
            "adjusted_base_cents": adjusted_cents,
            "net_cents": net_cents,
        },
    )


def log_refund(refund_id: str, payment_intent_id: str, status: str, amount_cents: int, automatic: bool, actor: str) -> None:
    """Log refund lifecycle activity"""
    logging.info(
        "Refund activity",
        extra={
            "step": "refund",
            "refund_id": refund_id,
            "payment_intent_id": payment_intent_id,
            "refund_status": status,
            "amount_cents": amount_cents,
            "automatic": automatic,
            "actor": actor,
        },
    )


def log_dispute(dispute_id: str, payment_intent_id: str, action: str, status: str) -> None:
    """Log dispute lifecycle activity"""
    logging.info(
        "Dispute activity",
        extra={
            "step": "dispute",
            "dispute_id": dispute_id,
            "payment_intent_id": payment_intent_id,
            "action": action,
            "dispute_status": status,
        },
    )
