"""Mapping of domain exceptions onto HTTP responses"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from farewelly_payments.domain.exceptions import (
    ConcurrentModificationError,
    DisputeAlreadyOpen,
    DisputeNotFound,
    DomainException,
    InvalidStateTransition,
    PaymentNotFound,
    RailCommunicationError,
    RailRequestRejected,
    RefundNotFound,
    WebhookSignatureInvalid,
)

logger = logging.getLogger(__name__)

# Anything not listed is a validation or policy failure (422)
STATUS_CODES = {
    PaymentNotFound: 404,
    RefundNotFound: 404,
    DisputeNotFound: 404,
    DisputeAlreadyOpen: 409,
    InvalidStateTransition: 409,
    ConcurrentModificationError: 409,
    WebhookSignatureInvalid: 400,
    RailCommunicationError: 503,
    RailRequestRejected: 502,
}


def status_code_for(exc: DomainException) -> int:
    for exc_type, status_code in STATUS_CODES.items():
        if isinstance(exc, exc_type):
            return status_code
    return 422


async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    status_code = status_code_for(exc)
    request_id = getattr(request.state, "request_id", "unknown")
    log = logger.error if status_code >= 500 else logger.warning
    log(
        f"{type(exc).__name__}: {exc}",
        extra={"request_id": request_id, "path": request.url.path, "status": status_code},
    )

    body = {"error": type(exc).__name__, "detail": str(exc)}
    if isinstance(exc, RailCommunicationError):
        body["may_have_moved_money"] = exc.may_have_moved_money
    return JSONResponse(status_code=status_code, content=body)
